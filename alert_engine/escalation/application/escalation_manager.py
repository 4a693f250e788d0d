"""Timer-driven escalation of incidents through their policy levels."""

from datetime import datetime, timedelta
from functools import partial
from typing import Callable

from loguru import logger

from alert_engine.config import EscalationConfig
from alert_engine.escalation.application.policy_service import EscalationPolicyService
from alert_engine.escalation.domain.models import (
    AcknowledgmentRecord,
    EscalationAction,
    EscalationLevel,
    EscalationPolicy,
    EscalationState,
    Incident,
    TimelineEventType,
)
from alert_engine.escalation.domain.protocols import EscalationNotifier, IncidentStore
from alert_engine.shared.domain.exceptions import EscalationNotFoundError, IncidentNotFoundError, PolicyNotFoundError
from alert_engine.shared.domain.models import EngineEvent, EventType, Severity, utcnow
from alert_engine.shared.domain.protocols import EventSink, Scheduler
from alert_engine.shared.infrastructure.event_sink import InMemoryEventSink
from alert_engine.shared.infrastructure.locks import KeyedLocks
from alert_engine.shared.infrastructure.logging import LoggingContext, log_with_context


def format_escalation_message(incident: Incident, level: EscalationLevel, policy: EscalationPolicy) -> str:
    if level.message_template:
        return (
            level.message_template.replace("{{incidentId}}", incident.id)
            .replace("{{title}}", incident.title)
            .replace("{{level}}", str(level.level))
            .replace("{{levelName}}", level.name)
            .replace("{{policyName}}", policy.name)
        )
    return f"[Escalation Level {level.level}] {incident.title} - Action required"


def resolve_target_users(policy: EscalationPolicy, level: EscalationLevel, at: datetime) -> list[str]:
    """Level users in configured order, then whoever is on call, without duplicates."""
    users = list(dict.fromkeys(level.notify_user_ids))
    on_call = policy.current_on_call(at)
    if on_call and on_call not in users:
        users.append(on_call)
    return users


class EscalationManager:
    """
    Drives each incident through ``NOT_STARTED -> LEVEL_1 .. LEVEL_N -> COMPLETE``.

    Every incident has at most one active state and at most one pending timer,
    keyed by incident id. Timer fires, acknowledgments, pauses and completions
    for an incident are serialized on a per-incident lock, so an
    acknowledgment and a timeout can never both take effect. Level
    notifications are sent after the lock is released.
    """

    def __init__(
        self,
        policy_service: EscalationPolicyService,
        incident_store: IncidentStore,
        scheduler: Scheduler,
        notifier: EscalationNotifier | None = None,
        event_sink: EventSink | None = None,
        config: EscalationConfig | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize escalation manager.

        Args:
            policy_service: Policy lookup and matching
            incident_store: Incident persistence and audit trail
            scheduler: Keyed cancellable timers
            notifier: Delivers level notifications (None = record only)
            event_sink: Destination for escalation events
            config: Retention settings
            clock: Source of "now" for timestamps
        """
        self.policy_service = policy_service
        self.incident_store = incident_store
        self.scheduler = scheduler
        self.notifier = notifier
        self.event_sink = event_sink if event_sink is not None else InMemoryEventSink()
        self.config = config or EscalationConfig()
        self._clock = clock

        self._states: dict[str, EscalationState] = {}
        self._locks = KeyedLocks()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start_escalation(
        self,
        incident: Incident,
        severity: Severity | None = None,
        rule_id: str | None = None,
        farm_id: str | None = None,
    ) -> EscalationState | None:
        """
        Start escalating an incident at level 1.

        Returns the existing state unchanged when the incident is already
        escalating, and None when no policy applies, the incident is closed, or
        the chosen policy is inside a suppression window.
        """
        severity = severity or incident.severity

        with LoggingContext(tenant_id=incident.tenant_id, incident_id=incident.id):
            async with self._locks.lock(incident.id):
                existing = self._states.get(incident.id)
                if existing is not None and existing.is_active:
                    logger.debug(f"Incident {incident.id} is already escalating")
                    return existing

                if incident.is_closed:
                    logger.warning(f"⚠️ Not escalating closed incident {incident.id}")
                    return None

                policy = await self.policy_service.find_matching_policy(
                    incident.tenant_id, severity, rule_id or incident.rule_id, farm_id or incident.farm_id
                )
                if policy is None:
                    logger.warning(f"⚠️ No escalation policy found for incident {incident.id}")
                    return None

                now = self._clock()
                if policy.in_suppression_window(now):
                    logger.info(f"Incident {incident.id} suppressed by policy {policy.id}")
                    incident.add_timeline_event(
                        TimelineEventType.STATUS_CHANGE,
                        "Escalation suppressed by suppression window",
                        user_id="system",
                        data={"policy_id": policy.id, "suppressed": True},
                        timestamp=now,
                    )
                    await self.incident_store.save(incident)
                    self._emit(EventType.ESCALATION_SUPPRESSED, incident_id=incident.id, policy_id=policy.id)
                    return None

                logger.info(f"🚀 Starting escalation for incident {incident.id} with policy {policy.name}")

                state = EscalationState(
                    incident_id=incident.id,
                    tenant_id=incident.tenant_id,
                    policy_id=policy.id,
                    current_level=1,
                    started_at=now,
                    last_escalated_at=now,
                )
                self._states[incident.id] = state
                self._emit(
                    EventType.ESCALATION_STARTED,
                    incident_id=incident.id,
                    tenant_id=incident.tenant_id,
                    policy_id=policy.id,
                    severity=str(severity),
                )

                action = await self._execute_level(incident, policy, state, level=1)
                self._arm_timer(state, policy)

            await self._notify(state, action)
            return state

    async def _execute_level(
        self, incident: Incident, policy: EscalationPolicy, state: EscalationState, level: int, repeat: bool = False
    ) -> EscalationAction:
        """Move ``state`` to ``level``, record it on the incident and build the action to deliver."""
        level_config = policy.get_level(level)
        now = self._clock()
        from_level = state.current_level

        action = EscalationAction(
            action_type=level_config.action,
            incident_id=incident.id,
            tenant_id=incident.tenant_id,
            level=level,
            severity=incident.severity,
            target_users=resolve_target_users(policy, level_config, now),
            target_teams=list(level_config.notify_team_ids),
            channels=list(level_config.channels),
            message=format_escalation_message(incident, level_config, policy),
            metadata={
                "policy_id": policy.id,
                "policy_name": policy.name,
                "level_name": level_config.name,
                "title": incident.title,
                "description": incident.description,
                "rule_id": incident.rule_id,
                "farm_id": incident.farm_id,
            },
        )

        state.current_level = level
        state.last_escalated_at = now
        state.escalation_count += 1

        incident.escalate(
            level,
            data={"policy_id": policy.id, "policy_name": policy.name, "repeat": state.repeats_used},
            at=now,
        )
        await self.incident_store.save(incident)

        event_type = EventType.ESCALATION_REPEATED if repeat else EventType.ESCALATION_ESCALATED
        self._emit(
            event_type,
            incident_id=incident.id,
            tenant_id=incident.tenant_id,
            policy_id=policy.id,
            from_level=from_level,
            level=level,
            repeat=state.repeats_used,
            target_users=action.target_users,
        )

        logger.info(
            f"🔔 Escalation level {level} for incident {incident.id} "
            f"({len(action.target_users)} users, {len(action.channels)} channels)"
        )
        return action

    def _fit_to_policy(self, state: EscalationState, policy: EscalationPolicy) -> bool:
        """
        Move ``state`` back onto the policy's final level when an edit removed its
        current level. Returns False when the policy has no levels left to run.
        """
        if policy.get_level(state.current_level) is not None:
            return True
        if not policy.levels:
            return False

        logger.warning(
            f"⚠️ Level {state.current_level} no longer in policy {policy.id}; "
            f"continuing incident {state.incident_id} from level {policy.final_level}"
        )
        state.current_level = policy.final_level
        return True

    def _next_delay_seconds(self, state: EscalationState, policy: EscalationPolicy) -> float:
        if state.repeats_used > 0:
            return policy.repeat_interval_minutes * 60
        return policy.get_level(state.current_level).timeout_minutes * 60

    def _arm_timer(self, state: EscalationState, policy: EscalationPolicy, delay_seconds: float | None = None) -> None:
        delay = self._next_delay_seconds(state, policy) if delay_seconds is None else delay_seconds
        self.scheduler.schedule(state.incident_id, delay, partial(self._on_timeout, state.incident_id))

    async def _on_timeout(self, incident_id: str) -> None:
        """Advance, repeat or complete an unacknowledged escalation whose level timed out."""
        with LoggingContext(incident_id=incident_id):
            async with self._locks.lock(incident_id):
                state = self._states.get(incident_id)
                if state is None or state.is_complete or state.acknowledged or state.paused:
                    return

                try:
                    action = await self._advance(state)
                except Exception as e:
                    logger.exception(f"✗ Escalation step failed for incident {incident_id}: {e}")
                    await self._complete(state, "escalation_failed")
                    return
                if action is None:
                    return

            await self._notify(state, action)

    async def _advance(self, state: EscalationState) -> EscalationAction | None:
        """Run the next step of a timed-out escalation; None when it completed instead."""
        incident_id = state.incident_id
        logger.info(f"Escalation timeout for incident {incident_id} at level {state.current_level}")

        incident = await self.incident_store.load(incident_id)
        if incident is None or incident.is_closed:
            await self._complete(state, "incident_closed")
            return None

        try:
            policy = await self.policy_service.get_policy(state.tenant_id, state.policy_id)
        except PolicyNotFoundError:
            logger.warning(
                f"⚠️ Policy {state.policy_id} not found for incident {incident_id}. "
                f"Completing escalation gracefully."
            )
            await self._complete(state, "policy_not_found")
            return None

        if not self._fit_to_policy(state, policy):
            await self._complete(state, "policy_changed")
            return None

        if policy.has_next_level(state.current_level):
            action = await self._execute_level(incident, policy, state, state.current_level + 1)
        elif state.repeats_used < policy.max_repeats:
            state.repeats_used += 1
            action = await self._execute_level(incident, policy, state, state.current_level, repeat=True)
        else:
            await self._complete(state, "max_repeats_reached")
            return None

        self._arm_timer(state, policy)
        return action

    async def _notify(self, state: EscalationState, action: EscalationAction) -> None:
        if self.notifier is None or not action.target_users:
            return

        try:
            records = await self.notifier.notify(action)
        except Exception as e:
            logger.error(f"✗ Failed to notify level {action.level} for incident {action.incident_id}: {e}")
            return

        state.notifications.extend(records)
        sent = sum(1 for record in records if record.success)
        await self._record_timeline(
            state.incident_id,
            TimelineEventType.NOTIFICATION_SENT,
            f"Level {action.level} notifications: {sent} sent, {len(records) - sent} failed",
            {"level": action.level, "sent": sent, "failed": len(records) - sent},
        )

    async def _record_timeline(self, incident_id: str, event_type: TimelineEventType, description: str, data: dict) -> None:
        try:
            await self.incident_store.add_timeline_event(
                incident_id, event_type, user_id="system", description=description, data=data
            )
        except IncidentNotFoundError:
            logger.warning(f"⚠️ Incident {incident_id} missing, timeline entry dropped: {description}")

    async def _complete(self, state: EscalationState, reason: str) -> None:
        self.scheduler.cancel(state.incident_id)

        state.is_complete = True
        state.completed_at = self._clock()
        state.completion_reason = reason

        log_with_context(
            "info",
            f"Completing escalation for incident {state.incident_id}: {reason}",
            completion_reason=reason,
            final_level=state.current_level,
        )

        await self._record_timeline(
            state.incident_id,
            TimelineEventType.STATUS_CHANGE,
            f"Escalation complete: {reason}",
            {"escalation_complete": True, "reason": reason, "final_level": state.current_level},
        )
        self._emit(
            EventType.ESCALATION_COMPLETED,
            incident_id=state.incident_id,
            tenant_id=state.tenant_id,
            reason=reason,
            final_level=state.current_level,
            total_escalations=state.escalation_count,
        )

    # ------------------------------------------------------------------
    # Operator actions
    # ------------------------------------------------------------------

    async def acknowledge_escalation(self, incident_id: str, user_id: str, note: str | None = None) -> EscalationState:
        """
        Stop further escalation of an incident.

        The pending timer is cancelled and the state marked acknowledged; the
        current level and completion are left as they are. Acknowledging a
        completed escalation returns it unchanged.

        Raises:
            EscalationNotFoundError: If the incident was never escalated
        """
        with LoggingContext(incident_id=incident_id):
            async with self._locks.lock(incident_id):
                state = self._require_state(incident_id)
                if state.is_complete:
                    return state

                self.scheduler.cancel(incident_id)

                now = self._clock()
                state.acknowledged = True
                state.acknowledgments.append(
                    AcknowledgmentRecord(user_id=user_id, timestamp=now, level=state.current_level, message=note)
                )

                incident = await self.incident_store.load(incident_id)
                if incident is not None and incident.is_open:
                    incident.acknowledge(user_id, note, at=now)
                    await self.incident_store.save(incident)

                logger.info(f"✓ Escalation acknowledged for incident {incident_id} by user {user_id}")
                self._emit(
                    EventType.ESCALATION_ACKNOWLEDGED,
                    incident_id=incident_id,
                    tenant_id=state.tenant_id,
                    user_id=user_id,
                    level=state.current_level,
                )
                return state

    async def complete_escalation(self, incident_id: str, reason: str) -> EscalationState:
        """
        Raises:
            EscalationNotFoundError: If the incident was never escalated
        """
        async with self._locks.lock(incident_id):
            state = self._require_state(incident_id)
            if not state.is_complete:
                await self._complete(state, reason)
            return state

    async def resolve_escalation(self, incident_id: str, user_id: str, notes: str | None = None) -> EscalationState:
        """Resolve the incident and complete its escalation."""
        async with self._locks.lock(incident_id):
            state = self._require_state(incident_id)

            incident = await self.incident_store.load(incident_id)
            if incident is not None and incident.is_open:
                incident.resolve(user_id, notes, at=self._clock())
                await self.incident_store.save(incident)

            if not state.is_complete:
                await self._complete(state, "resolved")
            return state

    async def pause_escalation(self, incident_id: str) -> bool:
        async with self._locks.lock(incident_id):
            state = self._states.get(incident_id)
            if state is None or state.is_complete or state.paused:
                return False

            self.scheduler.cancel(incident_id)
            state.paused = True
            logger.info(f"Escalation paused for incident {incident_id}")
            return True

    async def resume_escalation(self, incident_id: str) -> bool:
        """Re-arm a paused escalation with a full timeout for its current level."""
        async with self._locks.lock(incident_id):
            state = self._states.get(incident_id)
            if state is None or state.is_complete or not state.paused:
                return False

            try:
                policy = await self.policy_service.get_policy(state.tenant_id, state.policy_id)
            except PolicyNotFoundError:
                await self._complete(state, "policy_not_found")
                return False

            if not self._fit_to_policy(state, policy):
                await self._complete(state, "policy_changed")
                return False

            state.paused = False
            if not state.acknowledged:
                self._arm_timer(state, policy)
            logger.info(f"Escalation resumed for incident {incident_id}")
            return True

    async def restore_escalation(self, incident: Incident) -> EscalationState | None:
        """
        Rebuild escalation state from an incident's timeline and re-arm its timer.

        The remaining time is the level timeout (or repeat interval) minus the
        time already spent since the last escalation, never less than zero.
        Returns None when the timeline holds no escalation.
        """
        with LoggingContext(tenant_id=incident.tenant_id, incident_id=incident.id):
            async with self._locks.lock(incident.id):
                existing = self._states.get(incident.id)
                if existing is not None and existing.is_active:
                    return existing

                escalations = [
                    e for e in incident.events_of_type(TimelineEventType.ESCALATED) if "policy_id" in e.metadata
                ]
                if not escalations:
                    return None

                first, last = escalations[0], escalations[-1]
                acknowledgments = [
                    AcknowledgmentRecord(
                        user_id=e.user_id or "unknown",
                        timestamp=e.timestamp,
                        level=incident.escalation_level,
                        message=e.description,
                    )
                    for e in incident.events_of_type(TimelineEventType.ACKNOWLEDGED)
                    if e.timestamp >= first.timestamp
                ]
                completed = any(
                    e.metadata.get("escalation_complete")
                    for e in incident.events_of_type(TimelineEventType.STATUS_CHANGE)
                )

                state = EscalationState(
                    incident_id=incident.id,
                    tenant_id=incident.tenant_id,
                    policy_id=last.metadata["policy_id"],
                    current_level=last.metadata.get("level", incident.escalation_level),
                    started_at=first.timestamp,
                    last_escalated_at=last.timestamp,
                    escalation_count=len(escalations),
                    repeats_used=last.metadata.get("repeat", 0),
                    acknowledged=bool(acknowledgments),
                    acknowledgments=acknowledgments,
                    is_complete=completed or incident.is_closed,
                )
                self._states[incident.id] = state

                if state.is_active and not state.acknowledged:
                    try:
                        policy = await self.policy_service.get_policy(state.tenant_id, state.policy_id)
                    except PolicyNotFoundError:
                        await self._complete(state, "policy_not_found")
                        return state
                    if not self._fit_to_policy(state, policy):
                        await self._complete(state, "policy_changed")
                        return state

                    elapsed = (self._clock() - state.last_escalated_at).total_seconds()
                    remaining = max(0.0, self._next_delay_seconds(state, policy) - elapsed)
                    self._arm_timer(state, policy, remaining)

                logger.info(f"🔄 Restored escalation for incident {incident.id} at level {state.current_level}")
                return state

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _require_state(self, incident_id: str) -> EscalationState:
        state = self._states.get(incident_id)
        if state is None:
            raise EscalationNotFoundError(incident_id)
        return state

    def get_escalation_state(self, incident_id: str) -> EscalationState | None:
        return self._states.get(incident_id)

    def is_escalating(self, incident_id: str) -> bool:
        state = self._states.get(incident_id)
        return state is not None and state.is_active

    def is_acknowledged(self, incident_id: str) -> bool:
        state = self._states.get(incident_id)
        return state is not None and state.acknowledged

    def get_time_until_next_escalation(self, incident_id: str) -> float | None:
        """Seconds until the pending timer fires, or None when nothing is pending."""
        state = self._states.get(incident_id)
        if state is None or state.is_complete:
            return None
        return self.scheduler.time_remaining(incident_id)

    def get_active_escalations(self, tenant_id: str | None = None) -> list[EscalationState]:
        return [
            state
            for state in self._states.values()
            if state.is_active and (tenant_id is None or state.tenant_id == tenant_id)
        ]

    def get_escalation_metrics(self, incident_id: str) -> dict | None:
        state = self._states.get(incident_id)
        if state is None:
            return None

        delivered = sum(1 for n in state.notifications if n.success)
        return {
            "incident_id": incident_id,
            "policy_id": state.policy_id,
            "current_level": state.current_level,
            "escalation_count": state.escalation_count,
            "is_complete": state.is_complete,
            "is_acknowledged": state.acknowledged,
            "acknowledgments": len(state.acknowledgments),
            "notifications": {
                "total": len(state.notifications),
                "delivered": delivered,
                "failed": len(state.notifications) - delivered,
            },
            "duration_seconds": ((state.completed_at or self._clock()) - state.started_at).total_seconds(),
        }

    def get_statistics(self) -> dict[str, int]:
        states = list(self._states.values())
        return {
            "total": len(states),
            "active": sum(1 for s in states if s.is_active),
            "completed": sum(1 for s in states if s.is_complete),
            "acknowledged": sum(1 for s in states if s.acknowledged),
            "paused": sum(1 for s in states if s.paused and s.is_active),
        }

    def cleanup_completed_escalations(self, max_age_hours: float | None = None) -> int:
        """Forget completed states older than ``max_age_hours`` (config default)."""
        max_age = timedelta(hours=self.config.completed_retention_hours if max_age_hours is None else max_age_hours)
        cutoff = self._clock() - max_age

        doomed = [
            incident_id
            for incident_id, state in self._states.items()
            if state.is_complete and (state.completed_at or state.started_at) <= cutoff
        ]
        for incident_id in doomed:
            del self._states[incident_id]
            self._locks.discard(incident_id)

        if doomed:
            logger.info(f"Cleaned up {len(doomed)} completed escalations")
        return len(doomed)

    def shutdown(self) -> int:
        """Cancel every pending escalation timer."""
        return self.scheduler.cancel_all()

    def _emit(self, event_type: EventType, **payload) -> None:
        self.event_sink.write_event(EngineEvent(event_type=event_type, timestamp=self._clock(), payload=payload))
