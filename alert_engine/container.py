"""Dependency injection container for the alert engine."""

from dependency_injector import containers, providers
from loguru import logger

from alert_engine.config import (
    AcknowledgmentConfig,
    AppConfig,
    EscalationConfig,
    EventsConfig,
    NotificationConfig,
    RiskScoringConfig,
    RulesEngineConfig,
)
from alert_engine.escalation.application import AcknowledgmentTracker, EscalationManager, EscalationPolicyService
from alert_engine.escalation.infrastructure import InMemoryIncidentStore, InMemoryPolicyStore
from alert_engine.notification.application import (
    ChannelRouter,
    DispatcherEscalationNotifier,
    NotificationDispatcher,
)
from alert_engine.notification.infrastructure import Jinja2TemplateRenderer, RateLimitTracker
from alert_engine.pipeline.application import AlertPipeline
from alert_engine.risk_scoring.application import ImpactAnalyzer, RiskCalculator, SeverityClassifier
from alert_engine.risk_scoring.infrastructure import InMemoryAssetRegistry
from alert_engine.rules_engine.application import RuleEvaluator, RulesEngine
from alert_engine.rules_engine.infrastructure import InMemoryRuleStore
from alert_engine.shared.infrastructure import (
    AsyncioScheduler,
    CSVEventSink,
    configure_structured_logging,
    create_event_sink,
)


class AlertEngineContainer(containers.DeclarativeContainer):
    """Dependency injection container for the alert engine."""

    config = providers.Configuration()

    rules_config = providers.Singleton(RulesEngineConfig.model_validate, config.rules)
    risk_config = providers.Singleton(RiskScoringConfig.model_validate, config.risk)
    escalation_config = providers.Singleton(EscalationConfig.model_validate, config.escalation)
    acknowledgment_config = providers.Singleton(AcknowledgmentConfig.model_validate, config.acknowledgments)
    notification_config = providers.Singleton(NotificationConfig.model_validate, config.notification)
    events_config = providers.Singleton(EventsConfig.model_validate, config.events)

    # Infrastructure
    event_sink = providers.Singleton(create_event_sink, events_config)
    scheduler = providers.Singleton(AsyncioScheduler)
    rule_store = providers.Singleton(InMemoryRuleStore)
    asset_registry = providers.Singleton(InMemoryAssetRegistry)
    policy_store = providers.Singleton(InMemoryPolicyStore)
    incident_store = providers.Singleton(InMemoryIncidentStore)
    rate_limits = providers.Singleton(RateLimitTracker)
    template_renderer = providers.Singleton(Jinja2TemplateRenderer)

    # Rules
    rule_evaluator = providers.Singleton(RuleEvaluator)
    rules_engine = providers.Singleton(
        RulesEngine,
        rule_store=rule_store,
        evaluator=rule_evaluator,
        config=rules_config,
    )

    # Risk scoring
    impact_analyzer = providers.Singleton(ImpactAnalyzer, asset_registry=asset_registry)
    severity_classifier = providers.Singleton(SeverityClassifier)
    risk_calculator = providers.Singleton(
        RiskCalculator,
        impact_analyzer=impact_analyzer,
        severity_classifier=severity_classifier,
        config=risk_config,
    )

    # Notification
    channel_router = providers.Singleton(ChannelRouter, rate_limits=rate_limits)
    notification_dispatcher = providers.Singleton(
        NotificationDispatcher,
        router=channel_router,
        renderer=template_renderer,
        event_sink=event_sink,
        config=notification_config,
    )
    escalation_notifier = providers.Singleton(DispatcherEscalationNotifier, dispatcher=notification_dispatcher)

    # Escalation
    policy_service = providers.Singleton(
        EscalationPolicyService,
        policy_store=policy_store,
        config=escalation_config,
    )
    escalation_manager = providers.Singleton(
        EscalationManager,
        policy_service=policy_service,
        incident_store=incident_store,
        scheduler=scheduler,
        notifier=escalation_notifier,
        event_sink=event_sink,
        config=escalation_config,
    )
    acknowledgment_tracker = providers.Singleton(
        AcknowledgmentTracker,
        scheduler=scheduler,
        event_sink=event_sink,
        config=acknowledgment_config,
    )

    # Pipeline
    alert_pipeline = providers.Singleton(
        AlertPipeline,
        rules_engine=rules_engine,
        risk_calculator=risk_calculator,
        incident_store=incident_store,
        escalation_manager=escalation_manager,
    )


def create_container(config: AppConfig | None = None) -> AlertEngineContainer:
    """Build a container loaded from ``config`` (environment and .env when omitted)."""
    container = AlertEngineContainer()
    container.config.from_pydantic(config or AppConfig())
    return container


_container: AlertEngineContainer | None = None


def init_container(config: AppConfig | None = None) -> AlertEngineContainer:
    """Initialize the global container and configure logging; call once at process startup."""
    global _container
    config = config or AppConfig()
    configure_structured_logging(config.logging)
    _container = create_container(config)
    logger.info("🚀 Alert engine initialized")
    return _container


def get_container() -> AlertEngineContainer:
    """Get the global container instance."""
    if _container is None:
        raise RuntimeError("Container not initialized. Call init_container() first.")
    return _container


async def shutdown_container() -> None:
    """Cancel pending escalation timers and queued retries, then flush the event sink."""
    global _container
    if _container is None:
        return

    _container.acknowledgment_tracker().shutdown()
    cancelled = _container.escalation_manager().shutdown()
    scheduler = _container.scheduler()
    if isinstance(scheduler, AsyncioScheduler):
        await scheduler.drain()
    dropped = _container.notification_dispatcher().clear_queue()
    _container.rules_engine().close()

    sink = _container.event_sink()
    if isinstance(sink, CSVEventSink):
        sink.flush()

    logger.info(
        f"🛑 Alert engine stopped ({cancelled} pending escalation timers, {dropped} queued notifications dropped)"
    )
    _container = None
