"""Notification template rendering backed by jinja2."""

import json
from datetime import datetime
from typing import Any

from jinja2 import ChainableUndefined, Environment, Template, TemplateSyntaxError
from loguru import logger

from alert_engine.notification.domain.models import NotificationTemplate, RenderedNotification, TemplateContext
from alert_engine.notification.domain.protocols import TemplateRenderer
from alert_engine.risk_scoring.application.severity_classifier import SEVERITY_COLORS
from alert_engine.shared.domain.exceptions import ConfigurationException, ValidationException
from alert_engine.shared.domain.models import NotificationChannel, Severity, utcnow

DEFAULT_COLOR = "#6b7280"

_EMAIL_BODY = """\
{{ severity }} Alert: {{ incident.title }}

{{ incident.description }}

Incident ID: {{ incident.id }}
Escalation Level: {{ escalation_level }}
{% if farm_name %}Farm: {{ farm_name }}
{% endif %}Time: {{ timestamp | datetime_format }}
"""

_EMAIL_HTML = """\
<div style="font-family: sans-serif;">
  <h2 style="color: {{ severity_color }};">{{ severity }} Alert: {{ incident.title }}</h2>
  <p>{{ incident.description }}</p>
  <table>
    <tr><td>Incident ID</td><td>{{ incident.id }}</td></tr>
    <tr><td>Escalation Level</td><td>{{ escalation_level }}</td></tr>
    {% if farm_name %}<tr><td>Farm</td><td>{{ farm_name }}</td></tr>{% endif %}
    <tr><td>Time</td><td>{{ timestamp | datetime_format }}</td></tr>
  </table>
</div>
"""

DEFAULT_TEMPLATES: dict[NotificationChannel, NotificationTemplate] = {
    NotificationChannel.EMAIL: NotificationTemplate(
        id="default-email",
        name="Default Email",
        channel=NotificationChannel.EMAIL,
        subject_template="[{{ severity }}] {{ incident.title }}",
        body_template=_EMAIL_BODY,
        html_template=_EMAIL_HTML,
        is_default=True,
    ),
    NotificationChannel.SMS: NotificationTemplate(
        id="default-sms",
        name="Default SMS",
        channel=NotificationChannel.SMS,
        subject_template="",
        body_template="[{{ severity }}] {{ incident.title }} - Level {{ escalation_level }}. ID: {{ incident.id }}",
        short_template="[{{ severity }}] {{ incident.title | shorten(50) }}",
        is_default=True,
    ),
    NotificationChannel.SLACK: NotificationTemplate(
        id="default-slack",
        name="Default Slack",
        channel=NotificationChannel.SLACK,
        subject_template="{{ severity }} Alert",
        body_template=(
            "*{{ severity }} Alert*: {{ incident.title }}\n"
            "{{ incident.description }}\n"
            "Level {{ escalation_level }} | Incident `{{ incident.id }}`"
        ),
        is_default=True,
    ),
    NotificationChannel.TEAMS: NotificationTemplate(
        id="default-teams",
        name="Default Teams",
        channel=NotificationChannel.TEAMS,
        subject_template="{{ severity }} Alert",
        body_template=(
            "## {{ severity }} Alert: {{ incident.title }}\n\n"
            "{{ incident.description }}\n\n"
            "**Level:** {{ escalation_level }} | **Incident:** {{ incident.id }}"
        ),
        is_default=True,
    ),
    NotificationChannel.WEBHOOK: NotificationTemplate(
        id="default-webhook",
        name="Default Webhook",
        channel=NotificationChannel.WEBHOOK,
        subject_template="{{ severity }} Alert: {{ incident.title }}",
        body_template="{{ json }}",
        is_default=True,
    ),
    NotificationChannel.PUSH: NotificationTemplate(
        id="default-push",
        name="Default Push",
        channel=NotificationChannel.PUSH,
        subject_template="[{{ severity }}] Alert",
        body_template="{{ incident.title }}",
        is_default=True,
    ),
    NotificationChannel.PAGERDUTY: NotificationTemplate(
        id="default-pagerduty",
        name="Default PagerDuty",
        channel=NotificationChannel.PAGERDUTY,
        subject_template="{{ incident.title }}",
        body_template="{{ incident.description }}\nSeverity: {{ severity }}\nIncident: {{ incident.id }}",
        is_default=True,
    ),
}

SAMPLE_CONTEXT = TemplateContext(
    incident={
        "id": "inc-sample-001",
        "title": "Dissolved oxygen below threshold",
        "description": "Dissolved oxygen dropped to 3.2 mg/L in pond P-04",
        "status": "NEW",
    },
    severity=Severity.HIGH,
    escalation_level=1,
    tenant_name="Sample Tenant",
    farm_name="Sample Farm",
    user_name="Sample User",
)


def shorten(value: Any, length: int = 50) -> str:
    """Cut ``value`` to ``length`` characters, ending in ``...`` when cut."""
    text = "" if value is None else str(value)
    if len(text) <= length:
        return text
    return text[: max(0, length - 3)] + "..."


def _as_datetime(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            return None
    return None


def datetime_format(value: Any, fmt: str = "%Y-%m-%d %H:%M:%S") -> str:
    moment = _as_datetime(value)
    return moment.strftime(fmt) if moment else ("" if value is None else str(value))


def date_format(value: Any) -> str:
    return datetime_format(value, "%Y-%m-%d")


def time_format(value: Any) -> str:
    return datetime_format(value, "%H:%M:%S")


def _make_environment(autoescape: bool) -> Environment:
    env = Environment(autoescape=autoescape, undefined=ChainableUndefined, keep_trailing_newline=True)
    env.filters["shorten"] = shorten
    env.filters["datetime_format"] = datetime_format
    env.filters["date"] = date_format
    env.filters["time"] = time_format
    return env


class Jinja2TemplateRenderer(TemplateRenderer):
    """
    Renders notifications from per-channel templates.

    Each channel has a default template; custom templates are registered by
    id and selected explicitly. Plain-text parts render without escaping and
    the HTML part renders with autoescape on.
    """

    def __init__(self, clock=utcnow):
        self._clock = clock
        self._text_env = _make_environment(autoescape=False)
        self._html_env = _make_environment(autoescape=True)
        self._custom: dict[str, NotificationTemplate] = {}
        self._compiled: dict[tuple[str, str], Template] = {}

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def enrich_context(self, context: TemplateContext) -> dict[str, Any]:
        """Template variables: the context plus timestamp, severity_color and json."""
        values = context.to_dict()
        values["timestamp"] = self._clock().isoformat()
        values["severity_color"] = SEVERITY_COLORS.get(context.severity, DEFAULT_COLOR)
        values["json"] = json.dumps(values, default=str)
        return values

    def _compile(self, template: NotificationTemplate, part: str, source: str, cached: bool = True) -> Template:
        key = (template.id, part)
        compiled = self._compiled.get(key) if cached else None
        if compiled is None:
            env = self._html_env if part == "html" else self._text_env
            compiled = env.from_string(source)
            if cached:
                self._compiled[key] = compiled
        return compiled

    def render_template(
        self, template: NotificationTemplate, context: TemplateContext, cached: bool = True
    ) -> RenderedNotification:
        values = self.enrich_context(context)

        def part(name: str, source: str) -> str:
            return self._compile(template, name, source, cached).render(**values)

        html_body = None
        if template.html_template:
            html_body = part("html", template.html_template)

        short_message = None
        if template.short_template:
            short_message = part("short", template.short_template)

        return RenderedNotification(
            subject=part("subject", template.subject_template),
            body=part("body", template.body_template),
            html_body=html_body,
            short_message=short_message,
            metadata={"template_id": template.id, "channel": str(template.channel)},
        )

    def render(
        self, channel: NotificationChannel, context: TemplateContext, template_id: str | None = None
    ) -> RenderedNotification:
        template = self.get_template(channel, template_id)
        if template is None:
            raise ConfigurationException(f"No template for channel {channel}", {"channel": str(channel)})
        return self.render_template(template, context)

    def preview_template(
        self, template: NotificationTemplate, context: TemplateContext | None = None
    ) -> RenderedNotification:
        """Render ``template`` against a sample incident unless a context is given."""
        return self.render_template(template, context or SAMPLE_CONTEXT, cached=False)

    # ------------------------------------------------------------------
    # Template management
    # ------------------------------------------------------------------

    def validate_template(self, template: NotificationTemplate) -> list[str]:
        errors = []
        if not template.id:
            errors.append("Template ID is required")
        elif not template.is_default and template.id.startswith("default-"):
            errors.append(f"Template ID '{template.id}' is reserved")
        if not template.name:
            errors.append("Template name is required")
        if not template.body_template:
            errors.append("Body template is required")
        if template.channel == NotificationChannel.EMAIL and not template.subject_template:
            errors.append("Subject template is required for email")

        for part, source in (
            ("subject", template.subject_template),
            ("body", template.body_template),
            ("html", template.html_template),
            ("short", template.short_template),
        ):
            if not source:
                continue
            try:
                self._text_env.parse(source)
            except TemplateSyntaxError as e:
                errors.append(f"Invalid {part} template syntax: {e.message}")

        return errors

    def register_template(self, template: NotificationTemplate) -> None:
        errors = self.validate_template(template)
        if errors:
            raise ValidationException(f"Invalid template: {', '.join(errors)}", errors=errors)

        self._custom[template.id] = template
        self._forget_compiled(template.id)
        logger.info(f"✓ Registered {template.channel} template {template.id}")

    def remove_template(self, template_id: str) -> bool:
        removed = self._custom.pop(template_id, None)
        if removed is None:
            return False
        self._forget_compiled(template_id)
        logger.info(f"Removed template {template_id}")
        return True

    def get_template(self, channel: NotificationChannel, template_id: str | None = None) -> NotificationTemplate | None:
        """The custom template with ``template_id`` for ``channel``, else the channel default."""
        if template_id:
            custom = self._custom.get(template_id)
            if custom is not None and custom.channel == channel:
                return custom
        return DEFAULT_TEMPLATES.get(channel)

    def get_templates_for_channel(self, channel: NotificationChannel) -> list[NotificationTemplate]:
        templates = [t for t in self._custom.values() if t.channel == channel]
        default = DEFAULT_TEMPLATES.get(channel)
        return ([default] if default else []) + templates

    def clear_custom_templates(self) -> None:
        self._custom.clear()
        self._compiled = {key: value for key, value in self._compiled.items() if key[0].startswith("default-")}

    def _forget_compiled(self, template_id: str) -> None:
        for key in [key for key in self._compiled if key[0] == template_id]:
            del self._compiled[key]
