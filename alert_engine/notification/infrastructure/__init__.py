"""Rate-limit tracking and template rendering for notifications."""

from alert_engine.notification.infrastructure.rate_limiter import RateLimitTracker
from alert_engine.notification.infrastructure.template_renderer import DEFAULT_TEMPLATES, Jinja2TemplateRenderer

__all__ = ["RateLimitTracker", "DEFAULT_TEMPLATES", "Jinja2TemplateRenderer"]
