"""Multi-tenant alerting core: rules, risk scoring, escalation and notification."""

__version__ = "0.1.0"
