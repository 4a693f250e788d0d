"""Application services for the alert pipeline."""

from alert_engine.pipeline.application.alert_pipeline import AlertPipeline, build_risk_context, incident_from_match

__all__ = ["AlertPipeline", "build_risk_context", "incident_from_match"]
