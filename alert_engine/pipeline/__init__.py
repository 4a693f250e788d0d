"""Pipeline package: facts to rule matches to scored, escalating incidents."""

from alert_engine.pipeline.application import AlertPipeline, incident_from_match
from alert_engine.pipeline.domain import IncidentFactory, PipelineOutcome

__all__ = ["AlertPipeline", "incident_from_match", "IncidentFactory", "PipelineOutcome"]
