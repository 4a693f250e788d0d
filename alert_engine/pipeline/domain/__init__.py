"""Domain layer for the alert pipeline."""

from alert_engine.pipeline.domain.models import IncidentFactory, PipelineOutcome

__all__ = ["IncidentFactory", "PipelineOutcome"]
