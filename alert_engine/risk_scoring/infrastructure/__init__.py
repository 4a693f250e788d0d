"""In-memory collaborators for risk scoring."""

from alert_engine.risk_scoring.infrastructure.asset_registry import InMemoryAssetRegistry

__all__ = ["InMemoryAssetRegistry"]
