"""Tenant-scoped registry of asset configurations."""

from loguru import logger

from alert_engine.risk_scoring.domain.models import AssetConfiguration


class InMemoryAssetRegistry:
    """Asset configurations keyed by (tenant, asset id)."""

    def __init__(self):
        self._assets: dict[tuple[str, str], AssetConfiguration] = {}

    def register(self, asset: AssetConfiguration) -> None:
        self._assets[(asset.tenant_id, asset.id)] = asset
        logger.debug(f"Registered asset {asset.id} for tenant {asset.tenant_id}")

    def get(self, tenant_id: str, asset_id: str) -> AssetConfiguration | None:
        return self._assets.get((tenant_id, asset_id))

    def get_many(self, tenant_id: str, asset_ids: list[str]) -> list[AssetConfiguration]:
        """Known assets among ``asset_ids``; unknown ids are skipped."""
        return [asset for asset_id in asset_ids if (asset := self.get(tenant_id, asset_id)) is not None]

    def remove(self, tenant_id: str, asset_id: str) -> bool:
        return self._assets.pop((tenant_id, asset_id), None) is not None

    def list_for_tenant(self, tenant_id: str) -> list[AssetConfiguration]:
        return [asset for (tenant, _), asset in self._assets.items() if tenant == tenant_id]

    def __len__(self):
        return len(self._assets)
