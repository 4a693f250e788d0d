"""Category-weighted impact analysis."""

from loguru import logger

from alert_engine.risk_scoring.domain.models import (
    AssetConfiguration,
    CategoryImpact,
    ImpactAnalysisContext,
    ImpactAnalysisResult,
    ImpactCategory,
    ImpactLevel,
)
from alert_engine.risk_scoring.infrastructure.asset_registry import InMemoryAssetRegistry
from alert_engine.shared.domain.models import Severity

SEVERITY_IMPACT_WEIGHTS: dict[Severity, float] = {
    Severity.CRITICAL: 1.0,
    Severity.HIGH: 0.75,
    Severity.MEDIUM: 0.5,
    Severity.WARNING: 0.4,
    Severity.LOW: 0.25,
    Severity.INFO: 0.1,
}

CATEGORY_WEIGHTS: dict[ImpactCategory, float] = {
    ImpactCategory.BUSINESS: 0.25,
    ImpactCategory.TECHNICAL: 0.15,
    ImpactCategory.FINANCIAL: 0.20,
    ImpactCategory.COMPLIANCE: 0.15,
    ImpactCategory.OPERATIONAL: 0.10,
    ImpactCategory.ENVIRONMENTAL: 0.10,
    ImpactCategory.REPUTATION: 0.05,
}

BASE_DOWNTIME_MINUTES: dict[Severity, int] = {
    Severity.CRITICAL: 240,
    Severity.HIGH: 120,
    Severity.MEDIUM: 60,
    Severity.WARNING: 45,
    Severity.LOW: 30,
    Severity.INFO: 0,
}

# Mitigations by category: (critical, high, medium, otherwise)
MITIGATIONS: dict[ImpactCategory, tuple[str, str, str, str]] = {
    ImpactCategory.BUSINESS: (
        "Activate business continuity plan immediately",
        "Notify business stakeholders and prepare contingency",
        "Monitor situation and brief management",
        "Continue normal operations with awareness",
    ),
    ImpactCategory.TECHNICAL: (
        "Engage incident response team, consider failover",
        "Escalate to engineering team, prepare rollback",
        "Investigate root cause, implement workaround",
        "Log for review, continue monitoring",
    ),
    ImpactCategory.FINANCIAL: (
        "Alert finance team, document for insurance",
        "Calculate exposure, prepare cost mitigation",
        "Monitor and document potential costs",
        "Monitor and document potential costs",
    ),
    ImpactCategory.COMPLIANCE: (
        "Notify compliance officer, document incident",
        "Review regulatory requirements, prepare reports",
        "Document for compliance records",
        "Document for compliance records",
    ),
    ImpactCategory.OPERATIONAL: (
        "Implement emergency procedures",
        "Activate backup processes",
        "Continue with heightened monitoring",
        "Continue with heightened monitoring",
    ),
    ImpactCategory.ENVIRONMENTAL: (
        "Activate environmental emergency response",
        "Increase environmental monitoring frequency",
        "Document environmental observations",
        "Document environmental observations",
    ),
    ImpactCategory.REPUTATION: (
        "Prepare stakeholder communications",
        "Alert PR team, monitor social channels",
        "No immediate action required",
        "No immediate action required",
    ),
}


def score_to_level(score: float) -> ImpactLevel:
    if score >= 80:
        return ImpactLevel.CRITICAL
    if score >= 60:
        return ImpactLevel.HIGH
    if score >= 40:
        return ImpactLevel.MEDIUM
    if score >= 20:
        return ImpactLevel.LOW
    return ImpactLevel.NEGLIGIBLE


def _clamp(score: float) -> float:
    return min(100.0, max(0.0, score))


class ImpactAnalyzer:
    """
    Scores the impact of an incident across seven categories.

    Every category starts from a severity-scaled base and is raised by
    contextual signals: farm and sensor presence, affected processes, and the
    criticality, dependencies, value and SLAs of affected assets. Category
    scores are clamped to [0, 100] independently before being combined.
    """

    def __init__(self, asset_registry: InMemoryAssetRegistry | None = None):
        self.asset_registry = asset_registry or InMemoryAssetRegistry()

    def analyze_impact(self, context: ImpactAnalysisContext) -> ImpactAnalysisResult:
        """Analyze impact for an alert context."""
        logger.debug(f"Analyzing impact for rule {context.rule_id}")

        weight = SEVERITY_IMPACT_WEIGHTS[context.severity]
        assets = self.asset_registry.get_many(context.tenant_id, context.affected_assets)

        impacts = [
            self._business(context, assets, weight),
            self._technical(context, assets, weight),
            self._financial(context, assets, weight),
            self._compliance(context, assets, weight),
            self._operational(context, weight),
            self._environmental(context, weight),
            self._reputation(assets, weight),
        ]

        total = self.calculate_total_impact_score(impacts)

        return ImpactAnalysisResult(
            total_impact_score=total,
            impacts={impact.category: impact for impact in impacts},
            affected_systems=self.identify_affected_systems(context),
            estimated_downtime_minutes=self.estimate_downtime(total, context.severity),
            estimated_cost=self.estimate_cost(total, assets),
            summary=self.generate_summary(total, impacts),
        )

    @staticmethod
    def _category(category: ImpactCategory, score: float, factors: list[str]) -> CategoryImpact:
        score = _clamp(score)
        level = score_to_level(score)
        critical, high, medium, otherwise = MITIGATIONS[category]
        mitigation = {
            ImpactLevel.CRITICAL: critical,
            ImpactLevel.HIGH: high,
            ImpactLevel.MEDIUM: medium,
        }.get(level, otherwise)
        return CategoryImpact(category=category, level=level, score=score, factors=factors, mitigation=mitigation)

    def _business(self, context: ImpactAnalysisContext, assets: list[AssetConfiguration], weight: float) -> CategoryImpact:
        factors = []
        score = 50 * weight

        if context.affected_processes:
            score += len(context.affected_processes) * 10
            factors.append(f"{len(context.affected_processes)} business processes affected")

        critical_assets = [a for a in assets if a.criticality >= 4]
        if critical_assets:
            score += len(critical_assets) * 15
            factors.append(f"{len(critical_assets)} critical assets at risk")

        if context.farm_id:
            score += 10
            factors.append("Farm operations may be affected")

        return self._category(ImpactCategory.BUSINESS, score, factors)

    def _technical(self, context: ImpactAnalysisContext, assets: list[AssetConfiguration], weight: float) -> CategoryImpact:
        factors = []
        score = 40 * weight

        if context.sensor_id:
            score += 20
            factors.append("Sensor monitoring affected")

        dependencies = sum(len(a.dependencies) for a in assets)
        if dependencies:
            score += min(30, dependencies * 5)
            factors.append(f"{dependencies} system dependencies identified")

        if context.current_value > 100:
            score += 10
            factors.append("Significant value deviation detected")

        return self._category(ImpactCategory.TECHNICAL, score, factors)

    def _financial(self, context: ImpactAnalysisContext, assets: list[AssetConfiguration], weight: float) -> CategoryImpact:
        factors = []
        score = 30 * weight

        # 10% of business value is treated as exposed
        exposure = sum(a.business_value * 0.1 for a in assets)
        if exposure > 0:
            score += min(50, exposure / 1000)
            factors.append(f"Estimated financial exposure: ${exposure:.2f}")

        if context.farm_id:
            score += 15
            factors.append("Potential production losses")

        return self._category(ImpactCategory.FINANCIAL, score, factors)

    def _compliance(self, context: ImpactAnalysisContext, assets: list[AssetConfiguration], weight: float) -> CategoryImpact:
        factors = []
        score = 20 * weight

        sla_risks = [a for a in assets if a.sla_uptime is not None and a.sla_uptime >= 99.9]
        if sla_risks:
            score += len(sla_risks) * 20
            factors.append(f"{len(sla_risks)} SLA commitments at risk")

        if context.farm_id:
            score += 10
            factors.append("Environmental compliance monitoring affected")

        return self._category(ImpactCategory.COMPLIANCE, score, factors)

    def _operational(self, context: ImpactAnalysisContext, weight: float) -> CategoryImpact:
        factors = []
        score = 35 * weight

        if context.affected_processes:
            score += len(context.affected_processes) * 8
            factors.append("Operational workflows disrupted")

        if context.sensor_id:
            score += 15
            factors.append("Real-time monitoring capability affected")

        return self._category(ImpactCategory.OPERATIONAL, score, factors)

    def _environmental(self, context: ImpactAnalysisContext, weight: float) -> CategoryImpact:
        factors = []
        score = 25 * weight

        if context.farm_id:
            score += 20
            factors.append("Aquatic ecosystem monitoring affected")

        if context.sensor_id:
            score += 10
            factors.append("Environmental sensor data may be compromised")

        return self._category(ImpactCategory.ENVIRONMENTAL, score, factors)

    def _reputation(self, assets: list[AssetConfiguration], weight: float) -> CategoryImpact:
        factors = []
        score = 15 * weight

        customer_facing = [a for a in assets if a.criticality >= 5]
        if customer_facing:
            score += len(customer_facing) * 20
            factors.append("Customer-facing systems potentially affected")

        return self._category(ImpactCategory.REPUTATION, score, factors)

    @staticmethod
    def calculate_total_impact_score(impacts: list[CategoryImpact]) -> float:
        """Weighted average of category scores, rounded to two decimals."""
        total_weight = sum(CATEGORY_WEIGHTS[i.category] for i in impacts)
        if total_weight <= 0:
            return 0.0
        weighted = sum(i.score * CATEGORY_WEIGHTS[i.category] for i in impacts)
        return round(weighted / total_weight, 2)

    @staticmethod
    def identify_affected_systems(context: ImpactAnalysisContext) -> list[str]:
        systems: list[str] = []
        if context.sensor_id:
            systems.append("Sensor Network")
        if context.farm_id:
            systems.extend(["Farm Management System", "Environmental Monitoring"])
        if context.affected_assets:
            systems.append("Asset Management")
        if context.affected_processes:
            systems.append("Process Automation")
        return systems

    @staticmethod
    def estimate_downtime(impact_score: float, severity: Severity) -> int:
        """Minutes of expected downtime, scaled by impact around a 50-point midpoint."""
        return round(BASE_DOWNTIME_MINUTES[severity] * impact_score / 50)

    @staticmethod
    def estimate_cost(impact_score: float, assets: list[AssetConfiguration]) -> float:
        cost = impact_score * 100
        cost += sum(a.business_value * impact_score / 100 for a in assets)
        return round(cost, 2)

    @staticmethod
    def generate_summary(total_score: float, impacts: list[CategoryImpact]) -> str:
        summary = f"Overall {score_to_level(total_score)} impact (score: {total_score:.1f})"

        concerns = [i.category.lower() for i in impacts if i.score >= 60]
        if concerns:
            summary += f". High concern areas: {', '.join(concerns)}"
        return summary

    # ------------------------------------------------------------------
    # Asset registry passthrough
    # ------------------------------------------------------------------

    def register_asset(self, asset: AssetConfiguration) -> None:
        self.asset_registry.register(asset)

    def get_asset_configuration(self, tenant_id: str, asset_id: str) -> AssetConfiguration | None:
        return self.asset_registry.get(tenant_id, asset_id)

    def remove_asset(self, tenant_id: str, asset_id: str) -> bool:
        return self.asset_registry.remove(tenant_id, asset_id)
