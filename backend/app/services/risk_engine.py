"""Risk analysis engine — risk level, warnings and customer-facing OBS points."""
import math
import logging
from dataclasses import dataclass, field, asdict
from typing import Iterable, List, Optional, Sequence

from app.models.catalog_schema import CatalogSnapshot
from app.models.estimation_schema import WET_ROOM_TYPES, ProjectEstimationInput
from app.services.compliance_engine import ComplianceReport
from app.services.component_engine import RoomEstimate
from app.services.price_engine import MarginAnalysis

logger = logging.getLogger("elinstall-risk")

RISK_LEVELS = ("low", "medium", "high")

MASONRY_INSTALLATION_TYPES = ("BETON", "MUR")


@dataclass(frozen=True)
class RiskFactor:
    type: str          # old_building | difficult_installation | large_project | high_value | wet_rooms
    description: str
    severity: str      # medium | high
    impact_percentage: float


@dataclass(frozen=True)
class RiskAssessment:
    risk_score: int
    base_risk_level: str
    risk_level: str
    factors: List[RiskFactor]
    recommended_buffer_percentage: int
    escalations: List[str] = field(default_factory=list)
    obs_points: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


def dedupe(items: Iterable[str]) -> List[str]:
    """Set semantics, first occurrence wins."""
    return list(dict.fromkeys(i for i in items if i))


def escalate(level: str, floor: str) -> str:
    """Raise ``level`` to at least ``floor``; never lowers it."""
    return RISK_LEVELS[max(RISK_LEVELS.index(level), RISK_LEVELS.index(floor))]


def level_for_score(score: int) -> str:
    if score <= 1:
        return "low"
    if score <= 2:
        return "medium"
    return "high"


class RiskAnalysisEngine:
    """Scores project risk factors and applies the compliance / margin escalation policy."""

    OLD_BUILDING_YEARS = 30
    VERY_OLD_BUILDING_YEARS = 50
    HIGH_DIFFICULTY = 1.5
    LARGE_PROJECT_POINTS = 100
    HIGH_VALUE_COST = 200_000.0

    def __init__(self, catalog: CatalogSnapshot):
        self.catalog = catalog

    def assess(
        self,
        project: ProjectEstimationInput,
        rooms: Sequence[RoomEstimate],
        cost_price: float,
        margin: MarginAnalysis,
        compliance: Optional[ComplianceReport] = None,
        building_age_years: Optional[int] = None,
        extra_warnings: Iterable[str] = (),
    ) -> RiskAssessment:
        factors: List[RiskFactor] = []
        factors.extend(self._check_building_age(building_age_years))
        factors.extend(self._check_installation_types(project))
        factors.extend(self._check_project_size(rooms))
        factors.extend(self._check_project_value(cost_price))
        factors.extend(self._check_wet_rooms(rooms))

        impact = sum(f.impact_percentage for f in factors)
        score = min(5, max(1, math.ceil(impact / 10)))
        buffer = min(20, max(3, round(impact / 3)))
        base_level = level_for_score(score)

        level = base_level
        escalations: List[str] = []
        if compliance is not None and compliance.errors > 0:
            level = escalate(level, "high")
            escalations.append(f"{compliance.errors} compliance error(s)")
        if margin.below_minimum_count > 0:
            level = escalate(level, "medium")
            escalations.append(f"{margin.below_minimum_count} line(s) below minimum margin")

        obs = self._obs_points(rooms, building_age_years, level, score, buffer, compliance)

        warnings: List[str] = [w for r in rooms for w in r.warnings]
        warnings.extend(extra_warnings)
        if compliance is not None:
            warnings.extend(f"{i.description} ({i.standard_ref})" for i in compliance.warning_issues)
        warnings.extend(margin.warnings)

        logger.info(
            f"Risk: score {score}/5, base {base_level}, final {level}, "
            f"{len(factors)} factors, buffer {buffer}%"
        )
        return RiskAssessment(
            risk_score=score,
            base_risk_level=base_level,
            risk_level=level,
            factors=factors,
            recommended_buffer_percentage=buffer,
            escalations=escalations,
            obs_points=dedupe(obs),
            warnings=dedupe(warnings),
        )

    # ─── Factor checks ────────────────────────────────────────────────────

    def _check_building_age(self, age: Optional[int]) -> List[RiskFactor]:
        if age is None or age <= self.OLD_BUILDING_YEARS:
            return []
        very_old = age > self.VERY_OLD_BUILDING_YEARS
        return [RiskFactor(
            type="old_building",
            description=f"Building is {age} years old - risk of unforeseen installation work",
            severity="high" if very_old else "medium",
            impact_percentage=15 if very_old else 8,
        )]

    def _check_installation_types(self, project: ProjectEstimationInput) -> List[RiskFactor]:
        factors = []
        for room in project.rooms:
            it = self.catalog.installation_type(room.installation_type)
            if it is None or it.difficulty_multiplier <= self.HIGH_DIFFICULTY:
                continue
            factors.append(RiskFactor(
                type="difficult_installation",
                description=(
                    f"{room.name}: {it.name or it.code} installation "
                    f"(difficulty ×{it.difficulty_multiplier:g})"
                ),
                severity="high" if it.difficulty_multiplier > 2 else "medium",
                impact_percentage=round((it.difficulty_multiplier - 1) * 10, 2),
            ))
        return factors

    def _check_project_size(self, rooms: Sequence[RoomEstimate]) -> List[RiskFactor]:
        points = sum(r.point_total for r in rooms)
        if points <= self.LARGE_PROJECT_POINTS:
            return []
        return [RiskFactor(
            type="large_project",
            description=f"Large project with {points} electrical points",
            severity="high" if points > 2 * self.LARGE_PROJECT_POINTS else "medium",
            impact_percentage=5,
        )]

    def _check_project_value(self, cost_price: float) -> List[RiskFactor]:
        if cost_price <= self.HIGH_VALUE_COST:
            return []
        return [RiskFactor(
            type="high_value",
            description=f"High project value ({cost_price:,.0f} DKK)",
            severity="high" if cost_price > 500_000 else "medium",
            impact_percentage=3,
        )]

    def _check_wet_rooms(self, rooms: Sequence[RoomEstimate]) -> List[RiskFactor]:
        wet = [r for r in rooms if r.room_type in WET_ROOM_TYPES]
        if not wet:
            return []
        return [RiskFactor(
            type="wet_rooms",
            description=f"{len(wet)} wet room / outdoor installation(s) - IP-rated materials required",
            severity="medium",
            impact_percentage=5,
        )]

    # ─── OBS points ───────────────────────────────────────────────────────

    def _obs_points(
        self,
        rooms: Sequence[RoomEstimate],
        age: Optional[int],
        level: str,
        score: int,
        buffer: int,
        compliance: Optional[ComplianceReport],
    ) -> List[str]:
        obs: List[str] = []
        if age is not None and age > self.OLD_BUILDING_YEARS:
            obs.append(
                "OBS: Older installations may require replacement of existing cables and boxes, "
                "which is not included in this offer."
            )
        if any(r.installation_type in MASONRY_INSTALLATION_TYPES for r in rooms):
            obs.append(
                "OBS: Drilling and chasing in concrete/masonry causes noise. Painting and "
                "surface restoration are not included."
            )
        if any(r.room_type == "bathroom" for r in rooms):
            obs.append(
                "OBS: Wet room work follows the DS/HD 60364 zone rules. All materials are IP44 or better."
            )
        if any(r.points.get("ev_charger", 0) > 0 for r in rooms):
            obs.append(
                "OBS: The EV charger needs a dedicated circuit and sufficient capacity in the "
                "main supply."
            )
        if level == "high":
            obs.append(
                f"OBS: The project has an elevated risk profile (score {score}/5). "
                f"A {buffer}% risk buffer is recommended."
            )
        if compliance is not None:
            for issue in compliance.error_issues:
                obs.append(f"REQUIRED: {issue.description} ({issue.standard_ref})")
        obs.append(
            "OBS: The offer assumes sufficient space in the existing panel. Panel extension "
            "or a new panel is estimated but may vary."
        )
        return obs


# ---------------------------------------------------------------------------
# Anomaly detection
# ---------------------------------------------------------------------------

def detect_anomalies(
    rooms: Sequence[RoomEstimate],
    total_hours: float,
    cost_price: float,
    margin_percentage: float,
    material_cost: float,
) -> List[dict]:
    """Plausibility checks on a finished estimate; advisory only."""
    anomalies: List[dict] = []

    points = sum(r.point_total for r in rooms)
    if points > 0:
        per_point = total_hours / points
        if per_point > 2:
            anomalies.append({
                "anomaly_type": "time_outlier",
                "severity": "warning",
                "message": f"High time estimate: {per_point:.1f} h per point (normal 0.3-1.5 h)",
            })
        elif per_point < 0.1:
            anomalies.append({
                "anomaly_type": "time_outlier",
                "severity": "warning",
                "message": f"Low time estimate: {per_point:.2f} h per point (normal 0.3-1.5 h)",
            })

    if margin_percentage < 10:
        anomalies.append({
            "anomaly_type": "margin_warning",
            "severity": "critical",
            "message": f"Critically low margin: {margin_percentage:g}% (risk of loss)",
        })
    elif margin_percentage < 15:
        anomalies.append({
            "anomaly_type": "margin_warning",
            "severity": "warning",
            "message": f"Low margin: {margin_percentage:g}% (recommended minimum 15%)",
        })

    for room in rooms:
        if room.room_type in ("bathroom", "outdoor") and not room.points.get("rcd_breakers"):
            anomalies.append({
                "anomaly_type": "missing_rcd",
                "severity": "critical",
                "message": f"Missing RCD in {room.room_name} ({room.room_type}) - legal requirement",
            })

    if cost_price > 0:
        ratio = material_cost / cost_price
        if ratio < 0.2:
            anomalies.append({
                "anomaly_type": "price_deviation",
                "severity": "info",
                "message": f"Low material share ({ratio * 100:.0f}%) - typically 30-50%",
            })
        elif ratio > 0.7:
            anomalies.append({
                "anomaly_type": "price_deviation",
                "severity": "warning",
                "message": f"High material share ({ratio * 100:.0f}%) - check material prices",
            })
    return anomalies
