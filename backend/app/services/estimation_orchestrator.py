"""
Estimation Orchestrator — one project request in, one priced and checked estimate out.

Stages, in order:
  1. validate        ProjectEstimationInput (pydantic)
  2. customer tier   provider lookup by customer_id, unknown or failed lookup → standard
  3. catalog         one immutable CatalogSnapshot per call
  4. components      rooms → time, material and cable per component
  5. electrical      loads, panel, cable sizing, compliance (isolated: a failure
                     here yields ElectricalUnavailable, never a failed estimate)
  6. pricing         overhead, risk, margin, discount, VAT, DB figures
  7. margins         per-line DB% against the tier minimum
  8. risk            factors, escalation, OBS points, warnings, anomalies
  9. snapshot        optional append-only save; failures are logged only

Fatal errors in stages 1, 3-4 and 6-8 come back as
``EstimationOutcome(success=False, error=...)``.
"""
import time
import logging
from contextlib import contextmanager
from dataclasses import dataclass, asdict
from typing import Any, Callable, Dict, Iterator, List, Optional, Union

from pydantic import ValidationError

from app.config import EstimationSettings, load_settings
from app.models.catalog_schema import BuildingProfile, CatalogSnapshot
from app.models.estimation_schema import ProjectEstimationInput
from app.services.catalog_provider import CatalogProvider
from app.services.component_engine import ComponentEngine, ComponentProjectEstimate
from app.services.electrical_engine import (
    ElectricalAvailable,
    ElectricalProjectResult,
    ElectricalStageResult,
    ElectricalUnavailable,
    calculate_electrical_project,
)
from app.services.estimation_errors import CatalogError, EstimationError, EstimationInputError
from app.services.logging_config import estimate_logger
from app.services.perf_monitor import tracker
from app.services.price_engine import (
    CustomerTier,
    LineItem,
    MarginAnalysis,
    ProjectPricing,
    analyze_margins,
    calculate_sale_price,
    db_level,
    effective_discount,
    price_project,
    resolve_tier,
    tier_minimum_margin,
)
from app.services.risk_engine import RiskAnalysisEngine, RiskAssessment, dedupe, detect_anomalies
from app.services.snapshot_store import SnapshotStore

logger = logging.getLogger("elinstall-estimation")

ElectricalCalculator = Callable[..., ElectricalProjectResult]


# ── Result types ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ProjectEstimate:
    name: str
    building_profile: Optional[str]
    components: ComponentProjectEstimate
    pricing: ProjectPricing
    risk: RiskAssessment
    obs_points: List[str]
    warnings: List[str]
    recommendations: List[str]


@dataclass(frozen=True)
class EstimationSummary:
    total_rooms: int
    total_electrical_points: int
    total_labor_hours: float
    total_material_cost: float
    total_cable_meters: float
    panel_circuits: int
    cost_price: float
    sale_price_excl_vat: float
    final_amount: float
    db_percentage: int
    db_per_hour: float
    db_level: str
    compliant: bool
    risk_level: str


@dataclass(frozen=True)
class ProjectEstimationResult:
    estimate: ProjectEstimate
    electrical: Optional[ElectricalProjectResult]
    electrical_unavailable_reason: Optional[str]
    margin_analysis: MarginAnalysis
    customer_tier: str
    all_obs_points: List[str]
    all_warnings: List[str]
    anomalies: List[dict]
    summary: EstimationSummary

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class EstimationOutcome:
    success: bool
    data: Optional[ProjectEstimationResult] = None
    error: Optional[str] = None


# ── Stage plumbing ───────────────────────────────────────────────────────────

@contextmanager
def _stage(name: str, estimate_name: str) -> Iterator[None]:
    """Time a stage; anything unexpected inside it becomes an EstimationError."""
    with tracker.measure(name):
        try:
            yield
        except EstimationError:
            raise
        except Exception as e:
            estimate_logger(logger, estimate_name).error(
                f"Stage '{name}' failed: {e}", exc_info=True, extra={"stage": name}
            )
            raise EstimationError(f"{name} stage failed: {e}") from e


def _validate(project_input: Union[ProjectEstimationInput, Dict[str, Any]]) -> ProjectEstimationInput:
    try:
        return ProjectEstimationInput.model_validate(project_input)
    except ValidationError as e:
        messages = [
            f"{'.'.join(str(p) for p in err['loc']) or 'input'}: {err['msg']}"
            for err in e.errors()
        ]
        raise EstimationInputError("; ".join(messages)) from e


async def _lookup_tier(project: ProjectEstimationInput, provider: CatalogProvider) -> CustomerTier:
    """Customer tier for the request; a failed lookup falls back to the standard tier."""
    if not project.customer_id:
        return resolve_tier(None)
    try:
        with tracker.measure("customer_tier"):
            code = await provider.get_customer_tier(project.customer_id)
    except Exception as e:
        estimate_logger(logger, project.name).warning(
            f"Customer tier lookup failed, using standard tier: {e}",
            extra={"stage": "customer_tier"},
        )
        return resolve_tier(None)
    return resolve_tier(code)


def _select_profile(catalog: CatalogSnapshot, code: Optional[str]) -> Optional[BuildingProfile]:
    profile = catalog.building_profile(code)
    if code and profile is None:
        logger.debug(f"Building profile {code!r} not in catalog; no profile multipliers applied")
    return profile


def run_electrical_stage(
    project: ProjectEstimationInput,
    settings: EstimationSettings,
    calculator: ElectricalCalculator = calculate_electrical_project,
) -> ElectricalStageResult:
    """Electrical sizing never fails the estimate: errors become ElectricalUnavailable."""
    try:
        with tracker.measure("electrical"):
            result = calculator(
                project.rooms,
                project.supply_phase,
                building_type=project.building_type,
                is_renovation=project.is_renovation,
                settings=settings,
                existing_main_fuse_a=project.existing_main_fuse_a,
            )
    except Exception as e:
        estimate_logger(logger, project.name).warning(
            f"Electrical calculation unavailable: {e}", exc_info=True, extra={"stage": "electrical"}
        )
        return ElectricalUnavailable(reason=str(e) or type(e).__name__)
    return ElectricalAvailable(result=result)


def build_line_items(
    components: ComponentProjectEstimate,
    hourly_rate: float,
    margin_percentage: float,
    discount_percentage: float,
) -> List[LineItem]:
    """One line per component: material + waste + labour cost against its sale price."""
    items = []
    for room in components.rooms:
        for comp in room.components:
            cost = comp.material_cost + comp.material_waste + comp.time_seconds / 3600 * hourly_rate
            if comp.unit_sale_price > 0:
                sale = comp.unit_sale_price * comp.quantity
            else:
                sale = calculate_sale_price(cost, margin_percentage, customer_discount=discount_percentage)
            items.append(LineItem(
                description=f"{room.room_name}: {comp.node_name}",
                cost=round(cost, 2),
                sale=round(sale, 2),
            ))
    return items


# ── Entry point ──────────────────────────────────────────────────────────────

async def create_project_estimation(
    project_input: Union[ProjectEstimationInput, Dict[str, Any]],
    catalog_provider: CatalogProvider,
    settings: Optional[EstimationSettings] = None,
    snapshot_store: Optional[SnapshotStore] = None,
    electrical_calculator: Optional[ElectricalCalculator] = None,
) -> EstimationOutcome:
    cfg = settings or load_settings()
    start = time.perf_counter()
    if isinstance(project_input, dict):
        name = project_input.get("name", "")
    else:
        name = getattr(project_input, "name", "")

    try:
        project = _validate(project_input)
        result = await _estimate(project, catalog_provider, cfg, electrical_calculator)
    except EstimationError as e:
        logger.warning(f"Estimation failed: {e}", extra={"estimate_name": name})
        return EstimationOutcome(success=False, error=str(e))

    if snapshot_store is not None:
        await _save_snapshot(snapshot_store, project, result)

    duration_ms = round((time.perf_counter() - start) * 1000, 2)
    tracker.record_estimate_complete(duration_ms)
    logger.info(
        f"Estimate {project.name!r}: {result.summary.final_amount:.2f} DKK, "
        f"DB {result.summary.db_percentage}%, risk {result.summary.risk_level}",
        extra={"estimate_name": project.name, "duration_ms": duration_ms},
    )
    return EstimationOutcome(success=True, data=result)


async def _estimate(
    project: ProjectEstimationInput,
    provider: CatalogProvider,
    cfg: EstimationSettings,
    electrical_calculator: Optional[ElectricalCalculator],
) -> ProjectEstimationResult:
    tier: CustomerTier = await _lookup_tier(project, provider)

    with _stage("catalog", project.name):
        try:
            catalog = await provider.load_catalog()
        except EstimationError:
            raise
        except Exception as e:
            raise CatalogError(f"Catalog load failed: {e}") from e
        profile = _select_profile(catalog, project.building_profile)

    pricing_in = project.pricing
    hourly_rate = (
        pricing_in.hourly_rate if pricing_in and pricing_in.hourly_rate is not None else cfg.hourly_rate
    )

    with _stage("components", project.name):
        engine = ComponentEngine(
            catalog,
            settings=cfg,
            building_profile=profile,
            hourly_rate=hourly_rate,
            project_attributes={
                "building_type": project.building_type,
                "supply_phase": project.supply_phase,
                "is_renovation": project.is_renovation,
            },
        )
        components = engine.calculate_project(project.rooms)

    stage = run_electrical_stage(project, cfg, electrical_calculator or calculate_electrical_project)
    electrical = stage.result if isinstance(stage, ElectricalAvailable) else None
    unavailable_reason = stage.reason if isinstance(stage, ElectricalUnavailable) else None

    with _stage("pricing", project.name):
        margin = (
            pricing_in.margin_percentage
            if pricing_in and pricing_in.margin_percentage is not None
            else cfg.margin_percentage
        )
        discount = effective_discount(
            tier,
            pricing_in.discount_percentage if pricing_in else None,
            default=cfg.discount_percentage,
        )
        overhead = (
            pricing_in.overhead_percentage
            if pricing_in and pricing_in.overhead_percentage is not None
            else catalog.global_factor("overhead", cfg.overhead_percentage / 100) * 100
        )
        risk_pct = (
            pricing_in.risk_percentage
            if pricing_in and pricing_in.risk_percentage is not None
            else cfg.risk_percentage
        )
        project_pricing = price_project(
            components.cost_price,
            components.total_labor_hours,
            margin,
            discount,
            overhead_percentage=overhead,
            risk_percentage=risk_pct,
            vat_percentage=cfg.vat_percentage,
            overhead_multiplier=profile.overhead_multiplier if profile else 1.0,
        )

    with _stage("margins", project.name):
        items = build_line_items(components, hourly_rate, margin, discount)
        margin_analysis = analyze_margins(items, tier_minimum_margin(tier, cfg.minimum_margin_percentage))

    with _stage("risk", project.name):
        age = None
        if project.building_year is not None:
            age = max(0, cfg.reference_year - project.building_year)
        risk = RiskAnalysisEngine(catalog).assess(
            project,
            components.rooms,
            components.cost_price,
            margin_analysis,
            compliance=electrical.compliance if electrical else None,
            building_age_years=age,
            extra_warnings=electrical.warnings if electrical else (),
        )
        anomalies = detect_anomalies(
            components.rooms,
            components.total_labor_hours,
            components.cost_price,
            project_pricing.db_percentage,
            components.total_material_cost,
        )

    estimate = ProjectEstimate(
        name=project.name,
        building_profile=profile.code if profile else None,
        components=components,
        pricing=project_pricing,
        risk=risk,
        obs_points=risk.obs_points,
        warnings=risk.warnings,
        recommendations=dedupe(components.recommendations),
    )
    summary = EstimationSummary(
        total_rooms=len(components.rooms),
        total_electrical_points=sum(r.point_total for r in components.rooms),
        total_labor_hours=components.total_labor_hours,
        total_material_cost=components.total_material_cost,
        total_cable_meters=(
            electrical.total_cable_meters if electrical else components.total_cable_meters
        ),
        panel_circuits=(
            electrical.circuit_count if electrical
            else components.panel_requirements.total_groups_needed
        ),
        cost_price=project_pricing.cost_price,
        sale_price_excl_vat=project_pricing.net_price,
        final_amount=project_pricing.final_amount,
        db_percentage=project_pricing.db_percentage,
        db_per_hour=project_pricing.db_per_hour,
        db_level=db_level(project_pricing.db_percentage),
        compliant=electrical.compliant if electrical else True,
        risk_level=risk.risk_level,
    )
    return ProjectEstimationResult(
        estimate=estimate,
        electrical=electrical,
        electrical_unavailable_reason=unavailable_reason,
        margin_analysis=margin_analysis,
        customer_tier=tier.code,
        all_obs_points=risk.obs_points,
        all_warnings=risk.warnings,
        anomalies=anomalies,
        summary=summary,
    )


async def _save_snapshot(
    store: SnapshotStore,
    project: ProjectEstimationInput,
    result: ProjectEstimationResult,
) -> Optional[int]:
    """Persist a snapshot; a failure is logged and never changes the estimate."""
    try:
        with tracker.measure("snapshot"):
            return await store.save(
                project.name,
                project.model_dump(mode="json"),
                result.to_dict(),
                customer_id=project.customer_id,
            )
    except Exception as e:
        estimate_logger(logger, project.name).error(
            f"Snapshot save failed: {e}", exc_info=True, extra={"stage": "snapshot"}
        )
        return None
