"""
Component Expansion Engine — rooms → component time & material breakdowns.

Two multiplier tiers, applied in this order:

  Component tier (per installed unit)
    1. variant:            round(base × time_multiplier) + extra_time
    2. installation type:  × time_multiplier × difficulty_multiplier
    3. ceiling height:     × height / 2.5 when the ceiling is above 3.0 m
    4. rules:              every matching active rule, ascending priority,
                           t = round(t × mult + extra) on the running value
    5. × point count

  Room tier (once per room aggregate)
    6. building profile:   time × time_multiplier × difficulty_multiplier,
                           waste × material_waste_multiplier
                           (overhead_multiplier is carried to project pricing)

Point kinds without a catalog node are skipped silently.
"""
from __future__ import annotations

import math
import logging
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional, Sequence

from app.config import EstimationSettings
from app.models.catalog_schema import (
    BuildingProfile,
    CatalogSnapshot,
    ComponentNode,
    ComponentVariant,
    InstallationType,
    RuleCondition,
)
from app.models.estimation_schema import RoomEstimationInput
from app.services.perf_monitor import timed

logger = logging.getLogger("elinstall-components")


# ── Catalog conventions ──────────────────────────────────────────────────────

# point kind -> component node code
DEFAULT_POINT_MAPPING: Dict[str, str] = {
    "outlets": "OUTLET_SINGLE",
    "outlets_countertop": "OUTLET_DOUBLE",
    "outlets_ip44": "OUTLET_IP44",
    "switches": "SWITCH_SINGLE",
    "ceiling_lights": "LIGHT_CEILING",
    "spots": "LIGHT_SPOT",
    "data_points": "OUTLET_DATA",
    "tv_outlets": "OUTLET_DATA",
    "ventilation": "APPLIANCE_VENTILATION",
    "cooker_hood": "APPLIANCE_VENTILATION",
    "floor_heating": "APPLIANCE_FLOOR_HEATING",
    "dishwasher": "OUTLET_SINGLE",
    "washing_machine": "OUTLET_SINGLE",
    "dryer": "OUTLET_SINGLE",
    "oven": "APPLIANCE_OVEN_3PHASE",
    "induction_hob": "APPLIANCE_INDUCTION",
    "ev_charger": "APPLIANCE_EV_CHARGER",
    "outdoor_lights": "LIGHT_OUTDOOR_WALL",
    "garden_posts": "LIGHT_GARDEN_POLE",
    "group_breakers": "PANEL_GROUP_BREAKER",
    "rcd_breakers": "PANEL_RCD",
    "main_breaker": "PANEL_MAIN_BREAKER",
    "surge_protection": "PANEL_SURGE_PROTECTION",
}

OUTLET_POINTS = ("outlets", "outlets_countertop", "outlets_ip44")
LIGHT_POINTS = ("ceiling_lights", "spots", "outdoor_lights", "garden_posts")
DEDICATED_GROUP_POINTS = ("oven", "induction_hob", "ev_charger", "floor_heating")
RCD_POINT = "rcd_breakers"

# Rooms that get RCD groups in the panel estimate
RCD_ROOM_TYPES = ("bathroom", "kitchen", "utility", "outdoor")

HIGH_CEILING_M = 3.0
MIN_OUTLETS_PER_M2 = 0.3
HIGH_DIFFICULTY = 1.5

# ── Panel estimate prices (DKK) ──────────────────────────────────────────────
_GROUP_BREAKER_COST = 85.0
_RCD_COST = 650.0
_MAIN_BREAKER_UPGRADE_COST = 2500.0
_SURGE_COST = 1200.0
_PANEL_BOX_SMALL = 1500.0
_PANEL_BOX_LARGE = 2800.0
_LARGE_PANEL_GROUPS = 12
_MAIN_UPGRADE_GROUPS = 20
_PANEL_TIME_PER_GROUP_S = 3600
_PANEL_BASE_TIME_S = 7200

DEFAULT_CABLE_TYPE = "PVT 3x1.5mm²"
CABLE_PRICE_PER_METER: Dict[str, float] = {
    "PVT 3x1.5mm²": 8.5,
    "PVT 3x2.5mm²": 12.0,
    "PVT 5x2.5mm²": 22.0,
    "PVT 5x4mm²": 28.0,
    "PVT 5x6mm²": 42.0,
    "PVT 5x10mm²": 65.0,
    "CAT6": 12.0,
}
_UNKNOWN_CABLE_PRICE = 10.0


# ---------------------------------------------------------------------------
# Rule matching
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CalculationContext:
    """Values a rule condition is evaluated against."""
    height: Optional[float] = None
    quantity: Optional[int] = None
    access: Optional[str] = None
    distance: Optional[float] = None
    custom: Dict[str, Any] = field(default_factory=dict)


def _in_range(value: Optional[float], lo: Optional[float], hi: Optional[float]) -> bool:
    if lo is None and hi is None:
        return True
    if value is None:
        return False
    if lo is not None and value < lo:
        return False
    if hi is not None and value > hi:
        return False
    return True


def _access_matches(wanted: Optional[str], actual: Optional[str]) -> bool:
    if wanted is None:
        return True
    return actual is not None and actual.lower() == wanted.lower()


def _custom_matches(wanted: Dict[str, Any], actual: Dict[str, Any]) -> bool:
    return all(key in actual and actual[key] == value for key, value in wanted.items())


def condition_matches(condition: RuleCondition, ctx: CalculationContext) -> bool:
    """
    Every populated predicate must hold.  A predicate whose context value is
    missing does not match.
    """
    return (
        _in_range(ctx.height, condition.min_height, condition.max_height)
        and _in_range(ctx.quantity, condition.min_quantity, condition.max_quantity)
        and _access_matches(condition.access, ctx.access)
        and _in_range(ctx.distance, condition.min_distance, condition.max_distance)
        and _custom_matches(condition.custom, ctx.custom)
    )


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ComponentBreakdown:
    point_kind: str
    node_code: str
    node_name: str
    variant_code: Optional[str]
    quantity: int
    unit_time_seconds: int
    time_seconds: int
    unit_material_cost: float
    material_cost: float
    material_waste: float
    unit_sale_price: float
    price_multiplier: float
    cable_meters: float
    cable_type: str
    applied_rules: tuple = ()


@dataclass(frozen=True)
class RoomEstimate:
    room_name: str
    room_type: str
    area_m2: float
    installation_type: Optional[str]
    points: Dict[str, int]
    components: List[ComponentBreakdown]
    skipped_points: List[str]
    component_time_seconds: int
    total_time_seconds: int
    total_material_cost: float
    total_material_waste: float
    total_labor_cost: float
    total_cable_meters: float
    component_count: int
    warnings: List[str]
    recommendations: List[str]

    @property
    def point_total(self) -> int:
        return sum(self.points.values())

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class PanelRequirements:
    total_groups_needed: int
    rcd_groups_needed: int
    main_breaker_upgrade: bool
    surge_protection_recommended: bool
    estimated_panel_cost: float
    details: List[dict]


@dataclass(frozen=True)
class CableSummary:
    cable_types: List[dict]
    total_meters: float
    total_cable_cost: float


@dataclass(frozen=True)
class ComponentProjectEstimate:
    rooms: List[RoomEstimate]
    panel_requirements: PanelRequirements
    cable_summary: CableSummary
    direct_time_seconds: int
    indirect_time_seconds: int
    personal_time_seconds: int
    total_time_seconds: int
    total_labor_hours: float
    total_labor_cost: float
    total_material_cost: float
    total_other_costs: float
    total_cable_meters: float
    cost_price: float
    warnings: List[str]
    recommendations: List[str]

    def to_dict(self) -> dict:
        return asdict(self)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class ComponentEngine:
    """
    Expands rooms into component breakdowns against one catalog snapshot.

    The engine holds no state beyond its constructor arguments; calling it
    twice with the same input yields identical results.
    """

    def __init__(
        self,
        catalog: CatalogSnapshot,
        settings: Optional[EstimationSettings] = None,
        building_profile: Optional[BuildingProfile] = None,
        hourly_rate: Optional[float] = None,
        project_attributes: Optional[Dict[str, Any]] = None,
    ):
        self.catalog = catalog
        self.settings = settings or EstimationSettings()
        self.profile = building_profile
        self.hourly_rate = hourly_rate if hourly_rate is not None else self.settings.hourly_rate
        self.project_attributes = dict(project_attributes or {})
        self.point_mapping = {**DEFAULT_POINT_MAPPING, **catalog.point_mappings}
        self.material_waste = catalog.global_factor("material_waste", self.settings.material_waste)

    # ── Resolution ───────────────────────────────────────────────────────────

    def resolve_node(self, point_kind: str) -> Optional[ComponentNode]:
        code = self.point_mapping.get(point_kind)
        if code is None:
            return None
        return self.catalog.node_by_code(code)

    def resolve_variant(
        self, node: ComponentNode, explicit_code: Optional[str] = None,
    ) -> Optional[ComponentVariant]:
        """Explicit selection → default-marked variant → first by sort order."""
        variants = self.catalog.variants_for(node.id)
        if not variants:
            return None
        if explicit_code:
            for v in variants:
                if v.code == explicit_code or v.id == explicit_code:
                    return v
            logger.debug(f"Variant {explicit_code!r} not found for {node.code}; using fallback")
        for v in variants:
            if v.is_default:
                return v
        return variants[0]

    def _context(self, room: RoomEstimationInput, quantity: int,
                 install_type: Optional[InstallationType]) -> CalculationContext:
        custom = {
            **self.project_attributes,
            "room_type": room.room_type.lower(),
            "installation_type": install_type.code if install_type else room.installation_type,
            **room.custom,
        }
        return CalculationContext(
            height=room.ceiling_height_m or self.settings.default_ceiling_height_m,
            quantity=quantity,
            access=room.access or (install_type.access if install_type else None),
            distance=room.cable_distance_m,
            custom=custom,
        )

    # ── Component tier ───────────────────────────────────────────────────────

    def calculate_component(
        self,
        room: RoomEstimationInput,
        point_kind: str,
        quantity: int,
        install_type: Optional[InstallationType] = None,
    ) -> Optional[ComponentBreakdown]:
        node = self.resolve_node(point_kind)
        if node is None:
            return None
        variant = self.resolve_variant(node, room.variants.get(point_kind))

        # 1. variant
        if variant is not None:
            unit_time = max(0, round(node.base_time_seconds * variant.time_multiplier)
                            + variant.extra_time_seconds)
            cost_mult = variant.cost_multiplier
            waste_pct = variant.waste_percentage
            price_mult = variant.price_multiplier
            materials = variant.materials
        else:
            unit_time = node.base_time_seconds
            cost_mult = price_mult = 1.0
            waste_pct = 0.0
            materials = []

        # 2. installation type
        install_waste = 1.0
        if install_type is not None:
            unit_time = round(unit_time * install_type.time_multiplier * install_type.difficulty_multiplier)
            install_waste = install_type.material_waste_multiplier

        # 3. ceiling height
        height = room.ceiling_height_m or self.settings.default_ceiling_height_m
        if height > HIGH_CEILING_M:
            unit_time = round(unit_time * height / self.settings.default_ceiling_height_m)

        if materials:
            unit_cost = sum(m.quantity * m.unit_cost for m in materials) * cost_mult
        else:
            unit_cost = node.default_cost_price * cost_mult

        # 4. rules
        ctx = self._context(room, quantity, install_type)
        applied = []
        for rule in self.catalog.rules_for(node.id, variant.id if variant else None):
            if not condition_matches(rule.condition, ctx):
                continue
            if rule.adjusts_time:
                unit_time = round(unit_time * rule.time_multiplier + rule.extra_time_seconds)
            if rule.adjusts_cost:
                unit_cost = unit_cost * rule.cost_multiplier + rule.extra_cost
            applied.append(rule.name or rule.id)
        unit_time = max(0, int(unit_time))
        unit_cost = max(0.0, unit_cost)

        # 5. quantity
        material_cost = unit_cost * quantity
        waste = material_cost * (waste_pct / 100 + self.material_waste) * install_waste
        cable_m = node.cable_meters_per_unit * self.settings.cable_waste_factor * quantity

        return ComponentBreakdown(
            point_kind=point_kind,
            node_code=node.code,
            node_name=node.name,
            variant_code=variant.code if variant else None,
            quantity=quantity,
            unit_time_seconds=unit_time,
            time_seconds=unit_time * quantity,
            unit_material_cost=round(unit_cost, 2),
            material_cost=round(material_cost, 2),
            material_waste=round(waste, 2),
            unit_sale_price=round(node.default_sale_price * price_mult, 2),
            price_multiplier=price_mult,
            cable_meters=round(cable_m, 2),
            cable_type=node.cable_type or DEFAULT_CABLE_TYPE,
            applied_rules=tuple(applied),
        )

    # ── Room tier ────────────────────────────────────────────────────────────

    def _room_notes(
        self,
        room: RoomEstimationInput,
        install_type: Optional[InstallationType],
    ) -> tuple[List[str], List[str]]:
        warnings: List[str] = []
        recommendations: List[str] = []

        template = self.catalog.room_template(room.room_type)
        if template is not None:
            for req in template.special_requirements:
                warnings.append(f"{room.name}: {req.description or req.requirement}")
            if template.recommended_rcd and not room.points.get(RCD_POINT):
                recommendations.append(f"{room.name}: RCD protection is recommended for this room type")

        if install_type is not None:
            if install_type.difficulty_multiplier > HIGH_DIFFICULTY:
                warnings.append(
                    f"{room.name}: {install_type.name or install_type.code} installation "
                    f"(difficulty ×{install_type.difficulty_multiplier:g})"
                )
            tools = [t.tool_name for t in install_type.special_tools]
            if tools:
                recommendations.append(f"{room.name}: special tools required - {', '.join(tools)}")

        outlets = sum(room.points.get(k, 0) for k in OUTLET_POINTS)
        if room.area_m2 > 0 and outlets / room.area_m2 < MIN_OUTLETS_PER_M2:
            recommendations.append(
                f"{room.name}: few outlets for {room.area_m2:g} m² - consider adding more"
            )

        height = room.ceiling_height_m or self.settings.default_ceiling_height_m
        if height > HIGH_CEILING_M:
            warnings.append(f"{room.name}: ceiling height {height:g} m - extra time included")
        return warnings, recommendations

    def calculate_room(self, room: RoomEstimationInput) -> RoomEstimate:
        install_type = self.catalog.installation_type(room.installation_type)
        if room.installation_type and install_type is None:
            logger.debug(f"Unknown installation type {room.installation_type!r} in {room.name}")

        components: List[ComponentBreakdown] = []
        skipped: List[str] = []
        for kind in sorted(room.points):
            qty = room.points[kind]
            if qty <= 0:
                skipped.append(kind)
                continue
            breakdown = self.calculate_component(room, kind, qty, install_type)
            if breakdown is None:
                logger.debug(f"No catalog node for point kind {kind!r}; skipped")
                continue
            components.append(breakdown)

        component_time = sum(c.time_seconds for c in components)
        material = sum(c.material_cost for c in components)
        waste = sum(c.material_waste for c in components)

        # 6. building profile, once per room
        total_time = component_time
        if self.profile is not None:
            total_time = round(
                component_time * self.profile.time_multiplier * self.profile.difficulty_multiplier
            )
            waste *= self.profile.material_waste_multiplier

        warnings, recommendations = self._room_notes(room, install_type)
        return RoomEstimate(
            room_name=room.name,
            room_type=room.room_type.lower(),
            area_m2=room.area_m2,
            installation_type=install_type.code if install_type else None,
            points=dict(room.points),
            components=components,
            skipped_points=skipped,
            component_time_seconds=component_time,
            total_time_seconds=total_time,
            total_material_cost=round(material, 2),
            total_material_waste=round(waste, 2),
            total_labor_cost=round(total_time / 3600 * self.hourly_rate, 2),
            total_cable_meters=round(sum(c.cable_meters for c in components), 2),
            component_count=sum(c.quantity for c in components),
            warnings=warnings,
            recommendations=recommendations,
        )

    # ── Project roll-up ──────────────────────────────────────────────────────

    def panel_requirements(self, rooms: Sequence[RoomEstimate]) -> PanelRequirements:
        """Rough group count: one per 6 outlets, one per 10 lights, one per heavy appliance."""
        total_groups = 0
        rcd_groups = 0
        details = []
        for room in rooms:
            outlet_groups = math.ceil(sum(room.points.get(k, 0) for k in OUTLET_POINTS) / 6)
            light_groups = math.ceil(sum(room.points.get(k, 0) for k in LIGHT_POINTS) / 10)
            special = sum(room.points.get(k, 0) for k in DEDICATED_GROUP_POINTS)
            groups = outlet_groups + light_groups + special
            if room.room_type in RCD_ROOM_TYPES:
                rcd_groups += math.ceil(groups / 2)
            total_groups += groups
            if groups:
                details.append({
                    "room_name": room.room_name,
                    "outlet_groups": outlet_groups,
                    "light_groups": light_groups,
                    "special_groups": special,
                    "estimated_cost": groups * _GROUP_BREAKER_COST + special * 200,
                })

        rcd_groups = max(rcd_groups, 1)
        main_upgrade = total_groups > _MAIN_UPGRADE_GROUPS
        cost = (
            total_groups * _GROUP_BREAKER_COST
            + rcd_groups * _RCD_COST
            + (_MAIN_BREAKER_UPGRADE_COST if main_upgrade else 0.0)
            + _SURGE_COST
            + (_PANEL_BOX_LARGE if total_groups > _LARGE_PANEL_GROUPS else _PANEL_BOX_SMALL)
        )
        return PanelRequirements(
            total_groups_needed=total_groups,
            rcd_groups_needed=rcd_groups,
            main_breaker_upgrade=main_upgrade,
            surge_protection_recommended=True,
            estimated_panel_cost=round(cost, 2),
            details=details,
        )

    @staticmethod
    def cable_summary(rooms: Sequence[RoomEstimate]) -> CableSummary:
        meters: Dict[str, float] = {}
        for room in rooms:
            for comp in room.components:
                if comp.cable_meters > 0:
                    meters[comp.cable_type] = meters.get(comp.cable_type, 0.0) + comp.cable_meters
        types = []
        for cable_type in sorted(meters):
            price = CABLE_PRICE_PER_METER.get(cable_type, _UNKNOWN_CABLE_PRICE)
            types.append({
                "type": cable_type,
                "total_meters": round(meters[cable_type], 2),
                "cost_per_meter": price,
                "total_cost": round(meters[cable_type] * price, 2),
            })
        return CableSummary(
            cable_types=types,
            total_meters=round(sum(t["total_meters"] for t in types), 2),
            total_cable_cost=round(sum(t["total_cost"] for t in types), 2),
        )

    def other_costs(self, rooms: Sequence[RoomEstimationInput], labor_hours: float) -> float:
        """Transport per started workday plus rental of special tools."""
        days = math.ceil(labor_hours / self.settings.workday_hours) if labor_hours > 0 else 0
        cost = days * self.settings.transport_per_day
        for room in rooms:
            it = self.catalog.installation_type(room.installation_type)
            if it is not None:
                cost += len(it.special_tools) * self.settings.special_tool_rental
        return round(cost, 2)

    @timed
    def calculate_project(self, rooms: Sequence[RoomEstimationInput]) -> ComponentProjectEstimate:
        estimates = [self.calculate_room(r) for r in rooms]
        panel = self.panel_requirements(estimates)
        cables = self.cable_summary(estimates)

        direct = sum(r.total_time_seconds for r in estimates)
        direct += panel.total_groups_needed * _PANEL_TIME_PER_GROUP_S + _PANEL_BASE_TIME_S
        indirect_factor = self.catalog.global_factor("indirect_time", self.settings.indirect_time)
        personal_factor = self.catalog.global_factor("personal_time", self.settings.personal_time)
        indirect = round(direct * indirect_factor)
        personal = round((direct + indirect) * personal_factor)
        total_time = direct + indirect + personal

        hours = total_time / 3600
        labor_cost = hours * self.hourly_rate
        material = (
            sum(r.total_material_cost + r.total_material_waste for r in estimates)
            + panel.estimated_panel_cost
            + cables.total_cable_cost
        )
        other = self.other_costs(rooms, hours)

        warnings = [w for r in estimates for w in r.warnings]
        recommendations = [x for r in estimates for x in r.recommendations]
        logger.info(
            f"Components: {len(estimates)} rooms, {sum(r.component_count for r in estimates)} units, "
            f"{hours:.2f} h"
        )

        return ComponentProjectEstimate(
            rooms=estimates,
            panel_requirements=panel,
            cable_summary=cables,
            direct_time_seconds=direct,
            indirect_time_seconds=indirect,
            personal_time_seconds=personal,
            total_time_seconds=total_time,
            total_labor_hours=round(hours, 2),
            total_labor_cost=round(labor_cost, 2),
            total_material_cost=round(material, 2),
            total_other_costs=other,
            total_cable_meters=cables.total_meters,
            cost_price=round(material + labor_cost + other, 2),
            warnings=warnings,
            recommendations=recommendations,
        )
