"""
Electrical Sizing Engine — loads, cables, breakers and panel layout.

Based on DS/HD 60364 (Danish implementation of IEC 60364):

  1. Room point counts → LoadEntry records (fixed power / power-factor table)
  2. Load analysis with diversity factors, phase distribution, main breaker
  3. Panel layout: lighting / socket / dedicated circuits, RCD groups, modules
  4. Cable sizing per circuit: ampacity after derating vs. voltage drop
  5. Compliance check (compliance_engine)

RCD protection is only laid out when the job actually includes RCD
components (``rcd_breakers`` points); EV chargers always get their own
type B RCBO.  Anything the job leaves out shows up as a compliance error.
"""
from __future__ import annotations

import math
import logging
from dataclasses import dataclass, field, asdict
from typing import Dict, Iterable, List, Literal, Optional, Sequence, Union

from app.config import EstimationSettings
from app.models.estimation_schema import RoomEstimationInput
from app.services.compliance_engine import ComplianceReport, check_compliance
from app.services.electrical_tables import (
    CABLE_SIZES,
    COPPER_RESISTIVITY_70C,
    DIVERSITY_COMMERCIAL,
    DIVERSITY_RESIDENTIAL,
    PANEL_COSTS,
    PANEL_SIZES,
    SURGE_PROTECTION_COST,
    breaker_cost,
    cable_cost_per_meter,
    current_capacity,
    grouping_correction,
    next_breaker_rating,
    rcd_cost,
    select_breaker_rating,
    select_cable_for_breaker,
    temperature_correction,
)
from app.services.perf_monitor import timed

logger = logging.getLogger("elinstall-electrical")

LoadCategory = Literal[
    "socket_outlet", "lighting", "cooking", "heating",
    "ev_charger", "fixed_appliance", "motor", "data_equipment",
]
PhaseType = Literal["1-phase", "3-phase"]

RCD_POINT_KIND = "rcd_breakers"

# ── Constants ────────────────────────────────────────────────────────────────
SINGLE_PHASE_V = 230
THREE_PHASE_V = 400
LIGHTING_CIRCUIT_MAX_W = 2300          # ~10 A lighting circuit
OUTLETS_PER_CIRCUIT = 10
OUTLET_CIRCUIT_MAX_W = 3680            # 16 A × 230 V
CIRCUITS_PER_RCD_GROUP = 6
SURGE_MODULES = 3
PANEL_SPARE_FACTOR = 1.2
PANEL_BASE_TIME_S = 3600
PER_CIRCUIT_TIME_S = 900
DEFAULT_CABLE_LENGTH_M = 15.0
FLOOR_HEATING_W_PER_M2 = 100

# ── Point → load table ───────────────────────────────────────────────────────
# (point kinds, category, rated W, power factor, continuous, description)
_LOAD_TABLE: list[tuple[tuple[str, ...], str, float, float, bool, str]] = [
    (("outlets", "outlets_countertop", "outlets_ip44"), "socket_outlet", 230, 1.0, False, "Sockets"),
    (("ceiling_lights", "spots", "outdoor_lights", "garden_posts"), "lighting", 60, 0.95, False, "Lighting"),
    (("oven",), "cooking", 3600, 1.0, False, "Oven"),
    (("induction_hob",), "cooking", 7200, 0.95, False, "Induction hob"),
    (("ev_charger",), "ev_charger", 11000, 0.99, True, "EV charger"),
    (("washing_machine",), "fixed_appliance", 2200, 0.85, False, "Washing machine"),
    (("dryer",), "fixed_appliance", 2500, 0.85, False, "Tumble dryer"),
    (("dishwasher",), "fixed_appliance", 2200, 0.85, False, "Dishwasher"),
    (("cooker_hood",), "fixed_appliance", 150, 0.85, False, "Cooker hood"),
    (("ventilation",), "fixed_appliance", 150, 0.85, False, "Ventilation"),
]


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class LoadEntry:
    description: str
    category: LoadCategory
    rated_power_watts: float
    quantity: int = 1
    power_factor: float = 1.0
    is_continuous: bool = False
    demand_factor: Optional[float] = None
    phase_assignment: Optional[int] = None

    def __post_init__(self):
        if self.rated_power_watts <= 0:
            raise ValueError(f"{self.description}: rated_power_watts must be > 0")
        if self.quantity < 0:
            raise ValueError(f"{self.description}: quantity must be >= 0")

    @property
    def connected_w(self) -> float:
        return self.rated_power_watts * self.quantity


@dataclass(frozen=True)
class ElectricalRoom:
    name: str
    room_type: str
    area_m2: float
    floor: int
    is_wet_room: bool
    loads: List[LoadEntry] = field(default_factory=list)
    cable_distance_m: Optional[float] = None
    index: int = 0                     # position in the request; names may repeat


@dataclass(frozen=True)
class CableSizingResult:
    description: str
    area: Optional[str]
    recommended_cross_section: float
    min_cross_section_current: float
    min_cross_section_voltage_drop: float
    design_current_a: float
    cable_capacity_a: float
    voltage_drop_v: float
    voltage_drop_percent: float
    derating_factor: float
    cable_designation: str
    cost_per_meter: float
    length_m: float
    total_cable_cost: float
    compliant: bool
    warnings: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class LoadAnalysis:
    total_connected_load_w: int
    total_demand_load_w: int
    total_demand_current_a: float
    phase_loads_w: Dict[int, int]
    phase_imbalance_percent: float
    recommended_main_breaker_a: int
    recommended_supply_fuse_a: int
    supply_adequate: bool
    category_breakdown: List[dict]
    warnings: List[str]


@dataclass(frozen=True)
class Circuit:
    position: int
    description: str
    breaker_type: Literal["MCB", "RCBO"]
    rating_a: int
    characteristic: Literal["B", "C"]
    phase: int
    cable_cross_section: float
    load_category: str
    area: str
    connected_load_w: int
    cable_type: str = "PVT"
    rcd_type: Optional[str] = None
    rcd_sensitivity_ma: Optional[int] = None
    point_count: Optional[int] = None
    room_index: int = 0


@dataclass(frozen=True)
class RCDGroup:
    description: str
    rcd_type: str
    sensitivity_ma: int
    rating_a: int
    circuits: tuple
    modules: int = 2


@dataclass(frozen=True)
class PanelCostLine:
    item: str
    quantity: int
    unit_cost: float
    total_cost: float


@dataclass(frozen=True)
class PanelConfiguration:
    phase_type: PhaseType
    total_modules: int
    modules_used: int
    spare_capacity_percent: int
    main_switch_rating_a: int
    circuits: List[Circuit]
    rcd_groups: List[RCDGroup]
    surge_protection_required: bool
    estimated_material_cost: float
    estimated_time_seconds: int
    cost_breakdown: List[PanelCostLine]
    compliance_notes: List[str]
    warnings: List[str]

    def is_rcd_protected(self, circuit: Circuit, max_sensitivity_ma: Optional[int] = None) -> bool:
        """True when the circuit has its own RCBO or sits in an RCD group."""
        if circuit.breaker_type == "RCBO" and circuit.rcd_sensitivity_ma is not None:
            if max_sensitivity_ma is None or circuit.rcd_sensitivity_ma <= max_sensitivity_ma:
                return True
        for group in self.rcd_groups:
            if circuit.position in group.circuits:
                if max_sensitivity_ma is None or group.sensitivity_ma <= max_sensitivity_ma:
                    return True
        return False


@dataclass(frozen=True)
class ElectricalProjectResult:
    load_analysis: LoadAnalysis
    panel: PanelConfiguration
    cable_sizing: List[CableSizingResult]
    compliance: ComplianceReport
    room_summaries: List[dict]
    total_cable_meters: int
    total_electrical_material_cost: int
    total_electrical_labor_seconds: int
    warnings: List[str]

    @property
    def compliant(self) -> bool:
        return self.compliance.compliant

    @property
    def circuit_count(self) -> int:
        return len(self.panel.circuits)

    def to_dict(self) -> dict:
        return asdict(self)


# ---------------------------------------------------------------------------
# 1. Loads from points
# ---------------------------------------------------------------------------

def synthesize_loads(room: RoomEstimationInput) -> List[LoadEntry]:
    """Turn a room's point counts into load entries; zero counts add nothing."""
    points = room.points
    loads: List[LoadEntry] = []
    for kinds, category, watts, pf, continuous, label in _LOAD_TABLE:
        count = sum(points.get(k, 0) for k in kinds)
        if count <= 0:
            continue
        loads.append(LoadEntry(
            description=f"{label} {room.name}",
            category=category,
            rated_power_watts=watts,
            quantity=count,
            power_factor=pf,
            is_continuous=continuous,
        ))

    heating = points.get("floor_heating", 0)
    if heating > 0 and room.area_m2 > 0:
        loads.append(LoadEntry(
            description=f"Floor heating {room.name}",
            category="heating",
            rated_power_watts=FLOOR_HEATING_W_PER_M2 * room.area_m2,
            quantity=heating,
        ))
    return loads


def build_electrical_rooms(rooms: Iterable[RoomEstimationInput]) -> List[ElectricalRoom]:
    return [
        ElectricalRoom(
            index=i,
            name=r.name,
            room_type=r.room_type,
            area_m2=r.area_m2,
            floor=r.floor,
            is_wet_room=r.is_wet_room,
            loads=synthesize_loads(r),
            cable_distance_m=r.cable_distance_m,
        )
        for i, r in enumerate(rooms)
    ]


# ---------------------------------------------------------------------------
# 2. Cable sizing
# ---------------------------------------------------------------------------

def _voltage_drop(current: float, length: float, cross_section: float, phase: PhaseType) -> float:
    factor = 2 if phase == "1-phase" else math.sqrt(3)
    return factor * length * current * COPPER_RESISTIVITY_70C / cross_section


def _min_section_by_current(current: float, method: str, core_count: int) -> float:
    for size in CABLE_SIZES:
        capacity = current_capacity(size, method, core_count)
        if capacity and capacity >= current:
            return size
    return CABLE_SIZES[-1]


def _min_section_by_voltage_drop(
    current: float, length: float, voltage: float, phase: PhaseType, max_drop_pct: float,
) -> float:
    max_drop_v = max_drop_pct / 100 * voltage
    for size in CABLE_SIZES:
        if _voltage_drop(current, length, size, phase) <= max_drop_v:
            return size
    return CABLE_SIZES[-1]


def calculate_cable_size(
    power_watts: float,
    length_m: float,
    voltage: float = SINGLE_PHASE_V,
    phase: PhaseType = "1-phase",
    power_factor: float = 1.0,
    installation_method: str = "B2",
    core_count: int = 3,
    ambient_temp_c: float = 30,
    grouped_cables: int = 1,
    cable_type: str = "PVT",
    max_voltage_drop_percent: float = 4.0,
    description: str = "",
    area: Optional[str] = None,
) -> CableSizingResult:
    """
    Smallest standard cross-section satisfying both ampacity (after
    temperature and grouping derating) and the voltage-drop limit.
    """
    warnings: List[str] = []
    if phase == "1-phase":
        design_current = power_watts / (voltage * power_factor)
    else:
        design_current = power_watts / (math.sqrt(3) * voltage * power_factor)

    derating = temperature_correction(ambient_temp_c) * grouping_correction(grouped_cables)
    by_current = _min_section_by_current(design_current / derating, installation_method, core_count)
    by_drop = _min_section_by_voltage_drop(
        design_current, length_m, voltage, phase, max_voltage_drop_percent
    )
    recommended = max(by_current, by_drop)

    capacity = current_capacity(recommended, installation_method, core_count) * derating
    drop_v = _voltage_drop(design_current, length_m, recommended, phase)
    drop_pct = drop_v / voltage * 100

    cost_per_meter = cable_cost_per_meter(cable_type, recommended, core_count)
    cores = f"2x{recommended:g}" if core_count == 2 else f"3G{recommended:g}"

    compliant = True
    if drop_pct > max_voltage_drop_percent:
        warnings.append(
            f"Voltage drop {drop_pct:.1f}% exceeds the {max_voltage_drop_percent:g}% limit"
        )
        compliant = False
    if capacity < design_current:
        warnings.append(
            f"Cable capacity {capacity:.1f} A is below the design current {design_current:.1f} A"
        )
        compliant = False
    if design_current > 32 and phase == "1-phase":
        warnings.append("Load above 32 A should be considered for a 3-phase connection")
    if grouped_cables > 6:
        warnings.append("Many cables bundled together - consider separate routes for cooling")

    return CableSizingResult(
        description=description,
        area=area,
        recommended_cross_section=recommended,
        min_cross_section_current=by_current,
        min_cross_section_voltage_drop=by_drop,
        design_current_a=round(design_current, 2),
        cable_capacity_a=round(capacity, 2),
        voltage_drop_v=round(drop_v, 2),
        voltage_drop_percent=round(drop_pct, 2),
        derating_factor=round(derating, 3),
        cable_designation=f"{cable_type} {cores}",
        cost_per_meter=cost_per_meter,
        length_m=round(length_m, 2),
        total_cable_cost=round(cost_per_meter * length_m, 2),
        compliant=compliant,
        warnings=warnings,
    )


def estimate_cable_length(room: Optional[ElectricalRoom], max_run_m: float = 50.0) -> float:
    """Run from the panel: room diagonal routing + 3 m per floor + 3 m entry."""
    if room is None:
        return DEFAULT_CABLE_LENGTH_M
    if room.cable_distance_m is not None:
        return room.cable_distance_m
    estimated = math.sqrt(room.area_m2) * 2 + room.floor * 3 + 3
    return min(estimated, max_run_m)


# ---------------------------------------------------------------------------
# 3. Load analysis
# ---------------------------------------------------------------------------

def _least_loaded_phase(tracker: Dict[int, float]) -> int:
    return min((1, 2, 3), key=lambda p: tracker[p])


def calculate_load(
    loads: Sequence[LoadEntry],
    phase: PhaseType,
    building_type: str = "residential",
    existing_main_fuse_a: Optional[float] = None,
) -> LoadAnalysis:
    """Connected vs. demand load, phase distribution and main breaker sizing."""
    diversity = DIVERSITY_COMMERCIAL if building_type == "commercial" else DIVERSITY_RESIDENTIAL
    warnings: List[str] = []
    phase_loads: Dict[int, float] = {1: 0.0, 2: 0.0, 3: 0.0}
    categories: Dict[str, Dict[str, float]] = {}
    total_connected = total_demand = 0.0

    for load in loads:
        connected = load.connected_w
        factor = load.demand_factor if load.demand_factor is not None else diversity.get(load.category, 0.5)
        demand = connected * factor
        total_connected += connected
        total_demand += demand

        cat = categories.setdefault(load.category, {"connected": 0.0, "count": 0})
        cat["connected"] += connected
        cat["count"] += load.quantity

        if phase == "3-phase":
            assigned = load.phase_assignment or _least_loaded_phase(phase_loads)
            phase_loads[assigned] += demand
        else:
            phase_loads[1] += demand

    imbalance = 0.0
    if phase == "3-phase":
        avg = sum(phase_loads.values()) / 3
        if avg > 0:
            imbalance = max(abs(p - avg) for p in phase_loads.values()) / avg * 100

    if phase == "1-phase":
        current = total_demand / SINGLE_PHASE_V
    else:
        current = total_demand / (math.sqrt(3) * THREE_PHASE_V)

    main_breaker = select_breaker_rating(current)
    supply_fuse = next_breaker_rating(main_breaker)

    supply_adequate = True
    if existing_main_fuse_a is not None:
        supply_adequate = current <= existing_main_fuse_a
        if not supply_adequate:
            warnings.append(
                f"Existing main fuse {existing_main_fuse_a:g} A is insufficient "
                f"(demand {current:.0f} A) - upgrade required"
            )

    if imbalance > 20:
        warnings.append(f"Phase loads are {imbalance:.0f}% unbalanced - consider redistributing")
    if current > 63 and phase == "1-phase":
        warnings.append("Total load requires a 3-phase supply")
    if total_demand > 17000 and phase == "1-phase":
        warnings.append("Total demand exceeds a typical 1-phase connection")

    breakdown = [
        {
            "category": name,
            "connected_load_w": round(data["connected"]),
            "demand_factor": diversity.get(name, 0.5),
            "demand_load_w": round(data["connected"] * diversity.get(name, 0.5)),
            "count": int(data["count"]),
        }
        for name, data in categories.items()
    ]

    return LoadAnalysis(
        total_connected_load_w=round(total_connected),
        total_demand_load_w=round(total_demand),
        total_demand_current_a=round(current, 2),
        phase_loads_w={p: round(w) for p, w in phase_loads.items()},
        phase_imbalance_percent=round(imbalance, 1),
        recommended_main_breaker_a=main_breaker,
        recommended_supply_fuse_a=supply_fuse,
        supply_adequate=supply_adequate,
        category_breakdown=breakdown,
        warnings=warnings,
    )


# ---------------------------------------------------------------------------
# 4. Panel layout
# ---------------------------------------------------------------------------

class _CircuitBuilder:
    """Allocates panel positions and balances circuits across phases."""

    def __init__(self, phase: PhaseType):
        self.phase = phase
        self.circuits: List[Circuit] = []
        self._tracker: Dict[int, float] = {1: 0.0, 2: 0.0, 3: 0.0}

    def add(self, load_w: float, **kwargs) -> Circuit:
        ph = _least_loaded_phase(self._tracker) if self.phase == "3-phase" else 1
        self._tracker[ph] += load_w
        circuit = Circuit(
            position=len(self.circuits) + 1,
            phase=ph,
            connected_load_w=round(load_w),
            **kwargs,
        )
        self.circuits.append(circuit)
        return circuit


def _numbered(label: str, i: int, n: int) -> str:
    return f"{label} ({i + 1}/{n})" if n > 1 else label


def _room_circuits(builder: _CircuitBuilder, room: ElectricalRoom, notes: List[str]) -> None:
    lighting = [l for l in room.loads if l.category == "lighting"]
    outlets = [l for l in room.loads if l.category == "socket_outlet"]
    dedicated = [l for l in room.loads if l.category in ("fixed_appliance", "cooking", "ev_charger")]
    heating = [l for l in room.loads if l.category == "heating"]
    other = [l for l in room.loads if l.category in ("motor", "data_equipment")]

    if lighting:
        total_w = sum(l.connected_w for l in lighting)
        count = max(1, math.ceil(total_w / LIGHTING_CIRCUIT_MAX_W))
        points = math.ceil(sum(l.quantity for l in lighting) / count)
        for i in range(count):
            builder.add(
                total_w / count,
                description=_numbered(f"Lighting {room.name}", i, count),
                breaker_type="MCB", rating_a=10, characteristic="B",
                cable_cross_section=1.5, load_category="lighting",
                area=room.name, room_index=room.index, point_count=points,
            )

    if outlets:
        n_outlets = sum(l.quantity for l in outlets)
        total_w = sum(l.connected_w for l in outlets)
        count = max(
            1,
            math.ceil(n_outlets / OUTLETS_PER_CIRCUIT),
            math.ceil(total_w / OUTLET_CIRCUIT_MAX_W),
        )
        points = math.ceil(n_outlets / count)
        for i in range(count):
            builder.add(
                total_w / count,
                description=_numbered(f"Sockets {room.name}", i, count),
                breaker_type="MCB", rating_a=16, characteristic="B",
                cable_cross_section=2.5, load_category="socket_outlet",
                area=room.name, room_index=room.index, point_count=points,
            )

    for load in dedicated:
        is_ev = load.category == "ev_charger"
        rating = select_breaker_rating(load.connected_w / SINGLE_PHASE_V)
        builder.add(
            load.connected_w,
            description=f"{load.description}",
            breaker_type="RCBO" if is_ev else "MCB",
            rating_a=rating,
            characteristic="B",
            cable_cross_section=select_cable_for_breaker(rating),
            load_category=load.category,
            area=room.name, room_index=room.index,
            rcd_type="B" if is_ev else None,
            rcd_sensitivity_ma=30 if is_ev else None,
        )
        if is_ev:
            notes.append("EV charger requires a type B RCD (30 mA) per DS/HD 60364-7-722")

    for load in heating:
        rating = select_breaker_rating(load.connected_w / SINGLE_PHASE_V)
        builder.add(
            load.connected_w,
            description=f"{load.description}",
            breaker_type="MCB", rating_a=rating, characteristic="B",
            cable_cross_section=select_cable_for_breaker(rating),
            load_category="heating", area=room.name, room_index=room.index,
        )

    for load in other:
        builder.add(
            load.connected_w,
            description=f"{load.description}",
            breaker_type="MCB", rating_a=16,
            characteristic="C" if load.category == "motor" else "B",
            cable_cross_section=2.5, load_category=load.category,
            area=room.name, room_index=room.index,
        )

    if room.is_wet_room:
        notes.append(f"{room.name}: all circuits require a 30 mA RCD per DS/HD 60364-7-701")


def build_rcd_groups(
    circuits: Sequence[Circuit],
    wet_rooms: Iterable[int],
    rcd_components: int,
) -> List[RCDGroup]:
    """
    Group MCB circuits under shared 30 mA type A RCDs, at most six circuits
    per device, using only as many devices as the job includes.  Socket and
    wet-room circuits are covered first.  ``wet_rooms`` holds room indices.
    """
    if rcd_components <= 0:
        return []
    wet = set(wet_rooms)
    unprotected = [c for c in circuits if c.breaker_type == "MCB"]
    priority = [c for c in unprotected if c.load_category == "socket_outlet" or c.room_index in wet]
    rest = [c for c in unprotected if c not in priority]

    groups: List[RCDGroup] = []
    for batch_source, label in ((priority, "sockets / wet rooms"), (rest, "lighting / other")):
        for i in range(0, len(batch_source), CIRCUITS_PER_RCD_GROUP):
            if len(groups) >= rcd_components:
                return groups
            batch = batch_source[i:i + CIRCUITS_PER_RCD_GROUP]
            load_w = sum(c.connected_load_w for c in batch)
            rating = max(select_breaker_rating(load_w / SINGLE_PHASE_V * 0.5), 40)
            groups.append(RCDGroup(
                description=f"RCD {label} (group {len(groups) + 1})",
                rcd_type="A",
                sensitivity_ma=30,
                rating_a=rating,
                circuits=tuple(c.position for c in batch),
            ))
    return groups


def _panel_costs(
    circuits: Sequence[Circuit],
    rcd_groups: Sequence[RCDGroup],
    total_modules: int,
    surge: bool,
    main_switch_a: int,
) -> List[PanelCostLine]:
    lines: List[PanelCostLine] = []
    enclosure = PANEL_COSTS.get(total_modules, 1500)
    lines.append(PanelCostLine(f"Enclosure {total_modules} modules", 1, enclosure, enclosure))

    main_cost = 350 + (200 if main_switch_a > 40 else 0)
    lines.append(PanelCostLine(f"Main switch {main_switch_a} A", 1, main_cost, main_cost))

    counts: Dict[str, List] = {}
    for c in circuits:
        key = f"{c.breaker_type} {c.rating_a}A {c.characteristic}"
        entry = counts.setdefault(key, [0, breaker_cost(c.breaker_type, c.rating_a)])
        entry[0] += 1
    for key, (qty, unit) in counts.items():
        lines.append(PanelCostLine(key, qty, unit, qty * unit))

    for group in rcd_groups:
        unit = rcd_cost(group.rcd_type, group.rating_a)
        lines.append(PanelCostLine(group.description, 1, unit, unit))

    if surge:
        unit = SURGE_PROTECTION_COST["Type2"]
        lines.append(PanelCostLine("Surge protection type 2", 1, unit, unit))

    misc = round(len(circuits) * 25 + 200)
    lines.append(PanelCostLine("Busbars, terminals, labelling", 1, misc, misc))
    return lines


def configure_panel(
    rooms: Sequence[ElectricalRoom],
    phase: PhaseType,
    is_renovation: bool = False,
    rcd_components: int = 0,
    surge_protection: bool = True,
) -> PanelConfiguration:
    """Lay out circuits room by room, add RCD groups and size the enclosure."""
    builder = _CircuitBuilder(phase)
    notes: List[str] = []
    warnings: List[str] = []

    for room in rooms:
        if room.loads:
            _room_circuits(builder, room, notes)
    circuits = builder.circuits

    rcd_groups = build_rcd_groups(
        circuits, (r.index for r in rooms if r.is_wet_room), rcd_components
    )

    modules = 4 if phase == "3-phase" else 2
    modules += sum(g.modules for g in rcd_groups)
    modules += sum(2 if c.breaker_type == "RCBO" else 1 for c in circuits)
    if surge_protection:
        modules += SURGE_MODULES

    min_modules = math.ceil(modules * PANEL_SPARE_FACTOR)
    total_modules = next((s for s in PANEL_SIZES if s >= min_modules), PANEL_SIZES[-1])

    total_load = sum(c.connected_load_w for c in circuits)
    if phase == "1-phase":
        main_current = total_load / SINGLE_PHASE_V
    else:
        main_current = total_load / (math.sqrt(3) * THREE_PHASE_V)
    main_switch = select_breaker_rating(main_current * 0.6)

    costs = _panel_costs(circuits, rcd_groups, total_modules, surge_protection, main_switch)

    if is_renovation:
        notes.append("Renovation: the existing installation must be checked for compatibility")
        warnings.append("On renovation, check existing RCDs and earthing before work starts")

    spare = round((total_modules - modules) / total_modules * 100)
    if spare < 15:
        warnings.append("Low spare capacity in the panel - consider a larger enclosure")

    return PanelConfiguration(
        phase_type=phase,
        total_modules=total_modules,
        modules_used=modules,
        spare_capacity_percent=spare,
        main_switch_rating_a=main_switch,
        circuits=list(circuits),
        rcd_groups=rcd_groups,
        surge_protection_required=surge_protection,
        estimated_material_cost=sum(line.total_cost for line in costs),
        estimated_time_seconds=PANEL_BASE_TIME_S + len(circuits) * PER_CIRCUIT_TIME_S,
        cost_breakdown=costs,
        compliance_notes=notes,
        warnings=warnings,
    )


# ---------------------------------------------------------------------------
# 5. Full project
# ---------------------------------------------------------------------------

def _dedupe(items: Iterable[str]) -> List[str]:
    return list(dict.fromkeys(items))


@timed
def calculate_electrical_project(
    rooms: Sequence[RoomEstimationInput],
    supply_phase: PhaseType,
    building_type: str = "residential",
    is_renovation: bool = False,
    settings: Optional[EstimationSettings] = None,
    existing_main_fuse_a: Optional[float] = None,
) -> ElectricalProjectResult:
    """Loads → panel → cable sizing → compliance for a whole project."""
    cfg = settings or EstimationSettings()
    e_rooms = build_electrical_rooms(rooms)
    rcd_components = sum(r.points.get(RCD_POINT_KIND, 0) for r in rooms)
    warnings: List[str] = []

    loads = [load for room in e_rooms for load in room.loads]
    analysis = calculate_load(loads, supply_phase, building_type, existing_main_fuse_a)
    warnings.extend(analysis.warnings)

    panel = configure_panel(e_rooms, supply_phase, is_renovation, rcd_components)
    warnings.extend(panel.warnings)

    rooms_by_index = {r.index: r for r in e_rooms}
    sizing: List[CableSizingResult] = []
    for circuit in panel.circuits:
        room = rooms_by_index.get(circuit.room_index)
        sizing.append(calculate_cable_size(
            power_watts=circuit.connected_load_w,
            length_m=estimate_cable_length(room, cfg.max_cable_run_m),
            power_factor=0.8 if circuit.load_category == "motor" else 1.0,
            installation_method=cfg.installation_method,
            cable_type=circuit.cable_type,
            max_voltage_drop_percent=cfg.max_voltage_drop_percent,
            description=circuit.description,
            area=circuit.area,
        ))

    compliance = check_compliance(panel, sizing, e_rooms)
    warnings.extend(f"{i.description} ({i.standard_ref})" for i in compliance.warning_issues)

    summaries = []
    for room in e_rooms:
        pairs = [(c, s) for c, s in zip(panel.circuits, sizing) if c.room_index == room.index]
        room_circuits = [c for c, _ in pairs]
        room_cables = [s for _, s in pairs]
        summaries.append({
            "room_name": room.name,
            "room_type": room.room_type,
            "total_load_w": sum(c.connected_load_w for c in room_circuits),
            "circuit_count": len(room_circuits),
            "cable_meters": round(sum(s.length_m for s in room_cables), 2),
            "material_cost": round(sum(s.total_cable_cost for s in room_cables), 2),
            "labor_time_seconds": len(room_circuits) * PER_CIRCUIT_TIME_S,
        })

    cable_meters = sum(s.length_m for s in sizing)
    material = panel.estimated_material_cost + sum(s.total_cable_cost for s in sizing)
    labor = panel.estimated_time_seconds + sum(s["labor_time_seconds"] for s in summaries)

    logger.info(
        f"Electrical: {len(panel.circuits)} circuits, {len(panel.rcd_groups)} RCD groups, "
        f"compliant={compliance.compliant}"
    )

    return ElectricalProjectResult(
        load_analysis=analysis,
        panel=panel,
        cable_sizing=sizing,
        compliance=compliance,
        room_summaries=summaries,
        total_cable_meters=round(cable_meters),
        total_electrical_material_cost=round(material),
        total_electrical_labor_seconds=labor,
        warnings=_dedupe(warnings),
    )


# ---------------------------------------------------------------------------
# Stage result
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ElectricalAvailable:
    result: ElectricalProjectResult


@dataclass(frozen=True)
class ElectricalUnavailable:
    reason: str


ElectricalStageResult = Union[ElectricalAvailable, ElectricalUnavailable]
