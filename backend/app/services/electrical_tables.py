"""
Electrical reference data — IEC 60364-5-52 / DS/HD 60364-5-52.

Current-carrying capacities are for PVC-insulated copper conductors at 30 °C
ambient.  Costs are approximate Danish market prices in DKK.
"""
from __future__ import annotations

from typing import Dict, Optional

# ── Standard series ──────────────────────────────────────────────────────────
CABLE_SIZES: list[float] = [1.5, 2.5, 4, 6, 10, 16, 25, 35, 50, 70, 95, 120]
BREAKER_RATINGS: list[int] = [6, 10, 13, 16, 20, 25, 32, 40, 50, 63, 80, 100]
PANEL_SIZES: list[int] = [12, 24, 36, 48, 72]

INSTALLATION_METHODS = ("A1", "A2", "B1", "B2", "C", "E", "F")

# ── Ampacity: [method][core_count][cross_section] = A ────────────────────────
_SIZES = CABLE_SIZES


def _row(*amps: float) -> Dict[float, float]:
    return dict(zip(_SIZES, amps))


CURRENT_CAPACITY: Dict[str, Dict[int, Dict[float, float]]] = {
    "A1": {
        2: _row(15.5, 21, 28, 36, 50, 68, 89, 110, 134, 171, 207, 239),
        3: _row(13.5, 18, 24, 31, 42, 57, 75, 92, 110, 139, 167, 192),
    },
    "A2": {
        2: _row(15, 20, 27, 34, 46, 62, 80, 99, 119, 151, 182, 210),
        3: _row(13, 17.5, 23, 29, 39, 52, 68, 83, 99, 125, 150, 172),
    },
    "B1": {
        2: _row(17.5, 24, 32, 41, 57, 76, 101, 125, 151, 192, 232, 269),
        3: _row(15.5, 21, 28, 36, 50, 68, 89, 110, 134, 171, 207, 239),
    },
    "B2": {
        2: _row(16.5, 23, 30, 38, 52, 69, 90, 111, 133, 168, 201, 232),
        3: _row(15, 20, 27, 34, 46, 62, 80, 99, 119, 151, 182, 210),
    },
    "C": {
        2: _row(19.5, 27, 36, 46, 63, 85, 112, 138, 168, 213, 258, 299),
        3: _row(17.5, 24, 32, 41, 57, 76, 96, 119, 144, 184, 223, 259),
    },
    "E": {
        2: _row(22, 30, 40, 51, 70, 94, 119, 148, 180, 232, 282, 328),
        3: _row(19.5, 26, 35, 44, 60, 80, 101, 126, 153, 196, 238, 276),
    },
    "F": {
        2: _row(24, 33, 45, 58, 80, 107, 138, 169, 207, 268, 328, 382),
        3: _row(22, 30, 40, 51, 70, 94, 119, 147, 179, 229, 278, 322),
    },
}

# ── Derating (Tables B.52.14 / B.52.17) ──────────────────────────────────────
TEMP_CORRECTION: Dict[int, float] = {
    10: 1.22, 15: 1.17, 20: 1.12, 25: 1.06,
    30: 1.00, 35: 0.94, 40: 0.87, 45: 0.79,
    50: 0.71, 55: 0.61, 60: 0.50,
}

GROUPING_CORRECTION: Dict[int, float] = {
    1: 1.00, 2: 0.80, 3: 0.70, 4: 0.65,
    5: 0.60, 6: 0.57, 7: 0.54, 8: 0.52,
    9: 0.50, 10: 0.48, 12: 0.45, 16: 0.41,
    20: 0.38,
}

COPPER_RESISTIVITY_70C = 0.0225    # Ω·mm²/m at PVC operating temperature

# ── Diversity (DS/HD 60364-3) ────────────────────────────────────────────────
DIVERSITY_RESIDENTIAL: Dict[str, float] = {
    "lighting": 0.85,
    "socket_outlet": 0.40,
    "fixed_appliance": 0.75,
    "motor": 0.70,
    "heating": 0.85,
    "cooking": 0.65,
    "ev_charger": 1.00,
    "data_equipment": 0.60,
}

DIVERSITY_COMMERCIAL: Dict[str, float] = {
    "lighting": 0.90,
    "socket_outlet": 0.30,
    "fixed_appliance": 0.80,
    "motor": 0.75,
    "heating": 0.80,
    "cooking": 0.70,
    "ev_charger": 0.80,
    "data_equipment": 0.70,
}

# ── Costs (DKK) ──────────────────────────────────────────────────────────────
# (cable_type, cross_section, core_count) -> DKK/m
CABLE_COSTS: Dict[tuple, float] = {
    ("PVT", 1.5, 3): 8, ("PVT", 2.5, 3): 12, ("PVT", 4, 3): 18,
    ("PVT", 6, 3): 26, ("PVT", 10, 3): 42, ("PVT", 16, 3): 65,
    ("PVT", 25, 3): 98,
    ("PVT", 1.5, 2): 6, ("PVT", 2.5, 2): 9, ("PVT", 4, 2): 14,
    ("NOIKLX", 4, 3): 35, ("NOIKLX", 6, 3): 48, ("NOIKLX", 10, 3): 72,
    ("NOIKLX", 16, 3): 105, ("NOIKLX", 25, 3): 155,
}

# (breaker_type, rating_a) -> DKK
BREAKER_COSTS: Dict[tuple, float] = {
    ("MCB", 6): 85, ("MCB", 10): 85, ("MCB", 13): 90, ("MCB", 16): 90,
    ("MCB", 20): 95, ("MCB", 25): 110, ("MCB", 32): 130, ("MCB", 40): 165,
    ("RCBO", 10): 450, ("RCBO", 16): 450, ("RCBO", 20): 480,
    ("RCBO", 25): 520, ("RCBO", 32): 850,
}

# (rcd_type, rating_a) -> DKK
RCD_COSTS: Dict[tuple, float] = {
    ("A", 25): 650, ("A", 40): 750, ("A", 63): 850, ("B", 40): 2200,
}

PANEL_COSTS: Dict[int, float] = {12: 450, 24: 750, 36: 1100, 48: 1500, 72: 2200}
SURGE_PROTECTION_COST: Dict[str, float] = {"Type2": 1200, "Type1+2": 3500, "Type1": 2500}

# Minimum conductor per breaker rating (Ib ≤ In ≤ Iz, method B2)
_CABLE_FOR_BREAKER: Dict[int, float] = {
    6: 1.5, 10: 1.5, 13: 1.5, 16: 2.5, 20: 2.5,
    25: 4, 32: 6, 40: 10, 50: 16, 63: 16, 80: 25, 100: 35,
}


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------

def temperature_correction(temp_c: float) -> float:
    """Factor for the tabulated temperature closest to ``temp_c``."""
    closest = min(sorted(TEMP_CORRECTION), key=lambda t: abs(t - temp_c))
    return TEMP_CORRECTION[closest]


def grouping_correction(count: int) -> float:
    """Factor for the largest tabulated group size not exceeding ``count``."""
    if count <= 1:
        return 1.0
    eligible = [c for c in sorted(GROUPING_CORRECTION) if c <= count]
    return GROUPING_CORRECTION[eligible[-1]]


def current_capacity(cross_section: float, method: str = "B2", core_count: int = 3) -> float:
    return CURRENT_CAPACITY.get(method, {}).get(core_count, {}).get(cross_section, 0.0)


def select_breaker_rating(current_a: float) -> int:
    for rating in BREAKER_RATINGS:
        if rating >= current_a:
            return rating
    return BREAKER_RATINGS[-1]


def next_breaker_rating(rating: int) -> int:
    idx = BREAKER_RATINGS.index(rating)
    return BREAKER_RATINGS[min(idx + 1, len(BREAKER_RATINGS) - 1)]


def select_cable_for_breaker(rating: int) -> float:
    return _CABLE_FOR_BREAKER.get(rating, 2.5)


def cable_cost_per_meter(cable_type: str, cross_section: float, core_count: int) -> float:
    cost = CABLE_COSTS.get((cable_type, cross_section, core_count))
    if cost is not None:
        return cost
    # Untabulated: ~3 DKK per mm² per metre, scaled by cable family
    type_factor = {"NOIKLX": 2.0, "PFSP": 2.5}.get(cable_type, 1.0)
    return round(cross_section * 3 * type_factor)


def breaker_cost(breaker_type: str, rating_a: int) -> float:
    cost: Optional[float] = BREAKER_COSTS.get((breaker_type, rating_a))
    if cost is not None:
        return cost
    return 480 if breaker_type == "RCBO" else 95


def rcd_cost(rcd_type: str, rating_a: int) -> float:
    return RCD_COSTS.get((rcd_type, rating_a), 750)
