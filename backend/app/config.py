"""
Estimation defaults — single source of truth for every numeric default the
estimation pipeline uses.

The underscore constants are only read as the default values of
``EstimationSettings``.  ``minimum_margin_percentage`` is the line minimum
for standard-tier customers, and ``discount_percentage`` is the default discount when the
request names none.  Engines receive a settings instance from the
orchestrator, so one process can run estimates with different rates side by
side.  The DB traffic-light thresholds are fixed and imported directly.

Environment overrides (all optional):
    ESTIMATOR_HOURLY_RATE, ESTIMATOR_MARGIN_PCT, ESTIMATOR_MINIMUM_MARGIN_PCT,
    ESTIMATOR_OVERHEAD_PCT, ESTIMATOR_RISK_PCT, ESTIMATOR_VAT_PCT, ESTIMATOR_DISCOUNT_PCT,
    ESTIMATOR_REFERENCE_YEAR, ESTIMATOR_INSTALLATION_METHOD
"""
from __future__ import annotations

import os
import logging
from dataclasses import dataclass, field, replace
from datetime import date
from typing import Optional

logger = logging.getLogger("elinstall-config")


# ── Labour & pricing ─────────────────────────────────────────────────────────
_DEFAULT_HOURLY_RATE: float = 495.0            # electrician, DKK/h
_DEFAULT_MARGIN_PCT: float = 35.0              # target DB
_DEFAULT_PRODUCT_MARGIN_PCT: float = 20.0
_DEFAULT_MATERIAL_MARGIN_PCT: float = 25.0
_DEFAULT_MINIMUM_MARGIN_PCT: float = 20.0
_DEFAULT_OVERHEAD_PCT: float = 12.0
_DEFAULT_RISK_PCT: float = 3.0
_DEFAULT_VAT_PCT: float = 25.0
_DEFAULT_DISCOUNT_PCT: float = 0.0

# ── DB traffic light ─────────────────────────────────────────────────────────
DB_THRESHOLD_GREEN: float = 35.0
DB_THRESHOLD_YELLOW: float = 20.0
DB_THRESHOLD_RED: float = 10.0

# ── Site & cabling ───────────────────────────────────────────────────────────
_DEFAULT_CEILING_HEIGHT_M: float = 2.5
_DEFAULT_CABLE_WASTE_FACTOR: float = 1.10
_DEFAULT_MATERIAL_WASTE: float = 0.05          # fraction, used when no global factor row
_DEFAULT_INDIRECT_TIME: float = 0.15
_DEFAULT_PERSONAL_TIME: float = 0.08
_DEFAULT_MAX_CABLE_RUN_M: float = 50.0
_DEFAULT_INSTALLATION_METHOD: str = "B2"
_DEFAULT_MAX_VOLTAGE_DROP_PCT: float = 4.0

# ── Other project costs ──────────────────────────────────────────────────────
_DEFAULT_TRANSPORT_PER_DAY: float = 350.0
_DEFAULT_SPECIAL_TOOL_RENTAL: float = 500.0
_WORKDAY_HOURS: float = 8.0


def _current_year() -> int:
    return date.today().year


@dataclass(frozen=True)
class EstimationSettings:
    """Explicit configuration threaded through every estimation stage."""
    hourly_rate: float = _DEFAULT_HOURLY_RATE
    margin_percentage: float = _DEFAULT_MARGIN_PCT
    product_margin_percentage: float = _DEFAULT_PRODUCT_MARGIN_PCT
    material_margin_percentage: float = _DEFAULT_MATERIAL_MARGIN_PCT
    minimum_margin_percentage: float = _DEFAULT_MINIMUM_MARGIN_PCT
    overhead_percentage: float = _DEFAULT_OVERHEAD_PCT
    risk_percentage: float = _DEFAULT_RISK_PCT
    vat_percentage: float = _DEFAULT_VAT_PCT
    discount_percentage: float = _DEFAULT_DISCOUNT_PCT

    default_ceiling_height_m: float = _DEFAULT_CEILING_HEIGHT_M
    cable_waste_factor: float = _DEFAULT_CABLE_WASTE_FACTOR
    material_waste: float = _DEFAULT_MATERIAL_WASTE
    indirect_time: float = _DEFAULT_INDIRECT_TIME
    personal_time: float = _DEFAULT_PERSONAL_TIME
    max_cable_run_m: float = _DEFAULT_MAX_CABLE_RUN_M
    installation_method: str = _DEFAULT_INSTALLATION_METHOD
    max_voltage_drop_percent: float = _DEFAULT_MAX_VOLTAGE_DROP_PCT

    transport_per_day: float = _DEFAULT_TRANSPORT_PER_DAY
    special_tool_rental: float = _DEFAULT_SPECIAL_TOOL_RENTAL
    workday_hours: float = _WORKDAY_HOURS

    # Building age is measured against this year; resolved once at load time
    reference_year: int = field(default_factory=_current_year)

    def with_overrides(self, **overrides) -> "EstimationSettings":
        """Return a copy with the non-None overrides applied."""
        clean = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **clean) if clean else self


def _env_float(name: str) -> Optional[float]:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return None
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"Ignoring non-numeric {name}={raw!r}")
        return None


def load_settings() -> EstimationSettings:
    """Build settings from the defaults plus any ESTIMATOR_* environment overrides."""
    year = _env_float("ESTIMATOR_REFERENCE_YEAR")
    return EstimationSettings().with_overrides(
        hourly_rate=_env_float("ESTIMATOR_HOURLY_RATE"),
        margin_percentage=_env_float("ESTIMATOR_MARGIN_PCT"),
        minimum_margin_percentage=_env_float("ESTIMATOR_MINIMUM_MARGIN_PCT"),
        overhead_percentage=_env_float("ESTIMATOR_OVERHEAD_PCT"),
        risk_percentage=_env_float("ESTIMATOR_RISK_PCT"),
        vat_percentage=_env_float("ESTIMATOR_VAT_PCT"),
        discount_percentage=_env_float("ESTIMATOR_DISCOUNT_PCT"),
        reference_year=int(year) if year is not None else None,
        installation_method=os.getenv("ESTIMATOR_INSTALLATION_METHOD") or None,
    )
