"""
Electrical Compliance — DS/HD 60364 checks over a configured panel.

E1: Protection against electric shock (60364-4-41)
      every socket circuit ≤ 32 A must be RCD protected
E2: Wet rooms (60364-7-701)
      every circuit serving a bathroom / outdoor / utility area needs ≤ 30 mA RCD
E3: EV charging (60364-7-722)
      charger circuits need a type B RCD
E4: Overcurrent coordination (60364-4-43)
      conductor ampacity (B2, 3-core) must be ≥ breaker rating
E5: Voltage drop, phase balance, spare capacity, surge protection (advisory)

Only ``error`` issues make a design non-compliant; warnings and info never do.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field, asdict
from typing import TYPE_CHECKING, List, Literal, Optional

from app.services.electrical_tables import current_capacity, select_cable_for_breaker

if TYPE_CHECKING:
    from app.services.electrical_engine import CableSizingResult, ElectricalRoom, PanelConfiguration

logger = logging.getLogger("elinstall-compliance")

Severity = Literal["error", "warning", "info"]

# ── Limits ───────────────────────────────────────────────────────────────────
SOCKET_RCD_MAX_RATING_A = 32
WET_ROOM_MAX_SENSITIVITY_MA = 30
MAX_PHASE_IMBALANCE_PCT = 25.0
MIN_SPARE_CAPACITY_PCT = 10.0

STANDARDS_CHECKED = [
    "DS/HD 60364-3 (load calculation)",
    "DS/HD 60364-4-41 (protection against electric shock)",
    "DS/HD 60364-4-43 (overcurrent protection)",
    "DS/HD 60364-4-44 (overvoltage protection)",
    "DS/HD 60364-5-52 (wiring systems)",
    "DS/HD 60364-7-701 (locations containing a bath or shower)",
    "DS/HD 60364-7-722 (EV supply)",
]


@dataclass(frozen=True)
class ComplianceIssue:
    code: str
    severity: Severity
    description: str
    standard_ref: str
    affected_area: Optional[str] = None
    recommendation: str = ""


@dataclass(frozen=True)
class ComplianceReport:
    compliant: bool
    issues: List[ComplianceIssue]
    errors: int
    warnings: int
    info: int
    standards_checked: List[str] = field(default_factory=lambda: list(STANDARDS_CHECKED))

    @property
    def error_issues(self) -> List[ComplianceIssue]:
        return [i for i in self.issues if i.severity == "error"]

    @property
    def warning_issues(self) -> List[ComplianceIssue]:
        return [i for i in self.issues if i.severity == "warning"]

    def to_dict(self) -> dict:
        return asdict(self)


def build_report(issues: List[ComplianceIssue]) -> ComplianceReport:
    errors = sum(1 for i in issues if i.severity == "error")
    warnings = sum(1 for i in issues if i.severity == "warning")
    info = sum(1 for i in issues if i.severity == "info")
    return ComplianceReport(
        compliant=errors == 0,
        issues=list(issues),
        errors=errors,
        warnings=warnings,
        info=info,
    )


# ── E1–E3 Residual-current protection ────────────────────────────────────────

def check_socket_rcd(panel: "PanelConfiguration") -> List[ComplianceIssue]:
    issues = []
    for circuit in panel.circuits:
        if circuit.load_category != "socket_outlet" or circuit.rating_a > SOCKET_RCD_MAX_RATING_A:
            continue
        if not panel.is_rcd_protected(circuit):
            issues.append(ComplianceIssue(
                code="RCD_SOCKET",
                severity="error",
                standard_ref="DS/HD 60364-4-41 §411.3.3",
                description=f'Socket circuit "{circuit.description}" has no RCD protection',
                affected_area=circuit.area,
                recommendation="Add 30 mA RCD protection to every socket circuit up to 32 A",
            ))
    return issues


def check_wet_rooms(panel: "PanelConfiguration", rooms: List["ElectricalRoom"]) -> List[ComplianceIssue]:
    issues = []
    for room in rooms:
        if not room.is_wet_room:
            continue
        for circuit in panel.circuits:
            if circuit.room_index != room.index:
                continue
            if not panel.is_rcd_protected(circuit, max_sensitivity_ma=WET_ROOM_MAX_SENSITIVITY_MA):
                issues.append(ComplianceIssue(
                    code="RCD_WET_ROOM",
                    severity="error",
                    standard_ref="DS/HD 60364-7-701 §701.411.3.3",
                    description=f'Circuit "{circuit.description}" in wet room "{room.name}" has no 30 mA RCD',
                    affected_area=room.name,
                    recommendation="All circuits in wet rooms need RCD protection of 30 mA or less",
                ))
    return issues


def check_ev_rcd_type(panel: "PanelConfiguration") -> List[ComplianceIssue]:
    issues = []
    for circuit in panel.circuits:
        if circuit.load_category == "ev_charger" and circuit.rcd_type != "B":
            issues.append(ComplianceIssue(
                code="EV_RCD_TYPE",
                severity="error",
                standard_ref="DS/HD 60364-7-722 §722.531.3.101",
                description=f'EV charger circuit "{circuit.description}" requires a type B RCD',
                affected_area=circuit.area,
                recommendation="Use a type B RCD (or type A with DC fault detection in the charger)",
            ))
    return issues


# ── E4 Cable / breaker coordination ──────────────────────────────────────────

def check_cable_breaker(panel: "PanelConfiguration") -> List[ComplianceIssue]:
    issues = []
    for circuit in panel.circuits:
        iz = current_capacity(circuit.cable_cross_section, "B2", 3)
        if iz < circuit.rating_a:
            issues.append(ComplianceIssue(
                code="CABLE_BREAKER_MISMATCH",
                severity="error",
                standard_ref="DS/HD 60364-4-43 §433.1",
                description=(
                    f"Cable {circuit.cable_cross_section:g} mm² ({iz:g} A) cannot be protected "
                    f"by a {circuit.rating_a} A breaker"
                ),
                affected_area=circuit.area,
                recommendation=(
                    f"Use at least {select_cable_for_breaker(circuit.rating_a):g} mm² cable "
                    "or reduce the breaker rating"
                ),
            ))
    return issues


# ── E5 Advisory checks ───────────────────────────────────────────────────────

def check_voltage_drop(cable_sizing: List["CableSizingResult"]) -> List[ComplianceIssue]:
    return [
        ComplianceIssue(
            code="VOLTAGE_DROP",
            severity="warning",
            standard_ref="DS/HD 60364-5-52 §525",
            description=f"Voltage drop {cable.voltage_drop_percent}% exceeds the recommended limit",
            affected_area=cable.area,
            recommendation="Increase the cross-section or shorten the cable run",
        )
        for cable in cable_sizing
        if not cable.compliant
    ]


def check_phase_balance(panel: "PanelConfiguration") -> List[ComplianceIssue]:
    if panel.phase_type != "3-phase":
        return []
    loads = [0.0, 0.0, 0.0]
    for circuit in panel.circuits:
        loads[circuit.phase - 1] += circuit.connected_load_w
    avg = sum(loads) / 3
    if avg <= 0:
        return []
    imbalance = max(abs(p - avg) / avg for p in loads) * 100
    if imbalance <= MAX_PHASE_IMBALANCE_PCT:
        return []
    return [ComplianceIssue(
        code="PHASE_IMBALANCE",
        severity="warning",
        standard_ref="DS/HD 60364-5-52",
        description=f"Phase load imbalance of {imbalance:.0f}% (recommended max 20%)",
        recommendation="Redistribute circuits across the phases",
    )]


def check_spare_capacity(panel: "PanelConfiguration") -> List[ComplianceIssue]:
    if panel.spare_capacity_percent >= MIN_SPARE_CAPACITY_PCT:
        return []
    return [ComplianceIssue(
        code="SPARE_CAPACITY",
        severity="warning",
        standard_ref="good practice",
        description=f"Only {panel.spare_capacity_percent}% free capacity in the panel",
        recommendation="Consider a larger enclosure (20% spare is recommended)",
    )]


def check_surge_protection(panel: "PanelConfiguration") -> List[ComplianceIssue]:
    if panel.surge_protection_required:
        return []
    return [ComplianceIssue(
        code="SURGE_PROTECTION",
        severity="info",
        standard_ref="DS/HD 60364-4-44 §443",
        description="Surge protection is recommended for all new installations",
        recommendation="Install type 2 surge protection in the main panel",
    )]


def check_compliance(
    panel: "PanelConfiguration",
    cable_sizing: List["CableSizingResult"],
    rooms: List["ElectricalRoom"],
) -> ComplianceReport:
    """Run every check and fold the issues into a report."""
    issues: List[ComplianceIssue] = []
    issues.extend(check_socket_rcd(panel))
    issues.extend(check_wet_rooms(panel, rooms))
    issues.extend(check_ev_rcd_type(panel))
    issues.extend(check_cable_breaker(panel))
    issues.extend(check_voltage_drop(cable_sizing))
    issues.extend(check_phase_balance(panel))
    issues.extend(check_spare_capacity(panel))
    issues.extend(check_surge_protection(panel))

    report = build_report(issues)
    logger.info(
        f"Compliance: {report.errors} errors, {report.warnings} warnings, {report.info} info "
        f"({len(panel.circuits)} circuits)"
    )
    return report
