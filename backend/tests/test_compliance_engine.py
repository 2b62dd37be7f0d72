"""
test_compliance_engine.py — Unit tests for DS/HD 60364 compliance checks.

Only ``error`` issues make a design non-compliant; warnings and info never do.
"""

import pytest

from app.services.compliance_engine import (
    ComplianceIssue,
    build_report,
    check_cable_breaker,
    check_compliance,
    check_ev_rcd_type,
    check_phase_balance,
    check_socket_rcd,
    check_spare_capacity,
    check_surge_protection,
    check_wet_rooms,
)
from app.services.electrical_engine import Circuit, ElectricalRoom, PanelConfiguration, RCDGroup


def _circuit(position, category="socket_outlet", area="Room", rating=16, section=2.5,
             breaker="MCB", phase=1, load=2000, rcd_type=None, sensitivity=None, room_index=0):
    return Circuit(
        position=position, description=f"{category} {position}", breaker_type=breaker,
        rating_a=rating, characteristic="B", phase=phase, cable_cross_section=section,
        load_category=category, area=area, connected_load_w=load,
        rcd_type=rcd_type, rcd_sensitivity_ma=sensitivity, room_index=room_index,
    )


def _panel(circuits, groups=(), phase_type="1-phase", spare=30, surge=True):
    return PanelConfiguration(
        phase_type=phase_type, total_modules=12, modules_used=8, spare_capacity_percent=spare,
        main_switch_rating_a=40, circuits=list(circuits), rcd_groups=list(groups),
        surge_protection_required=surge, estimated_material_cost=0.0, estimated_time_seconds=0,
        cost_breakdown=[], compliance_notes=[], warnings=[],
    )


def _group(*positions, sensitivity=30):
    return RCDGroup(description="RCD", rcd_type="A", sensitivity_ma=sensitivity,
                    rating_a=40, circuits=tuple(positions))


class TestResidualCurrentChecks:

    def test_unprotected_socket_is_error(self):
        issues = check_socket_rcd(_panel([_circuit(1)]))
        assert [i.code for i in issues] == ["RCD_SOCKET"]
        assert issues[0].severity == "error"

    def test_socket_in_rcd_group_passes(self):
        assert check_socket_rcd(_panel([_circuit(1)], [_group(1)])) == []

    def test_socket_above_32a_not_checked(self):
        assert check_socket_rcd(_panel([_circuit(1, rating=40, section=10)])) == []

    def test_wet_room_needs_30ma(self):
        room = ElectricalRoom(name="Bath", room_type="bathroom", area_m2=5, floor=0, is_wet_room=True)
        light = _circuit(1, category="lighting", area="Bath", rating=10, section=1.5)
        assert len(check_wet_rooms(_panel([light]), [room])) == 1
        assert check_wet_rooms(_panel([light], [_group(1)]), [room]) == []
        assert len(check_wet_rooms(_panel([light], [_group(1, sensitivity=300)]), [room])) == 1

    def test_wet_rooms_matched_by_index_not_name(self):
        rooms = [
            ElectricalRoom(name="Bath", room_type="bathroom", area_m2=5, floor=0,
                           is_wet_room=True, index=0),
            ElectricalRoom(name="Bath", room_type="bathroom", area_m2=5, floor=1,
                           is_wet_room=True, index=1),
        ]
        lights = [_circuit(1, category="lighting", area="Bath", rating=10, section=1.5),
                  _circuit(2, category="lighting", area="Bath", rating=10, section=1.5, room_index=1)]
        issues = check_wet_rooms(_panel(lights), rooms)
        assert [i.description for i in issues] == [
            'Circuit "lighting 1" in wet room "Bath" has no 30 mA RCD',
            'Circuit "lighting 2" in wet room "Bath" has no 30 mA RCD',
        ]

    def test_rcbo_counts_as_protection(self):
        room = ElectricalRoom(name="Bath", room_type="bathroom", area_m2=5, floor=0, is_wet_room=True)
        heat = _circuit(1, category="heating", area="Bath", breaker="RCBO", sensitivity=30)
        assert check_wet_rooms(_panel([heat]), [room]) == []

    def test_ev_requires_type_b(self):
        ev_a = _circuit(1, category="ev_charger", rating=50, section=16,
                        breaker="RCBO", rcd_type="A", sensitivity=30)
        ev_b = _circuit(2, category="ev_charger", rating=50, section=16,
                        breaker="RCBO", rcd_type="B", sensitivity=30)
        issues = check_ev_rcd_type(_panel([ev_a, ev_b]))
        assert [i.code for i in issues] == ["EV_RCD_TYPE"]


class TestCoordinationAndAdvisory:

    def test_undersized_cable_for_breaker(self):
        issues = check_cable_breaker(_panel([_circuit(1, rating=16, section=1.5)]))
        assert [i.code for i in issues] == ["CABLE_BREAKER_MISMATCH"]
        assert "2.5 mm²" in issues[0].recommendation

    def test_phase_imbalance_warning(self):
        circuits = [_circuit(i, phase=1) for i in range(1, 4)]
        issues = check_phase_balance(_panel(circuits, phase_type="3-phase"))
        assert [i.severity for i in issues] == ["warning"]

    def test_single_phase_skips_balance(self):
        assert check_phase_balance(_panel([_circuit(1)])) == []

    def test_low_spare_capacity(self):
        assert [i.code for i in check_spare_capacity(_panel([], spare=5))] == ["SPARE_CAPACITY"]
        assert check_spare_capacity(_panel([], spare=10)) == []

    def test_surge_protection_info(self):
        issues = check_surge_protection(_panel([], surge=False))
        assert issues[0].severity == "info"


class TestReport:

    def test_only_errors_break_compliance(self):
        warning = ComplianceIssue("W", "warning", "warn", "ref")
        info = ComplianceIssue("I", "info", "info", "ref")
        report = build_report([warning, info])
        assert report.compliant
        assert (report.errors, report.warnings, report.info) == (0, 1, 1)

    def test_error_breaks_compliance(self):
        report = build_report([ComplianceIssue("E", "error", "bad", "ref")])
        assert not report.compliant
        assert report.error_issues[0].code == "E"

    def test_full_check(self):
        room = ElectricalRoom(name="Room", room_type="living_room", area_m2=20, floor=0, is_wet_room=False)
        report = check_compliance(_panel([_circuit(1)], [_group(1)]), [], [room])
        assert report.compliant
        assert report.issues == []
        assert "DS/HD 60364-7-701 (locations containing a bath or shower)" in report.standards_checked
