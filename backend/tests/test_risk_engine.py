"""
test_risk_engine.py — Unit tests for risk scoring, escalation, OBS points and anomalies.
"""

import pytest

from app.models.estimation_schema import ProjectEstimationInput
from app.services.component_engine import ComponentEngine
from app.services.compliance_engine import ComplianceIssue, build_report
from app.services.price_engine import LineItem, analyze_margins
from app.services.risk_engine import (
    RiskAnalysisEngine,
    dedupe,
    detect_anomalies,
    escalate,
    level_for_score,
)


def _project(rooms, **extra):
    return ProjectEstimationInput(name="Test", rooms=rooms, **extra)


def _room(**overrides):
    data = {"name": "Room", "room_type": "living_room", "area_m2": 20, "points": {"outlets": 6}}
    data.update(overrides)
    return data


@pytest.fixture
def healthy_margin():
    return analyze_margins([LineItem("line", 70, 100)], minimum_margin_percent=20)


def _assess(catalog, settings, project, margin, **kwargs):
    rooms = ComponentEngine(catalog, settings=settings).calculate_project(project.rooms).rooms
    cost = kwargs.pop("cost_price", 10_000)
    return RiskAnalysisEngine(catalog).assess(project, rooms, cost, margin, **kwargs)


class TestRiskPolicyHelpers:

    def test_escalate_never_lowers(self):
        assert escalate("low", "high") == "high"
        assert escalate("high", "medium") == "high"
        assert escalate("medium", "medium") == "medium"

    def test_level_for_score(self):
        assert [level_for_score(s) for s in (1, 2, 3, 5)] == ["low", "medium", "high", "high"]

    def test_dedupe_keeps_first_occurrence(self):
        assert dedupe(["b", "a", "b", "", "c", "a"]) == ["b", "a", "c"]


class TestRiskAssessment:

    def test_plain_project_is_low(self, catalog, settings, healthy_margin):
        risk = _assess(catalog, settings, _project([_room()]), healthy_margin)
        assert risk.risk_level == "low"
        assert risk.factors == []
        assert risk.risk_score == 1
        assert risk.recommended_buffer_percentage == 3

    def test_compliance_error_escalates_to_high(self, catalog, settings, healthy_margin):
        report = build_report([ComplianceIssue("RCD_SOCKET", "error", "No RCD", "60364-4-41")])
        risk = _assess(catalog, settings, _project([_room()]), healthy_margin, compliance=report)
        assert risk.base_risk_level == "low"
        assert risk.risk_level == "high"
        assert "REQUIRED: No RCD (60364-4-41)" in risk.obs_points

    def test_margin_below_minimum_escalates_to_medium(self, catalog, settings):
        thin = analyze_margins([LineItem("thin", 95, 100)], minimum_margin_percent=20)
        risk = _assess(catalog, settings, _project([_room()]), thin)
        assert risk.risk_level == "medium"
        assert risk.escalations == ["1 line(s) below minimum margin"]

    def test_compliance_warning_becomes_warning(self, catalog, settings, healthy_margin):
        report = build_report([ComplianceIssue("VOLTAGE_DROP", "warning", "Drop too high", "525")])
        risk = _assess(catalog, settings, _project([_room()]), healthy_margin, compliance=report)
        assert risk.risk_level == "low"
        assert "Drop too high (525)" in risk.warnings

    def test_old_building_factors(self, catalog, settings, healthy_margin):
        risk = _assess(catalog, settings, _project([_room()]), healthy_margin, building_age_years=40)
        assert [(f.type, f.severity, f.impact_percentage) for f in risk.factors] == [
            ("old_building", "medium", 8)
        ]
        risk = _assess(catalog, settings, _project([_room()]), healthy_margin, building_age_years=80)
        assert risk.factors[0].severity == "high"
        assert risk.risk_score == 2
        assert risk.risk_level == "medium"
        assert risk.recommended_buffer_percentage == 5
        assert any(o.startswith("OBS: Older installations") for o in risk.obs_points)

    def test_difficult_installation_type(self, catalog, settings, healthy_margin):
        project = _project([_room(installation_type="MUR")])
        risk = _assess(catalog, settings, project, healthy_margin)
        factor = risk.factors[0]
        assert factor.type == "difficult_installation"
        assert factor.impact_percentage == pytest.approx(7.0)
        assert any("concrete/masonry" in o for o in risk.obs_points)

    def test_combined_factors_reach_high(self, catalog, settings, healthy_margin):
        """80 y (15) + MUR (7) + wet room (5) + high value (3) = 30 → score 3."""
        project = _project([_room(installation_type="MUR"),
                            _room(name="Bath", room_type="bathroom", area_m2=5)])
        risk = _assess(catalog, settings, project, healthy_margin,
                       building_age_years=80, cost_price=250_000)
        assert risk.risk_score == 3
        assert risk.risk_level == "high"
        assert risk.recommended_buffer_percentage == 10
        assert any("elevated risk profile" in o for o in risk.obs_points)

    def test_ev_and_panel_obs(self, catalog, settings, healthy_margin):
        project = _project([_room(points={"ev_charger": 1})])
        risk = _assess(catalog, settings, project, healthy_margin)
        assert any("EV charger" in o for o in risk.obs_points)
        assert risk.obs_points[-1].startswith("OBS: The offer assumes sufficient space")

    def test_warnings_deduplicated(self, catalog, settings, healthy_margin):
        project = _project([_room(installation_type="MUR")])
        risk = _assess(catalog, settings, project, healthy_margin,
                       extra_warnings=["dup", "dup"])
        assert risk.warnings.count("dup") == 1


class TestAnomalies:

    def _rooms(self, catalog, settings, **room):
        project = _project([_room(**room)])
        return ComponentEngine(catalog, settings=settings).calculate_project(project.rooms).rooms

    def test_missing_rcd_in_bathroom(self, catalog, settings):
        rooms = self._rooms(catalog, settings, room_type="bathroom")
        anomalies = detect_anomalies(rooms, 3.0, 1000, 30, 400)
        assert [a["anomaly_type"] for a in anomalies] == ["missing_rcd"]
        assert anomalies[0]["severity"] == "critical"

    def test_margin_levels(self, catalog, settings):
        rooms = self._rooms(catalog, settings)
        assert detect_anomalies(rooms, 3.0, 1000, 12, 400)[0]["severity"] == "warning"
        assert detect_anomalies(rooms, 3.0, 1000, 8, 400)[0]["severity"] == "critical"

    def test_time_outliers(self, catalog, settings):
        rooms = self._rooms(catalog, settings)            # 6 points
        assert detect_anomalies(rooms, 13.0, 1000, 30, 400)[0]["anomaly_type"] == "time_outlier"
        assert detect_anomalies(rooms, 0.3, 1000, 30, 400)[0]["anomaly_type"] == "time_outlier"

    def test_material_share(self, catalog, settings):
        rooms = self._rooms(catalog, settings)
        low = detect_anomalies(rooms, 3.0, 1000, 30, 100)
        high = detect_anomalies(rooms, 3.0, 1000, 30, 800)
        assert low[0]["severity"] == "info"
        assert high[0]["severity"] == "warning"
