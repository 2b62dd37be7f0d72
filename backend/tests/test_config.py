"""
test_config.py — EstimationSettings defaults and ESTIMATOR_* environment overrides.
"""

import logging

from app.config import EstimationSettings, load_settings


class TestSettings:

    def test_defaults(self):
        cfg = EstimationSettings(reference_year=2025)
        assert cfg.hourly_rate == 495.0
        assert (cfg.overhead_percentage, cfg.risk_percentage, cfg.vat_percentage) == (12.0, 3.0, 25.0)
        assert cfg.margin_percentage == 35.0
        assert cfg.minimum_margin_percentage == 20.0

    def test_with_overrides_ignores_none(self):
        cfg = EstimationSettings(reference_year=2025)
        assert cfg.with_overrides(hourly_rate=None) is cfg
        assert cfg.with_overrides(hourly_rate=550).hourly_rate == 550

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("ESTIMATOR_HOURLY_RATE", "520")
        monkeypatch.setenv("ESTIMATOR_REFERENCE_YEAR", "2030")
        monkeypatch.setenv("ESTIMATOR_INSTALLATION_METHOD", "C")
        cfg = load_settings()
        assert cfg.hourly_rate == 520.0
        assert cfg.reference_year == 2030
        assert cfg.installation_method == "C"

    def test_env_margin_floor_and_discount(self, monkeypatch):
        monkeypatch.setenv("ESTIMATOR_MINIMUM_MARGIN_PCT", "50")
        monkeypatch.setenv("ESTIMATOR_DISCOUNT_PCT", "4")
        cfg = load_settings()
        assert (cfg.minimum_margin_percentage, cfg.discount_percentage) == (50.0, 4.0)

    def test_non_numeric_env_is_ignored(self, monkeypatch, caplog):
        monkeypatch.setenv("ESTIMATOR_VAT_PCT", "twenty-five")
        with caplog.at_level(logging.WARNING, logger="elinstall-config"):
            cfg = load_settings()
        assert cfg.vat_percentage == 25.0
        assert "ESTIMATOR_VAT_PCT" in caplog.text
