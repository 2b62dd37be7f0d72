"""
conftest.py — Shared pytest fixtures for the installation estimator test suite.

No database or external service fixtures are defined here.  Catalog data is
served from memory; database sessions are mocked where a test needs one.

Import-path bootstrapping:
    The ``backend/`` directory is inserted into sys.path so that all
    ``app.*`` imports resolve correctly regardless of where pytest is invoked.
"""

import sys
import os
import pytest

# ---------------------------------------------------------------------------
# Ensure ``backend/`` is on the import path before any app imports occur.
# ---------------------------------------------------------------------------
_BACKEND_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _BACKEND_DIR not in sys.path:
    sys.path.insert(0, _BACKEND_DIR)


CUSTOMER_GOLD = "3f2b8c1e-6d4a-4f7e-9a51-0c2d7e8b9f10"


# ---------------------------------------------------------------------------
# Catalog rows
# ---------------------------------------------------------------------------

@pytest.fixture
def catalog_rows():
    """
    A small but complete catalog.

    Nodes (base seconds / default cost):
      OUTLET_SINGLE 1200 / 45     variants STD (default, materials 35+10), IP44 (sort 0, ×1.25 time)
      SWITCH_SINGLE  600 / 30     variants B (sort 2), A (sort 1), neither default
      LIGHT_CEILING  900 / 60     rules: ceiling ≥ 3 m ×1.2 (prio 1), difficult access ×1.1 (prio 2)
      APPLIANCE_FLOOR_HEATING 3600 / 400
      APPLIANCE_EV_CHARGER    7200 / 2500
      PANEL_RCD      1800 / 650
    """
    return {
        "nodes": [
            {"id": "n-outlet", "code": "OUTLET_SINGLE", "name": "Outlet", "base_time_seconds": 1200,
             "default_cost_price": 45, "cable_meters_per_unit": 8, "cable_type": "PVT 3x1.5mm²"},
            {"id": "n-switch", "code": "SWITCH_SINGLE", "name": "Switch", "base_time_seconds": 600,
             "default_cost_price": 30, "cable_meters_per_unit": 4, "cable_type": "PVT 3x1.5mm²"},
            {"id": "n-light", "code": "LIGHT_CEILING", "name": "Ceiling light", "base_time_seconds": 900,
             "default_cost_price": 60, "cable_meters_per_unit": 6, "cable_type": "PVT 3x1.5mm²"},
            {"id": "n-heat", "code": "APPLIANCE_FLOOR_HEATING", "name": "Floor heating",
             "base_time_seconds": 3600, "default_cost_price": 400, "cable_meters_per_unit": 10,
             "cable_type": "PVT 3x2.5mm²"},
            {"id": "n-ev", "code": "APPLIANCE_EV_CHARGER", "name": "EV charger",
             "base_time_seconds": 7200, "default_cost_price": 2500, "cable_meters_per_unit": 15,
             "cable_type": "PVT 5x6mm²"},
            {"id": "n-rcd", "code": "PANEL_RCD", "name": "RCD", "base_time_seconds": 1800,
             "default_cost_price": 650},
        ],
        "variants": [
            {"id": "v-out-std", "node_id": "n-outlet", "code": "STD", "is_default": True, "sort_order": 1,
             "materials": [
                 {"name": "Socket", "quantity": 1, "cost_price": 35},
                 {"name": "Box", "quantity": 1, "sale_price": 10},
             ]},
            {"id": "v-out-ip44", "node_id": "n-outlet", "code": "IP44", "sort_order": 0,
             "time_multiplier": 1.25, "cost_multiplier": 1.5},
            {"id": "v-sw-b", "node_id": "n-switch", "code": "B", "sort_order": 2},
            {"id": "v-sw-a", "node_id": "n-switch", "code": "A", "sort_order": 1},
        ],
        "rules": [
            {"id": "r-access", "name": "Difficult access", "node_id": "n-light", "rule_type": "time",
             "condition": {"access": "difficult"}, "time_multiplier": 1.1, "priority": 2},
            {"id": "r-height", "name": "High ceiling", "node_id": "n-light", "rule_type": "time",
             "condition": {"min_height": 3.0}, "time_multiplier": 1.2, "priority": 1},
            {"id": "r-off", "name": "Disabled", "node_id": "n-light", "rule_type": "time",
             "time_multiplier": 5.0, "is_active": False},
        ],
        "building_profiles": [
            {"code": "OLD_HOUSE", "name": "Pre-1960 house", "time_multiplier": 1.2,
             "difficulty_multiplier": 1.1, "material_waste_multiplier": 1.2, "overhead_multiplier": 1.1},
        ],
        "installation_types": [
            {"code": "GIPS", "name": "Plasterboard"},
            {"code": "BETON", "name": "Concrete", "time_multiplier": 1.5, "difficulty_multiplier": 1.4,
             "material_waste_multiplier": 1.1,
             "required_tools": [
                 {"tool_name": "Diamond drill", "is_special": True},
                 {"tool_name": "Hammer drill", "is_special": False},
             ]},
            {"code": "MUR", "name": "Masonry", "time_multiplier": 1.3, "difficulty_multiplier": 1.7},
        ],
        "room_templates": [
            {"code": "BATH", "room_type": "bathroom", "recommended_rcd": True,
             "special_requirements": [
                 {"requirement": "ip44", "description": "IP44 materials required in zone 2"},
             ]},
        ],
        "global_factors": [
            {"factor_key": "indirect_time", "value_type": "percentage", "value": 15},
            {"factor_key": "personal_time", "value_type": "percentage", "value": 8},
        ],
    }


@pytest.fixture
def catalog(catalog_rows):
    from app.models.catalog_schema import CatalogSnapshot
    return CatalogSnapshot.model_validate(catalog_rows)


@pytest.fixture
def settings():
    """Defaults with the reference year pinned so building age is stable."""
    from app.config import EstimationSettings
    return EstimationSettings(reference_year=2025)


@pytest.fixture
def provider(catalog_rows):
    from app.services.catalog_provider import InMemoryCatalogProvider
    return InMemoryCatalogProvider(catalog_rows, customer_tiers={CUSTOMER_GOLD: "gold"})


# ---------------------------------------------------------------------------
# Project inputs
# ---------------------------------------------------------------------------

@pytest.fixture
def bathroom_project():
    """A single bathroom with sockets, lights and floor heating but no RCD."""
    return {
        "name": "Bathroom renovation",
        "building_type": "residential",
        "supply_phase": "3-phase",
        "rooms": [
            {
                "name": "Bathroom",
                "room_type": "bathroom",
                "area_m2": 6,
                "points": {"outlets": 2, "ceiling_lights": 2, "floor_heating": 1},
            },
        ],
    }


@pytest.fixture
def house_project():
    """Two dry rooms plus a bathroom with an RCD; everything compliant."""
    return {
        "name": "Family house",
        "building_type": "residential",
        "supply_phase": "3-phase",
        "building_year": 2005,
        "rooms": [
            {"name": "Living room", "room_type": "living_room", "area_m2": 30,
             "installation_type": "GIPS",
             "points": {"outlets": 10, "switches": 2, "ceiling_lights": 3}},
            {"name": "Bedroom", "room_type": "bedroom", "area_m2": 14,
             "points": {"outlets": 6, "switches": 1, "ceiling_lights": 1}},
            {"name": "Bathroom", "room_type": "bathroom", "area_m2": 6,
             "points": {"outlets": 1, "ceiling_lights": 2, "floor_heating": 1, "rcd_breakers": 1}},
        ],
    }
