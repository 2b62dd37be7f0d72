"""
test_catalog_provider.py — Catalog providers, snapshot stores and the database layer.

SQL-backed classes run against a mocked async session factory; no database
connection is made.
"""

import asyncio
import copy
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import SQLAlchemyError

import app.db as db
from app.db import normalize_database_url
from app.services.catalog_provider import (
    InMemoryCatalogProvider,
    SqlCatalogProvider,
    build_snapshot,
)
from app.services.estimation_errors import CatalogError, EstimationError
from app.services.snapshot_store import InMemorySnapshotStore, SqlSnapshotStore


def _result(rows=None, scalar=None):
    """Stand-in for an AsyncSession.execute() result."""
    result = MagicMock()
    result.scalars.return_value.all.return_value = list(rows or [])
    result.scalar.return_value = scalar
    result.scalar_one_or_none.return_value = scalar
    return result


def _session_factory(*results):
    session = MagicMock()
    session.execute = AsyncMock(side_effect=list(results))
    factory = MagicMock()
    factory.return_value.__aenter__.return_value = session
    return factory, session


# ---------------------------------------------------------------------------
# ORM-shaped rows (numeric columns arrive as Decimal)
# ---------------------------------------------------------------------------

def _orm_node():
    return SimpleNamespace(
        id="n-outlet", code="OUTLET_SINGLE", name="Outlet", node_type="operation",
        base_time_seconds=Decimal("1200.00"), default_cost_price=Decimal("45.00"),
        default_sale_price=None, cable_meters_per_unit=Decimal("8.00"),
        cable_type="PVT 3x1.5mm²", is_active=True, sort_order=None,
    )


def _orm_variant():
    material = SimpleNamespace(name="Socket", quantity=Decimal("1.000"), unit="stk",
                               cost_price=Decimal("35.00"), sale_price=None)
    return SimpleNamespace(
        id="v-std", node_id="n-outlet", code="STD", name=None,
        time_multiplier=Decimal("1.000"), extra_time_seconds=Decimal("0"),
        cost_multiplier=None, price_multiplier=Decimal("1.000"), waste_percentage=Decimal("2.50"),
        is_default=True, sort_order=1, materials=[material],
    )


def _orm_rule():
    return SimpleNamespace(
        id="r-1", name="High ceiling", node_id="n-outlet", variant_id=None, rule_type="time",
        condition={"min_height": 3.0}, time_multiplier=Decimal("1.200"),
        extra_time_seconds=None, cost_multiplier=None, extra_cost=None,
        priority=1, is_active=True,
    )


def _orm_profile():
    return SimpleNamespace(
        code="OLD_HOUSE", name="Old house", time_multiplier=Decimal("1.200"),
        difficulty_multiplier=None, material_waste_multiplier=Decimal("1.100"),
        overhead_multiplier=Decimal("1.050"), is_active=True,
    )


def _orm_install_type():
    return SimpleNamespace(
        code="BETON", name="Concrete", time_multiplier=Decimal("1.500"),
        difficulty_multiplier=Decimal("1.400"), material_waste_multiplier=None,
        access=None, required_tools=[{"tool_name": "Diamond drill", "is_special": True}],
    )


def _orm_template():
    return SimpleNamespace(code="BATH", room_type="bathroom", name=None, recommended_rcd=True,
                           special_requirements=None)


def _orm_factor():
    return SimpleNamespace(factor_key="indirect_time", value_type="percentage",
                           value=Decimal("12.00"), is_active=True)


def _orm_mapping():
    return SimpleNamespace(point_kind="outlets", node_code="OUTLET_SINGLE")


def _catalog_results():
    return (
        _result([_orm_node()]),
        _result([_orm_variant()]),
        _result([_orm_rule()]),
        _result([_orm_profile()]),
        _result([_orm_install_type()]),
        _result([_orm_template()]),
        _result([_orm_factor()]),
        _result([_orm_mapping()]),
    )


# ===========================================================================
# Class 1: In-memory provider
# ===========================================================================

class TestInMemoryCatalogProvider:

    def test_snapshot_is_cached(self, provider):
        first = asyncio.run(provider.load_catalog())
        second = asyncio.run(provider.load_catalog())
        assert first is second
        assert first.node_by_code("OUTLET_SINGLE").name == "Outlet"

    def test_customer_tier_lookup(self, provider):
        from conftest import CUSTOMER_GOLD
        assert asyncio.run(provider.get_customer_tier(CUSTOMER_GOLD)) == "gold"
        assert asyncio.run(provider.get_customer_tier("someone-else")) is None

    def test_malformed_rows_raise_catalog_error(self, catalog_rows):
        rows = copy.deepcopy(catalog_rows)
        rows["nodes"][0]["base_time_seconds"] = -10
        with pytest.raises(CatalogError, match="Malformed catalog data: 1 invalid field"):
            build_snapshot(rows)

    def test_catalog_error_is_estimation_error(self):
        assert issubclass(CatalogError, EstimationError)


# ===========================================================================
# Class 2: SQL provider
# ===========================================================================

class TestSqlCatalogProvider:

    def test_rows_become_snapshot(self):
        factory, session = _session_factory(*_catalog_results())
        catalog = asyncio.run(SqlCatalogProvider(factory).load_catalog())

        node = catalog.node_by_code("OUTLET_SINGLE")
        assert node.base_time_seconds == 1200.0
        assert node.default_sale_price == 0.0
        variant = catalog.variants_for("n-outlet")[0]
        assert variant.cost_multiplier == 1.0
        assert variant.waste_percentage == 2.5
        assert variant.materials[0].unit_cost == 35.0
        assert catalog.rules_for("n-outlet", None)[0].condition.min_height == 3.0
        assert catalog.building_profile("OLD_HOUSE").overhead_multiplier == pytest.approx(1.05)
        assert catalog.installation_type("beton").special_tools[0].tool_name == "Diamond drill"
        assert catalog.room_template("bathroom").special_requirements == []
        assert catalog.global_factor("indirect_time", 0.0) == pytest.approx(0.12)
        assert catalog.point_mappings == {"outlets": "OUTLET_SINGLE"}
        assert session.execute.await_count == 8

    def test_database_error_becomes_catalog_error(self):
        factory, _ = _session_factory(SQLAlchemyError("connection refused"))
        with pytest.raises(CatalogError, match="Catalog load failed"):
            asyncio.run(SqlCatalogProvider(factory).load_catalog())

    def test_unreachable_host_becomes_catalog_error(self):
        factory = MagicMock(side_effect=ConnectionRefusedError("no route"))
        with pytest.raises(CatalogError):
            asyncio.run(SqlCatalogProvider(factory).load_catalog())

    def test_customer_tier(self):
        factory, _ = _session_factory(_result(scalar="silver"))
        assert asyncio.run(SqlCatalogProvider(factory).get_customer_tier("c-1")) == "silver"

    def test_customer_lookup_failure(self):
        factory, _ = _session_factory(SQLAlchemyError("timeout"))
        with pytest.raises(CatalogError, match="Customer lookup failed"):
            asyncio.run(SqlCatalogProvider(factory).get_customer_tier("c-1"))


# ===========================================================================
# Class 3: Snapshot stores
# ===========================================================================

class TestInMemorySnapshotStore:

    def test_versions_append(self):
        store = InMemorySnapshotStore()
        assert asyncio.run(store.save("Job", {"a": 1}, {"total": 10})) == 1
        assert asyncio.run(store.save("Job", {"a": 2}, {"total": 12}, customer_id="c-1")) == 2
        assert asyncio.run(store.save("Other", {}, {})) == 1
        assert [v["result_payload"]["total"] for v in store.versions("Job")] == [10, 12]
        assert store.latest("Job")["customer_id"] == "c-1"
        assert store.latest("Missing") is None

    def test_history_is_isolated_from_caller(self):
        store = InMemorySnapshotStore()
        payload = {"rooms": ["Bath"]}
        asyncio.run(store.save("Job", payload, {}))
        payload["rooms"].append("Kitchen")
        store.versions("Job")[0]["input_payload"]["rooms"].append("Hall")
        assert store.latest("Job")["input_payload"] == {"rooms": ["Bath"]}


class TestSqlSnapshotStore:

    def test_next_version_after_existing(self):
        factory, session = _session_factory(_result(scalar=3))
        version = asyncio.run(SqlSnapshotStore(factory).save("Job", {"a": 1}, {"t": 1}))
        assert version == 4
        row = session.add.call_args[0][0]
        assert (row.estimate_name, row.version, row.result_payload) == ("Job", 4, {"t": 1})

    def test_first_version(self):
        factory, _ = _session_factory(_result(scalar=None))
        assert asyncio.run(SqlSnapshotStore(factory).save("New", {}, {})) == 1


# ===========================================================================
# Class 4: Database layer
# ===========================================================================

class TestDatabaseLayer:

    @pytest.mark.parametrize("raw,expected", [
        ("postgresql://u:p@h/db", "postgresql+asyncpg://u:p@h/db"),
        ("postgres://u:p@h/db", "postgresql+asyncpg://u:p@h/db"),
        ("postgresql+asyncpg://u:p@h/db", "postgresql+asyncpg://u:p@h/db"),
    ])
    def test_normalize(self, raw, expected):
        assert normalize_database_url(raw) == expected

    def test_init_db_skips_without_url(self, monkeypatch):
        monkeypatch.delenv("DATABASE_URL", raising=False)
        assert asyncio.run(db.init_db()) is False

    def test_init_db_creates_tables(self, monkeypatch):
        conn = MagicMock()
        conn.run_sync = AsyncMock()
        fake_engine = MagicMock()
        fake_engine.begin.return_value.__aenter__.return_value = conn
        monkeypatch.setenv("DATABASE_URL", "postgresql://u:p@h/db")
        monkeypatch.setattr(db, "engine", fake_engine)
        assert asyncio.run(db.init_db()) is True
        conn.run_sync.assert_awaited_once_with(db.Base.metadata.create_all)
        assert "estimate_snapshots" in db.Base.metadata.tables

    def test_dispose_db(self, monkeypatch):
        fake_engine = MagicMock()
        fake_engine.dispose = AsyncMock()
        monkeypatch.setattr(db, "engine", fake_engine)
        asyncio.run(db.dispose_db())
        fake_engine.dispose.assert_awaited_once()
