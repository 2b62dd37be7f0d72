"""
Catalog providers — where the estimation engines get their reference data.

Two implementations of the same async interface:
  InMemoryCatalogProvider  rows already held by the caller (fixtures, imports)
  SqlCatalogProvider       reads the catalog tables through an AsyncSession

Both validate the raw rows into one immutable CatalogSnapshot; a malformed
row surfaces as CatalogError, never as a half-built catalog.
"""
import logging
from typing import Any, Dict, List, Optional, Protocol

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from app.models import orm_models as orm
from app.models.catalog_schema import CatalogSnapshot
from app.services.estimation_errors import CatalogError

logger = logging.getLogger("elinstall-catalog")


class CatalogProvider(Protocol):
    async def load_catalog(self) -> CatalogSnapshot:
        ...

    async def get_customer_tier(self, customer_id: str) -> Optional[str]:
        ...


def build_snapshot(rows: Dict[str, Any]) -> CatalogSnapshot:
    """Validate raw catalog rows into a snapshot, raising CatalogError on bad data."""
    try:
        return CatalogSnapshot.model_validate(rows)
    except ValidationError as e:
        raise CatalogError(f"Malformed catalog data: {e.error_count()} invalid field(s)") from e


# ── In-memory ────────────────────────────────────────────────────────────────

class InMemoryCatalogProvider:
    """Serves a fixed set of catalog rows; the snapshot is validated once and reused."""

    def __init__(self, rows: Dict[str, Any], customer_tiers: Optional[Dict[str, str]] = None):
        self._rows = rows
        self._tiers = dict(customer_tiers or {})
        self._snapshot: Optional[CatalogSnapshot] = None

    async def load_catalog(self) -> CatalogSnapshot:
        if self._snapshot is None:
            self._snapshot = build_snapshot(self._rows)
            logger.debug(f"In-memory catalog: {len(self._snapshot.nodes)} nodes")
        return self._snapshot

    async def get_customer_tier(self, customer_id: str) -> Optional[str]:
        return self._tiers.get(customer_id)


# ── SQL ──────────────────────────────────────────────────────────────────────

def _num(value: Any, default: float = 0.0) -> float:
    """Numeric columns come back as Decimal; None falls back to ``default``."""
    return float(value) if value is not None else default


def _opt_num(value: Any) -> Optional[float]:
    return float(value) if value is not None else None


def _node_row(n: orm.ComponentNode) -> dict:
    return {
        "id": n.id,
        "code": n.code,
        "name": n.name,
        "node_type": n.node_type,
        "base_time_seconds": _num(n.base_time_seconds),
        "default_cost_price": _num(n.default_cost_price),
        "default_sale_price": _num(n.default_sale_price),
        "cable_meters_per_unit": _num(n.cable_meters_per_unit),
        "cable_type": n.cable_type,
        "is_active": n.is_active,
        "sort_order": n.sort_order or 0,
    }


def _variant_row(v: orm.ComponentVariant) -> dict:
    return {
        "id": v.id,
        "node_id": v.node_id,
        "code": v.code,
        "name": v.name or "",
        "time_multiplier": _num(v.time_multiplier, 1.0),
        "extra_time_seconds": _num(v.extra_time_seconds),
        "cost_multiplier": _num(v.cost_multiplier, 1.0),
        "price_multiplier": _num(v.price_multiplier, 1.0),
        "waste_percentage": _num(v.waste_percentage),
        "is_default": v.is_default,
        "sort_order": v.sort_order or 0,
        "materials": [
            {
                "name": m.name,
                "quantity": _num(m.quantity, 1.0),
                "unit": m.unit,
                "cost_price": _opt_num(m.cost_price),
                "sale_price": _opt_num(m.sale_price),
            }
            for m in v.materials
        ],
    }


def _rule_row(r: orm.CalculationRule) -> dict:
    return {
        "id": r.id,
        "name": r.name or "",
        "node_id": r.node_id,
        "variant_id": r.variant_id,
        "rule_type": r.rule_type,
        "condition": r.condition or {},
        "time_multiplier": _num(r.time_multiplier, 1.0),
        "extra_time_seconds": _num(r.extra_time_seconds),
        "cost_multiplier": _num(r.cost_multiplier, 1.0),
        "extra_cost": _num(r.extra_cost),
        "priority": r.priority or 0,
        "is_active": r.is_active,
    }


def _multiplier_row(row: Any, *extra: str) -> dict:
    out = {
        "code": row.code,
        "name": row.name or "",
        "time_multiplier": _num(row.time_multiplier, 1.0),
        "difficulty_multiplier": _num(row.difficulty_multiplier, 1.0),
        "material_waste_multiplier": _num(row.material_waste_multiplier, 1.0),
    }
    for attr in extra:
        value = getattr(row, attr)
        out[attr] = _num(value, 1.0) if attr.endswith("_multiplier") else value
    return out


class SqlCatalogProvider:
    """Reads the catalog tables with one short-lived session per call."""

    def __init__(self, session_factory: Optional[async_sessionmaker] = None):
        if session_factory is None:
            from app.db import AsyncSessionLocal
            session_factory = AsyncSessionLocal
        self._session_factory = session_factory

    async def _fetch_all(self, session: AsyncSession, stmt) -> List[Any]:
        result = await session.execute(stmt)
        return list(result.scalars().all())

    async def load_catalog(self) -> CatalogSnapshot:
        try:
            async with self._session_factory() as session:
                nodes = await self._fetch_all(
                    session,
                    select(orm.ComponentNode).order_by(orm.ComponentNode.sort_order),
                )
                variants = await self._fetch_all(
                    session,
                    select(orm.ComponentVariant).options(selectinload(orm.ComponentVariant.materials)),
                )
                rules = await self._fetch_all(
                    session,
                    select(orm.CalculationRule).where(orm.CalculationRule.is_active == True),  # noqa: E712
                )
                profiles = await self._fetch_all(session, select(orm.BuildingProfile))
                install_types = await self._fetch_all(session, select(orm.InstallationType))
                templates = await self._fetch_all(session, select(orm.RoomTemplate))
                factors = await self._fetch_all(session, select(orm.GlobalFactor))
                mappings = await self._fetch_all(session, select(orm.PointMapping))
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Catalog load failed: {e}")
            raise CatalogError(f"Catalog load failed: {e}") from e

        rows = {
            "nodes": [_node_row(n) for n in nodes],
            "variants": [_variant_row(v) for v in variants],
            "rules": [_rule_row(r) for r in rules],
            "building_profiles": [
                {**_multiplier_row(p, "overhead_multiplier"), "is_active": p.is_active}
                for p in profiles
            ],
            "installation_types": [
                {**_multiplier_row(it, "access"), "required_tools": it.required_tools or []}
                for it in install_types
            ],
            "room_templates": [
                {
                    "code": t.code,
                    "room_type": t.room_type,
                    "name": t.name or "",
                    "recommended_rcd": t.recommended_rcd,
                    "special_requirements": t.special_requirements or [],
                }
                for t in templates
            ],
            "global_factors": [
                {
                    "factor_key": f.factor_key,
                    "value_type": f.value_type,
                    "value": _num(f.value),
                    "is_active": f.is_active,
                }
                for f in factors
            ],
            "point_mappings": {m.point_kind: m.node_code for m in mappings},
        }
        snapshot = build_snapshot(rows)
        logger.info(
            f"Catalog loaded: {len(snapshot.nodes)} nodes, {len(snapshot.variants)} variants, "
            f"{len(snapshot.rules)} rules"
        )
        return snapshot

    async def get_customer_tier(self, customer_id: str) -> Optional[str]:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(orm.Customer.pricing_tier).where(orm.Customer.id == customer_id)
                )
                return result.scalar_one_or_none()
        except (SQLAlchemyError, OSError) as e:
            raise CatalogError(f"Customer lookup failed: {e}") from e
