"""ORM Models for the installation estimator — SQLAlchemy 2.0"""
import uuid
from datetime import datetime
from typing import Optional
from sqlalchemy import (
    String, Text, Boolean, Integer, Numeric, DateTime,
    ForeignKey, UniqueConstraint, Index
)
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func
from app.db import Base


def gen_uuid():
    return str(uuid.uuid4())


# ── COMPONENT CATALOG ────────────────────────────────────────────────────────
class ComponentNode(Base):
    __tablename__ = "component_nodes"
    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True, default=gen_uuid)
    parent_id: Mapped[Optional[str]] = mapped_column(UUID(as_uuid=False), ForeignKey("component_nodes.id"))
    code: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    node_type: Mapped[str] = mapped_column(String(20), default="operation")  # operation | composite | group
    base_time_seconds: Mapped[float] = mapped_column(Numeric(10, 2), default=0)
    default_cost_price: Mapped[float] = mapped_column(Numeric(12, 2), default=0)
    default_sale_price: Mapped[float] = mapped_column(Numeric(12, 2), default=0)
    cable_meters_per_unit: Mapped[float] = mapped_column(Numeric(8, 2), default=0)
    cable_type: Mapped[Optional[str]] = mapped_column(String(50))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    sort_order: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    variants: Mapped[list["ComponentVariant"]] = relationship(
        "ComponentVariant", back_populates="node", cascade="all, delete-orphan"
    )


class ComponentVariant(Base):
    __tablename__ = "component_variants"
    __table_args__ = (UniqueConstraint("node_id", "code", name="uq_variant_node_code"),)
    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True, default=gen_uuid)
    node_id: Mapped[str] = mapped_column(UUID(as_uuid=False), ForeignKey("component_nodes.id"), nullable=False)
    code: Mapped[str] = mapped_column(String(100), nullable=False)
    name: Mapped[str] = mapped_column(String(255), default="")
    time_multiplier: Mapped[float] = mapped_column(Numeric(6, 3), default=1.0)
    extra_time_seconds: Mapped[float] = mapped_column(Numeric(10, 2), default=0)
    cost_multiplier: Mapped[float] = mapped_column(Numeric(6, 3), default=1.0)
    price_multiplier: Mapped[float] = mapped_column(Numeric(6, 3), default=1.0)
    waste_percentage: Mapped[float] = mapped_column(Numeric(5, 2), default=0)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False)
    sort_order: Mapped[int] = mapped_column(Integer, default=0)
    node: Mapped["ComponentNode"] = relationship("ComponentNode", back_populates="variants")
    materials: Mapped[list["VariantMaterial"]] = relationship(
        "VariantMaterial", back_populates="variant", cascade="all, delete-orphan"
    )


class VariantMaterial(Base):
    __tablename__ = "variant_materials"
    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True, default=gen_uuid)
    variant_id: Mapped[str] = mapped_column(UUID(as_uuid=False), ForeignKey("component_variants.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    quantity: Mapped[float] = mapped_column(Numeric(10, 3), default=1)
    unit: Mapped[str] = mapped_column(String(20), default="stk")
    cost_price: Mapped[Optional[float]] = mapped_column(Numeric(12, 2))
    sale_price: Mapped[Optional[float]] = mapped_column(Numeric(12, 2))
    variant: Mapped["ComponentVariant"] = relationship("ComponentVariant", back_populates="materials")


class CalculationRule(Base):
    __tablename__ = "calculation_rules"
    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True, default=gen_uuid)
    name: Mapped[str] = mapped_column(String(255), default="")
    node_id: Mapped[Optional[str]] = mapped_column(UUID(as_uuid=False), ForeignKey("component_nodes.id"))
    variant_id: Mapped[Optional[str]] = mapped_column(UUID(as_uuid=False), ForeignKey("component_variants.id"))
    rule_type: Mapped[str] = mapped_column(String(20), default="time")  # time | cost | combined
    # {"min_height": 3.0, "access": "difficult", "custom": {...}}
    condition: Mapped[dict] = mapped_column(JSONB, default=dict)
    time_multiplier: Mapped[float] = mapped_column(Numeric(6, 3), default=1.0)
    extra_time_seconds: Mapped[float] = mapped_column(Numeric(10, 2), default=0)
    cost_multiplier: Mapped[float] = mapped_column(Numeric(6, 3), default=1.0)
    extra_cost: Mapped[float] = mapped_column(Numeric(12, 2), default=0)
    priority: Mapped[int] = mapped_column(Integer, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    __table_args__ = (Index("ix_rules_node_variant", "node_id", "variant_id"),)


# ── CONTEXT MULTIPLIERS ──────────────────────────────────────────────────────
class BuildingProfile(Base):
    __tablename__ = "building_profiles"
    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True, default=gen_uuid)
    code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), default="")
    time_multiplier: Mapped[float] = mapped_column(Numeric(6, 3), default=1.0)
    difficulty_multiplier: Mapped[float] = mapped_column(Numeric(6, 3), default=1.0)
    material_waste_multiplier: Mapped[float] = mapped_column(Numeric(6, 3), default=1.0)
    overhead_multiplier: Mapped[float] = mapped_column(Numeric(6, 3), default=1.0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)


class InstallationType(Base):
    __tablename__ = "installation_types"
    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True, default=gen_uuid)
    code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)  # GIPS, TRAE, BETON, MUR
    name: Mapped[str] = mapped_column(String(255), default="")
    time_multiplier: Mapped[float] = mapped_column(Numeric(6, 3), default=1.0)
    difficulty_multiplier: Mapped[float] = mapped_column(Numeric(6, 3), default=1.0)
    material_waste_multiplier: Mapped[float] = mapped_column(Numeric(6, 3), default=1.0)
    access: Mapped[Optional[str]] = mapped_column(String(50))
    # [{"tool_name": "Diamantbor", "is_special": true}]
    required_tools: Mapped[list] = mapped_column(JSONB, default=list)


class RoomTemplate(Base):
    __tablename__ = "room_templates"
    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True, default=gen_uuid)
    code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    room_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), default="")
    recommended_rcd: Mapped[bool] = mapped_column(Boolean, default=False)
    # [{"requirement": "ip44", "description": "IP44 materials in zone 2"}]
    special_requirements: Mapped[list] = mapped_column(JSONB, default=list)


class GlobalFactor(Base):
    __tablename__ = "global_factors"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    factor_key: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    value_type: Mapped[str] = mapped_column(String(20), default="multiplier")  # percentage | multiplier | fixed
    value: Mapped[float] = mapped_column(Numeric(12, 4), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)


class PointMapping(Base):
    """Point kind → component node code overrides."""
    __tablename__ = "point_mappings"
    point_kind: Mapped[str] = mapped_column(String(100), primary_key=True)
    node_code: Mapped[str] = mapped_column(String(100), nullable=False)


# ── CUSTOMERS ────────────────────────────────────────────────────────────────
class Customer(Base):
    __tablename__ = "customers"
    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True, default=gen_uuid)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    pricing_tier: Mapped[Optional[str]] = mapped_column(String(20), default="standard")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


# ── ESTIMATE SNAPSHOTS ───────────────────────────────────────────────────────
class EstimateSnapshot(Base):
    """Append-only: each save of the same estimate name adds a new version."""
    __tablename__ = "estimate_snapshots"
    __table_args__ = (UniqueConstraint("estimate_name", "version", name="uq_snapshot_name_version"),)
    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True, default=gen_uuid)
    estimate_name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    customer_id: Mapped[Optional[str]] = mapped_column(UUID(as_uuid=False), ForeignKey("customers.id"))
    input_payload: Mapped[dict] = mapped_column(JSONB, nullable=False)
    result_payload: Mapped[dict] = mapped_column(JSONB, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
