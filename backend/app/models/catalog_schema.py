"""
Catalog schema — typed reference rows the estimation engines operate on.

Rows arrive loosely typed from the catalog store (ORM rows, JSON fixtures).
They are validated once into these models when a ``CatalogSnapshot`` is built;
everything downstream works on the typed values only.
"""
from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, model_validator


class _CatalogRow(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")


class VariantMaterial(_CatalogRow):
    """One line of a variant's material list."""
    name: str
    quantity: float = Field(1.0, ge=0, description="Quantity per installed unit")
    unit: str = Field("stk", description="e.g. stk, m, pk")
    cost_price: Optional[float] = Field(None, ge=0)
    sale_price: Optional[float] = Field(None, ge=0)

    @property
    def unit_cost(self) -> float:
        if self.cost_price is not None:
            return self.cost_price
        if self.sale_price is not None:
            return self.sale_price
        return 0.0


class ComponentNode(_CatalogRow):
    """An installable unit, e.g. a wall outlet."""
    id: str
    code: str = Field(..., description="Catalog convention code, e.g. OUTLET_SINGLE")
    name: str
    node_type: Literal["operation", "composite", "group"] = "operation"
    base_time_seconds: float = Field(0, ge=0)
    default_cost_price: float = Field(0.0, ge=0)
    default_sale_price: float = Field(0.0, ge=0)
    cable_meters_per_unit: float = Field(0.0, ge=0, description="Cable drawn per installed unit")
    cable_type: Optional[str] = Field(None, description="e.g. 'PVT 3x1.5mm²', CAT6")
    is_active: bool = True
    sort_order: int = 0


class ComponentVariant(_CatalogRow):
    """A concrete configuration of a ComponentNode, e.g. outdoor IP44 outlet."""
    id: str
    node_id: str
    code: str
    name: str = ""
    time_multiplier: float = Field(1.0, ge=0)
    extra_time_seconds: float = 0
    cost_multiplier: float = Field(1.0, ge=0)
    price_multiplier: float = Field(1.0, ge=0)
    waste_percentage: float = Field(0.0, ge=0)
    is_default: bool = False
    sort_order: int = 0
    materials: List[VariantMaterial] = Field(default_factory=list)


class RuleCondition(_CatalogRow):
    """
    Closed set of typed predicates. Every populated field must match; an empty
    condition matches any context. ``custom`` is compared key by key for
    equality against the context's custom attributes.
    """
    min_height: Optional[float] = None
    max_height: Optional[float] = None
    min_quantity: Optional[int] = None
    max_quantity: Optional[int] = None
    access: Optional[str] = Field(None, description="e.g. normal, difficult, attic")
    min_distance: Optional[float] = None
    max_distance: Optional[float] = None
    custom: Dict[str, Any] = Field(default_factory=dict)


class CalculationRule(_CatalogRow):
    id: str
    name: str = ""
    node_id: Optional[str] = None
    variant_id: Optional[str] = None
    rule_type: Literal["time", "cost", "combined"] = "time"
    condition: RuleCondition = Field(default_factory=RuleCondition)
    time_multiplier: float = 1.0
    extra_time_seconds: float = 0
    cost_multiplier: float = 1.0
    extra_cost: float = 0.0
    priority: int = Field(0, description="Lower evaluates first")
    is_active: bool = True

    @property
    def adjusts_time(self) -> bool:
        return self.rule_type in ("time", "combined")

    @property
    def adjusts_cost(self) -> bool:
        return self.rule_type in ("cost", "combined")


class BuildingProfile(_CatalogRow):
    """Construction-context multiplier set, applied once per room aggregate."""
    code: str
    name: str = ""
    time_multiplier: float = Field(1.0, ge=0)
    difficulty_multiplier: float = Field(1.0, ge=0)
    material_waste_multiplier: float = Field(1.0, ge=0)
    overhead_multiplier: float = Field(1.0, ge=0)
    is_active: bool = True


class RequiredTool(_CatalogRow):
    tool_name: str
    is_special: bool = False


class InstallationType(_CatalogRow):
    """Wall/ceiling construction the work is done in, e.g. GIPS, BETON, MUR."""
    code: str
    name: str = ""
    time_multiplier: float = Field(1.0, ge=0)
    difficulty_multiplier: float = Field(1.0, ge=0)
    material_waste_multiplier: float = Field(1.0, ge=0)
    access: Optional[str] = None
    required_tools: List[RequiredTool] = Field(default_factory=list)

    @property
    def special_tools(self) -> List[RequiredTool]:
        return [t for t in self.required_tools if t.is_special]


class RoomRequirement(_CatalogRow):
    requirement: str
    description: str = ""


class RoomTemplate(_CatalogRow):
    code: str
    room_type: str
    name: str = ""
    recommended_rcd: bool = False
    special_requirements: List[RoomRequirement] = Field(default_factory=list)


class GlobalFactor(_CatalogRow):
    factor_key: str
    value_type: Literal["percentage", "multiplier", "fixed"] = "multiplier"
    value: float
    is_active: bool = True

    @property
    def effective_value(self) -> float:
        return self.value / 100.0 if self.value_type == "percentage" else self.value


class CatalogSnapshot(_CatalogRow):
    """
    Immutable bundle of reference data for one estimation call.

    Lookups are indexed once after validation; the engines only use the
    accessor methods below.
    """
    nodes: List[ComponentNode] = Field(default_factory=list)
    variants: List[ComponentVariant] = Field(default_factory=list)
    rules: List[CalculationRule] = Field(default_factory=list)
    building_profiles: List[BuildingProfile] = Field(default_factory=list)
    installation_types: List[InstallationType] = Field(default_factory=list)
    room_templates: List[RoomTemplate] = Field(default_factory=list)
    global_factors: List[GlobalFactor] = Field(default_factory=list)
    point_mappings: Dict[str, str] = Field(
        default_factory=dict,
        description="point kind -> node code; overrides the engine's default mapping",
    )

    _nodes_by_code: Dict[str, ComponentNode] = PrivateAttr(default_factory=dict)
    _variants_by_node: Dict[str, List[ComponentVariant]] = PrivateAttr(default_factory=dict)

    @model_validator(mode="after")
    def _check_unique_node_codes(self) -> "CatalogSnapshot":
        seen = set()
        for node in self.nodes:
            if node.code in seen:
                raise ValueError(f"duplicate component node code: {node.code}")
            seen.add(node.code)
        return self

    def model_post_init(self, __context: Any) -> None:
        self._nodes_by_code = {n.code: n for n in self.nodes if n.is_active}
        by_node: Dict[str, List[ComponentVariant]] = {}
        for variant in self.variants:
            by_node.setdefault(variant.node_id, []).append(variant)
        for variants in by_node.values():
            variants.sort(key=lambda v: v.sort_order)
        self._variants_by_node = by_node

    # ── Accessors ────────────────────────────────────────────────────────────

    def node_by_code(self, code: str) -> Optional[ComponentNode]:
        return self._nodes_by_code.get(code)

    def variants_for(self, node_id: str) -> List[ComponentVariant]:
        """Variants of a node, ordered by sort_order."""
        return list(self._variants_by_node.get(node_id, []))

    def rules_for(self, node_id: str, variant_id: Optional[str]) -> List[CalculationRule]:
        """Active rules scoped to the node or the variant, ascending priority."""
        scoped = [
            r for r in self.rules
            if r.is_active and (
                r.node_id == node_id or (variant_id is not None and r.variant_id == variant_id)
            )
        ]
        return sorted(scoped, key=lambda r: r.priority)

    def installation_type(self, code: Optional[str]) -> Optional[InstallationType]:
        if not code:
            return None
        wanted = code.upper()
        for it in self.installation_types:
            if it.code.upper() == wanted:
                return it
        return None

    def room_template(self, room_type: str) -> Optional[RoomTemplate]:
        wanted = room_type.lower()
        for template in self.room_templates:
            if template.room_type.lower() == wanted or template.code.lower() == wanted:
                return template
        return None

    def building_profile(self, code: Optional[str]) -> Optional[BuildingProfile]:
        if not code:
            return None
        for profile in self.building_profiles:
            if profile.is_active and profile.code == code:
                return profile
        return None

    def global_factor(self, key: str, default: float) -> float:
        for factor in self.global_factors:
            if factor.is_active and factor.factor_key == key:
                return factor.effective_value
        return default
