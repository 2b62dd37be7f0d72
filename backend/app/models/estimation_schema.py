"""Input contract for a project estimation request."""
from __future__ import annotations

import uuid
from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, Field, field_validator

# Wet rooms always require 30 mA residual-current protection
WET_ROOM_TYPES = frozenset({"bathroom", "outdoor", "utility"})


class PricingInput(BaseModel):
    """Per-request pricing overrides. Omitted fields fall back to settings / tier."""
    hourly_rate: Optional[float] = Field(None, gt=0)
    margin_percentage: Optional[float] = Field(None, ge=0, lt=1000)
    discount_percentage: Optional[float] = Field(None, ge=0, le=100)
    overhead_percentage: Optional[float] = Field(None, ge=0)
    risk_percentage: Optional[float] = Field(None, ge=0)


class RoomEstimationInput(BaseModel):
    name: str = Field(..., min_length=1)
    room_type: str = Field(..., description="e.g. bathroom, kitchen, living_room")
    area_m2: float = Field(..., ge=0)
    floor: int = 0
    ceiling_height_m: Optional[float] = Field(None, gt=0)
    installation_type: Optional[str] = Field(None, description="Installation type code, e.g. GIPS")
    points: Dict[str, int] = Field(default_factory=dict, description="point kind -> count")
    variants: Dict[str, str] = Field(
        default_factory=dict, description="point kind -> explicit variant code"
    )
    access: Optional[str] = None
    cable_distance_m: Optional[float] = Field(None, ge=0)
    custom: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("points")
    @classmethod
    def _non_negative_points(cls, v: Dict[str, int]) -> Dict[str, int]:
        for kind, count in v.items():
            if count < 0:
                raise ValueError(f"point count for '{kind}' must be >= 0, got {count}")
        return v

    @property
    def is_wet_room(self) -> bool:
        return self.room_type.lower() in WET_ROOM_TYPES


class ProjectEstimationInput(BaseModel):
    name: str = Field(..., min_length=1)
    customer_id: Optional[str] = Field(None, description="UUID; selects the pricing tier")
    building_type: Literal["residential", "commercial", "industrial"] = "residential"
    building_year: Optional[int] = Field(None, ge=1000, le=3000)
    building_profile: Optional[str] = Field(None, description="BuildingProfile code")
    supply_phase: Literal["1-phase", "3-phase"] = "3-phase"
    is_renovation: bool = False
    existing_main_fuse_a: Optional[float] = Field(None, gt=0)
    rooms: List[RoomEstimationInput]
    pricing: Optional[PricingInput] = None

    @field_validator("rooms")
    @classmethod
    def _at_least_one_room(cls, v: List[RoomEstimationInput]) -> List[RoomEstimationInput]:
        if not v:
            raise ValueError("at least one room is required")
        return v

    @field_validator("customer_id")
    @classmethod
    def _valid_uuid(cls, v: Optional[str]) -> Optional[str]:
        if v is None or v == "":
            return None
        try:
            return str(uuid.UUID(str(v)))
        except ValueError:
            raise ValueError(f"customer_id is not a valid UUID: {v!r}")
