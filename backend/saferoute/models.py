from __future__ import annotations

from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class NetworkType(str, Enum):
    WALK = "walk"
    BIKE = "bike"
    DRIVE = "drive"

    @classmethod
    def parse(cls, value: object) -> NetworkType:
        if isinstance(value, cls):
            return value
        raw = str(value or "").strip().lower()
        try:
            return cls(raw)
        except ValueError as exc:
            allowed = ", ".join(item.value for item in cls)
            raise ValueError(f"network type must be one of: {allowed}") from exc


class LatLng(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class RouteRequest(BaseModel):
    """Wire shape used by the surrounding service (camelCase accepted)."""

    model_config = ConfigDict(populate_by_name=True)

    start_lat: float = Field(..., ge=-90, le=90, alias="startLat")
    start_lng: float = Field(..., ge=-180, le=180, alias="startLng")
    end_lat: float = Field(..., ge=-90, le=90, alias="endLat")
    end_lng: float = Field(..., ge=-180, le=180, alias="endLng")
    network_type: NetworkType = Field(..., alias="networkType")

    @field_validator("network_type", mode="before")
    @classmethod
    def case_insensitive_network(cls, value: object) -> NetworkType:
        return NetworkType.parse(value)


class RouteResponse(BaseModel):
    route: list[LatLng] = Field(..., min_length=2)


class EdgeWeight(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    from_lat: float = Field(..., alias="fromLat")
    from_lng: float = Field(..., alias="fromLng")
    to_lat: float = Field(..., alias="toLat")
    to_lng: float = Field(..., alias="toLng")
    weight: float = Field(..., ge=0.0)


class DebugCrimeCheckRequest(RouteRequest):
    crime_lat: float = Field(..., ge=-90, le=90, alias="crimeLat")
    crime_lng: float = Field(..., ge=-180, le=180, alias="crimeLng")


class DebugCrimeCheckResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    result: Literal["yes", "no"]
    route: list[LatLng]
    edge_weights: list[EdgeWeight] = Field(default_factory=list, alias="edgeWeights")


class ErrorDetail(BaseModel):
    reason_code: str
    message: str
