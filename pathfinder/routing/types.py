from datetime import datetime
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _InputModel(BaseModel):
    """Immutable input datum. Accepts both snake_case and the API layer's camelCase field names."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)


class TravelMode(str, Enum):
    DRIVING = "driving"
    WALKING = "walking"
    BICYCLING = "bicycling"
    TRANSIT = "transit"


class LatLng(BaseModel):
    lat: float
    lng: float


class RouteWaypoint(_InputModel):
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)
    place_id: Optional[str] = None
    name: Optional[str] = None
    address: Optional[str] = None


class RoutePreferences(_InputModel):
    """Routing preferences. Absent avoid/optimize flags mean False."""

    mode: TravelMode = TravelMode.DRIVING
    avoid_tolls: bool = False
    avoid_highways: bool = False
    avoid_ferries: bool = False
    optimize: bool = False

    @property
    def avoid(self) -> frozenset[str]:
        """The provider avoid set, e.g. ``{"tolls", "ferries"}``."""
        flags = {"tolls": self.avoid_tolls, "highways": self.avoid_highways, "ferries": self.avoid_ferries}
        return frozenset(name for name, enabled in flags.items() if enabled)


class RouteOptions(_InputModel):
    alternatives: bool = False
    traffic: bool = False
    language: str = "en"
    units: Literal["metric", "imperial"] = "metric"


class Bounds(BaseModel):
    north: float
    south: float
    east: float
    west: float


class RouteStep(BaseModel):
    instruction: str
    distance: float = Field(ge=0)
    duration: float = Field(ge=0)
    start_location: LatLng
    end_location: LatLng
    maneuver: Optional[str] = None
    polyline: Optional[str] = None


class Route(BaseModel):
    """A provider-computed route. Distances are meters, durations seconds; steps run from origin to destination."""

    distance: float = Field(ge=0)
    duration: float = Field(ge=0)
    geometry: Any = None
    bounds: Optional[Bounds] = None
    steps: list[RouteStep] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    traffic_multiplier: Optional[float] = None
    waypoint_order: list[int] = Field(default_factory=list)


class RouteUpdate(BaseModel):
    """The fields written onto the stored route entity after optimization."""

    distance: float
    duration: float
    geometry: Any = None
    updated_at: datetime


class OptimizationResult(BaseModel):
    route_id: str
    optimized_route: Route
    time_saved: float
    distance_saved: float
    original_duration: float
    optimized_duration: float
    original_distance: float
    optimized_distance: float


class RouteOptimizationJobData(_InputModel):
    """Payload of a ``route:optimization`` job."""

    user_id: str
    route_id: str
    waypoints: list[RouteWaypoint]
    preferences: RoutePreferences = Field(default_factory=RoutePreferences)
    priority: Optional[Literal["high", "normal", "low"]] = None
