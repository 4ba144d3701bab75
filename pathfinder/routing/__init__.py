from pathfinder.routing.types import (
    Bounds,
    LatLng,
    OptimizationResult,
    Route,
    RouteOptimizationJobData,
    RouteOptions,
    RoutePreferences,
    RouteStep,
    RouteUpdate,
    RouteWaypoint,
    TravelMode,
)
from pathfinder.routing.provider import GoogleDirectionsProvider, RouteProvider
from pathfinder.routing.cache import (
    CacheStats,
    CacheStore,
    InMemoryCacheStore,
    RedisCacheStore,
    RouteCache,
    build_cache_key,
)
from pathfinder.routing.scoring import score_route, select_best_route
from pathfinder.routing.collaborators import (
    InMemoryRouteRepository,
    LoggingNotifier,
    Notifier,
    QueueNotifier,
    RouteRepository,
)
from pathfinder.routing.service import RouteService
from pathfinder.routing.worker import RouteOptimizationConsumer, StepKind, StepOutcome
from pathfinder.routing.producer import PRIORITY_LEVELS, RouteOptimizationProducer

__all__ = [
    "Bounds",
    "build_cache_key",
    "CacheStats",
    "CacheStore",
    "GoogleDirectionsProvider",
    "InMemoryCacheStore",
    "InMemoryRouteRepository",
    "LatLng",
    "LoggingNotifier",
    "Notifier",
    "OptimizationResult",
    "PRIORITY_LEVELS",
    "QueueNotifier",
    "RedisCacheStore",
    "Route",
    "RouteCache",
    "RouteOptimizationConsumer",
    "RouteOptimizationJobData",
    "RouteOptimizationProducer",
    "RouteOptions",
    "RoutePreferences",
    "RouteProvider",
    "RouteRepository",
    "RouteService",
    "RouteStep",
    "RouteUpdate",
    "RouteWaypoint",
    "score_route",
    "select_best_route",
    "StepKind",
    "StepOutcome",
    "TravelMode",
]
