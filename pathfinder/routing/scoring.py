"""Route scoring and best-candidate selection."""

from typing import Sequence

from pathfinder.routing.types import Route, RoutePreferences, TravelMode

MAX_DURATION = 7200.0
MAX_DISTANCE = 50000.0
DURATION_WEIGHT = 100.0
DISTANCE_WEIGHT = 50.0
TRAFFIC_PENALTY = 30.0
WARNING_PENALTY = 10.0

_HUMAN_POWERED = (TravelMode.WALKING, TravelMode.BICYCLING)


def score_route(route: Route, preferences: RoutePreferences) -> float:
    """Score a route; higher is better and the floor is 0.

    Duration dominates on a 100 point scale. Distance adds up to 50 points for walking and bicycling only. Live
    traffic above free-flow and provider warnings subtract points.
    """
    score = (1 - min(route.duration, MAX_DURATION) / MAX_DURATION) * DURATION_WEIGHT
    if preferences.mode in _HUMAN_POWERED:
        score += (1 - min(route.distance, MAX_DISTANCE) / MAX_DISTANCE) * DISTANCE_WEIGHT
    if route.traffic_multiplier is not None:
        score -= (route.traffic_multiplier - 1) * TRAFFIC_PENALTY
    score -= len(route.warnings) * WARNING_PENALTY
    return max(0.0, score)


def select_best_route(routes: Sequence[Route], preferences: RoutePreferences) -> Route:
    """Return the highest-scoring route. Ties go to the earliest candidate in ``routes``."""
    if not routes:
        raise ValueError("No candidate routes to select from.")
    best, best_score = routes[0], score_route(routes[0], preferences)
    for route in routes[1:]:
        score = score_route(route, preferences)
        if score > best_score:
            best, best_score = route, score
    return best
