from typing import Optional, Sequence

from pathfinder.core import (
    BadRequestError,
    Pathfinder,
    PersistenceError,
    ServiceUnavailableError,
    ifnone,
)
from pathfinder.core.utils import utc_now
from pathfinder.routing.cache import RouteCache
from pathfinder.routing.collaborators import RouteRepository
from pathfinder.routing.provider import RouteProvider
from pathfinder.routing.types import Route, RouteOptions, RoutePreferences, RouteUpdate, RouteWaypoint


class RouteService(Pathfinder):
    """Route computation facade used by the optimization worker and other callers.

    Args:
        route_cache: Cache-aside layer in front of the provider. Single routes are always computed through it.
        repository: Persistence collaborator for ``update_route``.
        provider: Provider used directly for alternative routes. Defaults to the cache's provider.
        max_alternatives: Default cap on the number of alternative routes.
    """

    def __init__(
        self,
        route_cache: RouteCache,
        repository: RouteRepository,
        *,
        provider: RouteProvider | None = None,
        max_alternatives: int | None = None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.route_cache = route_cache
        self.repository = repository
        self.provider = ifnone(provider, default=route_cache.provider)
        self.max_alternatives = int(
            ifnone(max_alternatives, default=self.config["PATHFINDER_ROUTING"]["MAX_ALTERNATIVES"])
        )

    def calculate_route(
        self,
        waypoints: Sequence[RouteWaypoint],
        preferences: RoutePreferences,
        options: RouteOptions | None = None,
    ) -> Route:
        try:
            return self.route_cache.get_or_compute(waypoints, preferences, options)
        except Exception as e:
            self.logger.error(
                f"Route calculation failed: {e} (waypoints={len(waypoints)}, mode={preferences.mode.value})"
            )
            raise

    def optimize_waypoint_order(
        self, waypoints: Sequence[RouteWaypoint], preferences: RoutePreferences, *, fallback: bool = True
    ) -> Route:
        """Compute the route with provider-side reordering of the intermediate stops.

        With two waypoints there is nothing to reorder and the plain route is returned. If the optimized request fails
        and ``fallback`` is set, the route in the given order is returned instead.
        """
        if len(waypoints) <= 2:
            return self.calculate_route(waypoints, preferences)
        optimized = preferences.model_copy(update={"optimize": True})
        try:
            return self.calculate_route(waypoints, optimized)
        except (ServiceUnavailableError, BadRequestError) as e:
            if not fallback:
                raise
            self.logger.warning(f"Waypoint optimization failed, falling back to the given order: {e}")
            return self.calculate_route(waypoints, preferences.model_copy(update={"optimize": False}))

    def get_alternative_routes(
        self,
        waypoints: Sequence[RouteWaypoint],
        preferences: RoutePreferences,
        max_alternatives: Optional[int] = None,
    ) -> list[Route]:
        """Ask the provider for alternative routes, returning at most ``max_alternatives`` of them.

        Provider errors propagate; callers that treat alternatives as optional decide how to degrade.
        """
        limit = ifnone(max_alternatives, default=self.max_alternatives)
        routes = self.provider.routes_for(waypoints, preferences, RouteOptions(alternatives=True))
        return routes[:limit]

    def update_route(self, route_id: str, route: Route) -> None:
        """Persist the route's distance, duration and geometry onto the stored route.

        Raises:
            NotFoundError: If the route does not exist. Not retryable.
            PersistenceError: For any other store failure.
        """
        update = RouteUpdate(
            distance=route.distance, duration=route.duration, geometry=route.geometry, updated_at=utc_now()
        )
        try:
            self.repository.update_route(route_id, update)
        except PersistenceError:
            self.logger.error(f"Failed to update route {route_id} in the store")
            raise
        except Exception as e:
            self.logger.error(f"Failed to update route {route_id} in the store: {e}")
            raise PersistenceError() from e
        self.logger.info(f"Route {route_id} updated in the store")
