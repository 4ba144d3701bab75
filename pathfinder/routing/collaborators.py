"""Interfaces of the persistence and notification collaborators, with simple implementations."""

import threading
from abc import abstractmethod
from typing import TYPE_CHECKING, Optional

from pathfinder.core import NotFoundError, PathfinderABC
from pathfinder.jobs.types.job_specs import JobOptions, JobPriority, JobType
from pathfinder.routing.types import RouteUpdate

if TYPE_CHECKING:  # pragma: no cover
    from pathfinder.jobs.manager import QueueManager


class RouteRepository(PathfinderABC):
    """Persistence collaborator for the stored route entity."""

    @abstractmethod
    def update_route(self, route_id: str, update: RouteUpdate) -> None:
        """Write the computed distance, duration and geometry onto the route.

        Raises:
            NotFoundError: If no route with ``route_id`` exists.
        """
        raise NotImplementedError


class InMemoryRouteRepository(RouteRepository):
    def __init__(self, route_ids: Optional[list[str]] = None, **kwargs):
        super().__init__(**kwargs)
        self._routes: dict[str, Optional[RouteUpdate]] = {route_id: None for route_id in route_ids or []}
        self._lock = threading.Lock()

    def create_route(self, route_id: str) -> None:
        with self._lock:
            self._routes.setdefault(route_id, None)

    def get_route(self, route_id: str) -> Optional[RouteUpdate]:
        with self._lock:
            if route_id not in self._routes:
                raise NotFoundError(f"Route {route_id} not found")
            return self._routes[route_id]

    def update_route(self, route_id: str, update: RouteUpdate) -> None:
        with self._lock:
            if route_id not in self._routes:
                raise NotFoundError(f"Route {route_id} not found")
            self._routes[route_id] = update


class Notifier(PathfinderABC):
    """Notification collaborator. Delivery is fire-and-forget from the caller's point of view."""

    @abstractmethod
    def notify_route_optimized(self, user_id: str, route_id: str, time_saved: float, distance_saved: float) -> None:
        raise NotImplementedError


class LoggingNotifier(Notifier):
    def notify_route_optimized(self, user_id: str, route_id: str, time_saved: float, distance_saved: float) -> None:
        self.logger.info(
            f"Route {route_id} optimized for user {user_id}: saved {time_saved:.0f}s and {distance_saved:.0f}m"
        )


class QueueNotifier(Notifier):
    """Hands notifications to the ``notification:send`` queue so delivery is retried by the broker."""

    def __init__(self, manager: "QueueManager", **kwargs):
        super().__init__(**kwargs)
        self.manager = manager

    def notify_route_optimized(self, user_id: str, route_id: str, time_saved: float, distance_saved: float) -> None:
        minutes = round(time_saved / 60)
        kilometres = distance_saved / 1000
        self.manager.add_job(
            JobType.NOTIFICATION_SEND,
            {
                "user_id": user_id,
                "type": "route_optimized",
                "title": "Route Optimized",
                "body": f"Your route has been optimized! Save {minutes} minutes and {kilometres:.1f} km.",
                "data": {
                    "route_id": route_id,
                    "time_saved": time_saved,
                    "distance_saved": distance_saved,
                },
            },
            JobOptions(priority=JobPriority.NORMAL),
        )
