import pytest
from routing_doubles import BROOKLYN, NYC, TIMES_SQUARE

from pathfinder.routing import InMemoryCacheStore, InMemoryRouteRepository, RouteCache, RouteProvider, RouteService


@pytest.fixture
def waypoints():
    return [NYC, TIMES_SQUARE]


@pytest.fixture
def three_waypoints():
    return [NYC, BROOKLYN, TIMES_SQUARE]


@pytest.fixture
def store():
    return InMemoryCacheStore()


@pytest.fixture
def repository():
    return InMemoryRouteRepository(route_ids=["r1"])


@pytest.fixture
def build_service(store, repository):
    def _build(provider: RouteProvider, **kwargs) -> RouteService:
        return RouteService(RouteCache(provider, store, ttl=3600, prefix="test:"), repository, **kwargs)

    return _build
