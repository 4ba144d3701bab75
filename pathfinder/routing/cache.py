import base64
import json
import threading
import time
from abc import abstractmethod
from typing import Optional, Sequence

import redis
from pydantic import BaseModel, ValidationError

from pathfinder.core import InvalidInputError, Pathfinder, PathfinderABC, ifnone
from pathfinder.routing.provider import RouteProvider
from pathfinder.routing.types import Route, RouteOptions, RoutePreferences, RouteWaypoint


class CacheStore(PathfinderABC):
    """A key-value store with per-key expiry, used as a cache-aside backend."""

    @abstractmethod
    def get(self, key: str) -> Optional[bytes]:
        raise NotImplementedError

    @abstractmethod
    def set_with_ttl(self, key: str, value: bytes, ttl_seconds: int) -> None:
        """Store ``value`` under ``key`` for ``ttl_seconds``. Raises on failure; callers decide whether it is fatal."""
        raise NotImplementedError

    @abstractmethod
    def delete(self, key: str) -> bool:
        raise NotImplementedError


class RedisCacheStore(CacheStore):
    def __init__(self, client: redis.Redis | None = None, *, url: str | None = None, **kwargs):
        super().__init__(**kwargs)
        if client is None:
            client = redis.Redis.from_url(ifnone(url, default=self.config["PATHFINDER_REDIS"]["URL"]))
        self.redis = client

    def get(self, key: str) -> Optional[bytes]:
        value = self.redis.get(key)
        if isinstance(value, str):
            value = value.encode("utf-8")
        return value

    def set_with_ttl(self, key: str, value: bytes, ttl_seconds: int) -> None:
        self.redis.setex(key, ttl_seconds, value)

    def delete(self, key: str) -> bool:
        return bool(self.redis.delete(key))


class InMemoryCacheStore(CacheStore):
    """Process-local cache store for tests and single-process deployments."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self._data: dict[str, tuple[bytes, float]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[bytes]:
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at <= time.monotonic():
                del self._data[key]
                return None
            return value

    def set_with_ttl(self, key: str, value: bytes, ttl_seconds: int) -> None:
        with self._lock:
            self._data[key] = (bytes(value), time.monotonic() + ttl_seconds)

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None


def _coordinate(value: float) -> str:
    text = f"{value:.6f}"
    return "0.000000" if text == "-0.000000" else text


def build_cache_key(
    waypoints: Sequence[RouteWaypoint],
    preferences: RoutePreferences,
    options: RouteOptions | None = None,
    prefix: str = "",
) -> str:
    """Derive the cache key for a route request.

    The key is the URL-safe base64 of a canonical JSON document holding the waypoints (rounded to 6 decimal places),
    the preference tuple ``(mode, avoid_tolls, avoid_highways, avoid_ferries, optimize)`` and the option tuple
    ``(alternatives, traffic, language, units)``. JSON arrays of fixed arity and base64 are both injective, so distinct
    requests never share a key.
    """
    options = ifnone(options, default=RouteOptions())
    document = [
        [[_coordinate(w.lat), _coordinate(w.lng)] for w in waypoints],
        [
            preferences.mode.value,
            preferences.avoid_tolls,
            preferences.avoid_highways,
            preferences.avoid_ferries,
            preferences.optimize,
        ],
        [options.alternatives, options.traffic, options.language, options.units],
    ]
    canonical = json.dumps(document, separators=(",", ":"), ensure_ascii=True)
    return f"{prefix}route:{base64.urlsafe_b64encode(canonical.encode('ascii')).decode('ascii')}"


class CacheStats(BaseModel):
    hits: int = 0
    misses: int = 0
    errors: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0


class RouteCache(Pathfinder):
    """Cache-aside wrapper over a ``RouteProvider``.

    ``get_or_compute`` makes at most one provider call: on a hit the cached route is returned, on a miss the provider
    result is written back with a fixed TTL before being returned. Cache reads and writes are best-effort; failures are
    logged and counted, and never fail the request.

    With ``single_flight=True`` concurrent misses for the same key in this process wait on one provider call. Without
    it, concurrent misses each call the provider and the last write wins.
    """

    def __init__(
        self,
        provider: RouteProvider,
        store: CacheStore,
        *,
        ttl: int | None = None,
        prefix: str | None = None,
        single_flight: bool = False,
        **kwargs,
    ):
        super().__init__(**kwargs)
        routing = self.config["PATHFINDER_ROUTING"]
        self.provider = provider
        self.store = store
        self.ttl = int(ifnone(ttl, default=routing["CACHE_TTL"]))
        self.prefix = ifnone(prefix, default=routing["CACHE_PREFIX"])
        self.single_flight = single_flight
        self._stats = CacheStats()
        self._stats_lock = threading.Lock()
        self._key_locks: dict[str, list] = {}
        self._key_locks_guard = threading.Lock()

    def key_for(
        self, waypoints: Sequence[RouteWaypoint], preferences: RoutePreferences, options: RouteOptions | None = None
    ) -> str:
        return build_cache_key(waypoints, preferences, options, prefix=self.prefix)

    def get_or_compute(
        self,
        waypoints: Sequence[RouteWaypoint],
        preferences: RoutePreferences,
        options: RouteOptions | None = None,
    ) -> Route:
        """Return the cached route for this request, computing and caching it on a miss.

        Raises:
            InvalidInputError: If fewer than two waypoints are given. The provider is not called.
            ServiceUnavailableError, BadRequestError: Propagated unchanged from the provider.
        """
        if len(waypoints) < 2:
            raise InvalidInputError("At least 2 waypoints are required")
        options = ifnone(options, default=RouteOptions())
        key = self.key_for(waypoints, preferences, options)

        if not self.single_flight:
            return self._get_or_compute(key, waypoints, preferences, options)

        with self._key_locks_guard:
            entry = self._key_locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                return self._get_or_compute(key, waypoints, preferences, options)
        finally:
            with self._key_locks_guard:
                entry[1] -= 1
                if entry[1] == 0:
                    self._key_locks.pop(key, None)

    def _get_or_compute(
        self, key: str, waypoints: Sequence[RouteWaypoint], preferences: RoutePreferences, options: RouteOptions
    ) -> Route:
        cached = self._read(key)
        if cached is not None:
            self.logger.debug(f"Route served from cache: {key}")
            return cached

        route = self.provider.routes_for(waypoints, preferences, options)[0]
        self._write(key, route)
        self.logger.info(
            f"Route calculated: waypoints={len(waypoints)}, distance={route.distance}, "
            f"duration={route.duration}, mode={preferences.mode.value}"
        )
        return route

    def invalidate(
        self, waypoints: Sequence[RouteWaypoint], preferences: RoutePreferences, options: RouteOptions | None = None
    ) -> bool:
        key = self.key_for(waypoints, preferences, options)
        try:
            return self.store.delete(key)
        except Exception as e:
            self.logger.warning(f"Cache invalidation failed for {key}: {e}")
            return False

    def stats(self) -> CacheStats:
        with self._stats_lock:
            return self._stats.model_copy()

    def _count(self, field: str) -> None:
        with self._stats_lock:
            setattr(self._stats, field, getattr(self._stats, field) + 1)

    def _read(self, key: str) -> Optional[Route]:
        try:
            raw = self.store.get(key)
        except Exception as e:
            self._count("errors")
            self._count("misses")
            self.logger.warning(f"Cache lookup failed for {key}: {e}")
            return None
        if raw is None:
            self._count("misses")
            return None
        try:
            route = Route.model_validate_json(raw)
        except ValidationError as e:
            self._count("errors")
            self._count("misses")
            self.logger.warning(f"Discarding unreadable cache entry {key}: {e}")
            return None
        self._count("hits")
        return route

    def _write(self, key: str, route: Route) -> None:
        try:
            self.store.set_with_ttl(key, route.model_dump_json().encode("utf-8"), self.ttl)
        except Exception as e:
            self._count("errors")
            self.logger.warning(f"Route caching failed for {key}: {e}")
