"""Test doubles shared by the routing tests."""

from pathfinder.routing import Route, RouteProvider, RouteWaypoint

NYC = RouteWaypoint(lat=40.7128, lng=-74.0060)
TIMES_SQUARE = RouteWaypoint(lat=40.7580, lng=-73.9855)
BROOKLYN = RouteWaypoint(lat=40.6782, lng=-73.9442)


class FakeProvider(RouteProvider):
    """Provider double returning canned routes and recording every call.

    ``optimized`` is returned when the caller asks for provider-side reordering, ``baseline`` otherwise.
    ``alternatives`` are appended after the primary route when alternatives are requested. ``errors`` maps a request
    kind (``baseline``, ``optimized``, ``alternatives``) to an exception to raise instead.
    """

    def __init__(self, baseline: Route, optimized: Route | None = None, alternatives=None, errors=None, **kwargs):
        super().__init__(**kwargs)
        self.baseline = baseline
        self.optimized = optimized or baseline
        self.alternatives = list(alternatives or [])
        self.errors = dict(errors or {})
        self.calls = []

    def compute_routes(
        self,
        origin,
        destination,
        intermediate_waypoints,
        mode,
        avoid,
        optimize_order,
        want_alternatives,
        want_traffic,
        *,
        language="en",
        units="metric",
    ):
        self.calls.append(
            {
                "origin": origin,
                "destination": destination,
                "intermediate": list(intermediate_waypoints),
                "mode": mode,
                "avoid": set(avoid),
                "optimize": optimize_order,
                "alternatives": want_alternatives,
                "traffic": want_traffic,
            }
        )
        kind = "alternatives" if want_alternatives else "optimized" if optimize_order else "baseline"
        if kind in self.errors:
            raise self.errors[kind]
        primary = self.optimized if optimize_order else self.baseline
        if want_alternatives:
            return [primary, *self.alternatives]
        return [primary]

    def calls_of(self, kind: str) -> list[dict]:
        if kind == "alternatives":
            return [c for c in self.calls if c["alternatives"]]
        optimize = kind == "optimized"
        return [c for c in self.calls if not c["alternatives"] and c["optimize"] is optimize]


def make_route(duration: float, distance: float, **kwargs) -> Route:
    return Route(duration=duration, distance=distance, geometry=kwargs.pop("geometry", "enc0ded"), **kwargs)
