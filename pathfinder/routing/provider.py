import re
from abc import abstractmethod
from typing import Any, Iterable, Optional, Sequence

import requests
from pydantic import ValidationError

from pathfinder.core import BadRequestError, PathfinderABC, ServiceUnavailableError, ifnone
from pathfinder.routing.types import (
    Bounds,
    LatLng,
    Route,
    RouteOptions,
    RoutePreferences,
    RouteStep,
    RouteWaypoint,
    TravelMode,
)

_HTML_TAG = re.compile(r"<[^>]*>")

# Provider statuses that describe a transient condition rather than a bad request.
_TRANSIENT_STATUSES = {"OVER_QUERY_LIMIT", "UNKNOWN_ERROR"}


class RouteProvider(PathfinderABC):
    """Adapter over an external routing API.

    Implementations raise ``ServiceUnavailableError`` for network failures, timeouts and transient provider errors,
    and ``BadRequestError`` (carrying the provider status) when the provider rejects the request.
    """

    @abstractmethod
    def compute_routes(
        self,
        origin: RouteWaypoint,
        destination: RouteWaypoint,
        intermediate_waypoints: Sequence[RouteWaypoint],
        mode: TravelMode,
        avoid: Iterable[str],
        optimize_order: bool,
        want_alternatives: bool,
        want_traffic: bool,
        *,
        language: str = "en",
        units: str = "metric",
    ) -> list[Route]:
        """Compute every route the provider returns, best first. Never returns an empty list."""
        raise NotImplementedError

    def compute(
        self,
        origin: RouteWaypoint,
        destination: RouteWaypoint,
        intermediate_waypoints: Sequence[RouteWaypoint],
        mode: TravelMode,
        avoid: Iterable[str],
        optimize_order: bool,
        want_alternatives: bool,
        want_traffic: bool,
        *,
        language: str = "en",
        units: str = "metric",
    ) -> Route:
        """Compute the provider's primary route."""
        return self.compute_routes(
            origin,
            destination,
            intermediate_waypoints,
            mode,
            avoid,
            optimize_order,
            want_alternatives,
            want_traffic,
            language=language,
            units=units,
        )[0]

    def routes_for(
        self,
        waypoints: Sequence[RouteWaypoint],
        preferences: RoutePreferences,
        options: RouteOptions | None = None,
    ) -> list[Route]:
        """Split an ordered waypoint list into origin, destination and stops, and compute the routes."""
        options = ifnone(options, default=RouteOptions())
        return self.compute_routes(
            waypoints[0],
            waypoints[-1],
            list(waypoints[1:-1]),
            preferences.mode,
            preferences.avoid,
            preferences.optimize,
            options.alternatives,
            options.traffic,
            language=options.language,
            units=options.units,
        )


class GoogleDirectionsProvider(RouteProvider):
    """``RouteProvider`` backed by the Google Directions web service."""

    def __init__(
        self,
        api_key: str | None = None,
        *,
        url: str | None = None,
        timeout: float | None = None,
        session: requests.Session | None = None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        routing = self.config["PATHFINDER_ROUTING"]
        secret = self.config.get_secret("PATHFINDER_ROUTING", "GOOGLE_MAPS_API_KEY")
        self.api_key = ifnone(api_key, default=secret or "")
        self.url = ifnone(url, default=routing["DIRECTIONS_URL"])
        self.timeout = float(ifnone(timeout, default=routing["REQUEST_TIMEOUT"]))
        self.session = ifnone(session, default=requests.Session())
        if not self.api_key:
            self.logger.warning("No Google Maps API key configured; directions requests will be rejected.")

    def build_params(
        self,
        origin: RouteWaypoint,
        destination: RouteWaypoint,
        intermediate_waypoints: Sequence[RouteWaypoint],
        mode: TravelMode,
        avoid: Iterable[str],
        optimize_order: bool,
        want_alternatives: bool,
        want_traffic: bool,
        language: str = "en",
        units: str = "metric",
    ) -> dict[str, Any]:
        params: dict[str, Any] = {
            "origin": f"{origin.lat},{origin.lng}",
            "destination": f"{destination.lat},{destination.lng}",
            "mode": TravelMode(mode).value,
            "key": self.api_key,
            "language": language,
            "units": units,
            "alternatives": "true" if want_alternatives else "false",
        }
        if intermediate_waypoints:
            stops = "|".join(f"{w.lat},{w.lng}" for w in intermediate_waypoints)
            params["waypoints"] = f"optimize:true|{stops}" if optimize_order else stops
        requested = set(avoid)
        avoided = [name for name in ("tolls", "highways", "ferries") if name in requested]
        if avoided:
            params["avoid"] = "|".join(avoided)
        if want_traffic:
            params["departure_time"] = "now"
        return params

    def compute_routes(
        self,
        origin: RouteWaypoint,
        destination: RouteWaypoint,
        intermediate_waypoints: Sequence[RouteWaypoint],
        mode: TravelMode,
        avoid: Iterable[str],
        optimize_order: bool,
        want_alternatives: bool,
        want_traffic: bool,
        *,
        language: str = "en",
        units: str = "metric",
    ) -> list[Route]:
        params = self.build_params(
            origin,
            destination,
            intermediate_waypoints,
            mode,
            avoid,
            optimize_order,
            want_alternatives,
            want_traffic,
            language,
            units,
        )
        try:
            response = self.session.get(self.url, params=params, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            self.logger.error(f"Google Directions API request failed: {e}")
            raise ServiceUnavailableError() from e

        if response.status_code >= 500:
            self.logger.error(f"Google Directions API returned HTTP {response.status_code}")
            raise ServiceUnavailableError(status_code=response.status_code)
        if response.status_code >= 400:
            self.logger.error(f"Google Directions API rejected the request with HTTP {response.status_code}")
            raise BadRequestError(
                f"Google Directions API error: HTTP {response.status_code}", status_code=response.status_code
            )

        try:
            data = response.json()
        except ValueError as e:
            raise ServiceUnavailableError("Google Directions API returned a malformed response") from e
        if not isinstance(data, dict):
            raise ServiceUnavailableError("Google Directions API returned a malformed response")

        status = data.get("status")
        if status != "OK":
            self.logger.error(f"Google Directions API error: {status} - {data.get('error_message', '')}")
            if status in _TRANSIENT_STATUSES:
                raise ServiceUnavailableError(f"Google Directions API error: {status}")
            raise BadRequestError(f"Google Directions API error: {status}", status_code=400, provider_status=status)

        try:
            routes = [self.parse_route(route) for route in data.get("routes", [])]
        except (KeyError, TypeError, AttributeError, ValidationError) as e:
            self.logger.error(f"Google Directions API returned a route that could not be parsed: {e!r}")
            raise ServiceUnavailableError("Google Directions API returned a malformed response") from e
        if not routes:
            raise BadRequestError("Google Directions API returned no routes", status_code=400, provider_status=status)
        return routes

    @staticmethod
    def parse_route(route: dict[str, Any]) -> Route:
        """Convert one Directions API route into a ``Route``, summing across legs."""
        legs = route.get("legs", [])
        steps = [
            RouteStep(
                instruction=_HTML_TAG.sub("", step.get("html_instructions", "")),
                distance=step["distance"]["value"],
                duration=step["duration"]["value"],
                start_location=LatLng(**step["start_location"]),
                end_location=LatLng(**step["end_location"]),
                maneuver=step.get("maneuver"),
                polyline=step.get("polyline", {}).get("points"),
            )
            for leg in legs
            for step in leg.get("steps", [])
        ]
        duration = sum(leg["duration"]["value"] for leg in legs)

        traffic_multiplier: Optional[float] = None
        if legs and duration > 0 and all("duration_in_traffic" in leg for leg in legs):
            traffic_multiplier = sum(leg["duration_in_traffic"]["value"] for leg in legs) / duration

        bounds = None
        if route.get("bounds"):
            bounds = Bounds(
                north=route["bounds"]["northeast"]["lat"],
                south=route["bounds"]["southwest"]["lat"],
                east=route["bounds"]["northeast"]["lng"],
                west=route["bounds"]["southwest"]["lng"],
            )

        return Route(
            distance=sum(leg["distance"]["value"] for leg in legs),
            duration=duration,
            geometry=route.get("overview_polyline", {}).get("points"),
            bounds=bounds,
            steps=steps,
            warnings=list(route.get("warnings", [])),
            traffic_multiplier=traffic_multiplier,
            waypoint_order=list(route.get("waypoint_order", [])),
        )
