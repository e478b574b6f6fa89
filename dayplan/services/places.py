"""
Google Maps Platform lookups: place search, photos, coordinates, timezones, travel times
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional, Tuple, Union
from urllib.parse import urlencode

import googlemaps
import googlemaps.exceptions
import structlog

from dayplan.core.settings import settings

logger = structlog.get_logger(__name__)

TRAVEL_MODES = ("driving", "transit", "walking", "bicycling")
UNAVAILABLE_TRAVEL_TIME = "Unable to calculate travel time"

PHOTO_ENDPOINT = "https://maps.googleapis.com/maps/api/place/photo"

Waypoint = Union[str, Tuple[float, float]]


class PlacesError(Exception):
    """Base class for place lookup failures"""


class PlaceNotFoundError(PlacesError):
    pass


class PlacesServiceError(PlacesError):
    pass


@dataclass
class PlaceDetails:
    place_id: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    photo_reference: Optional[str] = None
    timezone: Optional[str] = None
    name: Optional[str] = None
    formatted_address: Optional[str] = None

    @property
    def coordinates(self) -> Optional[Tuple[float, float]]:
        if self.latitude is None or self.longitude is None:
            return None
        return (self.latitude, self.longitude)

    @property
    def photo_url(self) -> str:
        return build_photo_url(self.photo_reference)


@dataclass
class TravelEstimate:
    mode: str
    duration_seconds: Optional[int] = None
    duration_text: str = UNAVAILABLE_TRAVEL_TIME
    distance_meters: Optional[int] = None

    @property
    def available(self) -> bool:
        return self.duration_seconds is not None


def build_photo_url(photo_reference: Optional[str], maxwidth: Optional[int] = None) -> str:
    """Signed Place Photo URL built at response time; the API key is never stored"""
    if not photo_reference:
        return settings.PLACEHOLDER_IMAGE_URL
    params = {
        "maxwidth": maxwidth or settings.PLACE_PHOTO_MAX_WIDTH,
        "photo_reference": photo_reference,
    }
    if settings.GOOGLE_MAPS_API_KEY:
        params["key"] = settings.GOOGLE_MAPS_API_KEY
    return f"{PHOTO_ENDPOINT}?{urlencode(params)}"


def _waypoint(value: Waypoint) -> Any:
    if isinstance(value, (tuple, list)):
        return {"lat": value[0], "lng": value[1]}
    return value


class PlacesClient:
    """Thin wrapper over ``googlemaps.Client``. All calls are blocking."""

    def __init__(self, api_key: Optional[str] = None, client: Optional[Any] = None):
        if client is None:
            client = googlemaps.Client(
                key=api_key or settings.GOOGLE_MAPS_API_KEY,
                timeout=settings.MAPS_TIMEOUT_SECONDS,
            )
        self.client = client

    def _call(self, operation: str, fn, *args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except (googlemaps.exceptions.ApiError,
                googlemaps.exceptions.TransportError,
                googlemaps.exceptions.Timeout) as e:
            logger.error("maps_api_error", operation=operation, error=str(e), error_type=type(e).__name__)
            raise PlacesServiceError(f"Failed to fetch {operation}") from e

    def lookup(self, location: str) -> PlaceDetails:
        """Resolve free-text location into place id, photo, coordinates and timezone"""
        if not location or not isinstance(location, str) or not location.strip():
            raise ValueError("Valid location is required")
        query = location.strip()

        found = self._call(
            "place search",
            self.client.find_place,
            query,
            "textquery",
            fields=["place_id", "photos", "geometry", "name", "formatted_address"],
        )
        candidates = (found or {}).get("candidates") or []
        if not candidates:
            logger.warning("place_not_found", location=query)
            raise PlaceNotFoundError(f"Location not found: {query}")

        candidate = candidates[0]
        photos = candidate.get("photos") or []
        details = PlaceDetails(
            place_id=candidate["place_id"],
            photo_reference=photos[0].get("photo_reference") if photos else None,
            name=candidate.get("name"),
            formatted_address=candidate.get("formatted_address"),
        )

        geometry = candidate.get("geometry")
        if not geometry:
            result = self._call(
                "place details",
                self.client.place,
                details.place_id,
                fields=["geometry"],
            )
            geometry = (result or {}).get("result", {}).get("geometry")
        if not geometry or "location" not in geometry:
            raise PlacesServiceError("Failed to get location coordinates")

        details.latitude = geometry["location"]["lat"]
        details.longitude = geometry["location"]["lng"]
        details.timezone = self.timezone_for(details.latitude, details.longitude)

        logger.info(
            "place_resolved",
            location=query,
            place_id=details.place_id,
            has_photo=details.photo_reference is not None,
            timezone=details.timezone,
        )
        return details

    def timezone_for(self, latitude: float, longitude: float, at: Optional[datetime] = None) -> Optional[str]:
        """IANA timezone id for a coordinate, or None when the API has no answer"""
        result = self._call(
            "timezone",
            self.client.timezone,
            (latitude, longitude),
            timestamp=at or datetime.now(timezone.utc),
        )
        if not result or result.get("status") != "OK":
            logger.warning("timezone_lookup_empty", latitude=latitude, longitude=longitude,
                           status=(result or {}).get("status"))
            return None
        return result.get("timeZoneId")

    def travel_time(
        self,
        origin: Waypoint,
        destination: Waypoint,
        mode: str = "driving",
        departure_time: Optional[datetime] = None,
    ) -> TravelEstimate:
        """Travel duration between two points; unreachable routes give an unavailable estimate"""
        if mode not in TRAVEL_MODES:
            raise ValueError(f"Unsupported travel mode: {mode}")

        kwargs = {"mode": mode}
        if departure_time is not None and departure_time > datetime.now(timezone.utc):
            kwargs["departure_time"] = departure_time

        matrix = self._call(
            "travel time",
            self.client.distance_matrix,
            [_waypoint(origin)],
            [_waypoint(destination)],
            **kwargs,
        )
        try:
            element = matrix["rows"][0]["elements"][0]
        except (KeyError, IndexError, TypeError):
            logger.warning("distance_matrix_empty", mode=mode)
            return TravelEstimate(mode=mode)

        if element.get("status") != "OK":
            logger.info("route_unavailable", mode=mode, status=element.get("status"))
            return TravelEstimate(mode=mode)

        return TravelEstimate(
            mode=mode,
            duration_seconds=element["duration"]["value"],
            duration_text=element["duration"]["text"],
            distance_meters=(element.get("distance") or {}).get("value"),
        )
