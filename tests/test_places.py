from datetime import datetime, timedelta, timezone
from unittest.mock import Mock
from urllib.parse import parse_qs, urlparse

import googlemaps.exceptions
import pytest

from dayplan.core.settings import settings
from dayplan.services.places import (
    UNAVAILABLE_TRAVEL_TIME,
    PlaceNotFoundError,
    PlacesClient,
    PlacesServiceError,
    build_photo_url,
)

CANDIDATE = {
    "place_id": "ChIJ-ferry",
    "name": "Ferry Building",
    "formatted_address": "1 Ferry Building, San Francisco",
    "photos": [{"photo_reference": "photo-token"}],
    "geometry": {"location": {"lat": 37.7955, "lng": -122.3937}},
}


@pytest.fixture
def gmaps():
    client = Mock()
    client.find_place.return_value = {"candidates": [CANDIDATE], "status": "OK"}
    client.timezone.return_value = {"status": "OK", "timeZoneId": "America/Los_Angeles"}
    client.distance_matrix.return_value = {
        "rows": [{"elements": [{
            "status": "OK",
            "duration": {"value": 1260, "text": "21 mins"},
            "distance": {"value": 8200, "text": "8.2 km"},
        }]}]
    }
    return client


class TestLookup:

    def test_lookup_resolves_place(self, gmaps):
        details = PlacesClient(client=gmaps).lookup("  Ferry Building ")

        assert details.place_id == "ChIJ-ferry"
        assert details.coordinates == (37.7955, -122.3937)
        assert details.photo_reference == "photo-token"
        assert details.timezone == "America/Los_Angeles"
        assert gmaps.find_place.call_args.args[:2] == ("Ferry Building", "textquery")
        assert gmaps.timezone.call_args.args[0] == (37.7955, -122.3937)

    def test_lookup_without_photo(self, gmaps):
        gmaps.find_place.return_value = {"candidates": [dict(CANDIDATE, photos=[])]}
        details = PlacesClient(client=gmaps).lookup("Ferry Building")
        assert details.photo_reference is None
        assert details.photo_url == settings.PLACEHOLDER_IMAGE_URL

    def test_lookup_falls_back_to_place_details_for_geometry(self, gmaps):
        gmaps.find_place.return_value = {"candidates": [dict(CANDIDATE, geometry=None)]}
        gmaps.place.return_value = {"result": {"geometry": {"location": {"lat": 1.0, "lng": 2.0}}}}
        details = PlacesClient(client=gmaps).lookup("Ferry Building")
        assert details.coordinates == (1.0, 2.0)
        gmaps.place.assert_called_once()

    def test_lookup_without_geometry_fails(self, gmaps):
        gmaps.find_place.return_value = {"candidates": [dict(CANDIDATE, geometry=None)]}
        gmaps.place.return_value = {"result": {}}
        with pytest.raises(PlacesServiceError, match="coordinates"):
            PlacesClient(client=gmaps).lookup("Ferry Building")

    def test_not_found(self, gmaps):
        gmaps.find_place.return_value = {"candidates": [], "status": "ZERO_RESULTS"}
        with pytest.raises(PlaceNotFoundError):
            PlacesClient(client=gmaps).lookup("Nowhere at all")

    def test_blank_location(self, gmaps):
        with pytest.raises(ValueError, match="Valid location is required"):
            PlacesClient(client=gmaps).lookup("  ")
        gmaps.find_place.assert_not_called()

    def test_provider_error_is_wrapped(self, gmaps):
        gmaps.find_place.side_effect = googlemaps.exceptions.ApiError("OVER_QUERY_LIMIT")
        with pytest.raises(PlacesServiceError, match="place search"):
            PlacesClient(client=gmaps).lookup("Ferry Building")

    def test_timezone_lookup_without_answer(self, gmaps):
        gmaps.timezone.return_value = {"status": "ZERO_RESULTS"}
        assert PlacesClient(client=gmaps).lookup("Ferry Building").timezone is None


class TestTravelTime:

    def test_estimate(self, gmaps):
        estimate = PlacesClient(client=gmaps).travel_time((37.0, -122.0), "Pier 39", mode="transit")
        assert estimate.available
        assert estimate.duration_seconds == 1260
        assert estimate.duration_text == "21 mins"
        assert estimate.distance_meters == 8200

        args, kwargs = gmaps.distance_matrix.call_args
        assert args == ([{"lat": 37.0, "lng": -122.0}], ["Pier 39"])
        assert kwargs == {"mode": "transit"}

    def test_future_departure_is_passed(self, gmaps):
        departure = datetime.now(timezone.utc) + timedelta(hours=2)
        PlacesClient(client=gmaps).travel_time("A", "B", departure_time=departure)
        assert gmaps.distance_matrix.call_args.kwargs["departure_time"] == departure

    def test_past_departure_is_dropped(self, gmaps):
        PlacesClient(client=gmaps).travel_time("A", "B", departure_time=datetime(2020, 1, 1, tzinfo=timezone.utc))
        assert "departure_time" not in gmaps.distance_matrix.call_args.kwargs

    def test_unreachable_route(self, gmaps):
        gmaps.distance_matrix.return_value = {"rows": [{"elements": [{"status": "ZERO_RESULTS"}]}]}
        estimate = PlacesClient(client=gmaps).travel_time("A", "B")
        assert not estimate.available
        assert estimate.duration_text == UNAVAILABLE_TRAVEL_TIME

    def test_empty_matrix(self, gmaps):
        gmaps.distance_matrix.return_value = {"rows": []}
        assert PlacesClient(client=gmaps).travel_time("A", "B").duration_text == UNAVAILABLE_TRAVEL_TIME

    def test_unknown_mode(self, gmaps):
        with pytest.raises(ValueError):
            PlacesClient(client=gmaps).travel_time("A", "B", mode="teleport")

    def test_timeout_is_wrapped(self, gmaps):
        gmaps.distance_matrix.side_effect = googlemaps.exceptions.Timeout()
        with pytest.raises(PlacesServiceError):
            PlacesClient(client=gmaps).travel_time("A", "B")


class TestPhotoUrl:

    def test_placeholder_without_reference(self):
        assert build_photo_url(None) == settings.PLACEHOLDER_IMAGE_URL
        assert build_photo_url("") == settings.PLACEHOLDER_IMAGE_URL

    def test_url_params(self):
        url = urlparse(build_photo_url("token-123", maxwidth=800))
        params = parse_qs(url.query)
        assert url.path.endswith("/place/photo")
        assert params["photo_reference"] == ["token-123"]
        assert params["maxwidth"] == ["800"]

    def test_key_is_added_when_configured(self, monkeypatch):
        monkeypatch.setattr(settings, "GOOGLE_MAPS_API_KEY", "AIza-test-key")
        params = parse_qs(urlparse(build_photo_url("token-123")).query)
        assert params["key"] == ["AIza-test-key"]
        assert params["maxwidth"] == [str(settings.PLACE_PHOTO_MAX_WIDTH)]
