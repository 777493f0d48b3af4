"""
Address autocomplete proxy.
"""
import pytest

from app.config import settings
from app.services.places import PlacesClient, PlacesError


@pytest.fixture
def places_key(monkeypatch):
    monkeypatch.setattr(settings, "google_places_api_key", "test-key")


class TestPlacesRoutes:
    def test_short_input(self, admin_client):
        resp = admin_client.get("/api/places/autocomplete", params={"input": " ab "})
        assert resp.status_code == 400

    def test_missing_key(self, admin_client):
        resp = admin_client.get("/api/places/autocomplete", params={"input": "123 Main"})
        assert resp.status_code == 500
        assert resp.json()["detail"] == "Google Places API key is not configured"

    def test_place_id_required(self, admin_client):
        assert admin_client.get("/api/places/details").status_code == 400

    def test_requires_session(self, anon_client):
        assert anon_client.get("/api/places/autocomplete", params={"input": "123 Main"}).status_code == 401

    def test_autocomplete_reshaped(self, admin_client, places_key, monkeypatch):
        def fake_request(self, method, path, field_mask, **kwargs):
            assert kwargs["json"]["input"] == "123 Main"
            return {"suggestions": [{"placePrediction": {"placeId": "abc", "text": {"text": "123 Main St, Austin, TX"}}}]}

        monkeypatch.setattr(PlacesClient, "_request", fake_request)
        body = admin_client.get("/api/places/autocomplete", params={"input": "123 Main"}).json()
        assert body["status"] == "OK"
        prediction = body["predictions"][0]
        assert prediction["place_id"] == "abc"
        assert prediction["structured_formatting"] == {"main_text": "123 Main St", "secondary_text": "Austin, TX"}

    def test_provider_error_passed_through(self, admin_client, places_key, monkeypatch):
        def fake_request(self, method, path, field_mask, **kwargs):
            raise PlacesError(403, "API key invalid")

        monkeypatch.setattr(PlacesClient, "_request", fake_request)
        resp = admin_client.get("/api/places/details", params={"place_id": "abc"})
        assert resp.status_code == 403
        assert resp.json() == {"error": "Places API error", "details": "API key invalid"}
