"""
Google Places API (New) client.
Responses are reshaped to the legacy autocomplete/details format the address picker expects.
"""
from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx

from ..config import settings


PLACES_BASE_URL = "https://places.googleapis.com/v1"


class PlacesError(Exception):
    def __init__(self, status_code: int, body: str):
        self.status_code = status_code
        self.body = body
        super().__init__(f"Places API error ({status_code})")


class PlacesClient:
    def __init__(self, api_key: Optional[str] = None):
        self.api_key = api_key or settings.google_places_api_key
        if not self.api_key:
            raise ValueError("Google Places API key is required")

    def _request(self, method: str, path: str, field_mask: str, **kwargs) -> Dict[str, Any]:
        headers = {
            "Content-Type": "application/json",
            "X-Goog-Api-Key": self.api_key,
            "X-Goog-FieldMask": field_mask,
        }
        with httpx.Client(timeout=15.0) as client:
            response = client.request(method, f"{PLACES_BASE_URL}{path}", headers=headers, **kwargs)
        if response.status_code != 200:
            raise PlacesError(response.status_code, response.text)
        return response.json()

    def autocomplete(self, text: str) -> Dict[str, Any]:
        data = self._request(
            "POST",
            "/places:autocomplete",
            "suggestions.placePrediction.placeId,suggestions.placePrediction.text",
            json={
                "input": text,
                "includedRegionCodes": ["us"],
                "includedPrimaryTypes": ["street_address", "premise", "subpremise"],
            },
        )
        predictions = []
        for suggestion in data.get("suggestions") or []:
            prediction = suggestion.get("placePrediction") or {}
            description = (prediction.get("text") or {}).get("text", "")
            main, _, rest = description.partition(",")
            predictions.append({
                "description": description,
                "place_id": prediction.get("placeId"),
                "structured_formatting": {
                    "main_text": main,
                    "secondary_text": rest.strip(),
                },
            })
        return {"status": "OK", "predictions": predictions}

    def details(self, place_id: str) -> Dict[str, Any]:
        data = self._request("GET", f"/places/{quote(place_id, safe='')}", "formattedAddress")
        return {"status": "OK", "result": {"formatted_address": data.get("formattedAddress") or ""}}
