from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
import structlog

from ..auth.security import get_current_user
from ..config import settings
from ..models.models import User
from ..services.places import PlacesClient, PlacesError


router = APIRouter(prefix="/places", tags=["places"])


def _client() -> PlacesClient:
    if not settings.google_places_api_key:
        raise HTTPException(status_code=500, detail="Google Places API key is not configured")
    return PlacesClient(settings.google_places_api_key)


def _provider_error(e: PlacesError) -> JSONResponse:
    structlog.get_logger().warning("places_request_failed", status=e.status_code)
    return JSONResponse(status_code=e.status_code, content={"error": "Places API error", "details": e.body})


@router.get("/autocomplete")
def autocomplete(input: str = "", _: User = Depends(get_current_user)):
    text = input.strip()
    if len(text) < 3:
        raise HTTPException(status_code=400, detail="Input must be at least 3 characters")
    client = _client()
    try:
        return client.autocomplete(text)
    except PlacesError as e:
        return _provider_error(e)


@router.get("/details")
def details(place_id: str = "", _: User = Depends(get_current_user)):
    if not place_id.strip():
        raise HTTPException(status_code=400, detail="place_id is required")
    client = _client()
    try:
        return client.details(place_id.strip())
    except PlacesError as e:
        return _provider_error(e)
