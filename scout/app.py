from __future__ import annotations

import logging
import os

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response
from starlette.middleware.sessions import SessionMiddleware

from .analytics.aggregator import compute_analytics
from .analytics.store import get_events
from .auth.dependencies import require_producer, require_user
from .auth.users import authenticate
from .places.client import PlacesClient, PlacesError
from .recommendations.errors import RecommendationError, ServiceNotConfiguredError
from .recommendations.models import (
    FindLocationsRequest,
    FindLocationsResponse,
    LoginRequest,
)
from .recommendations.pipeline import LocationRecommender, build_recommender

logger = logging.getLogger(__name__)

app = FastAPI(title="Filming Location Scout API", version="1.0.0")
app.add_middleware(
    SessionMiddleware,
    secret_key=os.environ.get("SESSION_SECRET", "location-scout-secret-change-in-production"),
)

# Built once at startup and shared by every request
_recommender = build_recommender()


def get_recommender() -> LocationRecommender:
    return _recommender


def get_places_client() -> PlacesClient:
    return _recommender.verifier.client


# ── Public endpoints ─────────────────────────────────────────────────────


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/ai-agent/status")
def agent_status(recommender: LocationRecommender = Depends(get_recommender)) -> dict:
    return recommender.status()


@app.get("/photos/place-photo")
def place_photo(
    photoreference: str | None = Query(default=None),
    maxwidth: int = Query(default=800, ge=1, le=1600),
    client: PlacesClient = Depends(get_places_client),
) -> Response:
    if not photoreference:
        raise HTTPException(status_code=400, detail="Photo reference is required")
    if not client.is_configured:
        raise HTTPException(status_code=503, detail="Google Maps API key not configured")
    try:
        photo = client.fetch_photo(photoreference, maxwidth)
    except PlacesError:
        logger.warning("Photo proxy failed", exc_info=True)
        raise HTTPException(status_code=502, detail="Failed to fetch photo")
    return Response(
        content=photo.content,
        media_type=photo.content_type,
        headers={"Cache-Control": "public, max-age=86400"},
    )


# ── Auth endpoints ───────────────────────────────────────────────────────


@app.post("/auth/login")
def login(body: LoginRequest, request: Request) -> dict:
    user = authenticate(body.username, body.password)
    if not user:
        raise HTTPException(status_code=401, detail="Invalid credentials")
    request.session["user"] = user
    return {"status": "ok", "user": user}


@app.post("/auth/logout")
def logout(request: Request) -> dict:
    request.session.clear()
    return {"status": "logged_out"}


@app.get("/auth/me")
def auth_me(user: dict = Depends(require_user)) -> dict:
    return user


# ── Scout endpoints ──────────────────────────────────────────────────────


@app.post("/ai-agent/find-locations", response_model=FindLocationsResponse)
def find_locations(
    body: FindLocationsRequest,
    user: dict = Depends(require_user),
    recommender: LocationRecommender = Depends(get_recommender),
) -> FindLocationsResponse:
    try:
        return recommender.find_locations(body)
    except ServiceNotConfiguredError as exc:
        raise HTTPException(status_code=503, detail=str(exc))
    except RecommendationError as exc:
        logger.warning("Find locations failed: %s", exc)
        raise HTTPException(status_code=502, detail=str(exc))


# ── Producer endpoints ───────────────────────────────────────────────────


@app.get("/ai-agent/stats")
def agent_stats(
    user: dict = Depends(require_producer),
    recommender: LocationRecommender = Depends(get_recommender),
) -> dict:
    return recommender.cache_stats()


@app.delete("/ai-agent/cache/expired")
def clear_expired_cache(
    user: dict = Depends(require_producer),
    recommender: LocationRecommender = Depends(get_recommender),
) -> dict:
    deleted = recommender.clear_expired_cache()
    return {
        "deleted_count": deleted,
        "message": f"Cleared {deleted} expired cache entries",
    }


@app.get("/analytics")
def analytics(user: dict = Depends(require_producer)) -> dict:
    return compute_analytics(get_events())
