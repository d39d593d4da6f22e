from __future__ import annotations

import json
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from scout.analytics.store import clear_events
from scout.app import app, get_places_client, get_recommender
from scout.places.client import PhotoContent, PlacesError
from scout.recommendations.cache import InMemoryRecommendationCache
from scout.recommendations.errors import GenerationError, ServiceNotConfiguredError
from scout.recommendations.pipeline import LocationRecommender

client = TestClient(app)


def _login_scout(c):
    c.post("/auth/login", json={"username": "scout", "password": "scout123"})


def _login_producer(c):
    c.post("/auth/login", json={"username": "producer", "password": "producer123"})


class StubGenerator:
    is_configured = True

    def __init__(self, text: str = "", error: Exception | None = None):
        self.text = text
        self.error = error

    def generate(self, description, region=None, count=10):
        if self.error is not None:
            raise self.error
        return self.text


class StubVerifier:
    is_configured = True

    def verify_all(self, candidates):
        for c in candidates:
            c.verified = c.name.startswith("Real")
        return candidates


def _use_recommender(text: str = "", error: Exception | None = None) -> LocationRecommender:
    rec = LocationRecommender(
        generator=StubGenerator(text, error),
        verifier=StubVerifier(),
        cache=InMemoryRecommendationCache(),
    )
    app.dependency_overrides[get_recommender] = lambda: rec
    return rec


@pytest.fixture(autouse=True)
def _reset():
    clear_events()
    client.cookies.clear()
    yield
    app.dependency_overrides.clear()


# ── Public endpoints ─────────────────────────────────────────────────────


def test_health():
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_status_endpoint():
    _use_recommender()
    resp = client.get("/ai-agent/status")
    assert resp.status_code == 200
    body = resp.json()
    assert body["available"] is True
    assert body["services"] == {"groq": True, "google_maps": True}


# ── Find locations ───────────────────────────────────────────────────────


def test_find_locations_requires_login():
    _use_recommender("[]")
    resp = client.post("/ai-agent/find-locations", json={"description": "Rainy alley"})
    assert resp.status_code == 401


def test_find_locations_miss_then_hit():
    _use_recommender(json.dumps([{"name": "Fake Lane"}, {"name": "Real Street"}]))
    _login_scout(client)

    first = client.post("/ai-agent/find-locations", json={"description": "Rainy alley"})
    assert first.status_code == 200
    body = first.json()
    assert body["cached"] is False
    assert body["cache_status"] == "saved"
    assert [r["name"] for r in body["results"]] == ["Real Street", "Fake Lane"]
    assert body["metadata"]["total_verified"] == 1

    second = client.post(
        "/ai-agent/find-locations",
        json={"description": "RAINY ALLEY", "max_results": 1},
    )
    body = second.json()
    assert body["cached"] is True
    assert body["cache_status"] == "hit"
    assert len(body["results"]) == 1
    assert body["metadata"]["access_count"] == 1


@pytest.mark.parametrize(
    "payload",
    [
        {"description": ""},
        {"description": "   "},
        {"description": "x" * 501},
        {"description": "Rainy alley", "max_results": 0},
        {"description": "Rainy alley", "max_results": 11},
    ],
)
def test_find_locations_validation(payload):
    _use_recommender("[]")
    _login_scout(client)
    resp = client.post("/ai-agent/find-locations", json=payload)
    assert resp.status_code == 422


def test_find_locations_length_is_checked_after_trimming():
    _use_recommender(json.dumps([{"name": "Real Street"}]))
    _login_scout(client)
    description = "x" * 500

    resp = client.post("/ai-agent/find-locations", json={"description": f"   {description}  "})

    assert resp.status_code == 200
    assert resp.json()["description"] == description


def test_find_locations_unconfigured_is_503():
    _use_recommender(error=ServiceNotConfiguredError("Set GROQ_API_KEY"))
    _login_scout(client)
    resp = client.post("/ai-agent/find-locations", json={"description": "Rainy alley"})
    assert resp.status_code == 503


def test_find_locations_generation_failure_is_502():
    _use_recommender(error=GenerationError("timeout"))
    _login_scout(client)
    resp = client.post("/ai-agent/find-locations", json={"description": "Rainy alley"})
    assert resp.status_code == 502


def test_find_locations_parse_failure_is_502():
    _use_recommender("no json here at all")
    _login_scout(client)
    resp = client.post("/ai-agent/find-locations", json={"description": "Rainy alley"})
    assert resp.status_code == 502
    assert "parse" in resp.json()["detail"].lower()


# ── Producer endpoints ───────────────────────────────────────────────────


def test_stats_forbidden_for_scout():
    _use_recommender()
    _login_scout(client)
    assert client.get("/ai-agent/stats").status_code == 403
    assert client.delete("/ai-agent/cache/expired").status_code == 403


def test_stats_requires_login():
    _use_recommender()
    assert client.get("/ai-agent/stats").status_code == 401


def test_stats_and_clear_expired_for_producer():
    _use_recommender(json.dumps([{"name": "Real Street"}]))
    _login_producer(client)
    client.post("/ai-agent/find-locations", json={"description": "Rainy alley"})
    client.post("/ai-agent/find-locations", json={"description": "Rainy alley"})

    stats = client.get("/ai-agent/stats").json()
    assert stats["total_cached_requests"] == 1
    assert stats["popular_queries"][0]["description"] == "Rainy alley"

    resp = client.delete("/ai-agent/cache/expired")
    assert resp.status_code == 200
    assert resp.json()["deleted_count"] == 0


def test_analytics_tracks_searches():
    _use_recommender(json.dumps([{"name": "Real Street"}, {"name": "Fake Lane"}]))
    _login_producer(client)
    client.post("/ai-agent/find-locations", json={"description": "Rainy alley"})
    client.post("/ai-agent/find-locations", json={"description": "Rainy alley"})

    body = client.get("/analytics").json()
    assert body["total_searches"] == 2
    assert body["cache_stats"]["hits"] == 1
    assert body["top_descriptions"][0] == {"description": "rainy alley", "count": 2}


# ── Photo proxy ──────────────────────────────────────────────────────────


def _use_places_client(configured: bool = True, photo=None, error=None) -> MagicMock:
    places = MagicMock()
    places.is_configured = configured
    if error is not None:
        places.fetch_photo.side_effect = error
    else:
        places.fetch_photo.return_value = photo
    app.dependency_overrides[get_places_client] = lambda: places
    return places


def test_photo_proxy_streams_image_with_cache_header():
    places = _use_places_client(photo=PhotoContent(content=b"jpegbytes", content_type="image/jpeg"))

    resp = client.get("/photos/place-photo", params={"photoreference": "ref-1"})

    assert resp.status_code == 200
    assert resp.content == b"jpegbytes"
    assert resp.headers["content-type"] == "image/jpeg"
    assert resp.headers["cache-control"] == "public, max-age=86400"
    places.fetch_photo.assert_called_once_with("ref-1", 800)


def test_photo_proxy_requires_reference():
    _use_places_client()
    assert client.get("/photos/place-photo").status_code == 400


def test_photo_proxy_unconfigured_is_503():
    _use_places_client(configured=False)
    resp = client.get("/photos/place-photo", params={"photoreference": "ref-1"})
    assert resp.status_code == 503


def test_photo_proxy_upstream_failure_is_502():
    _use_places_client(error=PlacesError("boom"))
    resp = client.get("/photos/place-photo", params={"photoreference": "ref-1"})
    assert resp.status_code == 502
