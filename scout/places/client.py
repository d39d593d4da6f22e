from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import requests

from .config import DEFAULT_PLACES_CONFIG, PlacesConfig

logger = logging.getLogger(__name__)


class PlacesError(Exception):
    """The places service answered with an error or could not be reached."""


@dataclass
class PhotoRef:
    reference: str
    width: int | None = None
    height: int | None = None


@dataclass
class PlaceMatch:
    place_id: str
    name: str
    formatted_address: str
    lat: float
    lng: float
    types: list[str] = field(default_factory=list)
    photos: list[PhotoRef] = field(default_factory=list)


@dataclass
class PhotoContent:
    content: bytes
    content_type: str


def _to_match(item: dict[str, Any]) -> PlaceMatch | None:
    location = (item.get("geometry") or {}).get("location") or {}
    try:
        lat = float(location["lat"])
        lng = float(location["lng"])
    except (KeyError, TypeError, ValueError):
        return None
    photos = [
        PhotoRef(
            reference=p["photo_reference"],
            width=p.get("width"),
            height=p.get("height"),
        )
        for p in item.get("photos") or []
        if p.get("photo_reference")
    ]
    return PlaceMatch(
        place_id=str(item.get("place_id", "")),
        name=item.get("name", ""),
        formatted_address=item.get("formatted_address") or item.get("vicinity") or "",
        lat=lat,
        lng=lng,
        types=list(item.get("types") or []),
        photos=photos,
    )


class PlacesClient:
    def __init__(
        self,
        config: PlacesConfig = DEFAULT_PLACES_CONFIG,
        session: requests.Session | None = None,
    ) -> None:
        self.config = config
        self.base_url = config.base_url.rstrip("/")
        self.session = session or requests.Session()

    @property
    def is_configured(self) -> bool:
        return bool(self.config.enabled and self.config.api_key)

    def _get(self, path: str, params: dict[str, Any]) -> requests.Response:
        params = {**params, "key": self.config.api_key}
        try:
            resp = self.session.get(
                f"{self.base_url}/{path}",
                params=params,
                timeout=self.config.timeout,
            )
            resp.raise_for_status()
        except requests.RequestException as exc:
            raise PlacesError(f"Places request to {path} failed: {exc}") from exc
        return resp

    def find_place(self, query: str) -> PlaceMatch | None:
        """
        Run a Text Search and return the first usable result.

        ``None`` means the service found nothing. Transport errors, timeouts
        and error statuses raise PlacesError.
        """
        if not self.is_configured:
            raise PlacesError("Google Maps API key not configured")

        data = self._get("textsearch/json", {"query": query}).json()
        status = data.get("status")
        if status == "ZERO_RESULTS":
            return None
        if status != "OK":
            raise PlacesError(
                f"Places API returned {status}: {data.get('error_message', '')}".strip()
            )

        for item in data.get("results") or []:
            match = _to_match(item)
            if match is not None:
                logger.debug("Places match for %r: %s", query, match.place_id)
                return match
        return None

    def fetch_photo(self, photo_reference: str, max_width: int | None = None) -> PhotoContent:
        """Download photo bytes for the proxy endpoint."""
        if not self.is_configured:
            raise PlacesError("Google Maps API key not configured")

        resp = self._get(
            "photo",
            {
                "maxwidth": max_width or self.config.photo_max_width,
                "photoreference": photo_reference,
            },
        )
        return PhotoContent(
            content=resp.content,
            content_type=resp.headers.get("content-type", "image/jpeg"),
        )
