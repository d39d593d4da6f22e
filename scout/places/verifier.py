from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from urllib.parse import urlencode

from ..recommendations.models import Candidate, Coordinates, Photo
from .client import PlaceMatch, PlacesClient
from .config import DEFAULT_PLACES_CONFIG, PlacesConfig

logger = logging.getLogger(__name__)


def build_query(candidate: Candidate) -> str:
    if candidate.address:
        return f"{candidate.name}, {candidate.address}"
    return candidate.name


def build_maps_link(match: PlaceMatch, config: PlacesConfig = DEFAULT_PLACES_CONFIG) -> str:
    params = {
        "api": "1",
        "query": f"{match.lat},{match.lng}",
        "query_place_id": match.place_id,
    }
    return f"{config.maps_url}?{urlencode(params)}"


def build_photo_url(reference: str, config: PlacesConfig = DEFAULT_PLACES_CONFIG) -> str:
    """Local proxy URL for a photo; the upstream key stays server-side."""
    params = {"photoreference": reference, "maxwidth": config.photo_max_width}
    return f"{config.photo_proxy_path}?{urlencode(params)}"


def _mark_unverified(candidate: Candidate) -> Candidate:
    candidate.verified = False
    candidate.place_id = None
    candidate.maps_link = None
    candidate.photos = []
    return candidate


class PlacesVerifier:
    """Cross-checks candidates against the places service and enriches matches."""

    def __init__(
        self,
        client: PlacesClient | None = None,
        config: PlacesConfig = DEFAULT_PLACES_CONFIG,
    ) -> None:
        self.config = config
        self.client = client or PlacesClient(config)

    @property
    def is_configured(self) -> bool:
        return self.client.is_configured

    def verify(self, candidate: Candidate) -> Candidate:
        """
        Verify one candidate in place and return it.

        A missing match, an error or a timeout all leave the candidate
        unverified; nothing is raised.
        """
        query = build_query(candidate)
        try:
            match = self.client.find_place(query)
        except Exception:
            logger.warning("Verification failed for %r, keeping it unverified", query, exc_info=True)
            return _mark_unverified(candidate)

        if match is None:
            logger.info("No places match for %r", query)
            return _mark_unverified(candidate)

        # First result wins
        candidate.verified = True
        candidate.place_id = match.place_id or None
        if match.formatted_address:
            candidate.address = match.formatted_address
        candidate.coordinates = Coordinates(lat=match.lat, lng=match.lng)
        candidate.place_types = list(match.types)
        candidate.maps_link = build_maps_link(match, self.config)
        candidate.photos = [
            Photo(
                url=build_photo_url(ref.reference, self.config),
                width=ref.width,
                height=ref.height,
                reference=ref.reference,
            )
            for ref in match.photos[: self.config.max_photos]
        ]
        return candidate

    def verify_all(self, candidates: list[Candidate]) -> list[Candidate]:
        """Verify every candidate on a bounded worker pool, keeping input order."""
        if not candidates:
            return []
        if not self.is_configured:
            logger.info("Places service not configured; %d candidates left unverified", len(candidates))
            return [_mark_unverified(c) for c in candidates]

        workers = max(1, min(self.config.max_workers, len(candidates)))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            verified = list(executor.map(self.verify, candidates))

        logger.info(
            "Verified %d of %d candidates",
            sum(1 for c in verified if c.verified),
            len(verified),
        )
        return verified
