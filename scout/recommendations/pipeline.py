from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Any, Protocol

from ..analytics.store import record_event
from ..llm.config import DEFAULT_LLM_CONFIG, LLMConfig
from ..llm.generator import GroqCandidateGenerator
from ..places.client import PlacesClient
from ..places.config import DEFAULT_PLACES_CONFIG, PlacesConfig
from ..places.verifier import PlacesVerifier
from .cache import RecommendationCache, create_cache, description_hash
from .composer import compose
from .config import DEFAULT_RECOMMENDER_CONFIG, RecommenderConfig
from .errors import CandidateParseError, NoCandidatesError
from .models import (
    CacheEntry,
    Candidate,
    FindLocationsRequest,
    FindLocationsResponse,
    ResultMetadata,
)
from .parser import Failed, PartiallyRecovered, parse_candidates

logger = logging.getLogger(__name__)


class CandidateGenerator(Protocol):
    is_configured: bool

    def generate(self, description: str, region: str | None = None, count: int = 10) -> str:
        ...


class CandidateVerifier(Protocol):
    is_configured: bool

    def verify_all(self, candidates: list[Candidate]) -> list[Candidate]:
        ...


class LocationRecommender:
    """
    Entry point of the recommendation pipeline.

    CHECK_CACHE -> hit: return cached results
                -> miss: GENERATE -> PARSE -> VERIFY_ALL -> COMPOSE -> PERSIST
    """

    def __init__(
        self,
        generator: CandidateGenerator,
        verifier: CandidateVerifier,
        cache: RecommendationCache,
        config: RecommenderConfig = DEFAULT_RECOMMENDER_CONFIG,
    ) -> None:
        self.generator = generator
        self.verifier = verifier
        self.cache = cache
        self.config = config

    # -- status & maintenance -------------------------------------------

    def is_available(self) -> bool:
        return bool(self.generator.is_configured and self.verifier.is_configured)

    def status(self) -> dict[str, Any]:
        available = self.is_available()
        return {
            "available": available,
            "message": (
                "AI Agent is ready"
                if available
                else "AI Agent is not fully configured. Add GROQ_API_KEY and GOOGLE_MAPS_API_KEY to .env"
            ),
            "services": {
                "groq": bool(self.generator.is_configured),
                "google_maps": bool(self.verifier.is_configured),
            },
        }

    def cache_stats(self) -> dict[str, Any]:
        return self.cache.stats()

    def clear_expired_cache(self) -> int:
        return self.cache.clear_expired()

    # -- pipeline --------------------------------------------------------

    def _lookup(self, key: str, project_id: str | None) -> CacheEntry | None:
        try:
            entry = self.cache.get(key, project_id)
        except Exception:
            logger.warning("Cache lookup failed, treating as a miss", exc_info=True)
            return None
        if entry is None:
            return None
        try:
            return self.cache.record_access(key, project_id) or entry
        except Exception:
            logger.warning("Could not record cache access for %s...", key[:8], exc_info=True)
            return entry

    def _from_cache(
        self, entry: CacheEntry, request: FindLocationsRequest
    ) -> FindLocationsResponse:
        age = datetime.now(timezone.utc) - entry.created_at
        metadata = entry.metadata.model_copy(update={
            "cache_age_ms": round(age.total_seconds() * 1000, 1),
            "access_count": entry.access_count,
            "last_accessed_at": entry.last_accessed_at,
        })
        return FindLocationsResponse(
            cached=True,
            cache_status="hit",
            description=entry.description,
            results=entry.results[: request.max_results],
            metadata=metadata,
        )

    def _generate_candidates(self, description: str) -> tuple[list[Candidate], int, bool]:
        raw_text = self.generator.generate(
            description,
            region=self.config.default_region,
            count=self.config.candidate_count,
        )

        outcome = parse_candidates(raw_text)
        if isinstance(outcome, Failed):
            raise CandidateParseError(f"Failed to parse AI response: {outcome.reason}")

        recovered = isinstance(outcome, PartiallyRecovered)
        skipped = outcome.skipped if recovered else 0
        if recovered:
            logger.warning(
                "Salvaged %d candidates from malformed model output (%d skipped)",
                len(outcome.items), skipped,
            )
        if not outcome.items:
            raise NoCandidatesError("No candidate locations were generated for this description")
        return list(outcome.items), skipped, recovered

    def find_locations(self, request: FindLocationsRequest) -> FindLocationsResponse:
        start_time = time.time()
        description = request.description.strip()
        key = description_hash(description)

        # --- Cache check ---
        if not request.force_refresh:
            entry = self._lookup(key, request.project_id)
            if entry is not None:
                logger.info("Cache hit for description hash %s...", key[:8])
                response = self._from_cache(entry, request)
                self._record_search(request, response, start_time)
                return response

        logger.info("Processing new request for %r", description)

        # --- Generate, parse, verify, compose ---
        candidates, skipped, recovered = self._generate_candidates(description)
        candidates = self.verifier.verify_all(candidates)
        ranked = compose(candidates, len(candidates))

        total_verified = sum(1 for c in ranked if c.verified)
        metadata = ResultMetadata(
            total_generated=len(ranked),
            total_verified=total_verified,
            total_unverified=len(ranked) - total_verified,
            processing_time_ms=round((time.time() - start_time) * 1000, 1),
            approach=self.config.approach,
            skipped_objects=skipped,
            recovered=recovered,
        )

        # --- Persist (best effort) ---
        now = datetime.now(timezone.utc)
        entry = CacheEntry(
            description=description,
            description_hash=key,
            project_id=request.project_id,
            results=ranked,
            metadata=metadata,
            created_at=now,
            expires_at=now + self.config.cache_ttl,
            access_count=0,
            last_accessed_at=now,
        )
        try:
            self.cache.put(entry)
            cache_status = "saved"
            logger.info("Cached %d results for hash %s...", len(ranked), key[:8])
        except Exception:
            logger.warning("Cache save failed, continuing without cache", exc_info=True)
            cache_status = "failed"

        response = FindLocationsResponse(
            cached=False,
            cache_status=cache_status,
            description=description,
            results=ranked[: request.max_results],
            metadata=metadata,
        )
        self._record_search(request, response, start_time)
        return response

    @staticmethod
    def _record_search(
        request: FindLocationsRequest,
        response: FindLocationsResponse,
        start_time: float,
    ) -> None:
        record_event("search", {
            "description": response.description,
            "project_id": request.project_id,
            "force_refresh": request.force_refresh,
            "cached": response.cached,
            "results_returned": len(response.results),
            "verified_returned": sum(1 for c in response.results if c.verified),
            "response_time_ms": round((time.time() - start_time) * 1000, 1),
        })


def build_recommender(
    llm_config: LLMConfig = DEFAULT_LLM_CONFIG,
    places_config: PlacesConfig = DEFAULT_PLACES_CONFIG,
    config: RecommenderConfig = DEFAULT_RECOMMENDER_CONFIG,
) -> LocationRecommender:
    """Wire the production collaborators from configuration, once per process."""
    return LocationRecommender(
        generator=GroqCandidateGenerator(llm_config),
        verifier=PlacesVerifier(PlacesClient(places_config), places_config),
        cache=create_cache(config),
        config=config,
    )
