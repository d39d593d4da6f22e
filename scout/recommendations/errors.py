from __future__ import annotations


class RecommendationError(Exception):
    """Base class for failures that abort a recommendation request."""


class ServiceNotConfiguredError(RecommendationError):
    """The generative service has no credentials or is disabled."""


class GenerationError(RecommendationError):
    """The generative call errored or timed out."""


class CandidateParseError(RecommendationError):
    """No candidate could be recovered from the generator output."""


class NoCandidatesError(RecommendationError):
    """Generation succeeded but produced nothing to verify or compose."""
