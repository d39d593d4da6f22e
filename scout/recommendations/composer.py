from __future__ import annotations

from .models import Candidate


def compose(candidates: list[Candidate], max_results: int) -> list[Candidate]:
    """
    Verified candidates first, then unverified ones, capped at ``max_results``.

    Each group keeps the generator's order. Rating is not a sort key.
    """
    if max_results < 0:
        raise ValueError("max_results must be non-negative")

    verified = [c for c in candidates if c.verified]
    unverified = [c for c in candidates if not c.verified]
    return (verified + unverified)[:max_results]
