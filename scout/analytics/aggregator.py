from __future__ import annotations

from collections import Counter
from typing import Any


def compute_analytics(events: list[dict[str, Any]]) -> dict[str, Any]:
    searches = [e for e in events if e["type"] == "search"]
    total = len(searches)

    # Average response time
    times = [s["response_time_ms"] for s in searches if "response_time_ms" in s]
    avg_time = round(sum(times) / len(times), 1) if times else 0.0

    # Top descriptions
    desc_counter: Counter[str] = Counter()
    for s in searches:
        desc_counter[s.get("description", "unknown").lower()] += 1
    top_descriptions = [{"description": d, "count": c} for d, c in desc_counter.most_common(10)]

    # Cache stats
    cache_hits = sum(1 for s in searches if s.get("cached"))
    cache_misses = total - cache_hits

    # Verification rate over returned results
    returned = sum(s.get("results_returned", 0) for s in searches)
    verified = sum(s.get("verified_returned", 0) for s in searches)

    forced = sum(1 for s in searches if s.get("force_refresh"))

    return {
        "total_searches": total,
        "avg_response_time_ms": avg_time,
        "top_descriptions": top_descriptions,
        "forced_refreshes": forced,
        "cache_stats": {
            "hits": cache_hits,
            "misses": cache_misses,
            "hit_rate": round(cache_hits / total * 100, 1) if total else 0.0,
        },
        "verification": {
            "results_returned": returned,
            "verified_returned": verified,
            "verified_rate": round(verified / returned * 100, 1) if returned else 0.0,
        },
    }
