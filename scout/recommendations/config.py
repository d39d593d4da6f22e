from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path

from dotenv import load_dotenv

load_dotenv(Path(__file__).resolve().parent.parent.parent / ".env")

CACHE_BACKEND_MEMORY = "memory"
CACHE_BACKEND_SQLITE = "sqlite"


@dataclass(frozen=True)
class RecommenderConfig:
    candidate_count: int = 10
    default_region: str = os.getenv("SCOUT_REGION", "India")
    cache_ttl: timedelta = timedelta(days=7)
    cache_backend: str = os.getenv("SCOUT_CACHE_BACKEND", CACHE_BACKEND_MEMORY)
    cache_path: Path = Path(
        os.getenv(
            "SCOUT_CACHE_PATH",
            str(Path(__file__).resolve().parent.parent / "data" / "recommendations.sqlite"),
        )
    )
    approach: str = "generate-then-verify"


DEFAULT_RECOMMENDER_CONFIG = RecommenderConfig()
