from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

load_dotenv(Path(__file__).resolve().parent.parent.parent / ".env")


@dataclass(frozen=True)
class PlacesConfig:
    api_key: str = os.getenv("GOOGLE_MAPS_API_KEY", "")
    base_url: str = "https://maps.googleapis.com/maps/api/place"
    maps_url: str = "https://www.google.com/maps/search/"
    timeout: float = 5.0
    max_photos: int = 2
    photo_max_width: int = 800
    photo_proxy_path: str = "/photos/place-photo"
    max_workers: int = 4
    enabled: bool = True


DEFAULT_PLACES_CONFIG = PlacesConfig()
