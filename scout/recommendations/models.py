from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field, field_validator

MAX_DESCRIPTION_LENGTH = 500


class Coordinates(BaseModel):
    lat: float
    lng: float


class Photo(BaseModel):
    url: str
    width: int | None = None
    height: int | None = None
    reference: str


class Permit(BaseModel):
    name: str
    required: bool | None = None
    estimated_cost: str | None = None
    processing_time: str | None = None


class FilmingDetails(BaseModel):
    accessibility: str | None = None
    parking: str | None = None
    best_time_to_film: str | None = None
    crowd_level: str | None = None
    power_access: str | None = None
    permits: list[Permit] = Field(default_factory=list)
    restrictions: list[str] = Field(default_factory=list)
    nearby_amenities: list[str] = Field(default_factory=list)


class Candidate(BaseModel):
    name: str
    address: str = ""
    coordinates: Coordinates | None = None
    rating: float = Field(default=0.0, ge=0.0, le=10.0)
    tags: list[str] = Field(default_factory=list)
    reason: str = ""
    filming_details: FilmingDetails | None = None
    estimated_cost: str | None = None

    # Set by the verifier
    verified: bool = False
    place_id: str | None = None
    maps_link: str | None = None
    photos: list[Photo] = Field(default_factory=list)
    place_types: list[str] = Field(default_factory=list)


class ResultMetadata(BaseModel):
    total_generated: int = 0
    total_verified: int = 0
    total_unverified: int = 0
    processing_time_ms: float = 0.0
    approach: str = "generate-then-verify"
    skipped_objects: int = 0
    recovered: bool = False

    # Only populated when served from cache
    cache_age_ms: float | None = None
    access_count: int | None = None
    last_accessed_at: datetime | None = None


class CacheEntry(BaseModel):
    description: str
    description_hash: str
    project_id: str | None = None
    results: list[Candidate] = Field(default_factory=list)
    metadata: ResultMetadata = Field(default_factory=ResultMetadata)
    created_at: datetime
    expires_at: datetime
    access_count: int = 0
    last_accessed_at: datetime


class FindLocationsRequest(BaseModel):
    description: str = Field(..., min_length=1)
    project_id: str | None = Field(
        default=None, description="Scopes the cache entry to one project"
    )
    force_refresh: bool = False
    max_results: int = Field(default=5, ge=1, le=10)

    @field_validator("description")
    @classmethod
    def _strip_description(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Description is required")
        if len(value) > MAX_DESCRIPTION_LENGTH:
            raise ValueError(f"Description must be at most {MAX_DESCRIPTION_LENGTH} characters")
        return value


class FindLocationsResponse(BaseModel):
    cached: bool
    cache_status: str
    description: str
    results: list[Candidate]
    metadata: ResultMetadata


class LoginRequest(BaseModel):
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)
