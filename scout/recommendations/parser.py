"""Recovery parsing of generator output into a tagged parse outcome."""
from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Union

from pydantic import ValidationError

from .models import Candidate, Coordinates, FilmingDetails, Permit

logger = logging.getLogger(__name__)

_LEADING_FENCE_RE = re.compile(r"^```[a-zA-Z]*[ \t]*\n?")
_TRAILING_FENCE_RE = re.compile(r"\n?```\s*$")
_TRAILING_COMMA_RE = re.compile(r",(\s*[}\]])")


@dataclass(frozen=True)
class Parsed:
    """Strict parse succeeded and every element was usable."""

    items: list[Any] = field(default_factory=list)


@dataclass(frozen=True)
class PartiallyRecovered:
    """Items salvaged from malformed text; ``skipped`` objects were dropped."""

    items: list[Any] = field(default_factory=list)
    skipped: int = 0


@dataclass(frozen=True)
class Failed:
    reason: str


ParseResult = Union[Parsed, PartiallyRecovered, Failed]


# ---------------------------------------------------------------------------
# Text cleaning
# ---------------------------------------------------------------------------


def strip_code_fences(text: str) -> str:
    text = text.strip()
    text = _LEADING_FENCE_RE.sub("", text, count=1)
    text = _TRAILING_FENCE_RE.sub("", text, count=1)
    return text.strip()


def _opening_index(text: str) -> int:
    # Whichever of "[" or "{" comes first opens the payload
    positions = [i for i in (text.find("["), text.find("{")) if i != -1]
    return min(positions) if positions else -1


def extract_array_text(text: str) -> str:
    start = _opening_index(text)
    if start == -1:
        return text
    closer = "]" if text[start] == "[" else "}"
    end = text.rfind(closer)
    if end > start:
        return text[start : end + 1]
    return text


def strip_trailing_commas(text: str) -> str:
    return _TRAILING_COMMA_RE.sub(r"\1", text)


def clean_model_output(raw_text: str) -> str:
    text = strip_code_fences(raw_text)
    text = extract_array_text(text)
    return strip_trailing_commas(text).strip()


def _recovery_text(raw_text: str) -> str:
    # A truncated array has no closing bracket of its own, so the last "]"
    # may belong to a nested list inside the final complete object.
    text = strip_code_fences(raw_text)
    start = _opening_index(text)
    if start != -1:
        text = text[start:]
    return strip_trailing_commas(text)


# ---------------------------------------------------------------------------
# Object recovery
# ---------------------------------------------------------------------------


def recover_objects(text: str) -> tuple[list[dict[str, Any]], int]:
    """
    Scan ``text`` for top-level ``{...}`` blocks and parse each one alone.

    Braces inside string literals are ignored; a backslash inside a string
    escapes the next character. Returns the parsed objects in order and the
    number of blocks that were invalid or never closed.
    """
    objects: list[dict[str, Any]] = []
    skipped = 0
    depth = 0
    start = -1
    in_string = False
    escaped = False

    for i, char in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue

        if char == '"':
            in_string = True
        elif char == "{":
            if depth == 0:
                start = i
            depth += 1
        elif char == "}" and depth > 0:
            depth -= 1
            if depth == 0:
                chunk = text[start : i + 1]
                try:
                    obj = json.loads(chunk)
                except ValueError:
                    skipped += 1
                    continue
                if isinstance(obj, dict):
                    objects.append(obj)
                else:
                    skipped += 1

    if depth > 0:
        # truncated tail
        skipped += 1

    return objects, skipped


def parse_json_array(raw_text: str | None) -> ParseResult:
    """Parse model output into a list of JSON objects, salvaging what it can."""
    if not raw_text or not raw_text.strip():
        return Failed("Model returned an empty response")

    text = clean_model_output(raw_text)

    try:
        data = json.loads(text)
    except ValueError as exc:
        strict_error = str(exc)
    else:
        if isinstance(data, dict):
            data = [data]
        if isinstance(data, list):
            objects = [item for item in data if isinstance(item, dict)]
            skipped = len(data) - len(objects)
            if skipped == 0:
                return Parsed(objects)
            if objects:
                return PartiallyRecovered(objects, skipped)
            strict_error = "parsed JSON held no objects"
        else:
            strict_error = f"expected a JSON array, got {type(data).__name__}"

    logger.warning("Strict JSON parse failed (%s); attempting recovery", strict_error)
    objects, skipped = recover_objects(_recovery_text(raw_text))
    if not objects:
        return Failed(f"Could not recover any JSON object from model response: {strict_error}")

    logger.info("Recovered %d objects from malformed JSON (%d skipped)", len(objects), skipped)
    return PartiallyRecovered(objects, skipped)


# ---------------------------------------------------------------------------
# Candidate conversion
# ---------------------------------------------------------------------------


def _as_float(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _as_str(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value.strip() or None
    if isinstance(value, (int, float)):
        return str(value)
    return None


def _as_str_list(value: Any) -> list[str]:
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        return []
    return [s for s in (_as_str(v) for v in value) if s]


def _coerce_rating(value: Any) -> float:
    rating = _as_float(value)
    if rating is None:
        return 0.0
    return max(0.0, min(10.0, rating))


def _coerce_coordinates(value: Any) -> Coordinates | None:
    if not isinstance(value, dict):
        return None
    lat = _as_float(value.get("lat", value.get("latitude")))
    lng = _as_float(value.get("lng", value.get("lon", value.get("longitude"))))
    if lat is None or lng is None:
        return None
    if not (-90.0 <= lat <= 90.0 and -180.0 <= lng <= 180.0):
        return None
    return Coordinates(lat=lat, lng=lng)


def _coerce_permits(value: Any) -> list[Permit]:
    if not isinstance(value, list):
        return []
    permits: list[Permit] = []
    for item in value:
        if isinstance(item, str) and item.strip():
            permits.append(Permit(name=item.strip()))
        elif isinstance(item, dict) and _as_str(item.get("name")):
            required = item.get("required")
            permits.append(Permit(
                name=_as_str(item.get("name")),
                required=required if isinstance(required, bool) else None,
                estimated_cost=_as_str(item.get("estimatedCost", item.get("estimated_cost"))),
                processing_time=_as_str(item.get("processingTime", item.get("processing_time"))),
            ))
    return permits


def _coerce_filming_details(obj: dict[str, Any]) -> FilmingDetails | None:
    raw = obj.get("filmingDetails", obj.get("filming_details"))
    if not isinstance(raw, dict):
        raw = {}
    permits = _coerce_permits(raw.get("permits", obj.get("permits")))
    details = FilmingDetails(
        accessibility=_as_str(raw.get("accessibility")),
        parking=_as_str(raw.get("parking")),
        best_time_to_film=_as_str(raw.get("bestTimeToFilm", raw.get("best_time_to_film"))),
        crowd_level=_as_str(raw.get("crowdLevel", raw.get("crowd_level"))),
        power_access=_as_str(raw.get("powerAccess", raw.get("power_access"))),
        permits=permits,
        restrictions=_as_str_list(raw.get("restrictions")),
        nearby_amenities=_as_str_list(raw.get("nearbyAmenities", raw.get("nearby_amenities"))),
    )
    if details == FilmingDetails():
        return None
    return details


def to_candidate(obj: dict[str, Any]) -> Candidate | None:
    """Build an unverified Candidate from one model object, or None if unusable."""
    name = _as_str(obj.get("name"))
    if not name:
        return None

    tags = _as_str_list(obj.get("tags"))
    if not tags:
        tags = _as_str_list(obj.get("types"))
    if not tags:
        tags = _as_str_list(obj.get("placeType"))

    try:
        return Candidate(
            name=name,
            address=_as_str(obj.get("address")) or "",
            coordinates=_coerce_coordinates(obj.get("coordinates")),
            rating=_coerce_rating(obj.get("rating")),
            tags=tags,
            reason=_as_str(obj.get("reason")) or "",
            filming_details=_coerce_filming_details(obj),
            estimated_cost=_as_str(obj.get("estimatedCost", obj.get("estimatedDailyRate"))),
        )
    except ValidationError:
        logger.warning("Dropping candidate %r that failed validation", name, exc_info=True)
        return None


def _convert(
    items: list[dict[str, Any]],
    converter: Callable[[dict[str, Any]], Candidate | None],
) -> tuple[list[Candidate], int]:
    candidates: list[Candidate] = []
    dropped = 0
    for item in items:
        candidate = converter(item)
        if candidate is None:
            dropped += 1
        else:
            candidates.append(candidate)
    return candidates, dropped


def parse_candidates(raw_text: str | None) -> ParseResult:
    """
    Parse generator output into unverified candidates.

    ``Parsed([])`` means the model returned an empty array; ``Failed`` means
    nothing usable could be recovered. Those are different outcomes.
    """
    result = parse_json_array(raw_text)
    if isinstance(result, Failed):
        return result

    candidates, dropped = _convert(result.items, to_candidate)
    if result.items and not candidates:
        return Failed("No object in the model response described a usable location")

    if isinstance(result, Parsed) and dropped == 0:
        return Parsed(candidates)

    skipped = dropped + (result.skipped if isinstance(result, PartiallyRecovered) else 0)
    return PartiallyRecovered(candidates, skipped)
