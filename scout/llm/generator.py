from __future__ import annotations

import logging

from groq import Groq

from ..recommendations.errors import GenerationError, ServiceNotConfiguredError
from .config import DEFAULT_LLM_CONFIG, LLMConfig

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are an expert location scout for film and TV production with deep "
    "knowledge of real filming locations worldwide. "
    "You only suggest places that actually exist and can be found on a map."
)

_CANDIDATE_SCHEMA = """\
[
  {
    "name": "Real place name",
    "address": "Street address, City, State/Province, Country",
    "coordinates": {"lat": 12.9716, "lng": 77.5946},
    "rating": 8.5,
    "tags": ["cafe", "modern", "large windows"],
    "reason": "2-3 sentences on why this location suits the scene.",
    "filmingDetails": {
      "accessibility": "How easy it is to bring in crew and equipment",
      "parking": "Parking availability for crew vehicles",
      "bestTimeToFilm": "Recommended time of day or season",
      "crowdLevel": "Expected crowd levels",
      "powerAccess": "Availability of electrical power",
      "permits": [
        {"name": "Permit name", "required": true, "estimatedCost": "Cost range", "processingTime": "Time to obtain"}
      ],
      "restrictions": ["Known filming restrictions"],
      "nearbyAmenities": ["Nearby facilities"]
    },
    "estimatedCost": "Estimated daily rate or 'Public - Free'"
  }
]"""


def _build_user_message(description: str, region: str | None, count: int) -> str:
    lines = [f'Scene Description: "{description}"', ""]
    lines.append(
        f"Suggest exactly {count} REAL filming locations that would suit this scene."
    )
    if region:
        lines.append(
            f"Prefer locations in {region}, but suggest other regions when they are a much better fit."
        )
    lines.append("Rate each location 0-10 for suitability and order them best first.")
    lines.append("")
    lines.append("Each location must follow this structure:")
    lines.append(_CANDIDATE_SCHEMA)
    lines.append("")
    lines.append("JSON RULES:")
    lines.append("- Return ONLY the JSON array, starting with [ and ending with ]")
    lines.append("- NO markdown formatting and NO code fences")
    lines.append("- NO trailing commas")
    lines.append("- Every object must be complete; omit an object rather than truncate it")
    return "\n".join(lines)


class GroqCandidateGenerator:
    """Generates raw candidate text for a scene description with one Groq call."""

    def __init__(self, config: LLMConfig = DEFAULT_LLM_CONFIG) -> None:
        self.config = config

    @property
    def is_configured(self) -> bool:
        return bool(self.config.enabled and self.config.api_key)

    def generate(
        self,
        description: str,
        region: str | None = None,
        count: int = 10,
    ) -> str:
        """
        Ask the model for ``count`` candidate locations.

        The returned text is whatever the model produced; it is expected to
        contain a JSON array but nothing guarantees it.
        Raises ServiceNotConfiguredError or GenerationError.
        """
        if not self.is_configured:
            raise ServiceNotConfiguredError(
                "Generative service is not configured. Set GROQ_API_KEY."
            )

        try:
            client = Groq(
                api_key=self.config.api_key,
                timeout=self.config.timeout,
                max_retries=self.config.max_retries,
            )
            response = client.chat.completions.create(
                model=self.config.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {
                        "role": "user",
                        "content": _build_user_message(description, region, count),
                    },
                ],
                max_tokens=self.config.max_tokens,
                temperature=self.config.temperature,
            )
        except Exception as exc:
            logger.warning("Groq candidate generation failed", exc_info=True)
            raise GenerationError(f"Failed to generate locations: {exc}") from exc

        content = response.choices[0].message.content or ""
        logger.info("Generated %d characters of candidate text", len(content))
        return content
