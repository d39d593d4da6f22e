"""
Filming location recommendation pipeline.

Responsibilities:
- Key previous answers by a normalised content hash and cache them with a TTL.
- Generate candidate locations with the LLM and recover them from messy output.
- Cross-check every candidate against the places service.
- Compose a bounded, verified-first result list.
"""
