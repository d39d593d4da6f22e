"""
LLM integration layer.

Responsibilities:
- Manage Groq API configuration and credentials.
- Build the location-scouting prompt from a scene description.
- Call Groq to generate raw candidate locations (text, not guaranteed JSON).
"""
