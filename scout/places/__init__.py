"""
Place verification layer.

Responsibilities:
- Query the Google Places Text Search API for a candidate location.
- Enrich verified candidates with canonical address, coordinates and photos.
- Proxy place photos so the API key never reaches the browser.
"""
