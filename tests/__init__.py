"""
Track Tile Server Test Suite

Structure:
- unit/: projection math, tile index, bounds, renderer, cache, tracks, service
- integration/: HTTP API through FastAPI's TestClient
- helpers.py: GPX document builders shared by both
"""
