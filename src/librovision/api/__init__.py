"""FastAPI application: search proxy, health, cache stats and offline page."""
