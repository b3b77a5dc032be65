"""
tablecat Test Suite.

This package contains:
- unit/: Unit tests (no external dependencies)
- integration/: Integration tests (in-memory catalog, FastAPI app over ASGI)
"""
