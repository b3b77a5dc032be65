"""
tablecat Server - REST catalog for table-format metadata.

This package implements the authoritative side of the commit protocol:
- InMemoryCatalog: Tables, namespaces and per-table compare-and-swap
- FastAPI REST service exposing the catalog
- Schema CLI for offline schema work

Architecture:
    ┌─────────────┐     ┌─────────────┐     ┌─────────────────┐
    │   Client    │────▶│  FastAPI    │────▶│ InMemoryCatalog │
    │   (SDK)     │     │   (REST)    │     │ (per-table lock)│
    └─────────────┘     └─────────────┘     └─────────────────┘

Invariants:
    - The catalog's table pointer is the single source of truth
    - Every commit is evaluated and applied under the table's lock
    - Metadata documents are never modified after they are written

Version: 1.0.0
"""

__version__ = "1.0.0"

__all__ = ["__version__"]
