"""
Catalog backends for the tablecat server.

- InMemoryCatalog: Authoritative in-process catalog
"""

from .memory import InMemoryCatalog

__all__ = ["InMemoryCatalog"]
