from __future__ import annotations

from functools import lru_cache

try:
    from .catalog import get_catalog
    from .engine import FamilyGraph
    from .lookup import LookupService
    from .store import FamilyLineStore
except ImportError:  # pragma: no cover
    from catalog import get_catalog
    from engine import FamilyGraph
    from lookup import LookupService
    from store import FamilyLineStore


@lru_cache(maxsize=1)
def get_lookup() -> LookupService:
    return LookupService()


@lru_cache(maxsize=1)
def get_family_graph() -> FamilyGraph:
    return FamilyGraph(FamilyLineStore(), get_lookup(), get_catalog())
