"""Relationship catalog: network type -> closeness level.

Loaded once per process from ``data/people_networks.json`` (or the file named
by ``FAMILYLINE_NETWORKS_PATH``) into a read-only mapping.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping

try:
    from .errors import InvalidNetworkType
except ImportError:  # pragma: no cover
    from errors import InvalidNetworkType

log = logging.getLogger(__name__)

_DEFAULT_PATH = Path(__file__).resolve().parent / "data" / "people_networks.json"
_PATH_ENV = "FAMILYLINE_NETWORKS_PATH"

MIN_LEVEL = 1
MAX_LEVEL = 4


@dataclass(frozen=True)
class NetworkType:
    type: str
    level: int
    label: str


class RelationshipCatalog:
    def __init__(self, entries: list[NetworkType], *, version: int = 1) -> None:
        by_type: dict[str, NetworkType] = {}
        for e in entries:
            key = _normalize(e.type)
            if not key:
                raise RuntimeError("network type must not be empty")
            if key in by_type:
                raise RuntimeError(f"duplicate network type in catalog: {e.type!r}")
            if not (MIN_LEVEL <= e.level <= MAX_LEVEL):
                raise RuntimeError(
                    f"network level for {e.type!r} must be in {MIN_LEVEL}..{MAX_LEVEL}, got {e.level}"
                )
            by_type[key] = e
        self._by_type: Mapping[str, NetworkType] = MappingProxyType(by_type)
        self.version = version

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RelationshipCatalog":
        raw = data.get("network")
        if not isinstance(raw, list):
            raise RuntimeError("catalog must contain a 'network' list")
        entries: list[NetworkType] = []
        for item in raw:
            level = item.get("level")
            if isinstance(level, bool) or not isinstance(level, int):
                raise RuntimeError(f"network level must be an integer: {item!r}")
            entries.append(
                NetworkType(
                    type=str(item.get("type") or ""),
                    level=level,
                    label=str(item.get("label") or item.get("type") or ""),
                )
            )
        return cls(entries, version=int(data.get("version") or 1))

    @classmethod
    def from_file(cls, path: Path) -> "RelationshipCatalog":
        with path.open("r", encoding="utf-8") as f:
            return cls.from_dict(json.load(f))

    @property
    def types(self) -> list[str]:
        return [e.type for e in self._by_type.values()]

    def entries(self) -> list[NetworkType]:
        return sorted(self._by_type.values(), key=lambda e: (e.level, e.type))

    def level_for(self, network: str) -> int:
        entry = self._by_type.get(_normalize(network))
        if entry is None:
            raise InvalidNetworkType(network, self.types)
        return entry.level

    def type_for_level(self, level: int | None) -> str | None:
        """The lowest-sorting type at ``level``; stored entries keep only the level."""
        for e in self.entries():
            if e.level == level:
                return e.type
        return None


def _normalize(network: str | None) -> str:
    return (network or "").strip().lower()


@lru_cache(maxsize=1)
def get_catalog() -> RelationshipCatalog:
    override = os.environ.get(_PATH_ENV)
    path = Path(override) if override else _DEFAULT_PATH
    catalog = RelationshipCatalog.from_file(path)
    log.info("Loaded relationship catalog v%d from %s (%d types)", catalog.version, path, len(catalog.types))
    return catalog
