"""Immutable, versioned view of the scheme corpus."""

from types import MappingProxyType
from typing import Dict, Iterator, Mapping, Optional

from scheme_engine.domain.models import Scheme


class CorpusSnapshot:
    """Read-only mapping of scheme id to Scheme, tagged with a corpus version.

    A snapshot never changes once issued; the corpus publishes a new snapshot
    for every applied delta. Snapshots are hashable by identity so per-snapshot
    indexes can be cached weakly.
    """

    __slots__ = ("_version", "_schemes", "__weakref__")

    def __init__(self, version: int, schemes: Optional[Mapping[str, Scheme]] = None):
        if version < 0:
            raise ValueError("Snapshot version cannot be negative")
        self._version = version
        self._schemes: Mapping[str, Scheme] = MappingProxyType(dict(schemes or {}))

    @property
    def version(self) -> int:
        return self._version

    @property
    def schemes(self) -> Mapping[str, Scheme]:
        return self._schemes

    def get(self, scheme_id: str) -> Optional[Scheme]:
        return self._schemes.get(scheme_id)

    def __contains__(self, scheme_id: object) -> bool:
        return scheme_id in self._schemes

    def __iter__(self) -> Iterator[Scheme]:
        return iter(self._schemes.values())

    def __len__(self) -> int:
        return len(self._schemes)

    def hashes(self) -> Dict[str, str]:
        """Map of scheme id to content hash."""
        return {scheme_id: scheme.content_hash for scheme_id, scheme in self._schemes.items()}

    def __repr__(self) -> str:
        return f"CorpusSnapshot(version={self._version}, schemes={len(self._schemes)})"
