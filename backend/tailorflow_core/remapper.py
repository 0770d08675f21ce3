"""Local-to-remote identifier table for one drain pass."""

from __future__ import annotations

from typing import Dict, Optional

from .identifiers import Identifier, LocalId, RemoteId


class IdentifierRemapper:
    """Append-only forward mapping ``LocalId -> RemoteId``.

    Cleared only by ``reset`` at the start of a pass. ``resolve`` returns the
    identifier unchanged when nothing is mapped for it, which covers both
    "already remote" and "not promoted (yet)".
    """

    def __init__(self) -> None:
        self._mapping: Dict[LocalId, RemoteId] = {}

    def reset(self) -> None:
        self._mapping = {}

    def record(self, local_id: LocalId, remote_id: RemoteId) -> None:
        if not isinstance(local_id, LocalId) or not isinstance(remote_id, RemoteId):
            raise TypeError("Remapper entries map a LocalId to a RemoteId")
        existing = self._mapping.get(local_id)
        if existing is not None and existing != remote_id:
            raise ValueError(f"{local_id} is already mapped to {existing}")
        self._mapping[local_id] = remote_id

    def lookup(self, local_id: LocalId) -> Optional[RemoteId]:
        return self._mapping.get(local_id)

    def resolve(self, identifier: Identifier) -> Identifier:
        if isinstance(identifier, LocalId):
            return self._mapping.get(identifier, identifier)
        return identifier

    def resolve_optional(self, identifier: Optional[Identifier]) -> Optional[Identifier]:
        return self.resolve(identifier) if identifier is not None else None

    def __contains__(self, identifier: object) -> bool:
        return identifier in self._mapping

    def __len__(self) -> int:
        return len(self._mapping)
