from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass
class SyncState:
    """Connectivity status shared by reference with anything that renders it.

    Only the owning ``SyncCoordinator`` writes to it.
    """

    online: bool = True
    syncing: bool = False
    last_synced_at: Optional[str] = None
    last_error: Optional[str] = None

    def mark_offline(self, reason: str) -> None:
        self.online = False
        self.last_error = reason

    def mark_online(self) -> None:
        self.online = True
        self.last_error = None
