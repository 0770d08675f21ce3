from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .errors import LocalStorageError
from .identifiers import Identifier, LocalId, is_local
from .models import PRESETS, Collection, ExtrasPreset

logger = logging.getLogger(__name__)

ACTIVITY_LOG_LIMIT = 50

# Seeded presets are LocalIds (stored as "local_preset_N") so save_presets
# creates them remotely instead of updating rows that do not exist.
DEFAULT_EXTRAS_PRESETS = [
    ExtrasPreset(id=LocalId("preset_1"), label="Designer Work", amount=200, category="design"),
    ExtrasPreset(id=LocalId("preset_2"), label="Embroidery", amount=300, category="design"),
    ExtrasPreset(id=LocalId("preset_3"), label="Neck Zip", amount=50, category="finishing"),
    ExtrasPreset(id=LocalId("preset_4"), label="Side Zip", amount=50, category="finishing"),
    ExtrasPreset(id=LocalId("preset_5"), label="Lining", amount=100, category="material"),
    ExtrasPreset(id=LocalId("preset_6"), label="Pico/Fall", amount=80, category="finishing"),
    ExtrasPreset(id=LocalId("preset_7"), label="Padding", amount=60, category="material"),
    ExtrasPreset(id=LocalId("preset_8"), label="Piping", amount=40, category="finishing"),
    ExtrasPreset(id=LocalId("preset_9"), label="Hooks", amount=30, category="finishing"),
    ExtrasPreset(id=LocalId("preset_10"), label="Steam Press", amount=50, category="finishing"),
]


class EntityStore:
    """Durable JSON persistence of typed record collections.

    Each collection lives in its own file and is always rewritten as a whole,
    so a reader never observes a partially written collection. All methods are
    synchronous: a read-modify-write completes without yielding to the event
    loop.
    """

    def __init__(self, data_dir: Path | None = None) -> None:
        default_dir = os.getenv("TAILORFLOW_DATA_DIR") or (Path(__file__).parent.parent / "data")
        self.data_dir = Path(data_dir or default_dir)
        self.meta_path = self.data_dir / "sync_meta.json"

    def path_for(self, collection: Collection) -> Path:
        return self.data_dir / collection.storage_file

    # ------------------------------------------------------------------
    # Whole-collection access

    def load(self, collection: Collection) -> List[Any]:
        path = self.path_for(collection)
        if collection is PRESETS and not path.exists():
            self.save(collection, DEFAULT_EXTRAS_PRESETS)
            return list(DEFAULT_EXTRAS_PRESETS)

        data = self._read_json_file(path, [])
        if not isinstance(data, list):
            logger.warning("Ignoring malformed local collection %s", path)
            return []

        records: List[Any] = []
        for row in data:
            if not isinstance(row, dict):
                continue
            try:
                records.append(collection.entity.from_storage(row))
            except ValueError as exc:
                logger.warning("Skipping unreadable %s record (%s)", collection.name, exc)
        return records

    def save(self, collection: Collection, records: List[Any]) -> None:
        self._write_json_file(self.path_for(collection), [record.to_storage() for record in records])

    # ------------------------------------------------------------------
    # Record helpers

    def get(self, collection: Collection, record_id: Identifier) -> Optional[Any]:
        for record in self.load(collection):
            if record.id == record_id:
                return record
        return None

    def add(self, collection: Collection, record: Any, limit: int | None = None) -> Any:
        records = self.load(collection)
        records.insert(0, record)
        if limit is not None:
            records = records[:limit]
        self.save(collection, records)
        return record

    def upsert(self, collection: Collection, record: Any) -> Any:
        records = self.load(collection)
        for index, existing in enumerate(records):
            if existing.id == record.id:
                records[index] = record
                break
        else:
            records.insert(0, record)
        self.save(collection, records)
        return record

    def replace(self, collection: Collection, old_id: Identifier, record: Any) -> Any:
        """Swap the record stored under ``old_id`` for ``record``, keeping its position."""
        records = self.load(collection)
        for index, existing in enumerate(records):
            if existing.id == old_id:
                records[index] = record
                break
        else:
            records.insert(0, record)
        records = _dedupe(records)
        self.save(collection, records)
        return record

    def remove(self, collection: Collection, record_id: Identifier) -> bool:
        records = self.load(collection)
        remaining = [record for record in records if record.id != record_id]
        if len(remaining) == len(records):
            return False
        self.save(collection, remaining)
        return True

    def update_each(self, collection: Collection, change: Callable[[Any], Any]) -> int:
        """Apply ``change`` to every record; returns how many records changed."""
        records = self.load(collection)
        changed = 0
        updated: List[Any] = []
        for record in records:
            new_record = change(record)
            if new_record != record:
                changed += 1
            updated.append(new_record)
        if changed:
            self.save(collection, updated)
        return changed

    def pending(self, collection: Collection) -> List[Any]:
        return [record for record in self.load(collection) if is_local(record.id)]

    def mirror_snapshot(self, collection: Collection, remote_records: List[Any]) -> List[Any]:
        """Overwrite the cache with a remote snapshot.

        For drainable collections, records still waiting for promotion are
        kept after the remote rows so a snapshot never discards them.
        """
        records = list(remote_records)
        if collection.drainable:
            records.extend(self.pending(collection))
        self.save(collection, records)
        return records

    # ------------------------------------------------------------------
    # Sync metadata

    def last_synced_at(self) -> Optional[str]:
        meta = self._read_json_file(self.meta_path, {})
        value = meta.get("lastSyncedAt") if isinstance(meta, dict) else None
        return value if isinstance(value, str) else None

    def set_last_synced_at(self, timestamp: str) -> None:
        meta = self._read_json_file(self.meta_path, {})
        if not isinstance(meta, dict):
            meta = {}
        meta["lastSyncedAt"] = timestamp
        self._write_json_file(self.meta_path, meta)

    # ------------------------------------------------------------------
    # File helpers

    def _read_json_file(self, path: Path, default: Any) -> Any:
        try:
            if not path.exists():
                return default
            with path.open("r", encoding="utf-8") as handle:
                return json.load(handle)
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Falling back to default for %s due to read error: %s", path, exc)
            return default

    def _write_json_file(self, path: Path, data: Any) -> None:
        tmp_name: str | None = None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=path.parent,
                prefix=f".{path.name}.",
                suffix=".tmp",
                delete=False,
            ) as handle:
                tmp_name = handle.name
                json.dump(data, handle, indent=2, sort_keys=True)
            os.replace(tmp_name, path)
        except (OSError, TypeError, ValueError) as exc:
            if tmp_name:
                Path(tmp_name).unlink(missing_ok=True)
            raise LocalStorageError(f"Failed to write local data store {path}") from exc


def _dedupe(records: List[Any]) -> List[Any]:
    seen: set = set()
    unique: List[Any] = []
    for record in records:
        if record.id in seen:
            continue
        seen.add(record.id)
        unique.append(record)
    return unique
