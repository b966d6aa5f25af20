"""Snapshot persistence for the event log, closed takes and settings.

Gzipped JSON at ``~/.take_catcher/snapshot.json.gz``.  Timestamps are stored
as absolute epoch milliseconds so a restored session can rebuild its
relative timeline.
"""

from __future__ import annotations

import gzip
import json
import logging
from pathlib import Path
from typing import Any

log = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1
DEFAULT_SNAPSHOT_PATH = Path.home() / ".take_catcher" / "snapshot.json.gz"
DEFAULT_MAX_BYTES = 5 * 1024 * 1024


class QuotaExceededError(OSError):
    """Serialized snapshot is larger than the store allows."""


class SnapshotError(ValueError):
    """Snapshot is unreadable or has an unexpected schema."""


def validate(data: Any) -> dict[str, Any]:
    """Check the snapshot schema. Raises SnapshotError."""
    if not isinstance(data, dict):
        raise SnapshotError("snapshot root must be an object")
    if data.get("version") != SNAPSHOT_VERSION:
        raise SnapshotError(f"unsupported snapshot version {data.get('version')!r}")
    if not isinstance(data.get("base_epoch_ms"), (int, float)):
        raise SnapshotError("missing base_epoch_ms")
    for name in ("events", "takes"):
        if not isinstance(data.get(name), list):
            raise SnapshotError(f"missing {name} list")
    if not isinstance(data.get("settings", {}), dict):
        raise SnapshotError("settings must be an object")
    return data


class SnapshotStore:
    """Opaque load/save of the capture data model."""

    def __init__(self, path: str | Path | None = None, max_bytes: int = DEFAULT_MAX_BYTES) -> None:
        self.path = Path(path) if path is not None else DEFAULT_SNAPSHOT_PATH
        self.max_bytes = max_bytes

    def exists(self) -> bool:
        return self.path.exists()

    def save(self, snapshot: dict[str, Any]) -> int:
        """Write a snapshot. Returns the number of bytes written.

        Raises QuotaExceededError when the compressed payload is over
        ``max_bytes``; the previous snapshot is left in place.
        """
        raw = json.dumps(snapshot, ensure_ascii=False, separators=(",", ":")).encode("utf-8")
        blob = gzip.compress(raw)
        if len(blob) > self.max_bytes:
            raise QuotaExceededError(
                f"snapshot is {len(blob)} bytes, quota is {self.max_bytes}"
            )
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_bytes(blob)
        tmp.replace(self.path)
        return len(blob)

    def load(self) -> dict[str, Any] | None:
        """Read the snapshot, or None if absent.

        A corrupt or incompatible snapshot is deleted and None returned.
        """
        if not self.path.exists():
            return None
        try:
            with gzip.open(self.path, "rb") as f:
                raw = f.read()
            return validate(json.loads(raw.decode("utf-8")))
        except (OSError, EOFError, UnicodeDecodeError, json.JSONDecodeError, SnapshotError) as e:
            log.warning("Discarding unreadable snapshot %s: %s", self.path, e)
            self.discard()
            return None

    def discard(self) -> None:
        try:
            self.path.unlink(missing_ok=True)
        except OSError:
            log.warning("Could not remove snapshot %s", self.path, exc_info=True)
