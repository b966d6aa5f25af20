"""Configuration persistence using JSON format.

Stored at ``~/.take_catcher/config.json``.  Missing keys are filled from
``DEFAULT_CONFIG`` so older files keep working when new options are added.
"""

from __future__ import annotations

import copy
import json
import logging
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .constants import DEFAULT_BPM, DEFAULT_BUFFER_MINUTES, DEFAULT_TAKE_IDLE_SECONDS
from .snapshot_store import DEFAULT_MAX_BYTES

log = logging.getLogger(__name__)

DEFAULT_CONFIG_DIR = Path.home() / ".take_catcher"
DEFAULT_OUTPUT_DIR = Path.home() / "TakeCatcher"

# Default configuration schema
DEFAULT_CONFIG = {
    "version": "1.0",
    "capture": {
        "buffer_minutes": DEFAULT_BUFFER_MINUTES,
        "default_bpm": DEFAULT_BPM,
        "group_by_channel": False,
        "take_idle_seconds": DEFAULT_TAKE_IDLE_SECONDS,
        "auto_export": False,
    },
    "midi": {
        "port_filter": "",  # substring; empty = all inputs
    },
    "export": {
        "output_dir": str(DEFAULT_OUTPUT_DIR),
    },
    "persistence": {
        "enabled": True,
        "max_bytes": DEFAULT_MAX_BYTES,
    },
}


def _positive(value: Any, fallback: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return fallback
    if not math.isfinite(number) or number <= 0:
        return fallback
    return number


@dataclass
class CaptureSettings:
    """Typed capture options used by ``CaptureSession``."""

    buffer_minutes: float = DEFAULT_BUFFER_MINUTES
    default_bpm: float = DEFAULT_BPM
    group_by_channel: bool = False
    take_idle_seconds: float = DEFAULT_TAKE_IDLE_SECONDS
    auto_export: bool = False
    output_dir: Path = field(default_factory=lambda: DEFAULT_OUTPUT_DIR)

    @classmethod
    def from_config(cls, config: ConfigManager) -> CaptureSettings:
        return cls(
            buffer_minutes=_positive(config.get("capture.buffer_minutes"), DEFAULT_BUFFER_MINUTES),
            default_bpm=_positive(config.get("capture.default_bpm"), DEFAULT_BPM),
            group_by_channel=bool(config.get("capture.group_by_channel", False)),
            take_idle_seconds=_positive(
                config.get("capture.take_idle_seconds"), DEFAULT_TAKE_IDLE_SECONDS,
            ),
            auto_export=bool(config.get("capture.auto_export", False)),
            output_dir=Path(config.get("export.output_dir") or DEFAULT_OUTPUT_DIR).expanduser(),
        )

    def to_dict(self) -> dict[str, Any]:
        """Settings block of the persisted snapshot."""
        return {
            "bufferMinutes": self.buffer_minutes,
            "defaultBpm": self.default_bpm,
            "groupByChannel": self.group_by_channel,
            "takeIdleSeconds": self.take_idle_seconds,
        }

    def update_from_dict(self, data: dict[str, Any]) -> None:
        """Apply snapshot settings, ignoring invalid values."""
        self.buffer_minutes = _positive(data.get("bufferMinutes"), self.buffer_minutes)
        self.default_bpm = _positive(data.get("defaultBpm"), self.default_bpm)
        if isinstance(data.get("groupByChannel"), bool):
            self.group_by_channel = data["groupByChannel"]
        self.take_idle_seconds = _positive(data.get("takeIdleSeconds"), self.take_idle_seconds)


def _merged(base: dict, override: dict) -> dict:
    """Copy of ``base`` with ``override`` applied, descending into sub-tables."""
    out = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(out.get(key), dict) and isinstance(value, dict):
            out[key] = _merged(out[key], value)
        else:
            out[key] = value
    return out


class ConfigManager:
    """Dotted-key access to ``config.json`` in the configuration directory.

    Keys missing from the file are filled from ``DEFAULT_CONFIG``.  An
    unreadable file is logged and the defaults are used in its place.
    """

    def __init__(self, config_dir: Path | None = None) -> None:
        self.config_dir = DEFAULT_CONFIG_DIR if config_dir is None else config_dir
        self.config_file = self.config_dir / "config.json"
        self.config_dir.mkdir(parents=True, exist_ok=True)
        if self.config_file.exists():
            self._config = _merged(DEFAULT_CONFIG, self._read())
        else:
            self._config = copy.deepcopy(DEFAULT_CONFIG)
            self._write()

    def _read(self) -> dict[str, Any]:
        try:
            loaded = json.loads(self.config_file.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            log.warning("Failed to load config: %s. Using defaults.", e)
            return {}
        if not isinstance(loaded, dict):
            log.warning("Ignoring %s: top level is not an object", self.config_file)
            return {}
        return loaded

    def _write(self) -> None:
        text = json.dumps(self._config, indent=2, ensure_ascii=False)
        try:
            self.config_file.write_text(text, encoding="utf-8")
        except OSError as e:
            log.warning("Failed to save config: %s", e)

    @staticmethod
    def is_setting(key_path: str) -> bool:
        """True if ``key_path`` names a leaf of ``DEFAULT_CONFIG``."""
        node: Any = DEFAULT_CONFIG
        for part in key_path.split("."):
            if not isinstance(node, dict) or part not in node:
                return False
            node = node[part]
        return not isinstance(node, dict)

    def get(self, key_path: str, default: Any = None) -> Any:
        """Value at a dotted key such as ``"capture.default_bpm"``."""
        node: Any = self._config
        for part in key_path.split("."):
            if not isinstance(node, dict) or node.get(part) is None:
                return default
            node = node[part]
        return node

    def set(self, key_path: str, value: Any) -> None:
        """Store ``value`` under a dotted key and write the file."""
        *parents, leaf = key_path.split(".")
        node = self._config
        for part in parents:
            child = node.get(part)
            if not isinstance(child, dict):
                child = node[part] = {}
            node = child
        node[leaf] = value
        self._write()

    def get_all(self) -> dict[str, Any]:
        return copy.deepcopy(self._config)

    def reset(self) -> None:
        self._config = copy.deepcopy(DEFAULT_CONFIG)
        self._write()
