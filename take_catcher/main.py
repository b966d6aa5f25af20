"""Entry point: live capture on a Qt event loop, plus offline export commands."""

from __future__ import annotations

import argparse
import json
import logging
import signal
import sys
import time
from datetime import datetime
from pathlib import Path

from .core.capture_session import CaptureSession
from .core.clock import ManualClock
from .core.config import DEFAULT_CONFIG_DIR, CaptureSettings, ConfigManager
from .core.midi_listener import MidiListener
from .core.scheduler import ManualScheduler
from .core.sequence_encoder import EncoderUnavailableError
from .core.snapshot_store import DEFAULT_MAX_BYTES, SnapshotStore

log = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="take-catcher",
        description="Always-on MIDI capture with automatic takes and .mid export.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    parser.add_argument(
        "--config-dir", type=Path, default=None,
        help=f"configuration directory (default {DEFAULT_CONFIG_DIR})",
    )
    sub = parser.add_subparsers(dest="command")

    rec = sub.add_parser("record", help="capture from MIDI inputs (default)")
    rec.add_argument("--port", default=None, help="only open inputs whose name contains this")
    rec.add_argument("--bpm", type=float, default=None)
    rec.add_argument("--idle", type=float, default=None, help="seconds of silence that end a take")
    rec.add_argument("--buffer-minutes", type=float, default=None)
    rec.add_argument("--group-by-channel", action="store_true", default=None)
    rec.add_argument("--output-dir", type=Path, default=None)
    rec.add_argument("--auto-export", action="store_true", default=None,
                     help="write every take to disk as soon as it ends")

    sub.add_parser("ports", help="list MIDI input ports")
    sub.add_parser("takes", help="list takes in the saved buffer")

    exp = sub.add_parser("export", help="export from the saved buffer")
    which = exp.add_mutually_exclusive_group(required=True)
    which.add_argument("--take", type=int, help="take number (1-based)")
    which.add_argument("--last", type=float, metavar="SECONDS", help="export the last N seconds")
    exp.add_argument("--bpm", type=float, default=None)
    exp.add_argument("--group-by-channel", action="store_true", default=None)
    exp.add_argument("--output-dir", type=Path, default=None)

    cfg = sub.add_parser("config", help="show or change saved settings")
    cfg.add_argument("key", nargs="?", help="dotted setting name, e.g. capture.default_bpm")
    cfg.add_argument("value", nargs="?", help="new value, parsed as JSON when possible")
    cfg.add_argument("--reset", action="store_true", help="restore every setting to its default")
    return parser


def _settings(args: argparse.Namespace, config: ConfigManager) -> CaptureSettings:
    settings = CaptureSettings.from_config(config)
    overrides = {
        "default_bpm": getattr(args, "bpm", None),
        "take_idle_seconds": getattr(args, "idle", None),
        "buffer_minutes": getattr(args, "buffer_minutes", None),
        "group_by_channel": getattr(args, "group_by_channel", None),
        "output_dir": getattr(args, "output_dir", None),
        "auto_export": getattr(args, "auto_export", None),
    }
    for name, value in overrides.items():
        if value is not None:
            setattr(settings, name, value)
    return settings


def _store(config: ConfigManager) -> SnapshotStore | None:
    if not config.get("persistence.enabled", True):
        return None
    return SnapshotStore(
        config.config_dir / "snapshot.json.gz",
        max_bytes=int(config.get("persistence.max_bytes", DEFAULT_MAX_BYTES)),
    )


def _offline_session(config: ConfigManager, settings: CaptureSettings) -> CaptureSession | None:
    """Session restored from the snapshot, with timers that never run."""
    store = _store(config)
    snapshot = store.load() if store is not None else None
    if snapshot is None:
        print("No saved buffer found.", file=sys.stderr)
        return None
    clock = ManualClock(epoch_ms=time.time() * 1000.0)
    session = CaptureSession(ManualScheduler(clock), settings, clock=clock)
    if not session.restore(snapshot):
        print("Saved buffer is unreadable.", file=sys.stderr)
        return None
    # export options from the config and command line win over the snapshot
    for name in ("default_bpm", "group_by_channel", "output_dir"):
        setattr(session.settings, name, getattr(settings, name))
    return session


def cmd_ports(args: argparse.Namespace, config: ConfigManager) -> int:
    try:
        names = MidiListener.list_ports()
    except Exception as e:
        print(f"MIDI unavailable: {e}", file=sys.stderr)
        return 1
    for name in names:
        print(name)
    if not names:
        print("No MIDI inputs found.")
    return 0


def cmd_takes(args: argparse.Namespace, config: ConfigManager) -> int:
    session = _offline_session(config, _settings(args, config))
    if session is None:
        return 1
    epoch = session.clock.epoch_ms
    takes = session.takes
    if not takes:
        print("No takes yet.")
    for i, take in enumerate(takes):
        started = datetime.fromtimestamp((epoch + take.start_ms) / 1000.0)
        print(f"Take {i + 1}  Started: {started:%H:%M:%S}  "
              f"Duration: {round(take.duration_ms / 1000.0)} seconds")
    return 0


def cmd_export(args: argparse.Namespace, config: ConfigManager) -> int:
    settings = _settings(args, config)
    session = _offline_session(config, settings)
    if session is None:
        return 1
    try:
        if args.take is not None:
            result = session.save_take(args.take - 1)
        else:
            result = session.save_recent(args.last)
    except EncoderUnavailableError as e:
        print(str(e), file=sys.stderr)
        return 1
    if result is None:
        print(session.status, file=sys.stderr)
        return 1
    print(result.path)
    return 0


def cmd_record(args: argparse.Namespace, config: ConfigManager) -> int:
    from PyQt6.QtCore import QCoreApplication, QTimer

    from .core.qt_runtime import create_message_bridge, create_qt_scheduler

    app = QCoreApplication.instance() or QCoreApplication(sys.argv[:1])
    app.setApplicationName("TakeCatcher")
    app.setOrganizationName("TakeCatcher")

    settings = _settings(args, config)
    scheduler = create_qt_scheduler()
    session = CaptureSession(scheduler, settings, store=_store(config))
    session.load_persisted()

    bridge = create_message_bridge(session.handle_message, session.clock)
    port_filter = args.port if args.port is not None else config.get("midi.port_filter", "")
    if not session.attach(MidiListener(), port_filter, deliver=bridge.post):
        session.destroy()
        return 1

    app.aboutToQuit.connect(session.destroy)
    signal.signal(signal.SIGINT, lambda *_: app.quit())
    # Wake the event loop periodically so Python can run the SIGINT handler
    wake = QTimer()
    wake.timeout.connect(lambda: None)
    wake.start(250)

    log.info("Recording. Press Ctrl+C to stop.")
    return app.exec()


def _parse_value(text: str):
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return text


def cmd_config(args: argparse.Namespace, config: ConfigManager) -> int:
    if args.reset:
        config.reset()
        print("Settings reset to defaults.")
        return 0
    if args.key is None:
        print(json.dumps(config.get_all(), indent=2, ensure_ascii=False))
        return 0
    if not config.is_setting(args.key):
        print(f"Unknown setting: {args.key}", file=sys.stderr)
        return 1
    if args.value is not None:
        config.set(args.key, _parse_value(args.value))
    print(f"{args.key} = {json.dumps(config.get(args.key), ensure_ascii=False)}")
    return 0


COMMANDS = {
    "record": cmd_record,
    "ports": cmd_ports,
    "takes": cmd_takes,
    "export": cmd_export,
    "config": cmd_config,
}


def main(argv: list[str] | None = None) -> int:
    argv = sys.argv[1:] if argv is None else list(argv)
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )
    config = ConfigManager(config_dir=args.config_dir)
    command = COMMANDS[args.command or "record"]
    if args.command is None:
        args = build_parser().parse_args([*argv, "record"])
    return command(args, config)


if __name__ == "__main__":
    sys.exit(main())
