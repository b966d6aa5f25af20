"""MIDI input enumeration and callback-based capture using mido/rtmidi."""

from __future__ import annotations

import logging
from collections.abc import Callable

import mido

log = logging.getLogger(__name__)

# Only channel-voice messages are delivered
_ACCEPTED_TYPES = {
    "note_off",
    "note_on",
    "polytouch",
    "control_change",
    "program_change",
    "aftertouch",
    "pitchwheel",
}

MessageCallback = Callable[[bytes, str, str], None]


class MidiListener:
    """Opens MIDI input ports and delivers raw channel messages via callback.

    The callback runs on the rtmidi C++ thread and receives
    ``(data, source_id, source_name)``.
    """

    def __init__(self) -> None:
        self._ports: dict[str, mido.ports.BaseInput] = {}
        self._callback: MessageCallback | None = None

    @staticmethod
    def list_ports() -> list[str]:
        """Return available MIDI input port names."""
        return mido.get_input_names()  # type: ignore[no-any-return]

    @property
    def connected(self) -> bool:
        return any(not getattr(port, "closed", True) for port in self._ports.values())

    @property
    def port_names(self) -> list[str]:
        return list(self._ports)

    def open(self, port_name: str, callback: MessageCallback) -> None:
        """Open one input port in addition to any already open.

        Backend errors propagate.  rtmidi raises its own ``RtMidiError``
        family, which includes ``SystemError`` subclasses.
        """
        self._callback = callback
        if port_name in self._ports:
            return
        port = mido.open_input(port_name, callback=self._make_handler(port_name))
        self._ports[port_name] = port
        log.info("Opened MIDI port: %s", port_name)

    def open_all(self, callback: MessageCallback, name_filter: str = "") -> list[str]:
        """Open every input whose name contains ``name_filter``.

        Returns the names that were opened.  Raises OSError when no matching
        input exists or none could be opened.
        """
        self.close()
        wanted = [n for n in self.list_ports() if name_filter.lower() in n.lower()]
        if not wanted:
            raise OSError(
                f"No MIDI input matching {name_filter!r}" if name_filter else "No MIDI inputs found"
            )
        errors: list[str] = []
        for name in wanted:
            try:
                self.open(name, callback)
            except Exception as e:
                log.warning("Could not open MIDI port %s: %s", name, e)
                errors.append(f"{name}: {e}")
        if not self._ports:
            raise OSError("; ".join(errors))
        return self.port_names

    def close(self) -> None:
        """Close every open port and drop the callback."""
        self._callback = None
        for name, port in list(self._ports.items()):
            try:
                port.close()
            except Exception:
                log.warning("Error closing MIDI port %s", name, exc_info=True)
        if self._ports:
            log.info("MIDI ports closed")
        self._ports.clear()

    def _make_handler(self, port_name: str) -> Callable[[mido.Message], None]:
        def handler(msg: mido.Message) -> None:
            self._on_message(port_name, msg)
        return handler

    def _on_message(self, port_name: str, msg: mido.Message) -> None:
        """Internal callback from rtmidi thread. Filters and dispatches."""
        callback = self._callback
        if callback is None:
            return
        try:
            if msg.type not in _ACCEPTED_TYPES:
                return
            callback(bytes(msg.bytes()), port_name, port_name)
        except (AttributeError, IndexError, TypeError, ValueError):
            log.exception("Error in MIDI callback")
