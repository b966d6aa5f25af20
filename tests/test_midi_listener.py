"""Tests for take_catcher.core.midi_listener — MidiListener with mocked mido."""

from __future__ import annotations

from unittest import mock

import mido
import pytest


def _port():
    port = mock.MagicMock()
    port.closed = False
    return port


class _BackendSystemError(SystemError):
    """Stands in for ``rtmidi.SystemError``, which is not an OSError."""


class TestMidiListener:
    def _make_listener(self):
        from take_catcher.core.midi_listener import MidiListener
        return MidiListener()

    def test_initial_state(self):
        listener = self._make_listener()
        assert listener.connected is False
        assert listener.port_names == []

    def test_list_ports(self):
        with mock.patch("mido.get_input_names", return_value=["Port A", "Port B"]):
            from take_catcher.core.midi_listener import MidiListener
            assert MidiListener.list_ports() == ["Port A", "Port B"]

    def test_open_success(self):
        listener = self._make_listener()
        with mock.patch("mido.open_input", return_value=_port()) as mock_open:
            listener.open("Test Port", mock.MagicMock())
            mock_open.assert_called_once()
            assert mock_open.call_args.args[0] == "Test Port"
            assert listener.connected is True
            assert listener.port_names == ["Test Port"]

    def test_open_failure(self):
        listener = self._make_listener()
        with mock.patch("mido.open_input", side_effect=OSError("nope")):
            with pytest.raises(OSError):
                listener.open("Bad Port", mock.MagicMock())
        assert listener.connected is False
        assert listener.port_names == []

    def test_open_keeps_other_ports(self):
        listener = self._make_listener()
        port1, port2 = _port(), _port()
        with mock.patch("mido.open_input", side_effect=[port1, port2]):
            listener.open("Port1", mock.MagicMock())
            listener.open("Port2", mock.MagicMock())
        port1.close.assert_not_called()
        assert listener.port_names == ["Port1", "Port2"]

    def test_close(self):
        listener = self._make_listener()
        fake_port = _port()
        with mock.patch("mido.open_input", return_value=fake_port):
            listener.open("Port", mock.MagicMock())
        listener.close()
        fake_port.close.assert_called_once()
        assert listener.connected is False
        assert listener.port_names == []

    def test_close_when_not_open(self):
        self._make_listener().close()  # Should not raise

    def test_close_exception_swallowed(self):
        listener = self._make_listener()
        fake_port = _port()
        fake_port.close.side_effect = OSError("fail")
        with mock.patch("mido.open_input", return_value=fake_port):
            listener.open("Port", mock.MagicMock())
        listener.close()  # Should not raise
        assert listener.port_names == []


class TestOpenAll:
    def _make_listener(self):
        from take_catcher.core.midi_listener import MidiListener
        return MidiListener()

    def test_opens_every_input(self):
        listener = self._make_listener()
        with mock.patch("mido.get_input_names", return_value=["A", "B"]), \
             mock.patch("mido.open_input", side_effect=lambda *a, **k: _port()):
            assert listener.open_all(mock.MagicMock()) == ["A", "B"]

    def test_name_filter_is_case_insensitive(self):
        listener = self._make_listener()
        with mock.patch("mido.get_input_names", return_value=["Digital Piano", "Pads"]), \
             mock.patch("mido.open_input", side_effect=lambda *a, **k: _port()):
            assert listener.open_all(mock.MagicMock(), "piano") == ["Digital Piano"]

    def test_no_inputs_raises(self):
        listener = self._make_listener()
        with mock.patch("mido.get_input_names", return_value=[]):
            with pytest.raises(OSError):
                listener.open_all(mock.MagicMock())

    def test_partial_failure_keeps_working_ports(self):
        listener = self._make_listener()
        with mock.patch("mido.get_input_names", return_value=["A", "B"]), \
             mock.patch("mido.open_input", side_effect=[OSError("busy"), _port()]):
            assert listener.open_all(mock.MagicMock()) == ["B"]

    def test_all_failures_raise(self):
        listener = self._make_listener()
        with mock.patch("mido.get_input_names", return_value=["A"]), \
             mock.patch("mido.open_input", side_effect=RuntimeError("no backend")):
            with pytest.raises(OSError, match="no backend"):
                listener.open_all(mock.MagicMock())

    def test_backend_system_error_skips_port(self):
        listener = self._make_listener()
        with mock.patch("mido.get_input_names", return_value=["A", "B"]), \
             mock.patch("mido.open_input",
                        side_effect=[_BackendSystemError("MidiInAlsa: error creating port"), _port()]):
            assert listener.open_all(mock.MagicMock()) == ["B"]

    def test_backend_system_error_on_every_port_raises_oserror(self):
        listener = self._make_listener()
        with mock.patch("mido.get_input_names", return_value=["A"]), \
             mock.patch("mido.open_input", side_effect=_BackendSystemError("no sequencer")):
            with pytest.raises(OSError, match="no sequencer"):
                listener.open_all(mock.MagicMock())


class TestOnMessage:
    def _open(self, cb):
        from take_catcher.core.midi_listener import MidiListener
        listener = MidiListener()
        with mock.patch("mido.open_input", return_value=_port()):
            listener.open("Port", cb)
        return listener

    def test_note_on_delivers_raw_bytes(self):
        cb = mock.MagicMock()
        listener = self._open(cb)
        listener._on_message("Port", mido.Message("note_on", channel=2, note=60, velocity=100))
        cb.assert_called_once_with(bytes([0x92, 60, 100]), "Port", "Port")

    def test_control_change_delivered(self):
        cb = mock.MagicMock()
        listener = self._open(cb)
        listener._on_message("Port", mido.Message("control_change", control=64, value=127))
        cb.assert_called_once_with(bytes([0xB0, 64, 127]), "Port", "Port")

    @pytest.mark.parametrize("msg", [
        mido.Message("clock"),
        mido.Message("sysex", data=[1, 2, 3]),
        mido.Message("start"),
    ])
    def test_non_channel_messages_ignored(self, msg):
        cb = mock.MagicMock()
        listener = self._open(cb)
        listener._on_message("Port", msg)
        cb.assert_not_called()

    def test_no_callback(self):
        from take_catcher.core.midi_listener import MidiListener
        MidiListener()._on_message("Port", mido.Message("note_on"))  # Should not raise

    def test_callback_exception_swallowed(self):
        cb = mock.MagicMock(side_effect=ValueError("boom"))
        listener = self._open(cb)
        listener._on_message("Port", mido.Message("note_on"))  # Should not raise

    def test_handler_routes_port_name(self):
        cb = mock.MagicMock()
        from take_catcher.core.midi_listener import MidiListener
        listener = MidiListener()
        with mock.patch("mido.open_input", return_value=_port()) as mock_open:
            listener.open("Keys", cb)
        handler = mock_open.call_args.kwargs["callback"]
        handler(mido.Message("note_off", note=61))
        cb.assert_called_once_with(bytes([0x80, 61, 0]), "Keys", "Keys")

    def test_closed_listener_drops_messages(self):
        cb = mock.MagicMock()
        listener = self._open(cb)
        listener.close()
        listener._on_message("Port", mido.Message("note_on"))
        cb.assert_not_called()
