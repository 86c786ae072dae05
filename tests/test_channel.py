from types import SimpleNamespace

import pytest
import serial

from rssi_node_analyzer.config import AnalyzerConfig
from rssi_node_analyzer.errors import ChannelError, ProtocolError
from rssi_node_analyzer.node import channel as channel_mod
from rssi_node_analyzer.node.channel import SerialChannel, find_node_port, open_serial_channel
from rssi_node_analyzer.node.client import NodeClient


class FakePort:
    def __init__(self, incoming=b"", write_result=None, write_error=None):
        self.port = "/dev/ttyUSB0"
        self.incoming = bytes(incoming)
        self.write_result = write_result
        self.write_error = write_error
        self.timeout = None
        self.write_timeout = None
        self.flushed = 0
        self.closed = False

    def write(self, data):
        if self.write_error is not None:
            raise self.write_error
        return len(data) if self.write_result is None else self.write_result

    @property
    def in_waiting(self):
        return len(self.incoming)

    def read(self, size):
        data, self.incoming = self.incoming[:size], self.incoming[size:]
        return data

    def reset_input_buffer(self):
        self.flushed += 1

    def close(self):
        self.closed = True


def test_read_applies_timeout_and_returns_bytes() -> None:
    port = FakePort(incoming=b"\x16\xa8\xbe")
    chan = SerialChannel(port)
    assert chan.read(3, 0.1) == b"\x16\xa8\xbe"
    assert port.timeout == 0.1
    assert chan.name == "/dev/ttyUSB0"


def test_empty_read_is_timeout() -> None:
    with pytest.raises(ChannelError, match="timed out after 100 ms"):
        SerialChannel(FakePort()).read(17, 0.1)


def test_partial_read_is_returned_unchanged() -> None:
    assert SerialChannel(FakePort(incoming=bytes(10))).read(17, 0.1) == bytes(10)


def test_write_failures_become_channel_errors() -> None:
    with pytest.raises(ChannelError, match="timed out"):
        SerialChannel(FakePort(write_error=serial.SerialTimeoutException("Write timeout"))).write(b"\x03", 0.1)
    with pytest.raises(ChannelError, match="Write failed"):
        SerialChannel(FakePort(write_error=serial.SerialException("device gone"))).write(b"\x03", 0.1)
    with pytest.raises(ChannelError, match="Short write"):
        SerialChannel(FakePort(write_result=2)).write(b"\x51\x16\xa8\xbe", 0.1)


def test_reset_and_close() -> None:
    port = FakePort()
    chan = SerialChannel(port)
    chan.reset_input()
    chan.close()
    assert port.flushed == 1
    assert port.closed


def _port_info(device, description="", manufacturer="", hwid=""):
    return SimpleNamespace(device=device, description=description, manufacturer=manufacturer, hwid=hwid)


def test_find_node_port_prefers_known_bridges(monkeypatch) -> None:
    ports = [
        _port_info("/dev/ttyS0", "ttyS0", None, "n/a"),
        _port_info("/dev/ttyUSB0", "USB2.0-Serial", "QinHeng", "USB VID:PID=1A86:7523"),
    ]
    monkeypatch.setattr(channel_mod.list_ports, "comports", lambda: ports)
    assert find_node_port() == "/dev/ttyUSB0"

    monkeypatch.setattr(channel_mod.list_ports, "comports", lambda: [])
    assert find_node_port() is None


def test_open_without_ports_fails(monkeypatch) -> None:
    monkeypatch.setattr(channel_mod.list_ports, "comports", lambda: [])
    with pytest.raises(ChannelError, match="No compatible USB devices"):
        open_serial_channel(AnalyzerConfig())


def test_open_configures_line_and_settles(monkeypatch) -> None:
    opened = {}
    slept = []

    def fake_serial(**kwargs):
        opened.update(kwargs)
        return FakePort()

    monkeypatch.setattr(channel_mod.serial, "Serial", fake_serial)
    monkeypatch.setattr(channel_mod.time, "sleep", slept.append)
    chan = open_serial_channel(AnalyzerConfig(port="/dev/ttyACM0"))
    assert isinstance(chan, SerialChannel)
    assert opened["port"] == "/dev/ttyACM0"
    assert opened["baudrate"] == 115200
    assert opened["bytesize"] == serial.EIGHTBITS
    assert opened["parity"] == serial.PARITY_NONE
    assert opened["stopbits"] == serial.STOPBITS_ONE
    assert slept == [2.0]


def test_open_failure_is_channel_error(monkeypatch) -> None:
    def failing(**kwargs):
        raise serial.SerialException("could not open port")

    monkeypatch.setattr(channel_mod.serial, "Serial", failing)
    with pytest.raises(ChannelError, match="Failed to open"):
        open_serial_channel(AnalyzerConfig(port="/dev/ttyACM0", settle_s=0))


def test_over_long_reply_is_read_in_full() -> None:
    port = FakePort(incoming=b"\x16\xa8\xbe\x55")
    assert SerialChannel(port).read(3, 0.1) == b"\x16\xa8\xbe\x55"
    assert port.in_waiting == 0


def test_client_rejects_over_long_frequency_reply() -> None:
    chan = SerialChannel(FakePort(incoming=b"\x16\xa8\xbe\x55"))
    with pytest.raises(ProtocolError, match="Unexpected response size 4"):
        NodeClient(chan).get_frequency()
