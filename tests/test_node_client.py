import pytest

from rssi_node_analyzer.errors import ChannelError, ProtocolError
from rssi_node_analyzer.node import commands
from rssi_node_analyzer.node.client import DisconnectedClient, NodeClient


class ScriptedChannel:
    """Records writes and replays canned responses."""

    def __init__(self, responses=()):
        self.responses = list(responses)
        self.writes: list[bytes] = []
        self.timeouts: list[float] = []
        self.resets = 0
        self.closed = False

    def write(self, data: bytes, timeout: float) -> None:
        self.writes.append(bytes(data))
        self.timeouts.append(timeout)

    def read(self, size: int, timeout: float) -> bytes:
        self.timeouts.append(timeout)
        if not self.responses:
            raise ChannelError("Read timed out after 100 ms")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def reset_input(self) -> None:
        self.resets += 1

    def close(self) -> None:
        self.closed = True


class FakeClock:
    def __init__(self, *values_ns: int):
        self.values = list(values_ns)

    def __call__(self) -> int:
        return self.values.pop(0)


def _stats_response(**fields) -> bytes:
    return commands.with_checksum(commands.encode_lap_stats_payload(**fields))


def test_get_frequency() -> None:
    channel = ScriptedChannel([bytes([0x16, 0xA8, 0xBE])])
    client = NodeClient(channel)
    assert client.get_frequency() == 5800
    assert channel.writes == [b"\x03"]
    assert channel.resets == 1


def test_get_frequency_rejects_bad_checksum() -> None:
    channel = ScriptedChannel([bytes([0x16, 0xA8, 0x00])])
    with pytest.raises(ProtocolError, match="Invalid checksum"):
        NodeClient(channel).get_frequency()


def test_set_frequency_writes_once_without_reading() -> None:
    channel = ScriptedChannel()
    NodeClient(channel, timeout_s=0.1).set_frequency(5800)
    assert channel.writes == [bytes([0x51, 0x16, 0xA8, 0xBE])]
    assert channel.timeouts == [0.1]


def test_read_lap_stats_adds_half_the_round_trip() -> None:
    channel = ScriptedChannel([_stats_response(rssi=50)])
    # 30 ms round trip: measurement attributed 15 ms after the host time.
    clock = FakeClock(1_000_000_000, 1_030_000_000)
    stats = NodeClient(channel, clock_ns=clock).read_lap_stats(2000)
    assert stats.timestamp == 2015
    assert stats.rssi == 50
    assert channel.writes == [b"\x05"]


def test_read_lap_stats_truncates_sub_millisecond_delay() -> None:
    channel = ScriptedChannel([_stats_response(rssi=10)])
    clock = FakeClock(0, 3_900_000)
    stats = NodeClient(channel, clock_ns=clock).read_lap_stats(500)
    assert stats.timestamp == 501


def test_short_response_is_protocol_error() -> None:
    channel = ScriptedChannel([bytes(10)])
    with pytest.raises(ProtocolError):
        NodeClient(channel).read_lap_stats(0)


def test_channel_failure_is_channel_error() -> None:
    channel = ScriptedChannel([ChannelError("Read failed: device reports readiness to read but returned no data")])
    with pytest.raises(ChannelError):
        NodeClient(channel).get_frequency()
    with pytest.raises(ChannelError):
        NodeClient(ScriptedChannel()).read_lap_stats(0)


def test_close_releases_channel() -> None:
    channel = ScriptedChannel()
    NodeClient(channel).close()
    assert channel.closed


def test_disconnected_client_fails_every_operation() -> None:
    client = DisconnectedClient()
    with pytest.raises(ChannelError):
        client.get_frequency()
    with pytest.raises(ChannelError):
        client.set_frequency(5800)
    with pytest.raises(ChannelError):
        client.read_lap_stats(0)


def test_over_long_reply_is_protocol_error() -> None:
    channel = ScriptedChannel([bytes([0x16, 0xA8, 0xBE, 0x55])])
    with pytest.raises(ProtocolError, match="Unexpected response size 4"):
        NodeClient(channel).get_frequency()
