import pytest

from rssi_node_analyzer.errors import ProtocolError
from rssi_node_analyzer.node import commands


def _lap_stats_response(payload: bytes) -> bytes:
    return commands.with_checksum(payload)


def test_checksum_is_low_byte_of_sum() -> None:
    assert commands.checksum(b"") == 0
    assert commands.checksum(bytes([0x01, 0x02])) == 0x03
    assert commands.checksum(bytes([0xFF, 0xFF, 0x03])) == 0x01


def test_write_frequency_vectors() -> None:
    vectors = [
        (5800, "5116a8be"),
        (5645, "51160d23"),
        (0, "51000000"),
    ]
    for freq, expected_hex in vectors:
        assert commands.encode_write_frequency(freq).hex() == expected_hex


def test_write_frequency_checksum_excludes_opcode() -> None:
    raw = commands.encode_write_frequency(5945)
    assert len(raw) == 4
    assert raw[0] == commands.WRITE_FREQUENCY
    assert raw[3] == (raw[1] + raw[2]) & 0xFF


def test_write_frequency_rejects_values_outside_16_bits() -> None:
    with pytest.raises(ValueError):
        commands.encode_write_frequency(0x10000)
    with pytest.raises(ValueError):
        commands.encode_write_frequency(-1)


def test_read_requests_are_single_opcode_bytes() -> None:
    assert commands.encode_read(commands.READ_FREQUENCY) == b"\x03"
    assert commands.encode_read(commands.READ_LAP_STATS) == b"\x05"


def test_validate_response_returns_payload() -> None:
    raw = bytes([0x16, 0xA8, 0xBE])
    payload = commands.validate_response(commands.READ_FREQUENCY, raw, 2)
    assert payload == bytes([0x16, 0xA8])
    assert commands.decode_frequency(payload) == 5800


def test_flipping_any_covered_byte_is_rejected() -> None:
    payload = commands.encode_lap_stats_payload(rssi=50, history_rssi=90, ms_since_history_start=300)
    raw = bytearray(_lap_stats_response(payload))
    assert commands.validate_response(commands.READ_LAP_STATS, bytes(raw), 16) == payload
    for idx in range(len(raw)):
        corrupted = bytearray(raw)
        corrupted[idx] ^= 0x01
        with pytest.raises(ProtocolError):
            commands.validate_response(commands.READ_LAP_STATS, bytes(corrupted), 16)


def test_wrong_length_is_rejected() -> None:
    with pytest.raises(ProtocolError, match="Unexpected response size 10"):
        commands.validate_response(commands.READ_LAP_STATS, bytes(10), 16)
    with pytest.raises(ProtocolError):
        commands.validate_response(commands.READ_FREQUENCY, bytes(4), 2)


def test_decode_lap_stats_layout() -> None:
    payload = bytes(
        [
            0x03,  # laps
            0x01, 0x02,  # ms since last lap
            0x32,  # rssi
            0x64,  # peak rssi
            0x5A,  # last-pass peak
            0x03, 0xE8,  # loop time
            0x07,  # flags
            0x1E,  # last-pass nadir
            0x14,  # nadir rssi
            0x78,  # history rssi
            0x01, 0x2C,  # ms since history start
            0x00, 0x64,  # ms since history end
        ]
    )
    stats = commands.decode_lap_stats(payload, timestamp=1000)
    assert stats.timestamp == 1000
    assert stats.laps == 3
    assert stats.ms_since_last_lap == 0x0102
    assert stats.rssi == 50
    assert stats.peak_rssi == 100
    assert stats.last_pass_peak == 90
    assert stats.loop_time_micros == 1000
    assert stats.flags == 7
    assert stats.last_pass_nadir == 30
    assert stats.nadir_rssi == 20
    assert stats.history_rssi == 120
    assert stats.ms_since_history_start == 300
    assert stats.ms_since_history_end == 100
    assert stats.has_history


def test_rssi_scenario_bytes() -> None:
    payload = bytes([0, 0, 0x14, 0x32]) + bytes(12)
    raw = _lap_stats_response(payload)
    stats = commands.decode_lap_stats(commands.validate_response(commands.READ_LAP_STATS, raw, 16), 0)
    assert stats.rssi == 50
    assert not stats.has_history


def test_negative_rssi_byte_clamps_to_128() -> None:
    for raw_rssi in (0x80, 0xC8, 0xFF):
        payload = bytes([0, 0, 0, raw_rssi]) + bytes(12)
        stats = commands.decode_lap_stats(payload, 0)
        assert stats.rssi == commands.RSSI_CLAMP == 128
    stats = commands.decode_lap_stats(bytes([0, 0, 0, 0x7F]) + bytes(12), 0)
    assert stats.rssi == 127
