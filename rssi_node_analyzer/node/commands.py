"""Node command set and response decoding.

The wire format is fixed: one opcode byte per request, big-endian integers and
a trailing one-byte additive checksum. This module is pure byte handling and
must not perform any I/O.
"""

from __future__ import annotations

from dataclasses import dataclass
import struct

from rssi_node_analyzer.errors import ProtocolError

READ_FREQUENCY = 0x03
READ_LAP_STATS = 0x05
WRITE_FREQUENCY = 0x51

FREQUENCY_STRUCT = struct.Struct(">H")
# laps, ms since last lap, rssi, peak rssi, last-pass peak, loop time,
# flags, last-pass nadir, nadir rssi, history rssi, history start, history end.
LAP_STATS_STRUCT = struct.Struct(">BHbBBHBBBBHH")

FREQUENCY_PAYLOAD_SIZE = FREQUENCY_STRUCT.size
LAP_STATS_PAYLOAD_SIZE = LAP_STATS_STRUCT.size

# Negative rssi bytes are reported as this value instead of their magnitude.
RSSI_CLAMP = 128


@dataclass(frozen=True)
class LapStats:
    """One lap-stats poll, timestamped in the host monotonic domain."""

    timestamp: int
    rssi: int
    history_rssi: int
    ms_since_history_start: int
    ms_since_history_end: int
    laps: int = 0
    ms_since_last_lap: int = 0
    peak_rssi: int = 0
    last_pass_peak: int = 0
    loop_time_micros: int = 0
    flags: int = 0
    last_pass_nadir: int = 0
    nadir_rssi: int = 0

    @property
    def has_history(self) -> bool:
        return self.history_rssi != 0


def checksum(data: bytes) -> int:
    """Low 8 bits of the byte sum."""

    return sum(data) & 0xFF


def response_size(payload_size: int) -> int:
    return payload_size + 1


def encode_read(opcode: int) -> bytes:
    return bytes([opcode])


def encode_write_frequency(freq: int) -> bytes:
    """Build the 4-byte write-frequency command.

    The checksum covers the two payload bytes only, not the opcode.
    """

    freq = int(freq)
    if not 0 <= freq <= 0xFFFF:
        raise ValueError(f"Frequency {freq} does not fit in 16 bits")
    payload = FREQUENCY_STRUCT.pack(freq)
    return bytes([WRITE_FREQUENCY]) + payload + bytes([checksum(payload)])


def validate_response(opcode: int, raw: bytes, payload_size: int) -> bytes:
    """Check length and checksum of a response and return its payload."""

    expected = response_size(payload_size)
    if len(raw) != expected:
        raise ProtocolError(
            f"0x{opcode:02x}: Unexpected response size {len(raw)} (expected {expected})"
        )
    payload = bytes(raw[:payload_size])
    if raw[payload_size] != checksum(payload):
        raise ProtocolError(f"0x{opcode:02x}: Invalid checksum")
    return payload


def decode_frequency(payload: bytes) -> int:
    (freq,) = FREQUENCY_STRUCT.unpack(payload)
    return int(freq)


def decode_lap_stats(payload: bytes, timestamp: int) -> LapStats:
    (
        laps,
        ms_since_last_lap,
        rssi,
        peak_rssi,
        last_pass_peak,
        loop_time_micros,
        flags,
        last_pass_nadir,
        nadir_rssi,
        history_rssi,
        ms_since_history_start,
        ms_since_history_end,
    ) = LAP_STATS_STRUCT.unpack(payload)
    if rssi < 0:
        rssi = RSSI_CLAMP
    return LapStats(
        timestamp=int(timestamp),
        rssi=rssi,
        history_rssi=history_rssi,
        ms_since_history_start=ms_since_history_start,
        ms_since_history_end=ms_since_history_end,
        laps=laps,
        ms_since_last_lap=ms_since_last_lap,
        peak_rssi=peak_rssi,
        last_pass_peak=last_pass_peak,
        loop_time_micros=loop_time_micros,
        flags=flags,
        last_pass_nadir=last_pass_nadir,
        nadir_rssi=nadir_rssi,
    )


def encode_lap_stats_payload(
    *,
    rssi: int,
    history_rssi: int = 0,
    ms_since_history_start: int = 0,
    ms_since_history_end: int = 0,
    laps: int = 0,
    ms_since_last_lap: int = 0,
    peak_rssi: int = 0,
    last_pass_peak: int = 0,
    loop_time_micros: int = 0,
    flags: int = 0,
    last_pass_nadir: int = 0,
    nadir_rssi: int = 0,
) -> bytes:
    """Pack a lap-stats payload the way the node firmware sends it.

    rssi is given as the raw unsigned byte.
    """

    raw_rssi = int(rssi) & 0xFF
    signed_rssi = raw_rssi - 0x100 if raw_rssi & 0x80 else raw_rssi
    return LAP_STATS_STRUCT.pack(
        laps,
        ms_since_last_lap,
        signed_rssi,
        peak_rssi,
        last_pass_peak,
        loop_time_micros,
        flags,
        last_pass_nadir,
        nadir_rssi,
        history_rssi,
        ms_since_history_start,
        ms_since_history_end,
    )


def with_checksum(payload: bytes) -> bytes:
    return bytes(payload) + bytes([checksum(payload)])
