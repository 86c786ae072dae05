"""Typed operations on top of the node command set.

NodeClient is not thread-safe; the acquisition scheduler serializes every
call on its worker thread.
"""

from __future__ import annotations

import logging
import time
from typing import Callable

from rssi_node_analyzer.errors import ChannelError
from rssi_node_analyzer.node import commands
from rssi_node_analyzer.node.channel import Channel

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_S = 0.1


class NodeClient:
    """
    Encodes requests, validates responses and timestamps lap stats.

    Channel failures surface as ChannelError, bad responses as ProtocolError.
    Neither is retried here.
    """

    def __init__(
        self,
        channel: Channel,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        clock_ns: Callable[[], int] = time.monotonic_ns,
    ):
        self.channel = channel
        self.timeout_s = float(timeout_s)
        self._clock_ns = clock_ns

    def close(self) -> None:
        self.channel.close()

    def get_frequency(self) -> int:
        payload = self._read_command(commands.READ_FREQUENCY, commands.FREQUENCY_PAYLOAD_SIZE)
        return commands.decode_frequency(payload)

    def set_frequency(self, freq: int) -> None:
        # Fire-and-forget: the node sends no acknowledgement.
        self.channel.write(commands.encode_write_frequency(freq), self.timeout_s)
        logger.debug("Commanded frequency %d MHz", freq)

    def read_lap_stats(self, host_time_ms: int) -> commands.LapStats:
        """
        Poll lap stats and estimate when the node measured them.

        The measurement is attributed to the midpoint of the round trip, so
        half the observed latency is added to host_time_ms.
        """

        sent_ns = self._clock_ns()
        payload = self._read_command(commands.READ_LAP_STATS, commands.LAP_STATS_PAYLOAD_SIZE)
        received_ns = self._clock_ns()
        delay_ms = ((received_ns - sent_ns) // 2) // 1_000_000
        return commands.decode_lap_stats(payload, int(host_time_ms) + delay_ms)

    def _read_command(self, opcode: int, payload_size: int) -> bytes:
        # Drop leftovers from an earlier corrupted exchange.
        self.channel.reset_input()
        self.channel.write(commands.encode_read(opcode), self.timeout_s)
        raw = self.channel.read(commands.response_size(payload_size), self.timeout_s)
        return commands.validate_response(opcode, raw, payload_size)


class DisconnectedClient:
    """Stand-in used while no node is connected; every operation fails."""

    def __init__(self, reason: str = "Node not connected"):
        self.reason = reason

    def close(self) -> None:
        return None

    def get_frequency(self) -> int:
        raise ChannelError(self.reason)

    def set_frequency(self, freq: int) -> None:
        raise ChannelError(self.reason)

    def read_lap_stats(self, host_time_ms: int) -> commands.LapStats:
        raise ChannelError(self.reason)
