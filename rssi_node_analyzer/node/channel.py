"""Serial channel and connection bootstrap for the receiver node.

Wraps pyserial with per-call timeouts and maps every transport failure onto
ChannelError. This module must not import any UI classes and knows nothing
about the command set.
"""

from __future__ import annotations

import logging
import time
from typing import Optional, Protocol

import serial
from serial.tools import list_ports

from rssi_node_analyzer.config import AnalyzerConfig
from rssi_node_analyzer.errors import ChannelError

logger = logging.getLogger(__name__)


class Channel(Protocol):
    """
    Duplex byte stream consumed by NodeClient. Timeouts are in seconds.

    read() waits for up to size bytes and also returns anything already
    buffered behind them.
    """

    def write(self, data: bytes, timeout: float) -> None: ...

    def read(self, size: int, timeout: float) -> bytes: ...

    def reset_input(self) -> None: ...

    def close(self) -> None: ...


class SerialChannel:
    """
    Small wrapper around a pyserial port.

    A read that returns nothing before the timeout fails; a partial read is
    handed back unchanged so the caller can report the bad length. Bytes
    already waiting after the requested ones are returned too, so an
    over-long reply is seen at its true length.
    """

    def __init__(self, port: serial.Serial):
        self.port = port

    @property
    def name(self) -> str:
        return str(self.port.port)

    def write(self, data: bytes, timeout: float) -> None:
        try:
            self.port.write_timeout = timeout
            written = self.port.write(data)
        except serial.SerialTimeoutException as exc:
            raise ChannelError(f"Write timed out after {timeout * 1000:.0f} ms") from exc
        except (serial.SerialException, OSError) as exc:
            raise ChannelError(f"Write failed: {exc}") from exc
        if written is not None and written != len(data):
            raise ChannelError(f"Short write ({written} of {len(data)} bytes)")

    def read(self, size: int, timeout: float) -> bytes:
        try:
            self.port.timeout = timeout
            data = self.port.read(size)
            # Trailing bytes of an over-long reply belong to this response.
            extra = self.port.in_waiting if data else 0
            if extra:
                data += self.port.read(extra)
        except (serial.SerialException, OSError) as exc:
            raise ChannelError(f"Read failed: {exc}") from exc
        if not data:
            raise ChannelError(f"Read timed out after {timeout * 1000:.0f} ms")
        return bytes(data)

    def reset_input(self) -> None:
        try:
            self.port.reset_input_buffer()
        except (serial.SerialException, OSError) as exc:
            raise ChannelError(f"Input reset failed: {exc}") from exc

    def close(self) -> None:
        try:
            self.port.close()
        except (serial.SerialException, OSError) as exc:
            raise ChannelError(f"Close failed: {exc}") from exc


def find_node_port() -> Optional[str]:
    """Pick the most likely node port among the attached USB serial bridges."""

    ports = list(list_ports.comports())
    if not ports:
        return None

    def score(p) -> int:
        txt = f"{p.device} {p.description} {p.manufacturer} {p.hwid}".lower()
        s = 0
        if "arduino" in txt:
            s += 50
        if "ch340" in txt or "vid:pid=1a86" in txt:
            s += 40
        if "cp210" in txt or "vid:pid=10c4" in txt:
            s += 40
        if "ftdi" in txt or "vid:pid=0403" in txt:
            s += 30
        if "stm32" in txt or "vid:pid=0483" in txt:
            s += 20
        if "cdc" in txt or "usb serial" in txt:
            s += 10
        return s

    return max(ports, key=score).device


def open_serial_channel(cfg: AnalyzerConfig) -> SerialChannel:
    """Open the node port at 8-N-1 and wait for the firmware to settle."""

    device = cfg.port or find_node_port()
    if not device:
        raise ChannelError("No compatible USB devices")
    logger.info("Opening node port %s at %d baud", device, cfg.baudrate)
    try:
        port = serial.Serial(
            port=device,
            baudrate=cfg.baudrate,
            bytesize=serial.EIGHTBITS,
            parity=serial.PARITY_NONE,
            stopbits=serial.STOPBITS_ONE,
            timeout=cfg.io_timeout_s,
            write_timeout=cfg.io_timeout_s,
        )
    except (serial.SerialException, OSError, ValueError) as exc:
        raise ChannelError(f"Failed to open USB device {device}: {exc}") from exc
    if cfg.settle_s > 0:
        time.sleep(cfg.settle_s)
    return SerialChannel(port)
