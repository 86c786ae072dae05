"""Fixed-capacity telemetry buffers backing sweep and monitor sessions.

Both series have a single writer (the acquisition worker). Renderers on other
threads read through snapshot(), which copies the data out and tolerates a
slightly stale view. This module must not import UI or node classes.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np


@dataclass(frozen=True)
class SeriesSnapshot:
    title: str
    x: np.ndarray
    y: np.ndarray


class FixedSeries:
    """
    Frequency-indexed accumulator over a closed band at a fixed step.

    Each bin carries an explicit has-value flag, so a genuine reading of 0 is
    distinguishable from a bin that was never written. at() still reports 0
    for unset bins.
    """

    def __init__(self, origin: int, step: int, length: int, title: str = ""):
        if step <= 0:
            raise ValueError("step must be positive")
        if length <= 0:
            raise ValueError("length must be positive")
        self.title = title
        self.origin = int(origin)
        self.step = int(step)
        self._values = np.zeros(int(length), dtype=np.int32)
        self._set = np.zeros(int(length), dtype=bool)

    @classmethod
    def for_band(cls, lower: int, upper: int, step: int, title: str = "") -> "FixedSeries":
        return cls(lower, step, (int(upper) - int(lower)) // int(step) + 1, title)

    @property
    def size(self) -> int:
        return int(self._values.size)

    @property
    def last_x(self) -> int:
        return self.x_at(self.size - 1)

    def contains(self, freq: int) -> bool:
        offset = int(freq) - self.origin
        return offset >= 0 and offset % self.step == 0 and offset // self.step < self.size

    def _index(self, freq: int) -> int:
        if not self.contains(freq):
            raise IndexError(
                f"Frequency {freq} is not on the grid {self.origin}..{self.last_x} step {self.step}"
            )
        return (int(freq) - self.origin) // self.step

    def set(self, freq: int, value: int) -> None:
        idx = self._index(freq)
        self._values[idx] = int(value)
        self._set[idx] = True

    def at(self, freq: int) -> int:
        return int(self._values[self._index(freq)])

    def get(self, freq: int) -> Optional[int]:
        idx = self._index(freq)
        if not self._set[idx]:
            return None
        return int(self._values[idx])

    def has_value(self, freq: int) -> bool:
        return bool(self._set[self._index(freq)])

    def _bin(self, index: int) -> int:
        index = int(index)
        if not 0 <= index < self.size:
            raise IndexError(f"Bin {index} out of range for {self.size} bins")
        return index

    def x_at(self, index: int) -> int:
        return self.origin + self.step * self._bin(index)

    def y_at(self, index: int) -> int:
        return int(self._values[self._bin(index)])

    def x_values(self) -> np.ndarray:
        return self.origin + self.step * np.arange(self.size, dtype=np.int64)

    def snapshot(self) -> SeriesSnapshot:
        # Unset bins become NaN so plots can leave gaps.
        y = self._values.astype(np.float64)
        y[~self._set] = np.nan
        return SeriesSnapshot(self.title, self.x_values(), y)


class RingSeries:
    """
    Fixed-capacity (x, y) buffer that overwrites its oldest sample when full.

    head is the oldest element and tail the next write slot. Logical index i
    maps to physical (head + i) % size.
    """

    def __init__(self, capacity: int, title: str = ""):
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.title = title
        self._x = np.zeros(int(capacity), dtype=np.int64)
        self._y = np.zeros(int(capacity), dtype=np.int32)
        self.head = 0
        self.tail = 0
        self.size = 0

    @property
    def capacity(self) -> int:
        return int(self._x.size)

    def add(self, x: int, y: int) -> None:
        if self.size < self.capacity:
            self.size += 1
        else:
            if self.tail >= self.size:
                self.tail = 0
            self.head = self.tail + 1
            if self.head >= self.size:
                self.head = 0
        self._x[self.tail] = int(x)
        self._y[self.tail] = int(y)
        self.tail += 1

    def reset(self) -> None:
        self.head = 0
        self.tail = 0
        self.size = 0

    def _physical(self, index: int) -> int:
        if not 0 <= index < self.size:
            raise IndexError(f"Index {index} out of range for size {self.size}")
        return (self.head + index) % self.size

    def x_at(self, index: int) -> int:
        return int(self._x[self._physical(index)])

    def y_at(self, index: int) -> int:
        return int(self._y[self._physical(index)])

    def at(self, index: int) -> Tuple[int, int]:
        physical = self._physical(index)
        return int(self._x[physical]), int(self._y[physical])

    def snapshot(self) -> SeriesSnapshot:
        # Read size and head together, then copy in chronological order.
        size, head = self.size, self.head
        if size == 0:
            return SeriesSnapshot(self.title, np.empty(0, dtype=np.int64), np.empty(0, dtype=np.float64))
        order = (head + np.arange(size)) % size
        return SeriesSnapshot(self.title, self._x[order].copy(), self._y[order].astype(np.float64))
