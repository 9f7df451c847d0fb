"""Bounded telemetry history feeding the live chart.

Fixed-size circular arena: slots are allocated once, a head index points at
the oldest sample and a length counter tracks how many slots are filled.
Once full, each append overwrites the oldest sample.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Iterator, Optional

from constants import HISTORY_CAPACITY, UNITS_PER_DISPLAY
from psu_state import TelemetrySample


@dataclass(frozen=True)
class ChartSeries:
    """Index-aligned chart columns. All three tuples have the same length."""
    timestamps: tuple[float, ...]
    currents: tuple[float, ...]     # A
    voltages: tuple[float, ...]     # V

    def __len__(self):
        return len(self.timestamps)

    def labels(self) -> list[str]:
        """Axis labels as H:M:S.mmm local time."""
        out = []
        for ts in self.timestamps:
            t = datetime.fromtimestamp(ts)
            out.append(f"{t.hour}:{t.minute}:{t.second}.{t.microsecond // 1000}")
        return out

    def to_dict(self) -> dict:
        return {
            "labels": self.labels(),
            "timestamps": list(self.timestamps),
            "currents": list(self.currents),
            "voltages": list(self.voltages),
        }


class TelemetryHistory:
    """FIFO ring buffer of TelemetrySample with oldest-first eviction."""

    def __init__(self, capacity: int = HISTORY_CAPACITY):
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity!r}")
        self._capacity = capacity
        self._slots: list[Optional[TelemetrySample]] = [None] * capacity
        self._head = 0      # Index of the oldest sample
        self._length = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    def append(self, sample: TelemetrySample):
        if self._length == self._capacity:
            # Full: the oldest slot becomes the newest
            self._slots[self._head] = sample
            self._head = (self._head + 1) % self._capacity
        else:
            self._slots[(self._head + self._length) % self._capacity] = sample
            self._length += 1

    def clear(self):
        self._slots = [None] * self._capacity
        self._head = 0
        self._length = 0

    def __len__(self):
        return self._length

    def __iter__(self) -> Iterator[TelemetrySample]:
        for i in range(self._length):
            yield self._slots[(self._head + i) % self._capacity]

    def samples(self, limit: Optional[int] = None) -> list[TelemetrySample]:
        """Chronological copy, optionally only the newest `limit` samples."""
        items = list(self)
        if limit is not None:
            items = items[-limit:] if limit > 0 else []
        return items

    def latest(self) -> Optional[TelemetrySample]:
        if not self._length:
            return None
        return self._slots[(self._head + self._length - 1) % self._capacity]

    def projection(self, limit: Optional[int] = None) -> ChartSeries:
        """Timestamps, currents (A) and voltages (V) for the chart."""
        items = self.samples(limit)
        return ChartSeries(
            timestamps=tuple(s.timestamp for s in items),
            currents=tuple(s.output_current_ma / UNITS_PER_DISPLAY for s in items),
            voltages=tuple(s.output_voltage_mv / UNITS_PER_DISPLAY for s in items),
        )
