"""Data classes for telemetry samples and setpoint state."""

import dataclasses
import time
from dataclasses import dataclass, field

from constants import OUTPUT_MODES


@dataclass(frozen=True)
class TelemetrySample:
    """One successful telemetry poll. Never mutated after creation."""
    output_current_ma: int
    output_voltage_mv: int
    output_mode: int
    input_voltage_mv: int
    max_output_voltage_mv: int
    timestamp: float = field(default_factory=time.time)

    @property
    def mode_name(self) -> str:
        return mode_name(self.output_mode)


@dataclass(frozen=True)
class SetpointState:
    """Authoritative setpoint configuration as last read from the device."""
    enabled: bool
    voltage_set_mv: int
    current_set_mv: int
    last_updated: float = field(default_factory=time.time)

    def merged(self, **updates) -> 'SetpointState':
        """Return a copy with the given fields replaced.

        Unknown field names raise TypeError.
        """
        return dataclasses.replace(self, **updates)

    def payload(self) -> dict:
        """Fields the device takes on a write."""
        return {
            "enabled": self.enabled,
            "voltage_set_mv": self.voltage_set_mv,
            "current_set_mv": self.current_set_mv,
        }


def mode_name(code) -> str:
    """Human-readable output mode ('unknown' for None or unlisted codes)."""
    if code is None:
        return "unknown"
    return OUTPUT_MODES.get(code, "unknown")
