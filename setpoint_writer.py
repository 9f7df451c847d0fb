"""Setpoint write flow: send -> grace delay -> forced re-poll.

The writer never assigns SetpointState itself. After an acknowledged write
it waits GRACE_DELAY for the device to settle and then forces one
out-of-band refresh of the setpoint subscription, so the UI shows the
device-confirmed value rather than the locally merged one.
"""

from __future__ import annotations

import asyncio
import math
from typing import Callable, Optional, TYPE_CHECKING

from constants import GRACE_DELAY

if TYPE_CHECKING:
    from device_session import DeviceSession
    from polling import PollingSubscription
    from psu_state import SetpointState


class SetpointUnavailableError(RuntimeError):
    """A write was attempted before any setpoint state was received."""


class SetpointWriter:
    """Merges partial updates onto the last authoritative setpoint and writes."""

    def __init__(self, session: DeviceSession,
                 setpoints: PollingSubscription[SetpointState],
                 grace_delay: float = GRACE_DELAY,
                 log: Optional[Callable[..., None]] = None):
        self.session = session
        self.setpoints = setpoints
        self.grace_delay = grace_delay
        self._log = log or (lambda text, style="": print(f"  {text}"))
        self.writes = 0          # Writes sent to the device
        self.failed_writes = 0

    async def commit_setpoint(self, **updates) -> bool:
        """Write the merged state. Returns True once the re-poll has landed.

        Raises SetpointUnavailableError if no setpoint was ever received and
        ValueError for values that must never reach the device.
        """
        base = self.setpoints.latest_value
        if base is None:
            raise SetpointUnavailableError("Can't update before receiving state")
        merged = _validated(base.merged(**updates))

        self.writes += 1
        try:
            ok = await self.session.set_setpoint(merged)
        except Exception as e:
            ok = False
            self._log(f"[WARN] set_setpoint error: {e}", style="yellow")
        if not ok:
            self.failed_writes += 1
            self._log("[WARN] set_setpoint failed", style="yellow")
            return False

        await asyncio.sleep(self.grace_delay)
        await self.setpoints.refresh()
        return True

    async def set_voltage(self, mv: int) -> bool:
        return await self.commit_setpoint(voltage_set_mv=mv)

    async def set_current(self, ma: int) -> bool:
        return await self.commit_setpoint(current_set_mv=ma)

    async def set_output(self, enabled: bool) -> bool:
        return await self.commit_setpoint(enabled=bool(enabled))


def _validated(state: SetpointState) -> SetpointState:
    """Reject values that must never be sent; round device units to int."""
    for name in ("voltage_set_mv", "current_set_mv"):
        value = getattr(state, name)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError(f"{name} must be a number, got {value!r}")
        if isinstance(value, float) and not math.isfinite(value):
            raise ValueError(f"{name} must be finite, got {value!r}")
        if value < 0:
            raise ValueError(f"{name} must not be negative, got {value!r}")
    if not isinstance(state.enabled, bool):
        raise ValueError(f"enabled must be a bool, got {state.enabled!r}")
    return state.merged(voltage_set_mv=round(state.voltage_set_mv),
                        current_set_mv=round(state.current_set_mv))
