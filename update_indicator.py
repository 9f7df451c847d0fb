"""Transient "data changed" pulse.

Lights up whenever the watched value changes and clears itself after
`clear_delay` seconds. Each change restarts the clear timer, so a stream of
changes faster than the delay keeps it lit continuously.
"""

import asyncio
from typing import Callable, Optional

from constants import INDICATOR_CLEAR_DELAY

_UNSET = object()


class UpdateIndicator:
    """Edge-triggered activity flag keyed on value equality."""

    def __init__(self, clear_delay: float = INDICATOR_CLEAR_DELAY,
                 on_change: Optional[Callable[[bool], None]] = None):
        self.clear_delay = clear_delay
        self.on_change = on_change
        self.active = False
        self._last = _UNSET
        self._timer: Optional[asyncio.TimerHandle] = None

    def feed(self, value) -> bool:
        """Observe the watched value. Returns True if it counted as a change."""
        if self._last is not _UNSET and value == self._last:
            return False
        self._last = value
        if self._timer is not None:
            self._timer.cancel()
        self._timer = asyncio.get_running_loop().call_later(self.clear_delay, self._clear)
        self._set_active(True)
        return True

    def close(self):
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _clear(self):
        self._timer = None
        self._set_active(False)

    def _set_active(self, active: bool):
        if active == self.active:
            return
        self.active = active
        if self.on_change:
            self.on_change(active)
