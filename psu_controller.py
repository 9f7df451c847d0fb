"""Device-page controller for a bench power supply.

Owns the two polling subscriptions (fast telemetry, slow setpoint), the
telemetry history feeding the chart and the setpoint write flow. Everything
runs on the caller's event loop (Textual's or uvicorn's).
"""

import asyncio
import time
from typing import Optional

from constants import (
    GRACE_DELAY,
    HISTORY_CAPACITY,
    SETPOINT_INTERVAL,
    TELEMETRY_INTERVAL,
)
from polling import PollingSubscription
from psu_state import SetpointState, TelemetrySample, mode_name
from setpoint_writer import SetpointWriter
from telemetry_history import TelemetryHistory


class PowerSupplyController:
    def __init__(self, session, telemetry_interval: float = TELEMETRY_INTERVAL,
                 setpoint_interval: float = SETPOINT_INTERVAL,
                 history_capacity: int = HISTORY_CAPACITY,
                 grace_delay: float = GRACE_DELAY, device_name: str = "PSU"):
        self.session = session
        self.device_name = device_name
        self.app = None  # Reference to TUI app (set by PowerSupplyApp)
        self.debug_mode = False
        self._web_enabled = False  # Set True by monitor.py when --web is used
        self.running = False
        self.read_errors = 0
        self.last_error: Optional[str] = None
        self._tasks: set[asyncio.Task] = set()  # Web broadcasts in progress

        self.history = TelemetryHistory(history_capacity)
        self.telemetry_sub: PollingSubscription[TelemetrySample] = PollingSubscription(
            session.get_telemetry, telemetry_interval,
            on_update=self._on_telemetry, on_error=self._on_poll_error,
            name="telemetry")
        self.setpoint_sub: PollingSubscription[SetpointState] = PollingSubscription(
            session.get_setpoint, setpoint_interval,
            on_update=self._on_setpoint, on_error=self._on_poll_error,
            name="setpoint")
        self.writer = SetpointWriter(session, self.setpoint_sub,
                                     grace_delay=grace_delay, log=self.log)

    # ---- Logging ----

    def log(self, text: str, style: str = "", _debug: bool = False):
        """Post a log message to the TUI, or print() if no TUI.

        Args:
            _debug: If True, only show when debug mode is on (F2 / 'debug').
        """
        if _debug:
            debug_on = getattr(self.app, 'debug_mode', False) if self.app else self.debug_mode
            if not debug_on:
                return
        if self.app:
            try:
                self.app.post_message(self.app.LogMsg(text, style))
            except Exception as e:
                print(f"  {text}  [log error: {e}]")
        else:
            print(f"  {text}")

        # Web console streaming (skip debug messages to reduce noise)
        if self._web_enabled and not _debug:
            import web_server
            self._schedule(web_server.broadcast_log(text))

    # ---- Lifecycle ----

    def start(self):
        """Begin polling. Must be called from the running event loop."""
        if self.running:
            return
        self.running = True
        self.telemetry_sub.start()
        self.setpoint_sub.start()
        self.log(f"Polling {self.device_name}: telemetry every "
                 f"{self.telemetry_sub.interval * 1000:.0f}ms, setpoint every "
                 f"{self.setpoint_sub.interval * 1000:.0f}ms", _debug=True)

    def stop(self):
        """Cancel both subscriptions. In-flight results are discarded."""
        self.running = False
        self.telemetry_sub.cancel()
        self.setpoint_sub.cancel()

    async def wait_for_setpoint(self, timeout: float = 5.0) -> Optional[SetpointState]:
        """Wait until the first setpoint poll lands (None on timeout)."""
        deadline = time.monotonic() + timeout
        while self.setpoint_sub.latest_value is None and time.monotonic() < deadline:
            await asyncio.sleep(0.02)
        return self.setpoint_sub.latest_value

    # ---- State ----

    @property
    def telemetry(self) -> Optional[TelemetrySample]:
        return self.telemetry_sub.latest_value

    @property
    def setpoint(self) -> Optional[SetpointState]:
        return self.setpoint_sub.latest_value

    @property
    def mode_name(self) -> str:
        t = self.telemetry
        return mode_name(t.output_mode if t else None)

    def snapshot(self) -> dict:
        """Current state as plain data for the web API."""
        t = self.telemetry
        s = self.setpoint
        return {
            "timestamp": time.time(),
            "device": {
                "name": self.device_name,
                "polling": self.running,
                "read_errors": self.read_errors,
                "last_error": self.last_error,
                "in_flight": self.telemetry_sub.in_flight + self.setpoint_sub.in_flight,
                "writes": self.writer.writes,
                "failed_writes": self.writer.failed_writes,
            },
            "mode": self.mode_name,
            "telemetry": None if t is None else {
                "timestamp": t.timestamp,
                "output_voltage": t.output_voltage_mv / 1000,
                "output_current": t.output_current_ma / 1000,
                "input_voltage": t.input_voltage_mv / 1000,
                "max_output_voltage": t.max_output_voltage_mv / 1000,
                "output_mode": t.output_mode,
            },
            "setpoint": None if s is None else {
                "enabled": s.enabled,
                "voltage": s.voltage_set_mv / 1000,
                "current": s.current_set_mv / 1000,
                "last_updated": s.last_updated,
            },
            "history_length": len(self.history),
        }

    # ---- Poll callbacks ----

    def _on_telemetry(self, sample: TelemetrySample):
        self.history.append(sample)
        if self.app:
            self.app.post_message(self.app.TelemetryMsg(sample))
        if self._web_enabled:
            import web_server
            self._schedule(web_server.broadcast_telemetry(sample))

    def _on_setpoint(self, state: SetpointState):
        if self.app:
            self.app.post_message(self.app.SetpointMsg(state))
        if self._web_enabled:
            import web_server
            self._schedule(web_server.broadcast_setpoint(state))

    def _on_poll_error(self, exc: BaseException):
        # Stale-but-available: keep the last value, the next tick supersedes
        self.read_errors += 1
        self.last_error = f"{type(exc).__name__}: {exc}"
        self.log(f"[POLL] {self.last_error}", style="dim", _debug=True)

    def _schedule(self, coro):
        try:
            task = asyncio.get_running_loop().create_task(coro)
        except RuntimeError:
            coro.close()  # No loop (plain CLI teardown)
            return
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
