"""Device session interface and an in-process simulated supply.

A DeviceSession owns one open device connection and exposes three request/
response coroutines. The wire framing that implements them on top of the
HID transport lives outside this project; anything with these methods can be
plugged in with `--session module:factory`.
"""

from __future__ import annotations

import asyncio
import importlib
import random
from typing import Callable, Protocol, runtime_checkable

from psu_state import SetpointState, TelemetrySample


@runtime_checkable
class DeviceSession(Protocol):
    async def get_telemetry(self) -> TelemetrySample: ...

    async def get_setpoint(self) -> SetpointState: ...

    async def set_setpoint(self, state: SetpointState) -> bool:
        """True when the device acknowledged the write."""
        ...


def load_session_factory(target: str) -> Callable:
    """Resolve 'package.module:callable' to the session factory."""
    module_name, sep, attr = target.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"Invalid session factory '{target}' (expected module:callable)")
    module = importlib.import_module(module_name)
    try:
        return getattr(module, attr)
    except AttributeError:
        raise ValueError(f"Module '{module_name}' has no attribute '{attr}'") from None


class SimulatedPowerSupply:
    """Bench supply simulator driving a resistive load.

    Used for --simulate and in tests. Reads and writes take `latency`
    seconds; `fail_reads` / `fail_writes` make the next N requests raise
    (reads) or report failure (writes).
    """

    MAX_OUTPUT_MARGIN_MV = 1000   # Max output is input minus this drop
    NOISE_MV = 5

    def __init__(self, input_voltage_mv: int = 20000, load_ohms: float = 10.0,
                 latency: float = 0.005, noise: bool = True, seed=None):
        self.input_voltage_mv = input_voltage_mv
        self.load_ohms = load_ohms
        self.latency = latency
        self.noise = noise
        self._rng = random.Random(seed)
        self.enabled = False
        self.voltage_set_mv = 5000
        self.current_set_mv = 1000
        self.fail_reads = 0
        self.fail_writes = 0
        self.reads = 0
        self.writes: list[SetpointState] = []

    @property
    def max_output_voltage_mv(self) -> int:
        return max(0, self.input_voltage_mv - self.MAX_OUTPUT_MARGIN_MV)

    async def get_telemetry(self) -> TelemetrySample:
        await self._request()
        if not self.enabled:
            vout, iout, mode = 0, 0, 2
        else:
            vout = self.voltage_set_mv
            iout = round(vout / self.load_ohms)
            mode = 1
            if iout > self.current_set_mv:
                # Current limit reached: fold back voltage
                iout = self.current_set_mv
                vout = round(iout * self.load_ohms)
                mode = 0
            if self.noise and vout:
                vout = max(0, vout + self._rng.randint(-self.NOISE_MV, self.NOISE_MV))
        return TelemetrySample(
            output_current_ma=iout,
            output_voltage_mv=vout,
            output_mode=mode,
            input_voltage_mv=self.input_voltage_mv,
            max_output_voltage_mv=self.max_output_voltage_mv,
        )

    async def get_setpoint(self) -> SetpointState:
        await self._request()
        return SetpointState(
            enabled=self.enabled,
            voltage_set_mv=self.voltage_set_mv,
            current_set_mv=self.current_set_mv,
        )

    async def set_setpoint(self, state: SetpointState) -> bool:
        await asyncio.sleep(self.latency)
        self.writes.append(state)
        if self.fail_writes > 0:
            self.fail_writes -= 1
            return False
        if not 0 <= state.voltage_set_mv <= self.max_output_voltage_mv:
            return False
        if state.current_set_mv < 0:
            return False
        self.enabled = state.enabled
        self.voltage_set_mv = state.voltage_set_mv
        self.current_set_mv = state.current_set_mv
        return True

    async def _request(self):
        await asyncio.sleep(self.latency)
        self.reads += 1
        if self.fail_reads > 0:
            self.fail_reads -= 1
            raise ConnectionError("simulated read failure")
