"""Pytest configuration and shared fixtures for PSU monitor tests."""

import asyncio
import sys
from pathlib import Path

import pytest

# Modules live at the repository root
root_path = Path(__file__).parent.parent
sys.path.insert(0, str(root_path))

from psu_state import SetpointState, TelemetrySample  # noqa: E402


class FakeSession:
    """Scriptable DeviceSession. Each call is recorded."""

    def __init__(self, setpoint=None, write_result=True, latency=0.0):
        self.setpoint = setpoint or SetpointState(
            enabled=False, voltage_set_mv=5000, current_set_mv=100, last_updated=1.0)
        self.write_result = write_result
        self.write_error = None
        self.latency = latency
        self.telemetry_calls = 0
        self.setpoint_calls = 0
        self.writes = []

    async def get_telemetry(self):
        self.telemetry_calls += 1
        await asyncio.sleep(self.latency)
        return make_sample(timestamp=float(self.telemetry_calls))

    async def get_setpoint(self):
        self.setpoint_calls += 1
        await asyncio.sleep(self.latency)
        return self.setpoint

    async def set_setpoint(self, state):
        self.writes.append(state)
        await asyncio.sleep(self.latency)
        if self.write_error is not None:
            raise self.write_error
        if self.write_result:
            # Device applies it; the next read reports a new timestamp
            self.setpoint = state.merged(last_updated=self.setpoint.last_updated + 1)
        return self.write_result


def make_sample(timestamp=1.0, current_ma=500, voltage_mv=5000, mode=1):
    return TelemetrySample(
        output_current_ma=current_ma,
        output_voltage_mv=voltage_mv,
        output_mode=mode,
        input_voltage_mv=20000,
        max_output_voltage_mv=19000,
        timestamp=timestamp,
    )


@pytest.fixture
def fake_session():
    return FakeSession()


@pytest.fixture
def sample_setpoint():
    return SetpointState(enabled=False, voltage_set_mv=5000, current_set_mv=100,
                         last_updated=1.0)
