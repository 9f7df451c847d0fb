import asyncio

from device_session import SimulatedPowerSupply
from psu_controller import PowerSupplyController


def _controller(session, **kwargs):
    kwargs.setdefault("telemetry_interval", 0.02)
    kwargs.setdefault("setpoint_interval", 0.5)
    kwargs.setdefault("grace_delay", 0.01)
    return PowerSupplyController(session, **kwargs)


def test_telemetry_polls_fill_history():
    session = SimulatedPowerSupply(latency=0, seed=1)
    controller = _controller(session, history_capacity=5)

    async def scenario():
        controller.start()
        await asyncio.sleep(0.2)
        controller.stop()

    asyncio.run(scenario())
    assert len(controller.history) == 5
    assert controller.telemetry is controller.history.latest()
    assert controller.mode_name == "OFF"


def test_setpoint_updates_do_not_touch_history():
    session = SimulatedPowerSupply(latency=0)
    controller = _controller(session, telemetry_interval=60.0)

    async def scenario():
        controller.start()
        await controller.wait_for_setpoint(timeout=1.0)
        count = len(controller.history)
        await controller.setpoint_sub.refresh()
        await controller.setpoint_sub.refresh()
        controller.stop()
        return count

    count = asyncio.run(scenario())
    assert count == 1
    assert len(controller.history) == 1


def test_write_flow_end_to_end():
    session = SimulatedPowerSupply(latency=0, load_ohms=10.0, noise=False)
    controller = _controller(session)

    async def scenario():
        controller.start()
        await controller.wait_for_setpoint(timeout=1.0)
        ok = await controller.writer.set_voltage(6000)
        ok = ok and await controller.writer.set_output(True)
        await controller.telemetry_sub.refresh()
        controller.stop()
        return ok

    assert asyncio.run(scenario()) is True
    assert controller.setpoint.voltage_set_mv == 6000
    assert controller.setpoint.enabled is True
    assert controller.telemetry.output_voltage_mv == 6000
    assert controller.mode_name == "CV"


def test_rejected_write_keeps_displayed_setpoint():
    session = SimulatedPowerSupply(latency=0)
    session.fail_writes = 1
    controller = _controller(session)

    async def scenario():
        controller.start()
        before = await controller.wait_for_setpoint(timeout=1.0)
        ok = await controller.writer.set_voltage(6000)
        controller.stop()
        return before, ok

    before, ok = asyncio.run(scenario())
    assert ok is False
    assert controller.setpoint is before
    assert controller.setpoint.voltage_set_mv == 5000


def test_read_errors_degrade_to_stale_values():
    session = SimulatedPowerSupply(latency=0)
    controller = _controller(session, telemetry_interval=60.0)

    async def scenario():
        controller.start()
        await asyncio.sleep(0.05)
        first = controller.telemetry
        session.fail_reads = 1
        await controller.telemetry_sub.refresh()
        controller.stop()
        return first

    first = asyncio.run(scenario())
    assert first is not None
    assert controller.telemetry is first
    assert controller.read_errors == 1
    assert "simulated read failure" in controller.last_error


def test_stop_discards_late_results():
    session = SimulatedPowerSupply(latency=0.05)
    controller = _controller(session)

    async def scenario():
        controller.start()
        await asyncio.sleep(0.01)
        controller.stop()
        await asyncio.sleep(0.1)

    asyncio.run(scenario())
    assert controller.telemetry is None
    assert len(controller.history) == 0


def test_snapshot_shape():
    session = SimulatedPowerSupply(latency=0)
    controller = _controller(session, device_name="Bench")

    async def scenario():
        controller.start()
        await controller.wait_for_setpoint(timeout=1.0)
        await controller.telemetry_sub.refresh()
        controller.stop()

    asyncio.run(scenario())
    snap = controller.snapshot()
    assert snap["device"]["name"] == "Bench"
    assert snap["setpoint"] == {
        "enabled": False, "voltage": 5.0, "current": 1.0,
        "last_updated": controller.setpoint.last_updated,
    }
    assert snap["telemetry"]["input_voltage"] == 20.0
    assert snap["history_length"] == len(controller.history)


def test_log_prints_without_app(capsys):
    controller = _controller(SimulatedPowerSupply())
    controller.log("hello")
    controller.log("hidden", _debug=True)
    out = capsys.readouterr().out
    assert "hello" in out
    assert "hidden" not in out


def test_snapshot_reports_write_counters():
    session = SimulatedPowerSupply(latency=0)
    session.fail_writes = 1
    controller = _controller(session)

    async def scenario():
        controller.start()
        await controller.wait_for_setpoint(timeout=1.0)
        await controller.writer.set_voltage(6000)
        await controller.writer.set_voltage(6000)
        controller.stop()

    asyncio.run(scenario())
    device = controller.snapshot()["device"]
    assert device["writes"] == 2
    assert device["failed_writes"] == 1
    assert device["in_flight"] == 0


def test_web_broadcasts_are_held_until_done(monkeypatch):
    import web_server

    sent = []

    async def slow_broadcast(text):
        await asyncio.sleep(0.02)
        sent.append(text)

    monkeypatch.setattr(web_server, "broadcast_log", slow_broadcast)
    controller = _controller(SimulatedPowerSupply())
    controller._web_enabled = True

    async def scenario():
        controller.log("hello")
        pending = len(controller._tasks)
        await asyncio.sleep(0.05)
        return pending

    assert asyncio.run(scenario()) == 1
    assert sent == ["hello"]
    assert controller._tasks == set()
