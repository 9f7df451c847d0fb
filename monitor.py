#!/usr/bin/env python3
"""
PSU Monitor for DP100-class bench power supplies over USB HID

Usage:
    python monitor.py --simulate                 # TUI against the built-in simulator
    python monitor.py --session mypkg.dp100:open # TUI against a real device
    python monitor.py --scan                     # List attached supplies
    python monitor.py --simulate --read          # Single reading
    python monitor.py --simulate --voltage 5.5   # Set output voltage (V)
    python monitor.py --simulate --current 0.2   # Set current limit (A)
    python monitor.py --simulate --on            # Enable output
    python monitor.py --simulate --no-tui        # Plain CLI monitoring
    python monitor.py --simulate --web           # TUI + web dashboard API

A real device needs a session factory (--session MODULE:CALLABLE) that is
called with an open hid_transport.HidTransport and returns an object with
get_telemetry(), get_setpoint() and set_setpoint().
"""

import argparse
import asyncio
import sys

from constants import (
    GRACE_DELAY,
    HISTORY_CAPACITY,
    SETPOINT_INTERVAL,
    TELEMETRY_INTERVAL,
)
from device_session import DeviceSession, SimulatedPowerSupply, load_session_factory
from editable_field import InvalidDraftError, to_device_units
from psu_controller import PowerSupplyController
from setpoint_writer import SetpointUnavailableError

# Check for textual
_HAS_TEXTUAL = False
try:
    from tui_app import PowerSupplyApp
    _HAS_TEXTUAL = True
except ImportError:
    print("Note: textual not available. Install with: pip install textual")
    print("      Falling back to plain CLI mode.\n")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Bench power supply monitor")
    parser.add_argument("--scan", action="store_true", help="List attached supplies only")
    parser.add_argument("--simulate", action="store_true",
                        help="Use the built-in simulated supply")
    parser.add_argument("--session", type=str, metavar="MODULE:FACTORY",
                        help="Session factory called with an open HidTransport")
    parser.add_argument("--path", type=str, help="Open the HID device at this path")
    parser.add_argument("--read", action="store_true", help="Single reading")
    parser.add_argument("--voltage", type=str, help="Set output voltage (V)")
    parser.add_argument("--current", type=str, help="Set current limit (A)")
    parser.add_argument("--on", action="store_true", help="Enable output")
    parser.add_argument("--off", action="store_true", help="Disable output")
    parser.add_argument("--no-tui", action="store_true",
                        help="Use plain CLI mode instead of TUI")
    parser.add_argument("--web", action="store_true",
                        help="Enable web dashboard alongside TUI")
    parser.add_argument("--web-only", action="store_true",
                        help="Web dashboard only, no TUI")
    parser.add_argument("--web-port", type=int, default=8000,
                        help="Web dashboard port (default 8000)")
    parser.add_argument("--telemetry-interval", type=float, default=TELEMETRY_INTERVAL,
                        help=f"Telemetry poll period in s (default {TELEMETRY_INTERVAL})")
    parser.add_argument("--setpoint-interval", type=float, default=SETPOINT_INTERVAL,
                        help=f"Setpoint poll period in s (default {SETPOINT_INTERVAL})")
    parser.add_argument("--history-size", type=int, default=HISTORY_CAPACITY,
                        help=f"Samples kept for the chart (default {HISTORY_CAPACITY})")
    parser.add_argument("--grace-delay", type=float, default=GRACE_DELAY,
                        help=f"Wait after a write before re-reading (default {GRACE_DELAY})")
    return parser


def main(argv=None):
    """Entry point: picks TUI, web or CLI mode from the flags."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.on and args.off:
        parser.error("--on and --off are mutually exclusive")
    if args.telemetry_interval <= 0 or args.setpoint_interval <= 0:
        parser.error("poll intervals must be positive")
    if args.history_size <= 0:
        parser.error("--history-size must be positive")

    if args.scan:
        return _scan()

    try:
        session, name, transport = open_session(args)
    except (ValueError, ConnectionError, OSError, ImportError) as e:
        print(f"Error: {e}")
        return 1
    if session is None:
        print("No device session. Use --simulate or --session MODULE:FACTORY.")
        return 1

    try:
        return _run_mode(args, session, name)
    finally:
        if transport is not None:
            transport.close()


def _run_mode(args, session, name: str) -> int:
    is_oneshot = args.read or args.voltage is not None or args.current is not None \
        or args.on or args.off

    if args.web_only:
        _run_web_only(args, session, name)
        return 0

    if is_oneshot:
        return asyncio.run(_run_oneshot(args, session, name))

    # Textual's app.run() manages its own event loop, so call it directly
    if _HAS_TEXTUAL and not args.no_tui:
        controller = make_controller(args, session, name)
        server = _attach_web(controller, args.web_port) if args.web else None
        app = PowerSupplyApp(controller, web_server=server)
        app.run()
        return 0

    asyncio.run(_run_cli(args, session, name))
    return 0


def make_controller(args, session, name: str) -> PowerSupplyController:
    return PowerSupplyController(
        session,
        telemetry_interval=args.telemetry_interval,
        setpoint_interval=args.setpoint_interval,
        history_capacity=args.history_size,
        grace_delay=args.grace_delay,
        device_name=name,
    )


def open_session(args):
    """Return (session, display name, transport).

    The transport is None for the simulator; otherwise the caller closes it.
    (None, '', None) means nothing is configured.
    """
    if args.simulate:
        return SimulatedPowerSupply(), "Simulated DP100", None
    if not args.session:
        return None, "", None

    import hid_transport
    factory = load_session_factory(args.session)
    if args.path:
        info = {'path': args.path.encode(), 'product_string': args.path,
                'vendor_id': 0, 'product_id': 0}
    else:
        devices = hid_transport.discover_devices()
        if not devices:
            raise ConnectionError("No supply found. Is it plugged in?")
        info = devices[0]
    transport = hid_transport.HidTransport(info)
    transport.open()
    try:
        session = factory(transport)
        if not isinstance(session, DeviceSession):
            raise ValueError(f"{args.session} did not return a device session")
    except Exception:
        transport.close()
        raise
    return session, transport.name, transport


def _scan() -> int:
    import hid_transport
    devices = hid_transport.discover_devices()
    for d in devices:
        print(f"  Found: {hid_transport.describe(d)}")
    print(f"\nFound {len(devices)} supply(s)")
    return 0


async def _run_oneshot(args, session, name: str) -> int:
    """Wait for the first setpoint, apply the requested change, print state."""
    controller = make_controller(args, session, name)
    controller.start()
    try:
        if await controller.wait_for_setpoint() is None:
            print("No response from device")
            return 1

        writer = controller.writer
        updates = {}
        if args.voltage is not None:
            updates["voltage_set_mv"] = to_device_units(args.voltage, field_id="voltage")
        if args.current is not None:
            updates["current_set_mv"] = to_device_units(args.current, field_id="current")
        if args.on or args.off:
            updates["enabled"] = bool(args.on)
        if updates and not await writer.commit_setpoint(**updates):
            print("Write failed")
            return 1

        await controller.telemetry_sub.refresh()
        _print_state(controller)
        return 0
    except (InvalidDraftError, SetpointUnavailableError) as e:
        print(f"Error: {e}")
        return 1
    finally:
        controller.stop()


def _print_state(controller: PowerSupplyController):
    t, s = controller.telemetry, controller.setpoint
    if s:
        print(f"  Set:  {s.voltage_set_mv / 1000:.2f}V  {s.current_set_mv / 1000:.3f}A  "
              f"{'ON' if s.enabled else 'OFF'}")
    if t:
        print(f"  Out:  {t.output_voltage_mv / 1000:.2f}V  {t.output_current_ma / 1000:.3f}A  "
              f"{controller.mode_name}")
        print(f"  V IN: {t.input_voltage_mv / 1000:.2f}V  "
              f"v_out_max: {t.max_output_voltage_mv / 1000:.2f}V")


async def _run_cli(args, session, name: str):
    """Plain monitoring: one line per telemetry sample until Ctrl+C."""
    controller = make_controller(args, session, name)

    print("\n" + "=" * 50)
    print(f"  PSU Monitor — {name}")
    print("=" * 50)

    last_ts = None
    controller.start()
    try:
        while True:
            await asyncio.sleep(max(controller.telemetry_sub.interval, 0.5))
            t = controller.telemetry
            if t is None or t.timestamp == last_ts:
                continue
            last_ts = t.timestamp
            print(f"  {t.output_voltage_mv / 1000:6.2f}V  {t.output_current_ma / 1000:6.3f}A  "
                  f"{controller.mode_name:<4} [{len(controller.history)} samples]")
    finally:
        controller.stop()


def _attach_web(controller: PowerSupplyController, port: int):
    """Build a uvicorn server the TUI runs on its own event loop."""
    import uvicorn
    import web_server

    web_server.set_controller(controller)
    controller._web_enabled = True
    config = uvicorn.Config(web_server.app, host="0.0.0.0", port=port, log_level="warning")
    server = uvicorn.Server(config)
    # Installing signal handlers would fight Textual for SIGINT
    server.install_signal_handlers = lambda: None
    return server


def _run_web_only(args, session, name: str):
    """Run the web dashboard only (no TUI)."""
    import uvicorn
    import web_server

    controller = make_controller(args, session, name)
    controller._web_enabled = True
    web_server.set_controller(controller)

    async def startup_and_serve():
        controller.start()
        config = uvicorn.Config(
            web_server.app, host="0.0.0.0", port=args.web_port,
            log_level="info")
        server = uvicorn.Server(config)
        try:
            await server.serve()
        finally:
            controller.stop()

    print("\n" + "=" * 50)
    print("  PSU Monitor — Web Only Mode")
    print("=" * 50)
    print(f"  API:       http://0.0.0.0:{args.web_port}/api/state")
    print(f"  History:   http://0.0.0.0:{args.web_port}/api/history")
    print(f"  WebSocket: ws://0.0.0.0:{args.web_port}/ws")
    print()

    try:
        asyncio.run(startup_and_serve())
    except KeyboardInterrupt:
        print("\nShutting down...")


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\nGoodbye!")
