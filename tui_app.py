"""Textual TUI application for the PSU Monitor."""

from textual import on, work
from textual.app import App, ComposeResult
from textual.containers import Horizontal, Vertical
from textual.message import Message
from textual.widgets import (
    Button, Footer, Header, Input, Label, RichLog, Sparkline, Static,
)

from editable_field import EditableField, InvalidDraftError
from psu_controller import PowerSupplyController
from psu_state import SetpointState, TelemetrySample
from setpoint_writer import SetpointUnavailableError
from telemetry_history import ChartSeries
from update_indicator import UpdateIndicator


# ---- Widgets ----

class UpdateIndicatorWidget(Static):
    """Dot that flashes each time the watched value changes."""

    ON = "[bold blue]●[/bold blue]"
    OFF = "[dim]○[/dim]"

    def __init__(self, *, id: str | None = None):
        super().__init__(self.OFF, id=id)
        self.indicator = UpdateIndicator(on_change=self._show)

    def feed(self, value) -> None:
        self.indicator.feed(value)

    def _show(self, active: bool) -> None:
        self.update(self.ON if active else self.OFF)

    def on_unmount(self) -> None:
        self.indicator.close()


class EditableSetpoint(Horizontal):
    """Setpoint cell: click to edit, Enter/✓ to commit, Esc/✗ to cancel."""

    DEFAULT_CSS = """
    EditableSetpoint {
        height: 3;
        width: auto;
    }
    EditableSetpoint > .cell-value {
        width: 12;
        padding: 1 1;
    }
    EditableSetpoint > Input {
        width: 12;
    }
    EditableSetpoint > Button {
        min-width: 5;
        width: 5;
    }
    """

    def __init__(self, field: EditableField, *, id: str):
        super().__init__(id=id)
        self.field = field
        self.device_value = None
        self.display_text = "--"

    def compose(self) -> ComposeResult:
        yield Static(f"{self.display_text}{self.field.suffix}", classes="cell-value",
                     id=f"{self.id}-value")
        yield Input(type="number", id=f"{self.id}-input")
        yield Button("✓", id=f"{self.id}-save", variant="success")
        yield Button("✗", id=f"{self.id}-cancel", variant="error")

    def on_mount(self) -> None:
        self._sync_mode()

    # ---- State ----

    def set_value(self, device_units: int) -> None:
        """Show a new authoritative value. The draft is left alone."""
        self.device_value = device_units
        self.display_text = self.field.format_value(device_units)
        self.query_one(f"#{self.id}-value", Static).update(
            f"{self.display_text}{self.field.suffix}")

    def begin_edit(self) -> None:
        if self.device_value is None:
            return
        self.field.activate(self.display_text)
        inp = self.query_one(f"#{self.id}-input", Input)
        inp.value = self.field.draft
        self._sync_mode()
        inp.focus()

    def _sync_mode(self) -> None:
        if not self.app.is_running:
            return  # Children are being pruned
        editing = self.field.editing
        self.query_one(f"#{self.id}-value", Static).display = not editing
        for suffix in ("input", "save", "cancel"):
            self.query_one(f"#{self.id}-{suffix}").display = editing

    # ---- Events ----

    def on_click(self, event) -> None:
        if not self.field.editing:
            self.begin_edit()

    @on(Input.Changed)
    def _on_draft_changed(self, event: Input.Changed) -> None:
        event.stop()
        if self.field.editing:
            self.field.set_draft(event.value)

    @on(Input.Submitted)
    def _on_submitted(self, event: Input.Submitted) -> None:
        event.stop()
        if self.field.editing:
            self.field.set_draft(event.value)
            self.route_key("enter")

    @on(Button.Pressed)
    def _on_button(self, event: Button.Pressed) -> None:
        event.stop()
        if event.button.id == f"{self.id}-save":
            inp = self.query_one(f"#{self.id}-input", Input)
            self.field.set_draft(inp.value)
            self.route_key("enter")
        elif event.button.id == f"{self.id}-cancel":
            self.route_key("escape")

    def on_key(self, event) -> None:
        if event.key in self.field.CANCEL_KEYS and self.field.editing:
            event.stop()
            event.prevent_default()
            self.route_key(event.key)

    @work(group="setpoint-write")
    async def route_key(self, key: str) -> None:
        """Hand an accept/reject key to the field; report bad input or missing state."""
        try:
            await self.field.handle_key(key)
        except (InvalidDraftError, SetpointUnavailableError) as e:
            self.app.notify(str(e), severity="error")
        self._sync_mode()


class ChartPanel(Vertical):
    """Sparklines for output current and voltage history."""

    DEFAULT_CSS = """
    ChartPanel {
        border: round $accent;
        height: auto;
        padding: 0 1;
    }
    ChartPanel > Sparkline {
        height: 3;
        margin-bottom: 1;
    }
    """

    def compose(self) -> ComposeResult:
        yield Label("Currents (A)", id="chart-current-label")
        yield Sparkline(None, id="chart-current")
        yield Label("Voltages (V)", id="chart-voltage-label")
        yield Sparkline(None, id="chart-voltage")

    def update_series(self, series: ChartSeries) -> None:
        self.query_one("#chart-current", Sparkline).data = list(series.currents) or None
        self.query_one("#chart-voltage", Sparkline).data = list(series.voltages) or None
        if len(series):
            labels = series.labels()
            span = f"{labels[0]} .. {labels[-1]}"
            self.query_one("#chart-current-label", Label).update(
                f"Currents (A)  now {series.currents[-1]:.3f}  [dim]{span}[/dim]")
            self.query_one("#chart-voltage-label", Label).update(
                f"Voltages (V)  now {series.voltages[-1]:.2f}  [dim]{len(series)} samples[/dim]")


# ---- App ----

class PowerSupplyApp(App):
    """Textual TUI for a bench power supply."""

    TITLE = "PSU Monitor"

    CSS = """
    #sidebar {
        width: 28;
        dock: left;
        border-right: solid $accent;
        padding: 1;
        background: $surface;
    }
    #panel {
        height: auto;
        border: solid $primary;
        padding: 0 1;
    }
    .row {
        height: auto;
    }
    .row-label {
        width: 10;
        padding: 1 0;
    }
    .row-out {
        width: 14;
        padding: 1 1;
    }
    #log {
        height: 1fr;
        border: solid $primary;
    }
    #cmd-input {
        dock: bottom;
    }
    """

    BINDINGS = [
        ("f2", "toggle_debug", "Debug"),
        ("f3", "clear_log", "Clear"),
        ("f4", "focus_input", "Input"),
    ]

    # ---- Custom Messages ----

    class TelemetryMsg(Message):
        """A telemetry poll landed."""
        def __init__(self, sample: TelemetrySample):
            super().__init__()
            self.sample = sample

    class SetpointMsg(Message):
        """A setpoint poll (scheduled or forced) landed."""
        def __init__(self, state: SetpointState):
            super().__init__()
            self.state = state

    class LogMsg(Message):
        """Generic log line for the RichLog panel."""
        def __init__(self, text: str, style: str = ""):
            super().__init__()
            self.text = text
            self.style = style

    # ---- Init ----

    def __init__(self, controller: PowerSupplyController, web_server=None):
        super().__init__()
        self.controller = controller
        self.web_server = web_server  # Optional uvicorn.Server (--web)
        self.controller.app = self  # Back-reference for callbacks
        self.debug_mode = False
        writer = controller.writer
        self.voltage_field = EditableField(
            "voltage", on_save=writer.set_voltage, decimals=2, suffix="V")
        self.current_field = EditableField(
            "current", on_save=writer.set_current, decimals=3, suffix="A")

    # ---- Layout ----

    def compose(self) -> ComposeResult:
        yield Header()
        with Horizontal():
            yield Static("Connecting...", id="sidebar")
            with Vertical():
                with Vertical(id="panel"):
                    with Horizontal(classes="row"):
                        yield Label("Status", classes="row-label")
                        yield Button("OFF", id="out-off")
                        yield Button("ON", id="out-on")
                        yield Static("unknown", id="mode", classes="row-out")
                    with Horizontal(classes="row"):
                        yield Label("Voltage", classes="row-label")
                        yield EditableSetpoint(self.voltage_field, id="voltage-set")
                        yield Static("--", id="vout", classes="row-out")
                    with Horizontal(classes="row"):
                        yield Label("Current", classes="row-label")
                        yield EditableSetpoint(self.current_field, id="current-set")
                        yield Static("--", id="iout", classes="row-out")
                    with Horizontal(classes="row"):
                        yield Label("Data", classes="row-label")
                        yield UpdateIndicatorWidget(id="setpoint-indicator")
                        yield UpdateIndicatorWidget(id="telemetry-indicator")
                yield ChartPanel(id="chart")
                yield RichLog(id="log", wrap=True, highlight=True, markup=True)
        yield Input(placeholder="Enter command (type 'help' for list)", id="cmd-input")
        yield Footer()

    def on_mount(self) -> None:
        """Start polling once the view exists."""
        self.query_one("#cmd-input", Input).focus()
        self.controller.start()
        if self.web_server is not None:
            self.run_worker(self.web_server.serve(), group="web", exclusive=True)
            self.log_message(f"Web API on port {self.web_server.config.port}")
        self.update_status()

    def on_unmount(self) -> None:
        self._teardown()

    def exit(self, *args, **kwargs) -> None:
        """Stop polling before the screen's widgets are torn down."""
        self._teardown()
        super().exit(*args, **kwargs)

    def _teardown(self) -> None:
        """Tear down both subscriptions; late results are discarded."""
        self.controller.stop()
        if self.web_server is not None:
            self.web_server.should_exit = True

    # ---- Message Handlers ----
    # Results can still land while run_test()/shutdown prunes the screen, so
    # every handler bails out once the app has stopped running.

    def on_power_supply_app_telemetry_msg(self, msg: TelemetryMsg) -> None:
        if not self.is_running:
            self._teardown()
            return
        s = msg.sample
        self.query_one("#vout", Static).update(f"{s.output_voltage_mv / 1000:.2f}V")
        self.query_one("#iout", Static).update(f"{s.output_current_ma / 1000:.3f}A")
        self.query_one("#mode", Static).update(s.mode_name)
        self.query_one("#telemetry-indicator", UpdateIndicatorWidget).feed(s.timestamp)
        self.query_one("#chart", ChartPanel).update_series(self.controller.history.projection())
        self.update_status()

    def on_power_supply_app_setpoint_msg(self, msg: SetpointMsg) -> None:
        if not self.is_running:
            self._teardown()
            return
        st = msg.state
        self.query_one("#voltage-set", EditableSetpoint).set_value(st.voltage_set_mv)
        self.query_one("#current-set", EditableSetpoint).set_value(st.current_set_mv)
        self.query_one("#setpoint-indicator", UpdateIndicatorWidget).feed(st.last_updated)
        self.update_status()

    def on_power_supply_app_log_msg(self, msg: LogMsg) -> None:
        if not self.is_running:
            return
        log = self.query_one("#log", RichLog)
        if msg.style:
            log.write(f"[{msg.style}]{msg.text}[/{msg.style}]")
        else:
            log.write(msg.text)

    # ---- Output Buttons ----

    @on(Button.Pressed, "#out-on")
    def _on_output_on(self) -> None:
        self.write_setpoint(enabled=True)

    @on(Button.Pressed, "#out-off")
    def _on_output_off(self) -> None:
        self.write_setpoint(enabled=False)

    @work(group="setpoint-write")
    async def write_setpoint(self, **updates) -> None:
        """One write flow per call. Never exclusive: a later command must not
        cancel the grace delay and forced re-poll of an earlier write."""
        try:
            await self.controller.writer.commit_setpoint(**updates)
        except SetpointUnavailableError as e:
            self.log_message(f"Error: {e}", style="bold red")
            self.notify(str(e), severity="error")
        self.update_status()

    # ---- Command Handling ----

    @on(Input.Submitted, "#cmd-input")
    def on_cmd_submitted(self, event: Input.Submitted) -> None:
        """Handle command input."""
        cmd = event.value.strip()
        event.input.value = ""
        if cmd:
            self.log_message(f"> {cmd}", style="bold cyan")
            self.dispatch_command(cmd.lower())

    @work(exclusive=True, group="cmd")
    async def dispatch_command(self, cmd: str) -> None:
        """Parse and execute a user command."""
        try:
            if cmd in ['q', 'quit', 'exit']:
                self.exit()
                return

            elif cmd.startswith(('v ', 'volt')):
                parts = cmd.split(None, 1)
                if len(parts) < 2:
                    self.log_message("Usage: v <volts>")
                    return
                self.write_setpoint(voltage_set_mv=self.voltage_field.parse_draft(parts[1]))

            elif cmd.startswith(('i ', 'curr')):
                parts = cmd.split(None, 1)
                if len(parts) < 2:
                    self.log_message("Usage: i <amps>")
                    return
                self.write_setpoint(current_set_mv=self.current_field.parse_draft(parts[1]))

            elif cmd == 'on':
                self.write_setpoint(enabled=True)

            elif cmd == 'off':
                self.write_setpoint(enabled=False)

            elif cmd in ['r', 'refresh']:
                await self.controller.setpoint_sub.refresh()
                self.log_message("Setpoint refreshed")

            elif cmd == 'reset':
                self.controller.history.clear()
                self.query_one("#chart", ChartPanel).update_series(
                    self.controller.history.projection())
                self.log_message("Chart history cleared")

            elif cmd == 'status':
                self.log_message(self._status_line())

            elif cmd in ['d', 'debug']:
                self.action_toggle_debug()

            elif cmd in ['clear', 'cls']:
                self.action_clear_log()

            elif cmd == 'help':
                self._show_help()

            else:
                self.log_message("Unknown command. Type 'help' for list.")

        except InvalidDraftError as e:
            self.log_message(str(e), style="bold red")

        self.update_status()

    # ---- UI Updates ----

    def _status_line(self) -> str:
        c = self.controller
        t, s = c.telemetry, c.setpoint
        parts = [f"mode={c.mode_name}"]
        if t:
            parts.append(f"out={t.output_voltage_mv / 1000:.2f}V/{t.output_current_ma / 1000:.3f}A")
        if s:
            parts.append(f"set={s.voltage_set_mv / 1000:.2f}V/{s.current_set_mv / 1000:.3f}A")
            parts.append("ON" if s.enabled else "OFF")
        parts.append(f"history={len(c.history)}/{c.history.capacity}")
        return "  ".join(parts)

    def update_status(self) -> None:
        """Refresh the sidebar with current state."""
        if not self.is_running:
            return
        c = self.controller
        t = c.telemetry
        lines = ["[bold]Status[/bold]", ""]

        if t is not None:
            lines.append("[green]Connected[/green]")
        else:
            lines.append("[yellow]Waiting for data...[/yellow]")
        lines.append(f"{c.device_name}")

        s = c.setpoint
        if s is not None:
            state = "[green]ON[/green]" if s.enabled else "[dim]OFF[/dim]"
            lines.append(f"\nOutput: {state}")

        if t is not None:
            lines.append("")
            lines.append(f"V IN:      {t.input_voltage_mv / 1000:.2f}V")
            lines.append(f"V OUT MAX: {t.max_output_voltage_mv / 1000:.2f}V")

        lines.append("")
        lines.append(f"History: {len(c.history)}/{c.history.capacity}")
        w = c.writer
        if w.writes:
            lines.append(f"Writes:  {w.writes - w.failed_writes}/{w.writes} ok")
        if c.read_errors:
            lines.append(f"[yellow]Read errors: {c.read_errors}[/yellow]")

        if self.debug_mode:
            lines.append("\n[yellow]DEBUG ON[/yellow]")
            lines.append(f"In flight: {c.telemetry_sub.in_flight}T "
                         f"{c.setpoint_sub.in_flight}S")

        self.query_one("#sidebar", Static).update("\n".join(lines))

    def _show_help(self):
        """Display help text in the log."""
        help_text = (
            "[bold]--- Commands ---[/bold]\n"
            "  v <volts>      Set output voltage\n"
            "  i <amps>       Set current limit\n"
            "  on / off       Switch output\n"
            "  refresh / r    Re-read setpoint now\n"
            "  reset          Clear chart history\n"
            "  status         Print current readings\n"
            "\n"
            "[bold]--- Keys / Misc ---[/bold]\n"
            "  click a set value to edit it (Enter saves, Esc cancels)\n"
            "  debug / d      Toggle debug mode (or F2)\n"
            "  clear / cls    Clear log (or F3)\n"
            "  F4             Focus input\n"
            "  q / quit       Quit"
        )
        self.query_one("#log", RichLog).write(help_text)

    # ---- Actions ----

    def action_toggle_debug(self) -> None:
        """Toggle debug mode."""
        self.debug_mode = not self.debug_mode
        self.notify(f"Debug: {'ON' if self.debug_mode else 'OFF'}")
        self.update_status()

    def action_clear_log(self) -> None:
        self.query_one("#log", RichLog).clear()

    def action_focus_input(self) -> None:
        self.query_one("#cmd-input", Input).focus()

    def log_message(self, text: str, style: str = ""):
        """Convenience: post a LogMsg."""
        self.post_message(self.LogMsg(text, style))
