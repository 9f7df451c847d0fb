"""FastAPI web server with WebSocket support for live supply data.

Embedded in the monitor process. Broadcasts telemetry and setpoint updates
via WebSocket the instant a poll lands.
"""

import json
import time
from typing import Optional

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from pydantic import BaseModel

from editable_field import InvalidDraftError, to_device_units
from setpoint_writer import SetpointUnavailableError


# --- WebSocket Manager ---

class ConnectionManager:
    """Manages WebSocket connections and broadcasts."""

    def __init__(self):
        self.active_connections: list[WebSocket] = []

    async def connect(self, websocket: WebSocket):
        await websocket.accept()
        self.active_connections.append(websocket)

    def disconnect(self, websocket: WebSocket):
        if websocket in self.active_connections:
            self.active_connections.remove(websocket)

    async def broadcast(self, message: dict):
        """Send JSON message to all connected WebSocket clients."""
        if not self.active_connections:
            return
        data = json.dumps(message)
        disconnected = []
        for conn in self.active_connections:
            try:
                await conn.send_text(data)
            except Exception:
                disconnected.append(conn)
        for conn in disconnected:
            self.disconnect(conn)


# --- FastAPI App ---

app = FastAPI(title="PSU Monitor")
manager = ConnectionManager()

# Reference to the controller (set by monitor.py at startup)
_controller = None


def set_controller(controller):
    """Called by monitor.py to inject the PowerSupplyController reference."""
    global _controller
    _controller = controller


@app.get("/")
async def index():
    """API info."""
    return {
        "message": "PSU Monitor API",
        "docs": "/docs",
        "endpoints": {
            "state": "GET /api/state",
            "history": "GET /api/history?limit=1000",
            "setpoint": "POST /api/setpoint",
            "websocket": "ws://<host>/ws",
        },
    }


# --- WebSocket Endpoint ---

@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    await manager.connect(websocket)
    try:
        # Send initial state on connect (always, even if no device yet)
        await websocket.send_text(json.dumps({
            "type": "state",
            "data": _build_state()
        }))
        # Keep the socket open; clients only listen
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        manager.disconnect(websocket)


# --- REST API ---

@app.get("/api/state")
async def get_state():
    """Return current supply state."""
    return _build_state()


@app.get("/api/history")
async def get_history(limit: Optional[int] = None):
    """Return chart series (labels, currents in A, voltages in V)."""
    if not _controller:
        return {"labels": [], "timestamps": [], "currents": [], "voltages": []}
    return _controller.history.projection(limit).to_dict()


class SetpointRequest(BaseModel):
    voltage: Optional[float] = None   # V
    current: Optional[float] = None   # A
    enabled: Optional[bool] = None


@app.post("/api/setpoint")
async def post_setpoint(req: SetpointRequest):
    """Write a partial setpoint update through the grace-delay write flow."""
    if not _controller:
        raise HTTPException(status_code=503, detail="Device not connected")

    updates = {}
    try:
        if req.voltage is not None:
            updates["voltage_set_mv"] = _to_units("voltage", req.voltage)
        if req.current is not None:
            updates["current_set_mv"] = _to_units("current", req.current)
    except InvalidDraftError as e:
        raise HTTPException(status_code=422, detail=str(e))
    if req.enabled is not None:
        updates["enabled"] = req.enabled
    if not updates:
        raise HTTPException(status_code=422, detail="Nothing to update")

    try:
        ok = await _controller.writer.commit_setpoint(**updates)
    except SetpointUnavailableError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    if not ok:
        raise HTTPException(status_code=502, detail="Device rejected the write")
    return {"status": "ok", "setpoint": _build_state()["setpoint"]}


def _to_units(name: str, value: float) -> int:
    # Same parsing rules as the TUI's editable cells
    return to_device_units(repr(value), field_id=name)


# --- State Builder ---

def _build_state() -> dict:
    if not _controller:
        return {"error": "Controller not initialized", "timestamp": time.time()}
    return _controller.snapshot()


# --- Broadcast Helpers (called by controller poll hooks) ---

async def broadcast_telemetry(sample):
    await manager.broadcast({
        "type": "telemetry",
        "data": {
            "timestamp": sample.timestamp,
            "output_voltage": sample.output_voltage_mv / 1000,
            "output_current": sample.output_current_ma / 1000,
            "output_mode": sample.output_mode,
            "mode": sample.mode_name,
        },
        "timestamp": time.time(),
    })


async def broadcast_setpoint(state):
    await manager.broadcast({
        "type": "setpoint",
        "data": {
            "enabled": state.enabled,
            "voltage": state.voltage_set_mv / 1000,
            "current": state.current_set_mv / 1000,
            "last_updated": state.last_updated,
        },
        "timestamp": time.time(),
    })


async def broadcast_log(text: str):
    """Called on every controller log message for console streaming."""
    await manager.broadcast({
        "type": "log",
        "text": text,
        "timestamp": time.time(),
    })
