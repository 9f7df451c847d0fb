"""USB HID discovery and raw report transport (hidapi).

hidapi calls block, so reads/writes run in the loop's default executor.
The report framing on top of this transport is provided by the session
factory (see device_session.load_session_factory).
"""

import asyncio
from typing import Optional

import hid

from constants import DP100_PRODUCT_ID, DP100_VENDOR_ID

REPORT_SIZE = 64
READ_TIMEOUT_MS = 1000


def discover_devices(vendor_id: int = DP100_VENDOR_ID,
                     product_id: Optional[int] = DP100_PRODUCT_ID) -> list[dict]:
    """List attached HID devices matching the vendor (and product) id."""
    found = []
    for d in hid.enumerate(vendor_id, product_id or 0):
        if d['vendor_id'] != vendor_id:
            continue
        if product_id is not None and d['product_id'] != product_id:
            continue
        found.append(d)
    return found


def describe(info: dict) -> str:
    """One-line summary of an enumerate() entry."""
    name = info.get('product_string') or "(no name)"
    maker = info.get('manufacturer_string') or ""
    path = info.get('path', b"")
    if isinstance(path, bytes):
        path = path.decode('utf-8', errors='replace')
    return (f"{name} {maker}".strip()
            + f" [{info['vendor_id']:04X}:{info['product_id']:04X}] {path}")


class HidTransport:
    """One open HID device. Async wrappers around hidapi's blocking calls."""

    def __init__(self, info: dict):
        self.info = info
        self._dev: Optional[hid.device] = None

    @property
    def name(self) -> str:
        return self.info.get('product_string') or "HID device"

    @property
    def is_open(self) -> bool:
        return self._dev is not None

    def open(self):
        dev = hid.device()
        dev.open_path(self.info['path'])
        self._dev = dev

    def close(self):
        if self._dev is not None:
            try:
                self._dev.close()
            finally:
                self._dev = None

    async def write(self, report: bytes) -> int:
        """Send one output report. Returns bytes written (-1 on error)."""
        dev = self._require()
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, dev.write, bytes(report))

    async def read(self, size: int = REPORT_SIZE,
                   timeout_ms: int = READ_TIMEOUT_MS) -> bytes:
        """Read one input report; empty bytes on timeout."""
        dev = self._require()
        loop = asyncio.get_running_loop()
        data = await loop.run_in_executor(None, dev.read, size, timeout_ms)
        return bytes(data)

    def _require(self) -> 'hid.device':
        if self._dev is None:
            raise ConnectionError("HID device not open")
        return self._dev

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, *exc):
        self.close()
