import asyncio

import pytest

import hid_transport
from constants import DP100_PRODUCT_ID, DP100_VENDOR_ID


DP100 = {
    'path': b'/dev/hidraw3', 'vendor_id': DP100_VENDOR_ID, 'product_id': DP100_PRODUCT_ID,
    'product_string': 'DP100', 'manufacturer_string': 'ALIENTEK',
}
OTHER = {
    'path': b'/dev/hidraw0', 'vendor_id': 0x046D, 'product_id': 0xC52B,
    'product_string': 'Receiver', 'manufacturer_string': 'Logitech',
}


class FakeDevice:
    def __init__(self):
        self.opened = None
        self.closed = False
        self.written = []
        self.reports = [[0xFA, 0x01, 0x02]]

    def open_path(self, path):
        self.opened = path

    def write(self, data):
        self.written.append(bytes(data))
        return len(data)

    def read(self, size, timeout_ms=0):
        return self.reports.pop(0) if self.reports else []

    def close(self):
        self.closed = True


@pytest.fixture
def fake_hid(monkeypatch):
    devices = []

    def enumerate_(vid=0, pid=0):
        return [DP100, OTHER]

    def device():
        dev = FakeDevice()
        devices.append(dev)
        return dev

    monkeypatch.setattr(hid_transport.hid, "enumerate", enumerate_)
    monkeypatch.setattr(hid_transport.hid, "device", device)
    return devices


def test_discover_filters_by_ids(fake_hid):
    found = hid_transport.discover_devices()
    assert found == [DP100]
    assert hid_transport.discover_devices(vendor_id=0x046D, product_id=None) == [OTHER]


def test_describe():
    line = hid_transport.describe(DP100)
    assert "DP100" in line
    assert "2E3C:AF01" in line
    assert "/dev/hidraw3" in line


def test_transport_round_trip(fake_hid):
    async def scenario():
        with hid_transport.HidTransport(DP100) as transport:
            assert transport.is_open
            written = await transport.write(b"\xfb\x10")
            report = await transport.read()
            timeout = await transport.read()
        return transport, written, report, timeout

    transport, written, report, timeout = asyncio.run(scenario())
    dev = fake_hid[0]
    assert dev.opened == b'/dev/hidraw3'
    assert dev.written == [b"\xfb\x10"]
    assert written == 2
    assert report == b"\xfa\x01\x02"
    assert timeout == b""
    assert dev.closed
    assert not transport.is_open
    assert transport.name == "DP100"


def test_closed_transport_raises():
    transport = hid_transport.HidTransport(DP100)
    with pytest.raises(ConnectionError):
        asyncio.run(transport.read())
