"""Tests for serial discovery and the registration wait."""

from __future__ import annotations

from types import SimpleNamespace

import pytest
import serial

from soilhub.fleet import serial_link


class FakeSerial:
    def __init__(self, chunks=(), fail_read=False):
        self.chunks = list(chunks)
        self.fail_read = fail_read
        self.closed = False

    @property
    def in_waiting(self):
        return len(self.chunks[0]) if self.chunks else 0

    def read(self, size=1):
        if self.fail_read:
            raise serial.SerialException("device disconnected")
        return self.chunks.pop(0) if self.chunks else b""

    def close(self):
        self.closed = True


@pytest.fixture(autouse=True)
def _no_sleep(monkeypatch):
    monkeypatch.setattr(serial_link.time, "sleep", lambda _s: None)


@pytest.fixture
def open_port(monkeypatch):
    holder = {}

    def install(fake):
        def factory(path, baudrate, timeout):
            holder["args"] = (path, baudrate, timeout)
            return fake

        monkeypatch.setattr(serial_link.serial, "Serial", factory)
        holder["port"] = fake
        return holder

    return install


class TestFindFirstSerial:
    def _ports(self, monkeypatch, devices):
        monkeypatch.setattr(
            serial_link.serial.tools.list_ports,
            "comports",
            lambda: [SimpleNamespace(device=d) for d in devices],
        )

    def test_first_match_sorted(self, monkeypatch):
        self._ports(monkeypatch, ["/dev/ttyS0", "/dev/ttyUSB0", "/dev/ttyACM1", "/dev/ttyACM0"])
        assert serial_link.find_first_serial() == "/dev/ttyACM0"

    def test_usb_only(self, monkeypatch):
        self._ports(monkeypatch, ["/dev/ttyS0", "/dev/ttyUSB3"])
        assert serial_link.find_first_serial() == "/dev/ttyUSB3"

    def test_none(self, monkeypatch):
        self._ports(monkeypatch, ["/dev/ttyS0"])
        assert serial_link.find_first_serial() is None

    def test_custom_patterns(self, monkeypatch):
        self._ports(monkeypatch, ["/dev/ttyS0", "/dev/ttyACM0"])
        assert serial_link.find_first_serial(("ttyS*",)) == "/dev/ttyS0"


class TestWaitForRegistration:
    def test_address_split_across_reads(self, open_port):
        holder = open_port(FakeSerial([
            b"booting\r\n",
            b"plant_sensor ready, mac=A8:61:",
            b"0A:AE:12:34\r\n",
        ]))
        assert serial_link.wait_for_registration("/dev/ttyACM0", timeout=5) == "A8:61:0A:AE:12:34"
        assert holder["args"] == ("/dev/ttyACM0", serial_link.BAUD_RATE, 0)
        assert holder["port"].closed

    def test_timeout_emits_waiting_notices(self, open_port):
        holder = open_port(FakeSerial())
        statuses = []
        result = serial_link.wait_for_registration(
            "/dev/ttyACM0", timeout=3.0, poll_interval=0.1, on_status=statuses.append,
        )
        assert result is None
        assert statuses == ["Waiting for serial registration..."] * 3
        assert holder["port"].closed

    def test_overlong_partial_line_keeps_tail(self, open_port):
        open_port(FakeSerial([b"\xff" * 300 + b" mac=aa:bb:cc", b":dd:ee:ff\r\n"]))
        assert serial_link.wait_for_registration("/dev/ttyACM0", timeout=1.0) == "aa:bb:cc:dd:ee:ff"

    def test_open_failure(self, monkeypatch):
        def factory(*_a, **_kw):
            raise serial.SerialException("could not open port")

        monkeypatch.setattr(serial_link.serial, "Serial", factory)
        statuses = []
        assert serial_link.wait_for_registration("/dev/ttyACM9", on_status=statuses.append) is None
        assert statuses == ["Serial read error: could not open port"]

    def test_read_failure(self, open_port):
        holder = open_port(FakeSerial(fail_read=True))
        statuses = []
        assert serial_link.wait_for_registration("/dev/ttyACM0", on_status=statuses.append) is None
        assert statuses == ["Serial read error: device disconnected"]
        assert holder["port"].closed
