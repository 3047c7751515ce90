"""Tests for the bounded device registry."""

from __future__ import annotations

import threading

from soilhub.fleet.models import OutputState
from soilhub.fleet.registry import (
    LIVE_STATUS_MAX_BYTES,
    LOG_LINE_MAX,
    LOG_LINES,
    DeviceRegistry,
    LogRing,
)

MAC = "aa:bb:cc:dd:ee:ff"


class TestLogRing:
    def test_keeps_most_recent(self):
        ring = LogRing()
        for i in range(70):
            ring.append(f"line {i}")
        lines = ring.lines()
        assert len(lines) == LOG_LINES == 64
        assert lines[0] == "line 6"
        assert lines[-1] == "line 69"

    def test_truncates_lines(self):
        ring = LogRing()
        ring.append("x" * 500)
        assert len(ring.lines()[0]) == LOG_LINE_MAX == 127


class TestFindOrCreate:
    def test_case_insensitive_identity(self, registry):
        assert registry.ensure("AA:BB:CC:DD:EE:FF")
        assert registry.ensure(MAC)
        assert len(registry) == 1
        assert registry.identities() == [MAC]
        assert "Aa:Bb:cC:dd:EE:ff" in registry

    def test_capacity_never_exceeded(self):
        reg = DeviceRegistry(capacity=2)
        assert reg.ensure("a:1")
        assert reg.ensure("a:2")
        assert not reg.ensure("a:3")
        assert len(reg) == 2
        # Known identities still resolve when full
        assert reg.ensure("a:1")

    def test_empty_identity_rejected(self, registry):
        assert not registry.ensure("  ")
        assert len(registry) == 0


class TestAttribute:
    def test_identity_token_creates_record(self, registry):
        who = registry.attribute(MAC, ("10.0.0.5", 4000), f"{MAC} booted")
        assert who == MAC
        assert registry.address_of(MAC) == ("10.0.0.5", 4000)
        assert registry.logs(MAC) == f"{MAC} booted"
        assert registry.live_status(MAC) == f"{MAC} booted"

    def test_latest_source_wins(self, registry):
        registry.attribute(MAC, ("10.0.0.5", 4000), f"{MAC} one")
        registry.attribute(MAC.upper(), ("10.0.0.5", 4001), f"{MAC} two")
        assert len(registry) == 1
        assert registry.address_of(MAC) == ("10.0.0.5", 4001)

    def test_colonless_matches_by_ip(self, registry):
        registry.attribute(MAC, ("10.0.0.5", 4000), f"{MAC} hello")
        who = registry.attribute("moisture", ("10.0.0.5", 5123), "moisture dry")
        assert who == MAC
        assert registry.address_of(MAC) == ("10.0.0.5", 5123)
        assert registry.live_status(MAC) == "moisture dry"

    def test_colonless_unknown_ip_dropped(self, registry):
        assert registry.attribute("hello", ("10.0.0.9", 1), "hello") is None
        assert len(registry) == 0

    def test_full_registry_falls_back_to_ip(self):
        reg = DeviceRegistry(capacity=1)
        reg.attribute(MAC, ("10.0.0.5", 4000), f"{MAC} hi")
        who = reg.attribute("11:22:33:44:55:66", ("10.0.0.5", 4002), "11:22:33:44:55:66 hi")
        assert who == MAC
        assert reg.identities() == [MAC]
        assert reg.address_of(MAC) == ("10.0.0.5", 4002)

    def test_full_registry_unknown_ip_dropped(self):
        reg = DeviceRegistry(capacity=1)
        reg.attribute(MAC, ("10.0.0.5", 4000), f"{MAC} hi")
        assert reg.attribute("11:22:33:44:55:66", ("10.0.0.6", 4000), "x") is None
        assert reg.identities() == [MAC]

    def test_live_status_overwritten(self, registry):
        registry.attribute(MAC, ("10.0.0.5", 1), f"{MAC} first")
        registry.attribute(MAC, ("10.0.0.5", 1), f"{MAC} second")
        assert registry.live_status(MAC) == f"{MAC} second"

    def test_live_status_bounded(self, registry):
        registry.attribute(MAC, ("10.0.0.5", 1), f"{MAC} " + "é" * 5000)
        assert len(registry.live_status(MAC).encode("utf-8")) <= LIVE_STATUS_MAX_BYTES

    def test_output_state_updates(self, registry):
        src = ("10.0.0.5", 1)
        registry.attribute(MAC, src, f"{MAC} CONTROL_PIN (D2) state: HIGH")
        assert registry.output_state(MAC) == OutputState.HIGH
        registry.attribute(MAC, src, f"{MAC} CMD: set D2 = 0")
        assert registry.output_state(MAC) == OutputState.LOW
        registry.attribute(MAC, src, f"{MAC} rssi -70")
        assert registry.output_state(MAC) == OutputState.LOW


class TestQueries:
    def test_unknown_identity(self, registry):
        assert registry.logs("nope") is None
        assert registry.live_status("nope") is None
        assert registry.address_of("nope") is None
        assert registry.output_state("nope") == OutputState.UNKNOWN
        assert registry.snapshot("nope") is None

    def test_logs_roll_and_order(self, registry):
        for i in range(70):
            registry.attribute(MAC, ("10.0.0.5", 1), f"{MAC} l{i}")
        lines = registry.logs(MAC).split("\n")
        assert lines == [f"{MAC} l{i}" for i in range(6, 70)]

    def test_logs_limit(self, registry):
        registry.attribute(MAC, ("10.0.0.5", 1), "aa:bb:cc:dd:ee:ff one")
        registry.attribute("two", ("10.0.0.5", 1), "two")
        assert registry.logs(MAC, limit=23) == "aa:bb:cc:dd:ee:ff one\nt"
        assert registry.logs(MAC, limit=0) == ""

    def test_note_reading(self, registry):
        assert registry.note_reading(MAC, 1.5, ("10.0.0.7", 9))
        snap = registry.snapshot(MAC)
        assert snap["ip_address"] == "10.0.0.7"
        assert snap["port"] == 9
        assert snap["last_reading"] == 1.5
        assert snap["output_state"] == "UNKNOWN"

    def test_snapshot_all(self, registry):
        registry.ensure("a:1")
        registry.ensure("a:2")
        assert [d["identity"] for d in registry.snapshot_all()] == ["a:1", "a:2"]


def test_concurrent_creation_respects_capacity():
    reg = DeviceRegistry(capacity=32)

    def worker(base):
        for i in range(20):
            reg.attribute(f"{base}:{i}", (f"10.{base}.0.{i}", 1), f"{base}:{i} x")

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert len(reg) == 32
