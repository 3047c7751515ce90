"""pytest configuration for soilhub tests."""

from __future__ import annotations

import pytest

from soilhub.fleet.registry import DeviceRegistry
from soilhub.fleet.telemetry import TelemetryServer


@pytest.fixture
def registry():
    return DeviceRegistry()


@pytest.fixture
def packet_log(tmp_path):
    return tmp_path / "server.log"


@pytest.fixture
def server(registry, packet_log):
    """A telemetry server that is never bound; feed it with handle_datagram()."""
    return TelemetryServer(registry, host="127.0.0.1", port=0, packet_log=packet_log)


class FakeProvisioner:
    """Stands in for ProvisioningManager; emit_* drive the registered callbacks."""

    def __init__(self):
        self.start_ok = True
        self.started = 0
        self.status_cbs = []
        self.ready_cbs = []

    def on_status(self, cb):
        self.status_cbs.append(cb)

    def on_device_ready(self, cb):
        self.ready_cbs.append(cb)

    def begin_provisioning(self):
        self.started += 1
        return self.start_ok

    def emit_status(self, text):
        for cb in self.status_cbs:
            cb(text)

    def emit_ready(self, identity):
        for cb in self.ready_cbs:
            cb(identity)


@pytest.fixture
def provisioner():
    return FakeProvisioner()
