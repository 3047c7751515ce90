"""Fleet manager.

Orchestrates the telemetry server and provisioning runs for the HTTP layer
and any UI consumer. The two components never talk to each other directly:
a successful provisioning run reaches the registry only through this
manager's device-ready handler.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from typing import Any, Callable

from soilhub.config import HubConfig
from soilhub.fleet.models import Reading
from soilhub.fleet.provisioning import ProvisioningManager
from soilhub.fleet.registry import DeviceRegistry
from soilhub.fleet.telemetry import TelemetryServer

logger = logging.getLogger(__name__)

STATUS_TRAIL = 200


class FleetManager:
    """Central entry point for fleet operations."""

    def __init__(
        self,
        config: HubConfig | None = None,
        telemetry: TelemetryServer | None = None,
        provisioner: ProvisioningManager | None = None,
    ) -> None:
        self.config = config or HubConfig()
        self.registry = DeviceRegistry(capacity=self.config.registry_capacity)
        self.telemetry = telemetry or TelemetryServer(
            self.registry,
            host=self.config.udp_host,
            port=self.config.udp_port,
            packet_log=self.config.packet_log,
        )
        self.provisioner = provisioner or ProvisioningManager(self.config.firmware_path)

        self._lock = threading.Lock()
        self._provisioning = False
        self._trail: deque[str] = deque(maxlen=STATUS_TRAIL)
        self._last_outcome: dict[str, Any] | None = None
        self._ready_callbacks: list[Callable[[str | None], None]] = []
        self._status_callbacks: list[Callable[[str | None], None]] = []

        self.provisioner.on_status(self._on_status)
        self.provisioner.on_device_ready(self._on_device_ready)

    # ── Lifecycle ──────────────────────────────────────────────────

    def start(self) -> bool:
        """Start telemetry ingestion."""
        ok = self.telemetry.start()
        if ok:
            logger.info("FleetManager started")
        else:
            logger.error("FleetManager could not start telemetry")
        return ok

    def stop(self) -> None:
        self.telemetry.stop()
        logger.info("FleetManager stopped")

    # ── Subscriptions ──────────────────────────────────────────────

    def on_readings(self, callback: Callable[[list[Reading]], None]) -> None:
        self.telemetry.on_readings(callback)

    def on_device_ready(self, callback: Callable[[str | None], None]) -> None:
        self._ready_callbacks.append(callback)

    def on_status(self, callback: Callable[[str | None], None]) -> None:
        self._status_callbacks.append(callback)

    # ── Provisioning ───────────────────────────────────────────────

    def provision(self) -> bool:
        """Start a provisioning run unless one is already in progress."""
        with self._lock:
            if self._provisioning:
                logger.info("Provisioning already in progress")
                return False
            self._provisioning = True
            self._trail.clear()

        started = self.provisioner.begin_provisioning()
        if not started:
            with self._lock:
                self._provisioning = False
        return started

    def provisioning_status(self) -> dict[str, Any]:
        with self._lock:
            return {
                "running": self._provisioning,
                "trail": list(self._trail),
                "last_outcome": self._last_outcome,
            }

    def _on_status(self, text: str | None) -> None:
        with self._lock:
            if text is None:
                self._provisioning = False
            else:
                self._trail.append(text)
        self._fan_out(self._status_callbacks, text, "status")

    def _on_device_ready(self, identity: str | None) -> None:
        if identity is None:
            logger.info("No node registered; unassigned placeholder expected")
        elif not self.registry.ensure(identity):
            logger.warning("Registry full; %s not retained", identity)

        with self._lock:
            self._last_outcome = {
                "device_identity": identity,
                "success": identity is not None,
            }
        self._fan_out(self._ready_callbacks, identity, "device-ready")

    @staticmethod
    def _fan_out(callbacks: list[Callable], value: Any, kind: str) -> None:
        for cb in callbacks:
            try:
                cb(value)
            except Exception:
                logger.exception("Error in fleet %s callback", kind)
