"""soilhub.fleet: sensor node provisioning and telemetry ingestion.

Components:
  - Protocol: pure parsers for datagrams, serial lines and log patterns
  - Registry: bounded, lock-guarded device records
  - Telemetry: UDP receive loop, attribution, command relay
  - Provisioning: serial discovery, firmware build/upload, registration wait
  - Manager: wires the above together for the HTTP layer
"""

from __future__ import annotations

from soilhub.fleet.models import CommandResult, OutputState, ProvisioningOutcome, Reading
from soilhub.fleet.registry import DeviceRecord, DeviceRegistry

__all__ = [
    "CommandResult",
    "DeviceRecord",
    "DeviceRegistry",
    "OutputState",
    "ProvisioningOutcome",
    "Reading",
]
