"""Shared value types for the fleet subsystem."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class OutputState(str, Enum):
    """Last known state of a node's controlled output pin."""

    HIGH = "HIGH"
    LOW = "LOW"
    UNKNOWN = "UNKNOWN"


@dataclass(frozen=True)
class Reading:
    """A single sensor sample forwarded to telemetry consumers."""

    identity: str
    value: float


@dataclass
class CommandResult:
    success: bool = False
    error: str = ""


@dataclass
class ProvisionStep:
    name: str
    status: str = "pending"  # pending, running, done, failed, skipped
    detail: str = ""


@dataclass
class ProvisioningOutcome:
    """Result of one provisioning run, reported exactly once."""

    device_identity: str | None = None
    success: bool = False
    steps: list[ProvisionStep] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "device_identity": self.device_identity,
            "success": self.success,
            "steps": [
                {"name": s.name, "status": s.status, "detail": s.detail}
                for s in self.steps
            ],
        }
