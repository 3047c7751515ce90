"""Admin API router for soilhub.

Exposes the device registry, command relay and provisioning trigger to the
dashboard and scripts. The router talks to a single FleetManager installed
with :func:`set_manager` (the server does this at startup).
"""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel

from soilhub.fleet.manager import FleetManager
from soilhub.fleet.models import CommandResult
from soilhub.fleet.telemetry import ERR_UNKNOWN_DEVICE

router = APIRouter(prefix="/admin", tags=["admin"])

_manager: FleetManager | None = None


# ── Helper ────────────────────────────────────────────────────────

def set_manager(manager: FleetManager | None) -> None:
    global _manager
    _manager = manager


def _fleet() -> FleetManager:
    if _manager is None:
        raise HTTPException(status_code=503, detail="Fleet manager not running")
    return _manager


def _check_sent(result: CommandResult) -> dict:
    if result.success:
        return {"sent": True}
    if result.error == ERR_UNKNOWN_DEVICE:
        raise HTTPException(status_code=404, detail="Device not found")
    raise HTTPException(status_code=502, detail=result.error)


class CommandRequest(BaseModel):
    activate: bool


class TextRequest(BaseModel):
    text: str


# ══════════════════════════════════════════════════════════════════
# DEVICES
# ══════════════════════════════════════════════════════════════════

@router.get("/devices")
async def list_devices():
    fleet = _fleet()
    devices = fleet.registry.snapshot_all()
    return {
        "devices": devices,
        "total": len(devices),
        "capacity": fleet.registry.capacity,
    }


@router.get("/devices/{identity}")
async def get_device(identity: str):
    device = _fleet().registry.snapshot(identity)
    if device is None:
        raise HTTPException(status_code=404, detail="Device not found")
    return device


@router.get("/devices/{identity}/logs")
async def get_device_logs(identity: str, limit: int | None = Query(None, ge=0)):
    logs = _fleet().telemetry.get_logs(identity, limit)
    if logs is None:
        raise HTTPException(status_code=404, detail="Device not found")
    return {"identity": identity.lower(), "logs": logs}


@router.get("/devices/{identity}/status")
async def get_device_status(identity: str):
    status = _fleet().telemetry.get_live_status(identity)
    if status is None:
        raise HTTPException(status_code=404, detail="Device not found")
    return {"identity": identity.lower(), "live_status": status}


@router.get("/devices/{identity}/output")
async def get_device_output(identity: str):
    state = _fleet().telemetry.get_output_state(identity)
    return {"identity": identity.lower(), "state": state.value}


@router.post("/devices/{identity}/command")
async def command_device(identity: str, req: CommandRequest):
    return _check_sent(_fleet().telemetry.send_command(identity, req.activate))


@router.post("/devices/{identity}/send")
async def send_to_device(identity: str, req: TextRequest):
    return _check_sent(_fleet().telemetry.send_text(identity, req.text))


# ══════════════════════════════════════════════════════════════════
# PROVISIONING
# ══════════════════════════════════════════════════════════════════

@router.post("/provision")
async def start_provisioning():
    return {"started": _fleet().provision()}


@router.get("/provision")
async def provisioning_status():
    return _fleet().provisioning_status()
