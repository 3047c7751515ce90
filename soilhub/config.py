"""Configuration for the soilhub service.

HubConfig holds process-wide settings (ports, paths, limits). It can be
loaded from a JSON file and/or the environment (SOILHUB_* variables).

FlashSettings holds the per-run firmware overrides that get baked into a
node's config.h. They are read from the environment at the start of every
provisioning run so they can change without a restart.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Mapping

from soilhub.fleet.registry import DEFAULT_CAPACITY
from soilhub.fleet.telemetry import DEFAULT_PACKET_LOG, DEFAULT_PORT
from soilhub.fleet.toolchain import DEFAULT_FQBN

logger = logging.getLogger(__name__)

_ENV_PREFIX = "SOILHUB_"
DEFAULT_CONTROL_PIN = "2"


@dataclass
class HubConfig:
    """Service configuration: defaults, then config.json, then SOILHUB_* env."""

    udp_host: str = "0.0.0.0"
    udp_port: int = DEFAULT_PORT
    packet_log: str = DEFAULT_PACKET_LOG
    firmware_path: str = "firmware/plant_sensor"
    registry_capacity: int = DEFAULT_CAPACITY
    http_host: str = "0.0.0.0"
    http_port: int = 5100

    @classmethod
    def load(cls, path: str | Path) -> HubConfig:
        path = Path(path)
        if path.exists():
            with open(path) as f:
                data = json.load(f)
            known = {k for k in cls.__dataclass_fields__}
            filtered = {k: v for k, v in data.items() if k in known}
            return cls(**filtered)
        logger.warning("Config not found at %s, using defaults", path)
        return cls()

    @classmethod
    def from_env(
        cls,
        environ: Mapping[str, str] | None = None,
        base: HubConfig | None = None,
    ) -> HubConfig:
        """Apply SOILHUB_<FIELD> overrides on top of *base* (or defaults)."""
        env = os.environ if environ is None else environ
        cfg = base or cls()
        for f in fields(cls):
            raw = env.get(_ENV_PREFIX + f.name.upper())
            if raw is None:
                continue
            current = getattr(cfg, f.name)
            try:
                value = int(raw) if isinstance(current, int) else raw
            except ValueError:
                logger.warning("Ignoring %s%s=%r: not an integer", _ENV_PREFIX, f.name.upper(), raw)
                continue
            setattr(cfg, f.name, value)
        return cfg

    def save(self, path: str | Path) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(dict(self.__dict__), f, indent=2)


@dataclass
class FlashSettings:
    """Firmware overrides for one provisioning run."""

    wifi_ssid: str | None = None
    wifi_pass: str | None = None
    target_ip: str | None = None
    control_pin: str | None = None
    fqbn: str = DEFAULT_FQBN

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> FlashSettings:
        env = os.environ if environ is None else environ
        return cls(
            wifi_ssid=env.get("FLASH_SSID"),
            wifi_pass=env.get("FLASH_PASS"),
            target_ip=env.get("FLASH_TARGET_IP"),
            control_pin=env.get("FLASH_CONTROL_PIN"),
            fqbn=env.get("FLASH_FQBN") or DEFAULT_FQBN,
        )

    @property
    def needs_staging(self) -> bool:
        """True when the stock firmware must be patched with a config.h."""
        return any(v is not None for v in (self.wifi_ssid, self.wifi_pass, self.target_ip))

    def config_header(self) -> str:
        lines = []
        if self.wifi_ssid is not None:
            lines.append(f"#define WIFI_SSID {_c_string(self.wifi_ssid)}")
        if self.wifi_pass is not None:
            lines.append(f"#define WIFI_PASS {_c_string(self.wifi_pass)}")
        if self.target_ip is not None:
            lines.append(f"#define TARGET_IP {_c_string(self.target_ip)}")
        lines.append(f"#define CONTROL_PIN {self.control_pin or DEFAULT_CONTROL_PIN}")
        return "\n".join(lines) + "\n"


def _c_string(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'
