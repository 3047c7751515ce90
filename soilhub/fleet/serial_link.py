"""USB serial helpers for provisioning.

Finds the first attached sensor node (ttyACM*/ttyUSB*) and listens on it
for the registration line a freshly flashed node prints at boot, e.g.::

    plant_sensor ready, mac=A8:61:0A:AE:12:34

Uses pyserial for both port enumeration and reading.
"""

from __future__ import annotations

import fnmatch
import logging
import os
import time
from typing import Callable

import serial
import serial.tools.list_ports

from soilhub.fleet.protocol import extract_hw_address

logger = logging.getLogger(__name__)

SERIAL_PATTERNS = ("ttyACM*", "ttyUSB*")
BAUD_RATE = 115200
REGISTRATION_TIMEOUT = 60.0
POLL_INTERVAL = 0.1
MAX_LINE = 255


def find_first_serial(patterns: tuple[str, ...] = SERIAL_PATTERNS) -> str | None:
    """Return the device path of the first serial port matching *patterns*."""
    try:
        ports = serial.tools.list_ports.comports()
    except OSError:
        logger.exception("Serial port enumeration failed")
        return None

    for device in sorted(p.device for p in ports):
        name = os.path.basename(device)
        if any(fnmatch.fnmatch(name, pat) for pat in patterns):
            return device
    return None


def wait_for_registration(
    path: str,
    timeout: float = REGISTRATION_TIMEOUT,
    poll_interval: float = POLL_INTERVAL,
    on_status: Callable[[str], None] | None = None,
) -> str | None:
    """Read lines from *path* until one carries a hardware address.

    Returns the address exactly as printed by the node, or None on timeout
    or read error. Emits a "still waiting" status roughly once per second.
    """
    notify = on_status or (lambda _msg: None)
    try:
        port = serial.Serial(path, baudrate=BAUD_RATE, timeout=0)
    except (serial.SerialException, OSError) as e:
        notify(f"Serial read error: {e}")
        return None

    total_ticks = max(1, int(round(timeout / poll_interval)))
    ticks_per_notice = max(1, int(round(1.0 / poll_interval)))
    buf = ""
    try:
        for tick in range(1, total_ticks + 1):
            time.sleep(poll_interval)
            try:
                chunk = port.read(max(1, port.in_waiting))
            except (serial.SerialException, OSError) as e:
                notify(f"Serial read error: {e}")
                return None

            if chunk:
                buf += chunk.decode("utf-8", errors="replace")
                *lines, buf = buf.replace("\r", "\n").split("\n")
                for line in lines:
                    address = extract_hw_address(line)
                    if address:
                        logger.info("Registration on %s: %s", path, line.strip())
                        return address
                if len(buf) > MAX_LINE:
                    buf = buf[-MAX_LINE:]

            if tick % ticks_per_notice == 0:
                notify("Waiting for serial registration...")
    finally:
        port.close()
    return None
