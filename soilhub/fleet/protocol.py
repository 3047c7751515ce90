"""Text protocol helpers for sensor nodes.

Nodes speak plain text everywhere:

  UDP telemetry   "<identity> <volts>"  or  "<identity>,<volts>"
  UDP log lines   "<identity> <free-form text>"  (identity optional)
  Serial boot     any line containing "aa:bb:cc:dd:ee:ff"
  UDP commands    "D0 1" / "D0 0"  or arbitrary text

Everything here is a pure function of its input so it can be tested without
sockets or serial ports.
"""

from __future__ import annotations

import math
import re

from soilhub.fleet.models import OutputState, Reading

READING_MIN = 0.0
READING_MAX = 5.0
MAX_IDENTITY_LEN = 31

_FLOAT = r"[-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?"

_HW_ADDRESS_RE = re.compile(r"[0-9A-Fa-f]{2}(?::[0-9A-Fa-f]{2}){5}")
_SPACE_READING_RE = re.compile(rf"\s*(\S+)\s+({_FLOAT})")
_CSV_READING_RE = re.compile(rf"\s*([^,]+),\s*({_FLOAT})")

_STATE_REPORT_RE = re.compile(r"CONTROL_PIN \(D(\d+)\) state: (HIGH|LOW)")
_ACK_RE = re.compile(r"CMD(?:: set D(\d+) = | D(\d+) )(\w+)")


def extract_hw_address(line: str) -> str | None:
    """Return the first ``XX:XX:XX:XX:XX:XX`` substring of *line*, as written."""
    match = _HW_ADDRESS_RE.search(line)
    return match.group(0) if match else None


def canonical_identity(identity: str) -> str:
    return identity.strip().lower()


def attribution_token(text: str) -> str | None:
    """First whitespace-delimited token, cut at the first comma.

    CSV readings ("aa:bb:...,1.23") carry the identity before the comma.
    """
    parts = text.split(None, 1)
    if not parts:
        return None
    token = parts[0].split(",", 1)[0]
    return token or None


def is_identity_token(token: str) -> bool:
    """Heuristic: tokens containing a colon name a device."""
    return ":" in token


def parse_reading(text: str) -> Reading | None:
    """Parse a telemetry datagram into a reading, or None.

    The value must lie in [READING_MIN, READING_MAX] (volts).
    """
    match = _SPACE_READING_RE.match(text)
    if match is None:
        match = _CSV_READING_RE.match(text)
    if match is None:
        return None

    identity = match.group(1).strip()
    if not identity or len(identity) > MAX_IDENTITY_LEN:
        return None
    try:
        value = float(match.group(2))
    except ValueError:
        return None
    if math.isnan(value) or not (READING_MIN <= value <= READING_MAX):
        return None
    return Reading(identity=identity, value=value)


def parse_output_state(line: str) -> OutputState | None:
    """Recognise a pin state report or a command acknowledgment.

    ``CONTROL_PIN (D2) state: HIGH``  -> HIGH
    ``CMD: set D2 = 0`` / ``CMD D2 1`` -> LOW / HIGH
    """
    match = _STATE_REPORT_RE.search(line)
    if match:
        return OutputState(match.group(2))

    match = _ACK_RE.search(line)
    if match:
        value = match.group(3).upper()
        if value == "HIGH":
            return OutputState.HIGH
        if value == "LOW":
            return OutputState.LOW
        if value.isdigit():
            return OutputState.HIGH if int(value) else OutputState.LOW
    return None


def format_output_command(activate: bool) -> str:
    return "D0 1" if activate else "D0 0"
