"""Bounded in-memory device registry.

One DeviceRecord per sensor node, keyed by canonical (lowercase) identity.
The registry never grows past its capacity and never evicts: once full, new
identities are dropped and datagrams can only be attributed by source IP.

Every read and write goes through the registry's single lock. Callers get
copies (strings, tuples, snapshot dicts), never live records.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field

from soilhub.fleet.models import OutputState
from soilhub.fleet.protocol import canonical_identity, is_identity_token, parse_output_state

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 32
LOG_LINES = 64
LOG_LINE_MAX = 127
LIVE_STATUS_MAX_BYTES = 8191

Address = tuple[str, int]


class LogRing:
    """Fixed-capacity ring of recent log lines, oldest first."""

    def __init__(self, capacity: int = LOG_LINES, line_max: int = LOG_LINE_MAX) -> None:
        self.line_max = line_max
        self._lines: deque[str] = deque(maxlen=capacity)

    def append(self, line: str) -> None:
        self._lines.append(line[: self.line_max])

    def lines(self) -> list[str]:
        return list(self._lines)

    def __len__(self) -> int:
        return len(self._lines)


def _bound_status(text: str) -> str:
    raw = text.encode("utf-8")
    if len(raw) <= LIVE_STATUS_MAX_BYTES:
        return text
    return raw[:LIVE_STATUS_MAX_BYTES].decode("utf-8", errors="ignore")


@dataclass
class DeviceRecord:
    identity: str
    network_address: Address | None = None
    debug_log: LogRing = field(default_factory=LogRing)
    live_status: str = ""
    last_output_state: OutputState = OutputState.UNKNOWN
    last_reading: float | None = None
    last_seen: float | None = None

    def to_dict(self) -> dict:
        ip, port = self.network_address or (None, None)
        return {
            "identity": self.identity,
            "ip_address": ip,
            "port": port,
            "live_status": self.live_status,
            "output_state": self.last_output_state.value,
            "last_reading": self.last_reading,
            "last_seen": self.last_seen,
            "log_lines": len(self.debug_log),
        }


class DeviceRegistry:
    """Lock-guarded collection of DeviceRecords with a fixed capacity."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        self.capacity = capacity
        self._lock = threading.Lock()
        self._records: dict[str, DeviceRecord] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __contains__(self, identity: str) -> bool:
        with self._lock:
            return canonical_identity(identity) in self._records

    # ── Internal (caller holds the lock) ───────────────────────────

    def _find_or_create(self, identity: str) -> DeviceRecord | None:
        key = canonical_identity(identity)
        record = self._records.get(key)
        if record is None:
            if not key or len(self._records) >= self.capacity:
                return None
            record = DeviceRecord(identity=key)
            self._records[key] = record
            logger.info("New device %s (%d/%d)", key, len(self._records), self.capacity)
        return record

    def _find_by_ip(self, ip: str) -> DeviceRecord | None:
        for record in self._records.values():
            if record.network_address and record.network_address[0] == ip:
                return record
        return None

    @staticmethod
    def _touch(record: DeviceRecord, source: Address) -> None:
        record.network_address = source
        record.last_seen = time.time()

    # ── Mutations ──────────────────────────────────────────────────

    def ensure(self, identity: str) -> bool:
        """Create a record for *identity* if there is room. True if present."""
        with self._lock:
            return self._find_or_create(identity) is not None

    def attribute(self, token: str | None, source: Address, line: str) -> str | None:
        """Attribute a log/status line to a device.

        Tokens containing a colon are treated as identities (find-or-create);
        anything else, or an identity that no longer fits, falls back to
        matching the source IP against known records. Returns the identity
        the line was attributed to, or None if it was dropped.
        """
        with self._lock:
            record = None
            if token and is_identity_token(token):
                record = self._find_or_create(token)
            if record is None:
                record = self._find_by_ip(source[0])
            if record is None:
                return None

            self._touch(record, source)
            record.debug_log.append(line)
            record.live_status = _bound_status(line)
            state = parse_output_state(line)
            if state is not None:
                record.last_output_state = state
            return record.identity

    def note_reading(self, identity: str, value: float, source: Address) -> bool:
        """Record the origin of a reading, creating the device if there is room."""
        with self._lock:
            record = self._find_or_create(identity)
            if record is None:
                return False
            self._touch(record, source)
            record.last_reading = value
            return True

    # ── Queries ────────────────────────────────────────────────────

    def address_of(self, identity: str) -> Address | None:
        with self._lock:
            record = self._records.get(canonical_identity(identity))
            return record.network_address if record else None

    def logs(self, identity: str, limit: int | None = None) -> str | None:
        """Newline-joined debug log, oldest first, cut to *limit* characters."""
        with self._lock:
            record = self._records.get(canonical_identity(identity))
            if record is None:
                return None
            text = "\n".join(record.debug_log.lines())
        if limit is not None:
            text = text[: max(0, limit)]
        return text

    def live_status(self, identity: str) -> str | None:
        with self._lock:
            record = self._records.get(canonical_identity(identity))
            return record.live_status if record else None

    def output_state(self, identity: str) -> OutputState:
        with self._lock:
            record = self._records.get(canonical_identity(identity))
            return record.last_output_state if record else OutputState.UNKNOWN

    def identities(self) -> list[str]:
        with self._lock:
            return list(self._records)

    def snapshot(self, identity: str) -> dict | None:
        with self._lock:
            record = self._records.get(canonical_identity(identity))
            return record.to_dict() if record else None

    def snapshot_all(self) -> list[dict]:
        with self._lock:
            return [r.to_dict() for r in self._records.values()]
