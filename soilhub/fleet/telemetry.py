"""UDP telemetry server for sensor nodes.

Nodes send plain-text datagrams to a fixed port. Each datagram is:

  1. appended to a diagnostic packet log file,
  2. attributed to a device (identity token, else source IP),
  3. checked for a "<identity> <volts>" / "<identity>,<volts>" reading,
     which is forwarded to consumers immediately (no batching).

Commands go back to the device's last known address over the same socket.
The receive loop runs in its own thread; ``stop()`` unblocks it by sending
a datagram to itself over loopback.
"""

from __future__ import annotations

import logging
import socket
import threading
import time
from pathlib import Path
from typing import Callable

from soilhub.fleet.models import CommandResult, OutputState, Reading
from soilhub.fleet.protocol import attribution_token, format_output_command, parse_reading
from soilhub.fleet.registry import Address, DeviceRegistry

logger = logging.getLogger(__name__)

DEFAULT_PORT = 12345
DEFAULT_PACKET_LOG = "/tmp/server.log"
RECV_BUFFER = 8192

ERR_UNKNOWN_DEVICE = "unknown device"
ERR_SEND_FAILED = "send failed"

ReadingsCallback = Callable[[list[Reading]], None]


class TelemetryServer:
    """Receives sensor datagrams and relays commands back to devices."""

    def __init__(
        self,
        registry: DeviceRegistry | None = None,
        host: str = "0.0.0.0",
        port: int = DEFAULT_PORT,
        packet_log: str | Path | None = DEFAULT_PACKET_LOG,
        stop_timeout: float = 5.0,
    ) -> None:
        self.registry = registry if registry is not None else DeviceRegistry()
        self.host = host
        self.port = port
        self.packet_log = Path(packet_log) if packet_log else None
        self.stop_timeout = stop_timeout
        self._sock: socket.socket | None = None
        self._thread: threading.Thread | None = None
        self._running = False
        self._callbacks: list[ReadingsCallback] = []

    # ── Lifecycle ──────────────────────────────────────────────────

    @property
    def running(self) -> bool:
        return self._running

    @property
    def address(self) -> Address | None:
        """Bound (host, port), or None when not running."""
        if self._sock is None:
            return None
        return self._sock.getsockname()[:2]

    def start(self) -> bool:
        """Bind the UDP socket and spawn the receive thread."""
        if self._running:
            return True

        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            sock.bind((self.host, self.port))
        except OSError:
            logger.exception("Telemetry server failed to bind %s:%d", self.host, self.port)
            sock.close()
            return False

        self._sock = sock
        self._running = True
        self._thread = threading.Thread(
            target=self._receive_loop, args=(sock,), name="telemetry-rx", daemon=True,
        )
        self._thread.start()
        logger.info("Telemetry server listening on %s:%d", *self.address)
        return True

    def stop(self) -> None:
        """Stop the receive loop and wait for it to exit."""
        thread = self._thread
        if not self._running or thread is None:
            return
        _, port = self.address or (None, self.port)
        self._running = False

        wake_host = "127.0.0.1" if self.host in ("", "0.0.0.0") else self.host
        try:
            with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
                s.sendto(b"\x00", (wake_host, port))
        except OSError:
            logger.warning("Could not send wake-up datagram to %s:%s", wake_host, port)

        thread.join(timeout=self.stop_timeout)
        if thread.is_alive():
            logger.warning("Telemetry receive thread did not exit within %.1fs", self.stop_timeout)
        self._thread = None
        logger.info("Telemetry server stopped")

    def on_readings(self, callback: ReadingsCallback) -> None:
        """Register a consumer for readings (called with one reading at a time)."""
        self._callbacks.append(callback)

    # ── Receive loop ───────────────────────────────────────────────

    def _receive_loop(self, sock: socket.socket) -> None:
        try:
            while self._running:
                try:
                    payload, source = sock.recvfrom(RECV_BUFFER)
                except InterruptedError:
                    continue
                except OSError:
                    if self._running:
                        logger.exception("Telemetry receive failed; stopping")
                    break
                if not self._running:
                    break
                try:
                    self.handle_datagram(payload, source)
                except Exception:
                    logger.exception("Error handling datagram from %s:%d", *source[:2])
        finally:
            sock.close()
            if self._sock is sock:
                self._sock = None
            self._running = False

    def handle_datagram(self, payload: bytes, source: Address) -> Reading | None:
        """Process one inbound datagram. Returns the forwarded reading, if any."""
        text = payload.split(b"\x00", 1)[0].decode("utf-8", errors="replace").rstrip()
        source = (source[0], source[1])
        self._log_packet(text, source)

        if text:
            who = self.registry.attribute(attribution_token(text), source, text)
            if who is None:
                logger.debug("Unattributed datagram from %s:%d", *source)

        reading = parse_reading(text)
        if reading is None:
            return None

        self._forward(reading)
        if not self.registry.note_reading(reading.identity, reading.value, source):
            logger.debug("Registry full; %s not tracked", reading.identity)
        return reading

    def _forward(self, reading: Reading) -> None:
        for cb in self._callbacks:
            try:
                cb([reading])
            except Exception:
                logger.exception("Error in readings callback")

    def _log_packet(self, text: str, source: Address) -> None:
        if self.packet_log is None:
            return
        stamp = time.strftime("%Y-%m-%d %H:%M:%S", time.localtime())
        try:
            with open(self.packet_log, "a", encoding="utf-8") as f:
                f.write(f"{stamp} {source[0]}:{source[1]} {text}\n")
        except OSError as e:
            logger.warning("Packet log %s not writable: %s", self.packet_log, e)

    # ── Commands ───────────────────────────────────────────────────

    def send_command(self, identity: str, activate: bool) -> CommandResult:
        """Switch a device's output on or off."""
        return self.send_text(identity, format_output_command(activate))

    def send_text(self, identity: str, text: str) -> CommandResult:
        """Send an arbitrary text payload to a device's last known address."""
        address = self.registry.address_of(identity)
        if address is None:
            return CommandResult(success=False, error=ERR_UNKNOWN_DEVICE)

        data = text.encode("utf-8")
        sock = self._sock
        try:
            if sock is not None:
                sent = sock.sendto(data, address)
            else:
                with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
                    sent = s.sendto(data, address)
        except OSError as e:
            logger.warning("Send to %s (%s:%d) failed: %s", identity, *address, e)
            return CommandResult(success=False, error=f"{ERR_SEND_FAILED}: {e}")

        if sent != len(data):
            return CommandResult(success=False, error=f"{ERR_SEND_FAILED}: short write")
        logger.info("Sent %r to %s (%s:%d)", text, identity, *address)
        return CommandResult(success=True)

    # ── Queries ────────────────────────────────────────────────────

    def get_logs(self, identity: str, limit: int | None = None) -> str | None:
        return self.registry.logs(identity, limit)

    def get_live_status(self, identity: str) -> str | None:
        return self.registry.live_status(identity)

    def get_output_state(self, identity: str) -> OutputState:
        return self.registry.output_state(identity)
