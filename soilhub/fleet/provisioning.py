"""Sensor node provisioning workflow.

One run, in its own thread:

  1. Discover      first ttyACM*/ttyUSB* serial port
  2. Stage         copy firmware + config.h when FLASH_* overrides are set
  3. Build         arduino-cli compile (output streamed line by line)
  4. Upload        arduino-cli upload (only if the build succeeded)
  5. Re-discover   the port may have re-enumerated after flashing
  6. Register      wait up to 60s for a line carrying the node's hw address
  7. Cleanup       remove the staged copy
  8. Report        on_device_ready(identity | None), then on_status(None)

No stage raises: failures become status lines and an outcome without an
identity. Build and upload failures are not fatal; the node may already be
running usable firmware, so registration is still attempted.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Callable, Iterable, Mapping

from soilhub.config import FlashSettings
from soilhub.fleet import serial_link
from soilhub.fleet.firmware import StagedFirmware, stage_firmware
from soilhub.fleet.models import ProvisioningOutcome, ProvisionStep
from soilhub.fleet.toolchain import ArduinoCli, CommandStream, ToolchainError

logger = logging.getLogger(__name__)

StatusCallback = Callable[[str | None], None]
DeviceReadyCallback = Callable[[str | None], None]


class ProvisioningManager:
    """Flashes the first attached sensor node and waits for it to register."""

    def __init__(
        self,
        firmware_path: str | Path = "firmware/plant_sensor",
        serial_patterns: tuple[str, ...] = serial_link.SERIAL_PATTERNS,
        registration_timeout: float = serial_link.REGISTRATION_TIMEOUT,
        poll_interval: float = serial_link.POLL_INTERVAL,
        locate_toolchain: Callable[[], ArduinoCli | None] = ArduinoCli.locate,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self.firmware_path = Path(firmware_path)
        self.serial_patterns = serial_patterns
        self.registration_timeout = registration_timeout
        self.poll_interval = poll_interval
        self._locate_toolchain = locate_toolchain
        self._environ = environ
        self._status_callbacks: list[StatusCallback] = []
        self._ready_callbacks: list[DeviceReadyCallback] = []

    def on_status(self, callback: StatusCallback) -> None:
        """Register a progress callback. Receives None when a run finishes."""
        self._status_callbacks.append(callback)

    def on_device_ready(self, callback: DeviceReadyCallback) -> None:
        """Register the outcome callback. Receives None when no node registered."""
        self._ready_callbacks.append(callback)

    # ── Entry points ───────────────────────────────────────────────

    def begin_provisioning(self) -> bool:
        """Start one run in the background. False if the thread could not start."""
        thread = threading.Thread(target=self.run, name="provisioning", daemon=True)
        try:
            thread.start()
        except RuntimeError as e:
            self._status(f"Failed to start provisioning thread: {e}")
            return False
        logger.info("Provisioning run started")
        return True

    def run(self) -> ProvisioningOutcome:
        """Run the whole workflow synchronously."""
        outcome = ProvisioningOutcome()
        steps = {
            s.name: s
            for s in (
                ProvisionStep("discover", detail="Searching for serial device"),
                ProvisionStep("stage", detail="Staging firmware"),
                ProvisionStep("build", detail="Compiling sketch"),
                ProvisionStep("upload", detail="Flashing device"),
                ProvisionStep("rediscover", detail="Searching for serial device"),
                ProvisionStep("register", detail="Waiting for registration"),
            )
        }
        outcome.steps = list(steps.values())

        staged: list[StagedFirmware] = []
        try:
            self._run_stages(steps, outcome, staged)
        except Exception as e:
            logger.exception("Provisioning failed")
            self._status(f"Provisioning error: {e}")
            outcome.device_identity = None
            outcome.success = False
            for step in outcome.steps:
                if step.status == "running":
                    step.status, step.detail = "failed", str(e)
        finally:
            for step in outcome.steps:
                if step.status == "pending":
                    step.status = "skipped"
            for copy in staged:
                copy.cleanup()

        self._report(outcome)
        self._status(None)
        return outcome

    # ── Stages ─────────────────────────────────────────────────────

    def _run_stages(
        self,
        steps: dict[str, ProvisionStep],
        outcome: ProvisioningOutcome,
        staged: list[StagedFirmware],
    ) -> None:
        # 1. Discover
        self._begin(steps["discover"], "Searching for serial device...")
        port = serial_link.find_first_serial(self.serial_patterns)
        if port is None:
            self._fail(steps["discover"], "No serial device found")
            return
        self._done(steps["discover"], port)

        # 2. Stage
        settings = FlashSettings.from_env(self._environ)
        sketch = self.firmware_path
        if settings.needs_staging:
            steps["stage"].status = "running"
            copy = stage_firmware(self.firmware_path, settings)
            if copy is not None:
                staged.append(copy)
                sketch = copy.path
                self._done(steps["stage"], str(sketch), f"Staged firmware at {sketch}")
            else:
                self._fail(steps["stage"], "Firmware staging failed; using stock firmware")

        # 3 + 4. Build, upload
        cli = self._locate_toolchain()
        if cli is None:
            self._status("arduino-cli not found; skipping flash")
        elif self._build(steps["build"], cli, sketch, settings.fqbn):
            self._upload(steps["upload"], cli, port, sketch, settings.fqbn)
        else:
            self._status("Skipping upload due to compile errors")

        # 5. Re-discover
        self._begin(steps["rediscover"])
        port = serial_link.find_first_serial(self.serial_patterns)
        if port is None:
            self._fail(steps["rediscover"], "No serial device found after upload")
            return
        self._done(steps["rediscover"], port, f"Using serial device {port} for registration")

        # 6. Register
        self._begin(steps["register"])
        identity = serial_link.wait_for_registration(
            port,
            timeout=self.registration_timeout,
            poll_interval=self.poll_interval,
            on_status=self._status,
        )
        if identity is None:
            self._fail(steps["register"], "No registration received; adding unassigned plot")
            return
        self._done(steps["register"], identity, f"Registered {identity}")
        outcome.device_identity = identity
        outcome.success = True

    def _build(self, step: ProvisionStep, cli: ArduinoCli, sketch: Path, fqbn: str) -> bool:
        self._begin(step, "Compiling sketch...")
        stream = cli.compile(sketch, fqbn)
        if not self._stream(stream, step, "compile"):
            return False
        if not stream.ok:
            self._fail(step, f"Compile failed (rc={stream.returncode})")
            return False
        self._done(step, "compiled")
        return True

    def _upload(
        self, step: ProvisionStep, cli: ArduinoCli, port: str, sketch: Path, fqbn: str
    ) -> None:
        self._begin(step, "Flashing device...")
        stream = cli.upload(port, sketch, fqbn)
        if not self._stream(stream, step, "upload"):
            return
        if stream.ok:
            self._done(step, port, "Upload complete")
        else:
            self._fail(step, f"Upload failed (rc={stream.returncode})")

    def _stream(self, stream: CommandStream, step: ProvisionStep, verb: str) -> bool:
        """Forward each non-blank output line as a status update. False if launch failed."""
        try:
            for line in stream:
                if line.strip():
                    self._status(line)
        except ToolchainError as e:
            logger.warning("%s", e)
            self._fail(step, f"Failed to run arduino-cli {verb}")
            return False
        return True

    # ── Helpers ────────────────────────────────────────────────────

    def _begin(self, step: ProvisionStep, message: str | None = None) -> None:
        step.status = "running"
        if message:
            self._status(message)

    def _done(self, step: ProvisionStep, detail: str, message: str | None = None) -> None:
        step.status, step.detail = "done", detail
        if message:
            self._status(message)

    def _fail(self, step: ProvisionStep, message: str) -> None:
        step.status, step.detail = "failed", message
        self._status(message)

    def _status(self, text: str | None) -> None:
        if text is not None:
            logger.info("provision: %s", text)
        self._notify(self._status_callbacks, text, "status")

    def _report(self, outcome: ProvisioningOutcome) -> None:
        if outcome.success:
            logger.info("Provisioning succeeded: %s", outcome.device_identity)
        else:
            logger.warning("Provisioning finished without a registered device")
        self._notify(self._ready_callbacks, outcome.device_identity, "device-ready")

    @staticmethod
    def _notify(callbacks: Iterable[Callable], value, kind: str) -> None:
        for cb in callbacks:
            try:
                cb(value)
            except Exception:
                logger.exception("Error in provisioning %s callback", kind)
