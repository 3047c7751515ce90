"""arduino-cli wrapper with line-by-line output streaming.

Build and upload output is consumed as it is produced so the provisioning
status trail updates live. There is no timeout: a hung tool blocks the
provisioning thread.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
from pathlib import Path
from typing import Iterator

logger = logging.getLogger(__name__)

DEFAULT_FQBN = "arduino:samd:nano_33_iot"
_CLI_CANDIDATES = ("/usr/local/bin/arduino-cli", "/usr/bin/arduino-cli")


class ToolchainError(Exception):
    """An external build tool could not be launched."""


class CommandStream:
    """Run a command, yielding merged stdout/stderr lines as they arrive.

    ``returncode`` is set once iteration finishes.
    """

    def __init__(self, argv: list[str]) -> None:
        self.argv = argv
        self.returncode: int | None = None

    def __iter__(self) -> Iterator[str]:
        logger.debug("Running: %s", " ".join(self.argv))
        try:
            proc = subprocess.Popen(
                self.argv,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                bufsize=1,
                errors="replace",
            )
        except OSError as e:
            raise ToolchainError(f"cannot run {self.argv[0]}: {e}") from e

        with proc:
            for line in proc.stdout:
                yield line.rstrip("\r\n")
            self.returncode = proc.wait()

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class ArduinoCli:
    """Builds and uploads sketches with arduino-cli."""

    def __init__(self, executable: str) -> None:
        self.executable = executable

    @classmethod
    def locate(cls) -> ArduinoCli | None:
        """Find arduino-cli via $ARDUINO_CLI, $PATH, then the usual install dirs."""
        override = os.environ.get("ARDUINO_CLI")
        candidates = [override] if override else []
        found = shutil.which("arduino-cli")
        if found:
            candidates.append(found)
        candidates.extend(_CLI_CANDIDATES)

        for path in candidates:
            if os.path.isfile(path) and os.access(path, os.X_OK):
                return cls(path)
        return None

    def compile(self, sketch: str | Path, fqbn: str = DEFAULT_FQBN) -> CommandStream:
        return CommandStream([self.executable, "compile", "--fqbn", fqbn, str(sketch)])

    def upload(self, port: str, sketch: str | Path, fqbn: str = DEFAULT_FQBN) -> CommandStream:
        return CommandStream(
            [self.executable, "upload", "-p", port, "--fqbn", fqbn, str(sketch)]
        )
