"""Firmware staging.

When WiFi credentials or a relay target are supplied, the stock sketch is
copied into a private temp directory and a config.h carrying the overrides
is written next to it. The copy keeps the sketch folder name, since
arduino-cli requires the folder to match the main .ino file.
"""

from __future__ import annotations

import logging
import shutil
import tempfile
from pathlib import Path

from soilhub.config import FlashSettings

logger = logging.getLogger(__name__)


class StagedFirmware:
    """A temporary, patched copy of the firmware sketch."""

    def __init__(self, root: Path, sketch: Path) -> None:
        self.root = root
        self.path = sketch

    def cleanup(self) -> None:
        shutil.rmtree(self.root, ignore_errors=True)
        logger.debug("Removed staged firmware %s", self.root)


def stage_firmware(source: str | Path, settings: FlashSettings) -> StagedFirmware | None:
    """Copy *source* and inject config.h. None if not needed or on failure."""
    if not settings.needs_staging:
        return None

    source = Path(source)
    root = None
    try:
        root = Path(tempfile.mkdtemp(prefix=f"{source.name}_"))
        sketch = root / source.name
        shutil.copytree(source, sketch)
        (sketch / "config.h").write_text(settings.config_header())
    except OSError as e:
        logger.warning("Firmware staging failed, using %s as-is: %s", source, e)
        if root is not None:
            shutil.rmtree(root, ignore_errors=True)
        return None

    logger.info("Staged firmware at %s", sketch)
    return StagedFirmware(root, sketch)
