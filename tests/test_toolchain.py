"""Tests for the arduino-cli wrapper."""

from __future__ import annotations

import sys

import pytest

from soilhub.fleet import toolchain
from soilhub.fleet.toolchain import ArduinoCli, CommandStream, ToolchainError


class TestCommandStream:
    def test_streams_lines_and_returncode(self):
        stream = CommandStream([
            sys.executable, "-c",
            "import sys; print('one'); print('two', file=sys.stderr, flush=True); sys.exit(3)",
        ])
        lines = list(stream)
        assert sorted(lines) == ["one", "two"]
        assert stream.returncode == 3
        assert not stream.ok

    def test_success(self):
        stream = CommandStream([sys.executable, "-c", "print('done')"])
        assert list(stream) == ["done"]
        assert stream.ok

    def test_missing_executable(self, tmp_path):
        stream = CommandStream([str(tmp_path / "arduino-cli"), "version"])
        with pytest.raises(ToolchainError):
            list(stream)
        assert stream.returncode is None


class TestArduinoCli:
    def test_argv(self):
        cli = ArduinoCli("/opt/arduino-cli")
        assert cli.compile("/fw/plant_sensor", "arduino:avr:uno").argv == [
            "/opt/arduino-cli", "compile", "--fqbn", "arduino:avr:uno", "/fw/plant_sensor",
        ]
        assert cli.upload("/dev/ttyACM0", "/fw/plant_sensor").argv == [
            "/opt/arduino-cli", "upload", "-p", "/dev/ttyACM0",
            "--fqbn", toolchain.DEFAULT_FQBN, "/fw/plant_sensor",
        ]

    def test_locate_env_override(self, tmp_path, monkeypatch):
        exe = tmp_path / "arduino-cli"
        exe.write_text("#!/bin/sh\n")
        exe.chmod(0o755)
        monkeypatch.setenv("ARDUINO_CLI", str(exe))
        assert ArduinoCli.locate().executable == str(exe)

    def test_locate_missing(self, tmp_path, monkeypatch):
        monkeypatch.delenv("ARDUINO_CLI", raising=False)
        monkeypatch.setattr(toolchain.shutil, "which", lambda _name: None)
        monkeypatch.setattr(toolchain, "_CLI_CANDIDATES", (str(tmp_path / "nope"),))
        assert ArduinoCli.locate() is None
