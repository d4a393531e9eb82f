# pylint: disable=missing-module-docstring,missing-function-docstring

import json
from pathlib import Path
from typing import Any, Callable

import pytest

from config import SimulatorConfig
from observability import logger


@pytest.fixture
def source_file(tmp_path: Path) -> Path:
    """250 bytes of incrementing values."""
    path = tmp_path / "source.dat"
    path.write_bytes(bytes(range(250)))
    return path


@pytest.fixture
def make_config(source_file: Path) -> Callable[..., SimulatorConfig]:
    def _make(**overrides: Any) -> SimulatorConfig:
        values: dict[str, Any] = {
            "source_path": source_file,
            "frame_length": 100,
            "fps": 10,
            "host": "127.0.0.1",
            "port": 0,
        }
        values.update(overrides)
        return SimulatorConfig.build(**values)

    return _make


@pytest.fixture
def events(monkeypatch: pytest.MonkeyPatch) -> list[dict[str, Any]]:
    """Capture every log_event payload instead of printing it."""
    captured: list[dict[str, Any]] = []

    def fake_print(line: str) -> None:
        captured.append(json.loads(line))

    monkeypatch.setattr(logger, "_print", fake_print)
    return captured
