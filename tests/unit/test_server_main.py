# pylint: disable=missing-module-docstring,missing-function-docstring

import socket
from pathlib import Path
from typing import Any, Callable

import pytest
from fastapi.testclient import TestClient

from config import SimulatorConfig
from server import main as main_mod
from server.app import create_app
from server.listener import TMServer


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("TM_INPUT", "TM_FRAMELEN", "TM_FPS", "TM_PORT", "TM_TIME_CODE", "TM_STATUS_PORT"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(main_mod, "load_dotenv", lambda: False)


# ---------------------------------------------------------------------
# Command line
# ---------------------------------------------------------------------

def test_parse_config_accepts_single_dash_flags(source_file: Path):
    config = main_mod.parse_config([
        "-input", str(source_file),
        "-framelen", "128",
        "-fps", "5",
        "-channel", "2",
        "-port", "4000",
        "-timecode", "3",
    ])

    assert config.frame_length == 128
    assert config.fps == 5
    assert config.tm_channel == 2
    assert config.port == 4000
    assert config.time_code == 3


def test_env_supplies_defaults(monkeypatch: pytest.MonkeyPatch, source_file: Path):
    monkeypatch.setenv("TM_INPUT", str(source_file))
    monkeypatch.setenv("TM_FRAMELEN", "16")

    config = main_mod.parse_config(["--fps", "4"])

    assert config.source_path == source_file
    assert config.frame_length == 16
    assert config.fps == 4


def test_invalid_config_exits_2(events: list[dict[str, Any]]):
    assert main_mod.main(["--framelen", "10"]) == 2
    assert events[-1]["event_type"] == "CONFIG_ERROR"
    assert "input" in events[-1]["message"]


def test_bind_failure_exits_1(source_file: Path, events: list[dict[str, Any]]):
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as busy:
        busy.bind(("127.0.0.1", 0))
        busy.listen()
        port = busy.getsockname()[1]

        code = main_mod.main([
            "--input", str(source_file),
            "--framelen", "10",
            "--host", "127.0.0.1",
            "--port", str(port),
        ])

    assert code == 1
    assert events[-1]["event_type"] == "BIND_ERROR"


# ---------------------------------------------------------------------
# Status API
# ---------------------------------------------------------------------

def test_status_endpoints(make_config: Callable[..., SimulatorConfig]):
    server = TMServer(make_config(tm_channel=4))
    client = TestClient(create_app(server))

    assert client.get("/health").json() == {"status": "ok"}

    body = client.get("/sessions").json()
    assert body["channel"] == 4
    assert body["sessions"] == []
    assert body["port"] is None
    assert body["closed_sessions"] == 0
    assert body["recent_closed"] == []
