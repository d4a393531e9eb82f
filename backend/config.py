"""
Simulator configuration.

Responsibilities:
- Read environment variables (after .env loading by the entry point)
- Validate every value once, before any socket is bound
- Provide a typed, immutable config object

Non-responsibilities:
- No command-line parsing (see server.main)
- No protocol constants
- No runtime mutation
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from spec import (
    DEFAULT_FPS,
    DEFAULT_FRAME_OFFSET,
    DEFAULT_HOST,
    DEFAULT_PORT,
    DEFAULT_TIME_CODE,
    DEFAULT_TM_CHANNEL,
    OUTBOUND_QUEUE_MAX_FRAMES,
    SUPPORTED_TIME_CODES,
)
from telemetry.source import detect_preframed


class ConfigError(ValueError):
    """
    Raised when configuration is missing or invalid.

    Always fatal at startup: the server does not begin listening.
    """


@dataclass(frozen=True)
class SimulatorConfig:
    """
    Immutable simulator configuration.

    Constructed once at process startup.
    Passed downward to listener, sessions and generators.
    """

    # ------------------------------------------------------------------
    # Payload source
    # ------------------------------------------------------------------

    source_path: Path
    frame_length: int
    frame_offset: int
    # Source already carries STI envelopes; payloads go out verbatim
    has_envelope: bool

    # ------------------------------------------------------------------
    # Stream
    # ------------------------------------------------------------------

    fps: int
    tm_channel: int
    time_code: int

    # ------------------------------------------------------------------
    # Network
    # ------------------------------------------------------------------

    host: str
    port: int
    read_timeout_s: float | None
    outbound_queue_frames: int

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    status_port: int | None

    @property
    def gap_us(self) -> int:
        """Minimum interval between two frames, in microseconds."""
        return 1_000_000 // self.fps

    # ------------------------------------------------------------------
    # Factories
    # ------------------------------------------------------------------

    @staticmethod
    def build(
        *,
        source_path: str | Path | None,
        frame_length: int | None,
        fps: int = DEFAULT_FPS,
        tm_channel: int = DEFAULT_TM_CHANNEL,
        port: int = DEFAULT_PORT,
        time_code: int = DEFAULT_TIME_CODE,
        frame_offset: int = DEFAULT_FRAME_OFFSET,
        host: str = DEFAULT_HOST,
        read_timeout_s: float | None = None,
        outbound_queue_frames: int = OUTBOUND_QUEUE_MAX_FRAMES,
        status_port: int | None = None,
    ) -> SimulatorConfig:
        """
        Validate raw values and build the config.

        Raises:
            ConfigError on the first invalid value.
        """
        if not source_path:
            raise ConfigError("argument `input` required")
        path = Path(source_path)
        if not path.is_file():
            raise ConfigError(f"input file {path} does not exist")
        try:
            has_envelope = detect_preframed(path)
        except OSError as e:
            raise ConfigError(f"input file {path} is not readable: {e}") from e

        if frame_length is None or frame_length <= 0:
            raise ConfigError("argument `framelen` cannot <= 0")
        if frame_offset < 0:
            raise ConfigError("argument `frameoffset` cannot < 0")
        if fps <= 0:
            raise ConfigError("argument `fps` cannot <= 0")
        if time_code not in SUPPORTED_TIME_CODES:
            raise ConfigError(f"unsupported argument `timecode` {time_code}")
        if not 0 <= port <= 65535:
            raise ConfigError(f"invalid port {port}")
        if status_port is not None and not 0 <= status_port <= 65535:
            raise ConfigError(f"invalid status port {status_port}")
        if read_timeout_s is not None and read_timeout_s <= 0:
            raise ConfigError("read timeout must be > 0")
        if outbound_queue_frames <= 0:
            raise ConfigError("outbound queue size must be > 0")

        return SimulatorConfig(
            source_path=path,
            frame_length=frame_length,
            frame_offset=frame_offset,
            has_envelope=has_envelope,
            fps=fps,
            tm_channel=tm_channel,
            time_code=time_code,
            host=host,
            port=port,
            read_timeout_s=read_timeout_s,
            outbound_queue_frames=outbound_queue_frames,
            status_port=status_port,
        )

    @staticmethod
    def load_from_env() -> SimulatorConfig:
        """
        Load configuration from TM_* environment variables.

        Raises:
            ConfigError if required variables are missing or invalid.
        """
        env = env_defaults()
        return SimulatorConfig.build(**env)


def env_defaults() -> dict[str, object]:
    """
    Raw configuration values from the environment, with built-in defaults.

    Also used by the CLI as argparse defaults.
    """
    return {
        "source_path": os.environ.get("TM_INPUT"),
        "frame_length": _env_int("TM_FRAMELEN", None),
        "frame_offset": _env_int("TM_FRAME_OFFSET", DEFAULT_FRAME_OFFSET),
        "fps": _env_int("TM_FPS", DEFAULT_FPS),
        "tm_channel": _env_int("TM_CHANNEL", DEFAULT_TM_CHANNEL),
        "port": _env_int("TM_PORT", DEFAULT_PORT),
        "host": os.environ.get("TM_HOST", DEFAULT_HOST),
        "time_code": _env_int("TM_TIME_CODE", DEFAULT_TIME_CODE),
        "read_timeout_s": _env_float("TM_READ_TIMEOUT_S"),
        "status_port": _env_int("TM_STATUS_PORT", None),
    }


def _env_int(name: str, default: int | None) -> int | None:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from e


def _env_float(name: str) -> float | None:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return None
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from e
