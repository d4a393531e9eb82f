"""
Simulator entry point.

Responsibilities:
- Load .env, parse command-line flags (environment values act as defaults)
- Validate configuration before binding anything
- Run the TCP listener (and the optional status API) until SIGINT/SIGTERM

Exit codes:
- 0 clean shutdown
- 1 listener could not bind
- 2 invalid configuration
"""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys
from typing import Sequence

from dotenv import load_dotenv

from config import ConfigError, SimulatorConfig, env_defaults
from observability.logger import log_event, now_ms
from server.app import build_status_server
from server.listener import TMServer


# ------------------------------------------------------------------
# Command line
# ------------------------------------------------------------------

def build_parser(defaults: dict[str, object]) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tm-simulator",
        description="Simulated STI telemetry source over TCP.",
    )
    parser.add_argument("--input", "-input", dest="source_path",
                        default=defaults["source_path"],
                        help="[required] input file path")
    parser.add_argument("--framelen", "-framelen", dest="frame_length", type=int,
                        default=defaults["frame_length"],
                        help="[required] frame length")
    parser.add_argument("--frameoffset", "-frameoffset", dest="frame_offset", type=int,
                        default=defaults["frame_offset"],
                        help="bytes skipped before each frame, default 0")
    parser.add_argument("--fps", "-fps", dest="fps", type=int,
                        default=defaults["fps"],
                        help="frame per seconds, default 2")
    parser.add_argument("--channel", "-channel", dest="tm_channel", type=int,
                        default=defaults["tm_channel"],
                        help="tm channel, default 0")
    parser.add_argument("--port", "-port", dest="port", type=int,
                        default=defaults["port"],
                        help="tm channel listening port, default 3070")
    parser.add_argument("--host", dest="host",
                        default=defaults["host"],
                        help="listening address, default 0.0.0.0")
    parser.add_argument("--timecode", "-timecode", dest="time_code", type=int,
                        default=defaults["time_code"],
                        help="time code (0/3), default 0")
    parser.add_argument("--read-timeout", dest="read_timeout_s", type=float,
                        default=defaults["read_timeout_s"],
                        help="close sessions idle for this many seconds")
    parser.add_argument("--status-port", dest="status_port", type=int,
                        default=defaults["status_port"],
                        help="serve the HTTP status API on this port")
    return parser


def parse_config(argv: Sequence[str] | None = None) -> SimulatorConfig:
    """
    Build the validated config from flags and TM_* environment variables.

    Raises:
        ConfigError on invalid values.
    """
    args = build_parser(env_defaults()).parse_args(argv)
    return SimulatorConfig.build(**vars(args))


# ------------------------------------------------------------------
# Runtime
# ------------------------------------------------------------------

async def serve(config: SimulatorConfig) -> None:
    """
    Run until a stop signal arrives.

    Raises:
        OSError if the listening port cannot be bound.
    """
    server = TMServer(config)
    await server.start()

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows event loops: Ctrl-C surfaces as KeyboardInterrupt
            pass

    tasks: list[asyncio.Task[None]] = [asyncio.create_task(server.serve_forever())]

    status = None
    if config.status_port is not None:
        status = build_status_server(server, host=config.host, port=config.status_port)
        tasks.append(asyncio.create_task(status.serve()))

    stop_task = asyncio.create_task(stop.wait())
    await asyncio.wait([*tasks, stop_task], return_when=asyncio.FIRST_COMPLETED)

    if status is not None:
        status.should_exit = True
    await server.close()

    stop_task.cancel()
    for task in tasks:
        task.cancel()
    await asyncio.gather(stop_task, *tasks, return_exceptions=True)


def main(argv: Sequence[str] | None = None) -> int:
    load_dotenv()

    try:
        config = parse_config(argv)
    except ConfigError as e:
        log_event({
            "ts_ms": now_ms(),
            "event_type": "CONFIG_ERROR",
            "message": str(e),
        })
        return 2

    try:
        asyncio.run(serve(config))
    except OSError as e:
        log_event({
            "ts_ms": now_ms(),
            "event_type": "BIND_ERROR",
            "port": config.port,
            "message": str(e),
        })
        return 1
    except KeyboardInterrupt:
        pass

    return 0


# ------------------------------------------------------------------
# Entry point
# ------------------------------------------------------------------

if __name__ == "__main__":
    sys.exit(main())
