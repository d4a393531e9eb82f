"""
Structured event log for the simulator.

Every component reports through log_event(): one JSON object per stdout
line, flushed as written. Events carry ts_ms and event_type; session and
generator ids are added by the caller where they apply.
"""

from __future__ import annotations

import json
import sys
import time
from typing import Any, Callable, Mapping


def _write_stdout(line: str) -> None:
    sys.stdout.write(line + "\n")
    sys.stdout.flush()


# Replaced by tests to capture events
_print: Callable[[str], None] = _write_stdout


def now_ms() -> int:
    """Wall-clock milliseconds for event timestamps."""
    return time.time_ns() // 1_000_000


def _encode(event: Mapping[str, Any]) -> str:
    return json.dumps(event, ensure_ascii=False, separators=(",", ":"))


def log_event(event: Mapping[str, Any]) -> None:
    """
    Emit one event line. Never raises on unserializable values: the event
    is replaced by a LOGGER_SERIALIZATION_ERROR record carrying its repr.
    """
    try:
        line = _encode(event)
    except (TypeError, ValueError) as e:
        line = _encode({
            "ts_ms": event.get("ts_ms", now_ms()),
            "event_type": "LOGGER_SERIALIZATION_ERROR",
            "failed_event_type": event.get("event_type"),
            "error": str(e),
            "event_repr": repr(event),
        })

    _print(line)
