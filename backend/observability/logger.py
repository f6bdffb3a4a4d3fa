"""
JSONL event logger.

- Write one JSON object per line
- Output to stdout
- No buffering, no batching
- No side effects beyond logging
"""

from __future__ import annotations

import json
import sys
from typing import Any, Mapping, Callable


# ------------------------------------------------------------------
# Explicit output sink (patchable in tests)
# ------------------------------------------------------------------

def _stdout_print(line: str) -> None:
    sys.stdout.write(line + "\n")
    sys.stdout.flush()

_print: Callable[[str], None] = _stdout_print

# False switches to a human-readable "EVENT_TYPE key=value" line format
_json_lines: bool = True


def configure(*, json_lines: bool) -> None:
    """Select the line format. Called once at process startup."""
    global _json_lines  # pylint: disable=global-statement
    _json_lines = json_lines


def _format_text(event: Mapping[str, Any]) -> str:
    head = str(event.get("event_type", "EVENT"))
    parts = [
        f"{k}={json.dumps(v, ensure_ascii=False, default=str)}"
        for k, v in event.items()
        if k != "event_type"
    ]
    return " ".join([head, *parts])


def log_event(event: Mapping[str, Any]) -> None:
    """
    Write a single log event to stdout.

    The caller is responsible for:
    - Supplying a fully-formed event dict
    - Including ts_ms, identity, state, etc.

    This function:
    - Serializes to JSON (or key=value text when configured)
    - Writes exactly one line
    - Flushes immediately (no buffering)
    - Never raises
    """
    try:
        if _json_lines:
            line = json.dumps(event, ensure_ascii=False, separators=(",", ":"))
        else:
            line = _format_text(event)
    except (TypeError, ValueError) as e:
        # Last-resort fallback; logging must never crash the runtime
        fallback: dict[str, Any] = {
            "ts_ms": event.get("ts_ms"),
            "event_type": "LOGGER_SERIALIZATION_ERROR",
            "error": str(e),
            "original_event_repr": repr(event),
        }
        line = json.dumps(fallback, ensure_ascii=False, separators=(",", ":"))

    _print(line)
