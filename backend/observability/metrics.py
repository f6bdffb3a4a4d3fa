"""
Metrics and timing helpers for observability.

Responsibilities:
- Measure durations using monotonic time (immune to clock changes)
- Emit metrics as JSONL events via observability.logger
- Never aggregate: one metric = one log event

Design notes:
- Durations use monotonic time for correctness
- Event timestamps (ts_ms) use wall-clock time for human readability
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Any, Iterator

from observability.logger import log_event


@contextmanager
def timed(
    name: str,
    *,
    identity: str | None = None,
    run_id: int | None = None,
    details: dict[str, Any] | None = None,
) -> Iterator[dict[str, Any]]:
    """
    Context manager for measuring durations safely.

    Guarantees:
    - Metric is emitted exactly once, even if the block raises
    - Exceptions inside the block are not suppressed; the metric
      records outcome="error" and the exception type

    The yielded dict is merged into the metric details, so the block
    can attach results (e.g. a message id) before it exits.

    Usage:
        with timed("transport_open", identity=identity, run_id=run_id):
            handle = await transport.open(...)
    """
    extra: dict[str, Any] = {}
    start_ns = time.monotonic_ns()
    outcome = "ok"
    try:
        yield extra
    except BaseException as exc:
        outcome = "error"
        extra.setdefault("exception", type(exc).__name__)
        raise
    finally:
        duration_ms = (time.monotonic_ns() - start_ns) // 1_000_000
        log_event({
            "ts_ms": int(time.time() * 1000),
            "event_type": "METRIC_TIMER",
            "metric": name,
            "value_ms": duration_ms,
            "identity": identity,
            "run_id": run_id,
            "outcome": outcome,
            "details": {**(details or {}), **extra},
        })
