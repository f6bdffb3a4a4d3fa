# pylint: disable=missing-module-docstring,missing-function-docstring

import json
from typing import Any

import pytest

from observability import logger
from observability.metrics import timed


@pytest.fixture(name="captured")
def fixture_captured(monkeypatch: pytest.MonkeyPatch) -> list[str]:
    lines: list[str] = []

    # Patch the explicit output sink used by logger
    monkeypatch.setattr(logger, "_print", lines.append)
    monkeypatch.setattr(logger, "_json_lines", True)
    return lines


def test_log_event_emits_valid_jsonl(captured: list[str]) -> None:
    """
    Contract:
    - log_event emits exactly one JSONL line
    - payload is serialized as-is
    - output sink is patchable
    """
    payload: dict[str, Any] = {
        "event_type": "TEST",
        "value": 123,
    }

    logger.log_event(payload)

    # Exactly one line emitted
    assert len(captured) == 1

    # Payload must be preserved exactly
    assert json.loads(captured[0]) == payload


def test_unserializable_payload_falls_back(captured: list[str]) -> None:
    logger.log_event({"ts_ms": 5, "event_type": "TEST", "value": object()})

    decoded = json.loads(captured[0])
    assert decoded["event_type"] == "LOGGER_SERIALIZATION_ERROR"
    assert decoded["ts_ms"] == 5


def test_text_format_when_json_disabled(
    captured: list[str],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    logger.configure(json_lines=False)
    try:
        logger.log_event({"event_type": "SESSION_CREATED", "identity": "u1", "n": 2})
    finally:
        monkeypatch.setattr(logger, "_json_lines", True)

    assert captured == ['SESSION_CREATED identity="u1" n=2']


def test_timed_emits_metric(captured: list[str]) -> None:
    with timed("transport_send", identity="u1", run_id=3) as extra:
        extra["message_id"] = "m-1"

    metric = json.loads(captured[0])
    assert metric["event_type"] == "METRIC_TIMER"
    assert metric["metric"] == "transport_send"
    assert metric["outcome"] == "ok"
    assert metric["identity"] == "u1"
    assert metric["run_id"] == 3
    assert metric["details"] == {"message_id": "m-1"}
    assert metric["value_ms"] >= 0


def test_timed_records_error_and_reraises(captured: list[str]) -> None:
    with pytest.raises(RuntimeError):
        with timed("transport_open"):
            raise RuntimeError("boom")

    metric = json.loads(captured[0])
    assert metric["outcome"] == "error"
    assert metric["details"]["exception"] == "RuntimeError"
