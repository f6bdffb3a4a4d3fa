# pylint: disable=missing-module-docstring,missing-function-docstring
from dataclasses import replace

from orchestrator.reducer import reduce, TIMER_PAIRING_EXPIRY
from orchestrator.state_dataclass import LifecyclePolicy, SessionState
from orchestrator.retry import ReconnectPolicy, RetryAttempt
from orchestrator.enums.state import State
from orchestrator.enums.close_reason import CloseReason
from orchestrator.enums.error_kind import ErrorKind

from orchestrator.events import (
    AuthFailure,
    Connected,
    DisconnectRequested,
    EventType,
    InternalFault,
    PairingArtifactReady,
    PairingChallenge,
    PairingEncodeFailed,
    PairingExpired,
    RetryReady,
    SessionReleased,
    StartRequested,
    TransportClosed,
    TransportOpenFailed,
)

from orchestrator.commands import (
    CancelPairing,
    CancelRetry,
    CancelTimer,
    CloseTransport,
    Command,
    EncodePairing,
    LogEvent,
    OpenTransport,
    ReleaseSession,
    ScheduleRetry,
    StartTimer,
)

from transport.base import ConnectionInfo


POLICY = LifecyclePolicy(
    reconnect=ReconnectPolicy(max_retries=2, base_delay_ms=100, max_delay_ms=1000),
    pairing_ttl_ms=5000,
)


# ---------------------------------------------------------------------
# Event helpers (mirror runtime construction)
# ---------------------------------------------------------------------

def start(ts_ms: int = 0) -> StartRequested:
    return StartRequested(event_type=EventType.START_REQUESTED, ts_ms=ts_ms)


def disconnect(purge: bool = True) -> DisconnectRequested:
    return DisconnectRequested(
        event_type=EventType.DISCONNECT_REQUESTED, ts_ms=0, purge_credentials=purge
    )


def challenge(run_id: int, payload: str = "ref") -> PairingChallenge:
    return PairingChallenge(
        event_type=EventType.PAIRING_CHALLENGE, ts_ms=0, run_id=run_id, payload=payload
    )


def artifact(seq: int, ts_ms: int = 1000) -> PairingArtifactReady:
    return PairingArtifactReady(
        event_type=EventType.PAIRING_ARTIFACT_READY, ts_ms=ts_ms, pairing_seq=seq, artifact="QR"
    )


def connected(run_id: int) -> Connected:
    return Connected(
        event_type=EventType.CONNECTED,
        ts_ms=0,
        run_id=run_id,
        info=ConnectionInfo(display_name="Alice", remote_address="1555"),
    )


def closed(run_id: int, reason: CloseReason, ts_ms: int = 0) -> TransportClosed:
    return TransportClosed(
        event_type=EventType.TRANSPORT_CLOSED,
        ts_ms=ts_ms,
        run_id=run_id,
        reason=reason,
        raw_reason=reason.value,
    )


def types(commands: tuple[Command, ...]) -> list[type]:
    return [type(c) for c in commands if not isinstance(c, LogEvent)]


def decisions(commands: tuple[Command, ...]) -> list[str]:
    return [c.event["decision"] for c in commands if isinstance(c, LogEvent)]


def starting() -> SessionState:
    state, _ = reduce(SessionState(identity="u1"), start(), POLICY)
    return state


def awaiting() -> SessionState:
    state, _ = reduce(starting(), challenge(run_id=1), POLICY)
    return state


def connected_state() -> SessionState:
    state, _ = reduce(starting(), connected(run_id=1), POLICY)
    return state


# ---------------------------------------------------------------------
# Start
# ---------------------------------------------------------------------

def test_start_opens_first_run() -> None:
    state, commands = reduce(SessionState(identity="u1"), start(), POLICY)

    assert state.state is State.STARTING
    assert state.run_id == 1
    assert OpenTransport(run_id=1) in commands


def test_start_while_live_is_ignored() -> None:
    live = connected_state()
    state, commands = reduce(live, start(), POLICY)

    assert state == live
    assert types(commands) == []
    assert decisions(commands) == ["ignore"]


def test_transport_event_before_start_is_ignored() -> None:
    fresh = SessionState(identity="u1")
    state, commands = reduce(fresh, connected(run_id=0), POLICY)

    assert state == fresh
    assert commands[0].event["details"]["reason"] == "not_started"


# ---------------------------------------------------------------------
# Pairing
# ---------------------------------------------------------------------

def test_challenge_moves_to_awaiting_pairing_and_encodes() -> None:
    state, commands = reduce(starting(), challenge(run_id=1, payload="abc"), POLICY)

    assert state.state is State.AWAITING_PAIRING
    assert state.pairing_artifact is None
    assert EncodePairing(pairing_seq=state.pairing_seq, payload="abc") in commands


def test_artifact_for_current_seq_is_materialized_with_expiry() -> None:
    waiting = awaiting()
    state, commands = reduce(waiting, artifact(waiting.pairing_seq, ts_ms=1000), POLICY)

    assert state.pairing_artifact == "QR"
    assert state.pairing_expires_at_ms == 6000
    assert StartTimer(
        timer_id=TIMER_PAIRING_EXPIRY, duration_ms=5000, pairing_seq=waiting.pairing_seq
    ) in commands


def test_stale_artifact_is_discarded() -> None:
    waiting = awaiting()
    state, commands = reduce(waiting, artifact(waiting.pairing_seq - 1), POLICY)

    assert state == waiting
    assert commands[0].event["details"]["reason"] == "stale_artifact_discarded"


def test_new_challenge_supersedes_artifact() -> None:
    waiting = awaiting()
    shown, _ = reduce(waiting, artifact(waiting.pairing_seq), POLICY)

    state, commands = reduce(shown, challenge(run_id=1, payload="next"), POLICY)

    assert state.state is State.AWAITING_PAIRING
    assert state.pairing_artifact is None
    assert state.pairing_seq == shown.pairing_seq + 1
    assert "pairing_challenge_replaced" in decisions(commands)

    # Late result for the first challenge
    late, _ = reduce(state, artifact(shown.pairing_seq), POLICY)
    assert late.pairing_artifact is None


def test_expiry_clears_artifact_but_keeps_waiting() -> None:
    waiting = awaiting()
    shown, _ = reduce(waiting, artifact(waiting.pairing_seq), POLICY)

    state, _ = reduce(
        shown,
        PairingExpired(event_type=EventType.PAIRING_EXPIRED, ts_ms=0, pairing_seq=shown.pairing_seq),
        POLICY,
    )

    assert state.state is State.AWAITING_PAIRING
    assert state.pairing_artifact is None
    assert state.pairing_expires_at_ms is None


def test_encode_failure_terminates_with_internal_error() -> None:
    waiting = awaiting()
    state, commands = reduce(
        waiting,
        PairingEncodeFailed(
            event_type=EventType.PAIRING_ENCODE_FAILED,
            ts_ms=0,
            pairing_seq=waiting.pairing_seq,
            reason="boom",
        ),
        POLICY,
    )

    assert state.state is State.TERMINATED
    assert state.error_kind is ErrorKind.INTERNAL
    assert ReleaseSession(purge_credentials=False) in commands


# ---------------------------------------------------------------------
# Connect
# ---------------------------------------------------------------------

def test_connect_clears_artifact_and_sets_info() -> None:
    waiting = awaiting()
    shown, _ = reduce(waiting, artifact(waiting.pairing_seq), POLICY)

    state, commands = reduce(shown, connected(run_id=1), POLICY)

    assert state.state is State.CONNECTED
    assert state.pairing_artifact is None
    assert state.connection_info == ConnectionInfo(display_name="Alice", remote_address="1555")
    assert CancelTimer(timer_id=TIMER_PAIRING_EXPIRY) in commands
    assert CancelPairing() in commands


def test_connect_resets_retry_attempt() -> None:
    retrying = replace(starting(), retry_attempt=RetryAttempt(attempt=2), last_error="x")
    state, _ = reduce(retrying, connected(run_id=1), POLICY)

    assert state.retry_attempt.attempt == 0
    assert state.last_error is None


def test_event_from_stale_run_is_ignored() -> None:
    live = replace(connected_state(), run_id=3)
    state, commands = reduce(live, closed(run_id=2, reason=CloseReason.LOGGED_OUT), POLICY)

    assert state == live
    assert commands[0].event["details"]["reason"] == "stale_run"


# ---------------------------------------------------------------------
# Close / retry
# ---------------------------------------------------------------------

def test_logout_terminates_and_purges() -> None:
    state, commands = reduce(
        connected_state(), closed(run_id=1, reason=CloseReason.LOGGED_OUT), POLICY
    )

    assert state.state is State.TERMINATED
    assert state.error_kind is None
    assert state.connection_info is None
    assert CloseTransport(run_id=1) in commands
    assert ReleaseSession(purge_credentials=True) in commands


def test_transient_close_schedules_retry() -> None:
    state, commands = reduce(
        connected_state(), closed(run_id=1, reason=CloseReason.TRANSIENT, ts_ms=500), POLICY
    )

    assert state.state is State.STARTING
    assert state.retry_pending
    assert state.retry_attempt.attempt == 1
    assert state.next_retry_at_ms == 600
    assert ScheduleRetry(attempt=1, delay_ms=100) in commands
    assert CloseTransport(run_id=1) in commands
    assert ReleaseSession not in types(commands)


def test_retry_ready_opens_new_run() -> None:
    waiting, _ = reduce(
        connected_state(), closed(run_id=1, reason=CloseReason.TRANSIENT), POLICY
    )
    state, commands = reduce(
        waiting, RetryReady(event_type=EventType.RETRY_READY, ts_ms=0, attempt=1), POLICY
    )

    assert state.state is State.STARTING
    assert state.run_id == 2
    assert not state.retry_pending
    assert OpenTransport(run_id=2) in commands


def test_transient_close_gives_up_after_max_retries() -> None:
    state = connected_state()
    for _ in range(POLICY.reconnect.max_retries):
        state, _ = reduce(state, closed(run_id=state.run_id, reason=CloseReason.TRANSIENT), POLICY)
        state, _ = reduce(
            state,
            RetryReady(
                event_type=EventType.RETRY_READY, ts_ms=0, attempt=state.retry_attempt.attempt
            ),
            POLICY,
        )

    state, commands = reduce(
        state, closed(run_id=state.run_id, reason=CloseReason.TRANSIENT), POLICY
    )

    assert state.state is State.TERMINATED
    assert state.error_kind is ErrorKind.RETRIES_EXHAUSTED
    assert ReleaseSession(purge_credentials=False) in commands


def test_transient_open_failure_is_retried() -> None:
    state, commands = reduce(
        starting(),
        TransportOpenFailed(
            event_type=EventType.TRANSPORT_OPEN_FAILED,
            ts_ms=0,
            run_id=1,
            reason="timeout",
            transient=True,
        ),
        POLICY,
    )

    assert state.retry_pending
    assert ScheduleRetry in types(commands)


def test_non_transient_open_failure_terminates() -> None:
    state, _ = reduce(
        starting(),
        TransportOpenFailed(
            event_type=EventType.TRANSPORT_OPEN_FAILED,
            ts_ms=0,
            run_id=1,
            reason="ValueError: bad",
            transient=False,
        ),
        POLICY,
    )

    assert state.state is State.TERMINATED
    assert state.error_kind is ErrorKind.INTERNAL


# ---------------------------------------------------------------------
# Auth / disconnect / faults
# ---------------------------------------------------------------------

def test_auth_failure_purges_and_never_retries() -> None:
    state, commands = reduce(
        awaiting(),
        AuthFailure(event_type=EventType.AUTH_FAILURE, ts_ms=0, run_id=1, detail="rejected"),
        POLICY,
    )

    assert state.state is State.AUTH_FAILED
    assert state.error_kind is ErrorKind.AUTH
    assert state.last_error == "rejected"
    assert ReleaseSession(purge_credentials=True) in commands
    assert ScheduleRetry not in types(commands)


def test_disconnect_cancels_everything_then_terminates_on_release() -> None:
    waiting, _ = reduce(
        connected_state(), closed(run_id=1, reason=CloseReason.TRANSIENT), POLICY
    )

    state, commands = reduce(waiting, disconnect(), POLICY)

    assert state.state is State.DISCONNECTING
    assert not state.retry_pending
    assert types(commands) == [
        CancelRetry,
        CancelPairing,
        CancelTimer,
        CloseTransport,
        ReleaseSession,
    ]

    final, _ = reduce(
        state, SessionReleased(event_type=EventType.SESSION_RELEASED, ts_ms=0), POLICY
    )
    assert final.state is State.TERMINATED


def test_internal_fault_terminates_live_session() -> None:
    state, _ = reduce(
        connected_state(),
        InternalFault(event_type=EventType.INTERNAL_FAULT, ts_ms=0, reason="boom"),
        POLICY,
    )

    assert state.state is State.TERMINATED
    assert state.error_kind is ErrorKind.INTERNAL
    assert state.last_error == "boom"


def test_terminal_state_ignores_everything() -> None:
    dead, _ = reduce(
        connected_state(), closed(run_id=1, reason=CloseReason.LOGGED_OUT), POLICY
    )

    for event in (start(), disconnect(), connected(run_id=1)):
        state, commands = reduce(dead, event, POLICY)
        assert state == dead
        assert types(commands) == []


# ---------------------------------------------------------------------
# Invariants
# ---------------------------------------------------------------------

def test_artifact_and_connection_info_never_coexist() -> None:
    waiting = awaiting()
    events = [
        artifact(waiting.pairing_seq),
        connected(run_id=1),
        closed(run_id=1, reason=CloseReason.TRANSIENT),
        RetryReady(event_type=EventType.RETRY_READY, ts_ms=0, attempt=1),
        challenge(run_id=2),
        connected(run_id=2),
    ]

    state = waiting
    for event in events:
        state, _ = reduce(state, event, POLICY)
        assert state.pairing_artifact is None or state.connection_info is None

    assert state.state is State.CONNECTED


def test_state_changed_log_is_last() -> None:
    _, commands = reduce(awaiting(), connected(run_id=1), POLICY)

    assert isinstance(commands[-1], LogEvent)
    assert commands[-1].event["decision"] == "state_changed"
    assert commands[-1].event["details"]["to_state"] == "CONNECTED"


def test_reducer_emits_logevent_with_required_fields() -> None:
    _, commands = reduce(SessionState(identity="u1"), start(ts_ms=123), POLICY)

    payload = [c for c in commands if isinstance(c, LogEvent)][0].event
    for key in ("ts_ms", "identity", "state", "event_type", "decision", "run_id", "details"):
        assert key in payload
    assert payload["ts_ms"] == 123
    assert payload["identity"] == "u1"
