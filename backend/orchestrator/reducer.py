"""
Pure session lifecycle reducer.

(state, event, policy) -> (new_state, commands)

Rules:
- Pure: no side effects, no IO, no clocks.
- Deterministic: output depends only on inputs.
- Total: every (state, event) pair is handled or explicitly ignored (logged).
"""

from __future__ import annotations

from dataclasses import replace
from typing import Any

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
from orchestrator.enums.close_reason import CloseReason
from orchestrator.enums.error_kind import ErrorKind
from orchestrator.enums.state import LIVE_STATES, TERMINAL_STATES, State
from orchestrator.events import (
    AuthFailure,
    Connected,
    DisconnectRequested,
    Event,
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
    TransportScopedEvent,
)
from orchestrator.retry import (
    get_retry_delay_ms,
    next_attempt,
    reset_attempt,
    should_retry,
)
from orchestrator.state_dataclass import LifecyclePolicy, SessionState


# =============================================================================
# Timer IDs
# =============================================================================

TIMER_PAIRING_EXPIRY = "pairing_expiry"

DEFAULT_POLICY = LifecyclePolicy()

Reduction = tuple[SessionState, tuple[Command, ...]]


# =============================================================================
# Small helpers
# =============================================================================

def _log(
    state: SessionState,
    event: Event,
    decision: str,
    details: dict[str, Any] | None = None,
) -> LogEvent:
    return LogEvent(
        event={
            "ts_ms": event.ts_ms,
            "identity": state.identity,
            "state": state.state.value,
            "event_type": event.event_type.value,
            "decision": decision,
            "run_id": state.run_id,
            "pairing_seq": state.pairing_seq,
            "retry_attempt": state.retry_attempt.attempt,
            "details": details or {},
        }
    )


def _logs_last(commands: tuple[Command, ...]) -> tuple[Command, ...]:
    non_logs: list[Command] = []
    logs: list[Command] = []
    state_change_logs: list[Command] = []

    for command in commands:
        if isinstance(command, LogEvent):
            if command.event.get("decision") == "state_changed":
                state_change_logs.append(command)
            else:
                logs.append(command)
        else:
            non_logs.append(command)

    return tuple(non_logs + logs + state_change_logs)


def _ignore(state: SessionState, event: Event, reason: str) -> Reduction:
    return state, (_log(state, event, "ignore", {"reason": reason}),)


def _state_changed(
    old: SessionState,
    new: SessionState,
    event: Event,
    source: str,
) -> LogEvent:
    return _log(
        new,
        event,
        "state_changed",
        {
            "from_state": old.state.value,
            "to_state": new.state.value,
            "source": source,
        },
    )


def _cleared(state: SessionState) -> SessionState:
    """Drop pairing and connection data; invalidates in-flight encodings."""
    return replace(
        state,
        pairing_seq=state.pairing_seq + 1,
        pairing_artifact=None,
        pairing_expires_at_ms=None,
        connection_info=None,
        retry_pending=False,
        next_retry_at_ms=None,
    )


def _open_run(state: SessionState, event: Event, source: str) -> Reduction:
    """Enter STARTING with a fresh transport run."""
    new_state = replace(
        state,
        state=State.STARTING,
        run_id=state.run_id + 1,
        retry_pending=False,
        next_retry_at_ms=None,
    )
    return new_state, _logs_last((
        OpenTransport(run_id=new_state.run_id),
        _log(new_state, event, source, {"run_id": new_state.run_id}),
        _state_changed(state, new_state, event, source),
    ))


def _teardown_commands(state: SessionState, *, purge: bool) -> tuple[Command, ...]:
    return (
        CancelRetry(),
        CancelPairing(),
        CancelTimer(timer_id=TIMER_PAIRING_EXPIRY),
        CloseTransport(run_id=state.run_id),
        ReleaseSession(purge_credentials=purge),
    )


def _terminate(
    state: SessionState,
    event: Event,
    *,
    to_state: State,
    reason: str,
    error_kind: ErrorKind | None,
    purge: bool,
    source: str,
) -> Reduction:
    """
    Leave the live lifecycle for good.

    error_kind=None records a clean end (e.g. logout); anything else is
    surfaced to callers as an error outcome.
    """
    new_state = replace(
        _cleared(state),
        state=to_state,
        last_error=reason if error_kind is not None else None,
        error_kind=error_kind,
    )
    return new_state, _logs_last(
        _teardown_commands(state, purge=purge)
        + (
            _log(
                new_state,
                event,
                source,
                {
                    "reason": reason,
                    "error_kind": error_kind.value if error_kind else None,
                    "purge_credentials": purge,
                },
            ),
            _state_changed(state, new_state, event, source),
        )
    )


def _handle_transient(
    state: SessionState,
    event: Event,
    reason: str,
    policy: LifecyclePolicy,
) -> Reduction:
    """
    Transient failure: close the current run and either schedule a
    reconnect or give up once the bound is reached.
    """
    if not should_retry(policy=policy.reconnect, attempt=state.retry_attempt):
        return _terminate(
            state,
            event,
            to_state=State.TERMINATED,
            reason=(
                f"reconnect attempts exhausted after "
                f"{state.retry_attempt.attempt} retries: {reason}"
            ),
            error_kind=ErrorKind.RETRIES_EXHAUSTED,
            purge=False,
            source="retries_exhausted",
        )

    delay_ms = get_retry_delay_ms(policy=policy.reconnect, attempt=state.retry_attempt)
    attempt = next_attempt(state.retry_attempt)

    new_state = replace(
        _cleared(state),
        state=State.STARTING,
        retry_attempt=attempt,
        retry_pending=True,
        next_retry_at_ms=event.ts_ms + delay_ms,
        last_error=reason,
    )
    return new_state, _logs_last((
        CloseTransport(run_id=state.run_id),
        CancelPairing(),
        CancelTimer(timer_id=TIMER_PAIRING_EXPIRY),
        ScheduleRetry(attempt=attempt.attempt, delay_ms=delay_ms),
        _log(
            new_state,
            event,
            "reconnect_scheduled",
            {"attempt": attempt.attempt, "delay_ms": delay_ms, "reason": reason},
        ),
        _state_changed(state, new_state, event, "transient_close"),
    ))


# =============================================================================
# Reducer
# =============================================================================

def reduce(
    state: SessionState,
    event: Event,
    policy: LifecyclePolicy = DEFAULT_POLICY,
) -> Reduction:
    """
    Pure reducer for the session lifecycle state machine.

    Given the current session state and a single event, returns:
    - the next state
    - a tuple of commands describing required side effects

    Properties:
    - Deterministic: no IO, clocks, or randomness
    - Total: every (state, event) pair is handled or explicitly ignored
    - Version-safe: ignores transport events with stale run IDs and
      pairing events with stale pairing sequence numbers
    """
    # ------------------------------------------------------------------
    # Release / fault handling (valid from any state)
    # ------------------------------------------------------------------
    if isinstance(event, SessionReleased):
        if state.state is State.DISCONNECTING:
            new_state = replace(state, state=State.TERMINATED)
            return new_state, (
                _state_changed(state, new_state, event, "disconnect_complete"),
            )
        return state, (_log(state, event, "session_released"),)

    if isinstance(event, InternalFault):
        if state.state in TERMINAL_STATES or state.state is State.DISCONNECTING:
            return state, (
                _log(state, event, "fault_during_teardown", {"reason": event.reason}),
            )
        return _terminate(
            state,
            event,
            to_state=State.TERMINATED,
            reason=event.reason,
            error_kind=ErrorKind.INTERNAL,
            purge=False,
            source="internal_fault",
        )

    # ------------------------------------------------------------------
    # Terminal gating
    # ------------------------------------------------------------------
    if state.state in TERMINAL_STATES:
        return _ignore(state, event, "terminal")

    # ------------------------------------------------------------------
    # Explicit disconnect (any non-terminal state)
    # ------------------------------------------------------------------
    if isinstance(event, DisconnectRequested):
        if state.state is State.DISCONNECTING:
            return _ignore(state, event, "already_disconnecting")

        new_state = replace(_cleared(state), state=State.DISCONNECTING)
        return new_state, _logs_last(
            _teardown_commands(state, purge=event.purge_credentials)
            + (
                _log(
                    new_state,
                    event,
                    "disconnect_requested",
                    {"purge_credentials": event.purge_credentials},
                ),
                _state_changed(state, new_state, event, "disconnect"),
            )
        )

    if state.state is State.DISCONNECTING:
        return _ignore(state, event, "disconnecting")

    # ------------------------------------------------------------------
    # UNINITIALIZED
    # ------------------------------------------------------------------
    if isinstance(event, StartRequested):
        if state.state is State.UNINITIALIZED:
            return _open_run(state, event, "start")
        return _ignore(state, event, "already_active")

    if state.state is State.UNINITIALIZED:
        return _ignore(state, event, "not_started")

    # From here on the session is live: STARTING / AWAITING_PAIRING / CONNECTED
    assert state.state in LIVE_STATES

    # ------------------------------------------------------------------
    # Reconnect timer
    # ------------------------------------------------------------------
    if isinstance(event, RetryReady):
        if (
            state.state is State.STARTING
            and state.retry_pending
            and event.attempt == state.retry_attempt.attempt
        ):
            return _open_run(state, event, "reconnect")
        return _ignore(state, event, "stale_retry")

    # ------------------------------------------------------------------
    # Pairing coordinator results (scoped by pairing_seq)
    # ------------------------------------------------------------------
    if isinstance(event, PairingArtifactReady):
        if (
            state.state is not State.AWAITING_PAIRING
            or event.pairing_seq != state.pairing_seq
        ):
            return _ignore(state, event, "stale_artifact_discarded")
        if state.pairing_artifact is not None:
            return _ignore(state, event, "artifact_already_materialized")

        new_state = replace(
            state,
            pairing_artifact=event.artifact,
            pairing_expires_at_ms=event.ts_ms + policy.pairing_ttl_ms,
        )
        return new_state, _logs_last((
            StartTimer(
                timer_id=TIMER_PAIRING_EXPIRY,
                duration_ms=policy.pairing_ttl_ms,
                pairing_seq=event.pairing_seq,
            ),
            _log(
                new_state,
                event,
                "pairing_artifact_ready",
                {"expires_at_ms": new_state.pairing_expires_at_ms},
            ),
        ))

    if isinstance(event, PairingExpired):
        if (
            state.state is not State.AWAITING_PAIRING
            or event.pairing_seq != state.pairing_seq
            or state.pairing_artifact is None
        ):
            return _ignore(state, event, "stale_expiry")
        new_state = replace(state, pairing_artifact=None, pairing_expires_at_ms=None)
        return new_state, (_log(new_state, event, "pairing_artifact_expired"),)

    if isinstance(event, PairingEncodeFailed):
        if (
            state.state is not State.AWAITING_PAIRING
            or event.pairing_seq != state.pairing_seq
        ):
            return _ignore(state, event, "stale_encode_failure")
        return _terminate(
            state,
            event,
            to_state=State.TERMINATED,
            reason=f"pairing artifact encoding failed: {event.reason}",
            error_kind=ErrorKind.INTERNAL,
            purge=False,
            source="pairing_encode_failed",
        )

    # ------------------------------------------------------------------
    # Transport events (scoped by run_id)
    # ------------------------------------------------------------------
    if isinstance(event, TransportScopedEvent):
        if event.run_id != state.run_id:
            return _ignore(state, event, "stale_run")
        if state.retry_pending:
            return _ignore(state, event, "run_already_closed")

    if isinstance(event, TransportOpenFailed):
        if event.transient:
            return _handle_transient(
                state, event, f"transport open failed: {event.reason}", policy
            )
        return _terminate(
            state,
            event,
            to_state=State.TERMINATED,
            reason=f"transport open failed: {event.reason}",
            error_kind=ErrorKind.INTERNAL,
            purge=False,
            source="open_failed",
        )

    if isinstance(event, PairingChallenge):
        if state.state is State.CONNECTED:
            return _ignore(state, event, "already_connected")

        new_state = replace(
            state,
            state=State.AWAITING_PAIRING,
            pairing_seq=state.pairing_seq + 1,
            pairing_artifact=None,
            pairing_expires_at_ms=None,
        )
        cmds: tuple[Command, ...] = (
            CancelTimer(timer_id=TIMER_PAIRING_EXPIRY),
            EncodePairing(pairing_seq=new_state.pairing_seq, payload=event.payload),
        )
        if state.state is State.AWAITING_PAIRING:
            return new_state, _logs_last(cmds + (
                _log(new_state, event, "pairing_challenge_replaced"),
            ))
        return new_state, _logs_last(cmds + (
            _log(new_state, event, "pairing_challenge"),
            _state_changed(state, new_state, event, "pairing_challenge"),
        ))

    if isinstance(event, Connected):
        if state.state is State.CONNECTED:
            new_state = replace(state, connection_info=event.info)
            return new_state, (_log(new_state, event, "connection_info_refreshed"),)

        new_state = replace(
            _cleared(state),
            state=State.CONNECTED,
            connection_info=event.info,
            retry_attempt=reset_attempt(),
            last_error=None,
            error_kind=None,
        )
        return new_state, _logs_last((
            CancelTimer(timer_id=TIMER_PAIRING_EXPIRY),
            CancelPairing(),
            _log(new_state, event, "connected", event.info.to_dict()),
            _state_changed(state, new_state, event, "connected"),
        ))

    if isinstance(event, TransportClosed):
        if event.reason is CloseReason.LOGGED_OUT:
            return _terminate(
                state,
                event,
                to_state=State.TERMINATED,
                reason=event.raw_reason or CloseReason.LOGGED_OUT.value,
                error_kind=None,
                purge=True,
                source="logged_out",
            )
        return _handle_transient(
            state,
            event,
            f"transport closed: {event.raw_reason or CloseReason.TRANSIENT.value}",
            policy,
        )

    if isinstance(event, AuthFailure):
        return _terminate(
            state,
            event,
            to_state=State.AUTH_FAILED,
            reason=event.detail or "authentication failure",
            error_kind=ErrorKind.AUTH,
            purge=True,
            source="auth_failure",
        )

    return _ignore(state, event, "unhandled")
