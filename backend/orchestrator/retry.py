"""
Reconnection policy helpers.

Purpose:
- Classify transport close reasons (terminal logout vs transient drop)
- Bound reconnect attempts
- Compute backoff delays
- Keep reducer pure

This module contains NO timers, NO async, NO side effects.
"""
from __future__ import annotations

from dataclasses import dataclass

from orchestrator.enums.close_reason import CloseReason

from constants import (
    LOGOUT_CLOSE_REASONS,
    RECONNECT_BACKOFF_DEFAULT,
    RECONNECT_BASE_DELAY_MS_DEFAULT,
    RECONNECT_MAX_DELAY_MS_DEFAULT,
    RECONNECT_MAX_RETRIES_DEFAULT,
)


# =============================================================================
# Policy
# =============================================================================

@dataclass(frozen=True)
class ReconnectPolicy:
    """
    Reconnect bound and backoff curve.

    max_retries:
        Reconnect attempts allowed after a transient close, counted
        from the last successful connect. 0 disables reconnecting.

    backoff:
        "fixed" waits base_delay_ms before every attempt.
        "exponential" waits base_delay_ms * 2**attempt, capped at
        max_delay_ms.
    """
    max_retries: int = RECONNECT_MAX_RETRIES_DEFAULT
    base_delay_ms: int = RECONNECT_BASE_DELAY_MS_DEFAULT
    max_delay_ms: int = RECONNECT_MAX_DELAY_MS_DEFAULT
    backoff: str = RECONNECT_BACKOFF_DEFAULT


# =============================================================================
# Retry State
# =============================================================================

@dataclass(frozen=True)
class RetryAttempt:
    """
    Immutable retry attempt counter.

    Semantics:
    - attempt == 0 represents the initial connection (no retry yet).
    - attempt >= 1 represents the Nth reconnect attempt.
    """
    attempt: int


def next_attempt(current: RetryAttempt) -> RetryAttempt:
    """Return a new RetryAttempt with attempt incremented by 1."""
    return RetryAttempt(attempt=current.attempt + 1)


def reset_attempt() -> RetryAttempt:
    """Returns a fresh retry attempt counter."""
    return RetryAttempt(attempt=0)


# =============================================================================
# Classification
# =============================================================================

def classify_close(reason: CloseReason | str | None) -> CloseReason:
    """
    Map a transport close reason onto the two outcomes the lifecycle
    distinguishes.

    Transports may report either a CloseReason or their own raw string
    (e.g. "LOGOUT", "NAVIGATION"). Unknown or missing reasons are
    transient; only an explicit logout revokes the credentials.
    """
    if isinstance(reason, CloseReason):
        return reason
    if reason is not None and reason.strip().lower() in LOGOUT_CLOSE_REASONS:
        return CloseReason.LOGGED_OUT
    return CloseReason.TRANSIENT


# =============================================================================
# Decisions
# =============================================================================

def should_retry(*, policy: ReconnectPolicy, attempt: RetryAttempt) -> bool:
    """
    Returns True if another reconnect is allowed.

    attempt = number of reconnects already performed
    """
    return attempt.attempt < policy.max_retries


def get_retry_delay_ms(*, policy: ReconnectPolicy, attempt: RetryAttempt) -> int:
    """
    Returns delay before the reconnect that follows `attempt` retries.
    """
    if policy.backoff == "fixed":
        return policy.base_delay_ms

    # Clamp the exponent so huge attempt counts cannot overflow the cap math
    exponent = min(attempt.attempt, 30)
    return min(policy.base_delay_ms * (2 ** exponent), policy.max_delay_ms)
