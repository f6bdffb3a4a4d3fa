"""
Session gateway (status/command façade).

Responsibilities:
- Validate caller input
- Translate caller intents (start, send, disconnect) into registry and
  runtime calls
- Serve status snapshots (pure reads)
- Stream snapshot changes to push-channel watchers

NOT responsible for:
- Lifecycle decisions (reducer)
- Side effects on the transport (runtime)
- HTTP concerns (server.routes)
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import AsyncIterator, Sequence, TYPE_CHECKING

from orchestrator.enums.state import LIVE_STATES, TERMINAL_STATES, State
from orchestrator.pairing import ENCODERS
from orchestrator.retry import ReconnectPolicy
from orchestrator.state_dataclass import LifecyclePolicy, SessionState

from session.credentials import validate_identity
from session.errors import PreconditionError, ValidationError
from session.registry import SessionRegistry
from session.snapshot import StatusSnapshot

from transport.base import MediaAttachment, MessagingTransport

from observability.logger import log_event

if TYPE_CHECKING:
    from config import AppConfig


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------

def _now_ms() -> int:
    return time.time_ns() // 1_000_000


def _start_settled(state: SessionState) -> bool:
    """True once a start has produced something a caller can act on."""
    return (
        state.pairing_artifact is not None
        or state.state is State.CONNECTED
        or state.state not in LIVE_STATES
    )


def policy_from_config(config: AppConfig) -> LifecyclePolicy:
    return LifecyclePolicy(
        reconnect=ReconnectPolicy(
            max_retries=config.reconnect_max_retries,
            base_delay_ms=config.reconnect_base_delay_ms,
            max_delay_ms=config.reconnect_max_delay_ms,
            backoff=config.reconnect_backoff,
        ),
        pairing_ttl_ms=int(config.pairing_artifact_ttl_s * 1000),
    )


def build_registry(*, config: AppConfig, transport: MessagingTransport) -> SessionRegistry:
    """Wire a registry from configuration and a transport instance."""
    return SessionRegistry(
        transport=transport,
        policy=policy_from_config(config),
        encoder=ENCODERS[config.pairing_artifact_format],
        credentials_dir=config.credentials_dir,
    )


# ------------------------------------------------------------------
# Results
# ------------------------------------------------------------------

@dataclass(frozen=True)
class StartResult:
    """
    snapshot:
        State after the start request was handled

    created:
        True when this call created the session
    """
    snapshot: StatusSnapshot
    created: bool


@dataclass(frozen=True)
class SendResult:
    message_ids: tuple[str, ...]


# ------------------------------------------------------------------
# SessionGateway
# ------------------------------------------------------------------

class SessionGateway:
    """Caller-facing entry point for every identity's session."""

    def __init__(self, *, registry: SessionRegistry, config: AppConfig) -> None:
        self._registry = registry
        self._config = config

    @property
    def registry(self) -> SessionRegistry:
        return self._registry

    # ------------------------------------------------------------------
    # start
    # ------------------------------------------------------------------

    async def start(self, identity: str | None) -> StartResult:
        """
        Ensure a live session exists for identity.

        Idempotent: a live session is returned as-is and no new transport
        handle is opened. In "wait" start mode the call blocks until a
        pairing artifact exists, the session connects, or it ends, bounded
        by start_wait_timeout_s.
        """
        identity = validate_identity(identity)

        session = self._registry.get(identity)
        created = False
        if session is None or session.is_finished:
            session, created = await self._registry.get_or_create(identity)

        if self._config.start_mode == "wait" and not _start_settled(session.runtime.state):
            settled = await session.runtime.wait_until(
                _start_settled, self._config.start_wait_timeout_s
            )
            if not settled:
                log_event({
                    "ts_ms": _now_ms(),
                    "event_type": "START_WAIT_TIMEOUT",
                    "identity": identity,
                    "timeout_s": self._config.start_wait_timeout_s,
                    **session.log_context(),
                })

        snapshot = session.snapshot()
        log_event({
            "ts_ms": _now_ms(),
            "event_type": "START_HANDLED",
            "identity": identity,
            "created": created,
            "state": snapshot.state.value,
        })
        return StartResult(snapshot=snapshot, created=created)

    # ------------------------------------------------------------------
    # status
    # ------------------------------------------------------------------

    def status(self, identity: str | None) -> StatusSnapshot:
        """
        Current snapshot for identity.

        Unknown identities report DISCONNECTED, unless their last session
        ended with an error, in which case that final snapshot is returned.
        """
        identity = validate_identity(identity)

        session = self._registry.get(identity)
        if session is not None:
            return session.snapshot()

        outcome = self._registry.outcome(identity)
        if outcome is not None:
            return outcome
        return StatusSnapshot.disconnected(identity)

    # ------------------------------------------------------------------
    # send_message
    # ------------------------------------------------------------------

    async def send_message(
        self,
        identity: str | None,
        *,
        recipient: str | None,
        text: str | None = "",
        attachments: Sequence[MediaAttachment] = (),
    ) -> SendResult:
        """
        Relay an outbound message through the identity's transport.

        Raises:
            ValidationError for bad input.
            PreconditionError if the session is not CONNECTED.
            TransientTransportError / TerminalAuthError / InternalError
            as surfaced by the runtime.
        """
        identity = validate_identity(identity)

        if recipient is None or not str(recipient).strip():
            raise ValidationError("Missing recipient.")
        recipient = str(recipient).strip()
        text = text or ""
        if not attachments and not text.strip():
            raise ValidationError("Missing message content.")

        session = self._registry.get(identity)
        if session is None:
            state = self.status(identity).state
            raise PreconditionError(
                f"No session for {identity} (state: {state.value}).",
                state=state,
            )

        message_ids = await session.runtime.send_message(
            recipient=recipient,
            text=text,
            attachments=attachments,
        )

        log_event({
            "ts_ms": _now_ms(),
            "event_type": "MESSAGE_SENT",
            "identity": identity,
            "recipient": recipient,
            "message_ids": message_ids,
        })
        return SendResult(message_ids=tuple(message_ids))

    # ------------------------------------------------------------------
    # disconnect
    # ------------------------------------------------------------------

    async def disconnect(self, identity: str | None) -> StatusSnapshot:
        """
        Tear down the identity's session and purge its credentials.

        Idempotent: succeeds even if no session exists.
        """
        identity = validate_identity(identity)

        existed = await self._registry.remove(identity, purge_credentials=True)
        log_event({
            "ts_ms": _now_ms(),
            "event_type": "DISCONNECT_HANDLED",
            "identity": identity,
            "existed": existed,
        })
        return StatusSnapshot.terminated(identity)

    # ------------------------------------------------------------------
    # watch
    # ------------------------------------------------------------------

    async def watch(self, identity: str | None) -> AsyncIterator[StatusSnapshot]:
        """
        Yield the current snapshot, then every change until the session
        ends. Identities without a session yield a single snapshot.
        """
        identity = validate_identity(identity)

        session = self._registry.get(identity)
        if session is None:
            yield self.status(identity)
            return

        runtime = session.runtime
        queue = runtime.subscribe()
        try:
            snapshot = session.snapshot()
            yield snapshot
            while snapshot.state not in TERMINAL_STATES:
                snapshot = StatusSnapshot.from_state(await queue.get())
                yield snapshot
        finally:
            runtime.unsubscribe(queue)
