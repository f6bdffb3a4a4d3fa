"""
Session registry.

Responsibilities:
- Map identity -> live MessagingSession
- Guarantee at most one live session per identity
- Create sessions (and their runtimes) on first start
- Forget sessions once their runtime released itself
- Keep the final snapshot of sessions that ended with an error (bounded)

Concurrency:
- Mutual exclusion is per identity (reference-counted asyncio.Lock)
- Operations on different identities never wait on each other
"""

from __future__ import annotations

import asyncio
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator

from orchestrator.events import EventType, StartRequested
from orchestrator.pairing import ArtifactEncoder
from orchestrator.runtime import SessionRuntime
from orchestrator.runtime_context import RuntimeExecutionContext
from orchestrator.state_dataclass import LifecyclePolicy, SessionState

from session.credentials import credential_path, stored_identities
from session.messaging_session import MessagingSession
from session.snapshot import StatusSnapshot

from transport.base import MessagingTransport

from observability.logger import log_event

from constants import OUTCOME_TOMBSTONES_MAX


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


@dataclass
class _KeyLock:
    lock: asyncio.Lock
    holders: int = 0


class SessionRegistry:
    """
    Concurrency-safe registry of sessions keyed by identity.

    The registry never mutates session state; it only creates runtimes,
    hands them the first StartRequested, and asks them to shut down.
    """

    def __init__(
        self,
        *,
        transport: MessagingTransport,
        policy: LifecyclePolicy,
        encoder: ArtifactEncoder,
        credentials_dir: Path,
        max_outcomes: int = OUTCOME_TOMBSTONES_MAX,
    ) -> None:
        self._transport = transport
        self._policy = policy
        self._encoder = encoder
        self._credentials_dir = credentials_dir
        self._max_outcomes = max_outcomes

        self._sessions: dict[str, MessagingSession] = {}
        self._outcomes: dict[str, StatusSnapshot] = {}
        self._locks: dict[str, _KeyLock] = {}

    # ------------------------------------------------------------------
    # Per-key locking
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _key_lock(self, identity: str) -> AsyncIterator[None]:
        entry = self._locks.get(identity)
        if entry is None:
            entry = self._locks[identity] = _KeyLock(lock=asyncio.Lock())
        entry.holders += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.holders -= 1
            if entry.holders == 0:
                self._locks.pop(identity, None)

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get(self, identity: str) -> MessagingSession | None:
        return self._sessions.get(identity)

    def identities(self) -> list[str]:
        return sorted(self._sessions)

    def outcome(self, identity: str) -> StatusSnapshot | None:
        """Final snapshot of a session that ended with an error, if any."""
        return self._outcomes.get(identity)

    def clear_outcome(self, identity: str) -> None:
        self._outcomes.pop(identity, None)

    def _record_outcome(self, identity: str, snapshot: StatusSnapshot) -> None:
        # Re-inserting moves the identity to the newest end
        self._outcomes.pop(identity, None)
        self._outcomes[identity] = snapshot
        while len(self._outcomes) > self._max_outcomes:
            del self._outcomes[next(iter(self._outcomes))]

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def get_or_create(self, identity: str) -> tuple[MessagingSession, bool]:
        """
        Return the live session for identity, creating and starting one
        if needed.

        The second element is True when a new session was created. On
        creation the transport open has been attempted (and its event
        sink registered) before this returns.
        """
        async with self._key_lock(identity):
            existing = self._sessions.get(identity)
            if existing is not None:
                if not existing.is_finished:
                    return existing, False
                # Ended but not yet released; let it finish leaving
                await existing.runtime.closed()
                if self._sessions.get(identity) is existing:
                    self._sessions.pop(identity, None)

            self._outcomes.pop(identity, None)
            session = self._build(identity)
            self._sessions[identity] = session

            log_event({
                "ts_ms": _now_ms(),
                "event_type": "SESSION_CREATED",
                "identity": identity,
                "credential_path": str(session.credential_path),
            })

            await session.runtime.dispatch(
                StartRequested(event_type=EventType.START_REQUESTED, ts_ms=_now_ms())
            )
            return session, True

    def _build(self, identity: str) -> MessagingSession:
        path = credential_path(self._credentials_dir, identity)
        runtime = SessionRuntime(
            context=RuntimeExecutionContext(
                identity=identity,
                credential_path=path,
                transport=self._transport,
                encoder=self._encoder,
                on_released=lambda rt, final: self.discard(identity, rt, final),
            ),
            policy=self._policy,
        )
        return MessagingSession(identity=identity, credential_path=path, runtime=runtime)

    # ------------------------------------------------------------------
    # Removal
    # ------------------------------------------------------------------

    def discard(
        self,
        identity: str,
        runtime: SessionRuntime,
        final_state: SessionState,
    ) -> None:
        """
        Forget a session whose runtime released itself.

        Only removes the entry if it still belongs to that runtime, so a
        late release can never evict a newer session.
        """
        current = self._sessions.get(identity)
        if current is not None and current.runtime is runtime:
            self._sessions.pop(identity, None)

        if final_state.error_kind is not None:
            self._record_outcome(identity, StatusSnapshot.from_state(final_state))

        log_event({
            "ts_ms": _now_ms(),
            "event_type": "SESSION_REMOVED",
            "identity": identity,
            "final_state": final_state.state.value,
            "error_kind": final_state.error_kind.value if final_state.error_kind else None,
            "last_error": final_state.last_error,
        })

    async def remove(self, identity: str, *, purge_credentials: bool = True) -> bool:
        """
        Disconnect and forget the session for identity.

        Returns True if a session existed. Any error tombstone is cleared.
        """
        existing = self._sessions.get(identity)
        if existing is not None:
            # Do not let a slow handshake hold the key lock
            existing.runtime.abort_open()

        async with self._key_lock(identity):
            session = self._sessions.get(identity)
            if session is not None:
                await session.runtime.shutdown(purge_credentials=purge_credentials)
                if self._sessions.get(identity) is session:
                    self._sessions.pop(identity, None)
            self._outcomes.pop(identity, None)
            return session is not None

    # ------------------------------------------------------------------
    # Process lifecycle
    # ------------------------------------------------------------------

    async def shutdown_all(self) -> None:
        """Close every session, keeping stored credentials."""
        identities = self.identities()
        await asyncio.gather(
            *(self.remove(identity, purge_credentials=False) for identity in identities),
            return_exceptions=True,
        )
        log_event({
            "ts_ms": _now_ms(),
            "event_type": "REGISTRY_SHUTDOWN",
            "sessions": len(identities),
        })

    async def restore_existing(self) -> list[str]:
        """Start a session for every identity with stored credentials."""
        restored: list[str] = []
        for identity in stored_identities(self._credentials_dir):
            try:
                await self.get_or_create(identity)
            except Exception as exc:  # pylint: disable=broad-exception-caught
                log_event({
                    "ts_ms": _now_ms(),
                    "event_type": "SESSION_RESTORE_FAILED",
                    "identity": identity,
                    "exception": type(exc).__name__,
                    "message": str(exc),
                })
                continue
            restored.append(identity)

        log_event({
            "ts_ms": _now_ms(),
            "event_type": "SESSIONS_RESTORED",
            "identities": restored,
        })
        return restored
