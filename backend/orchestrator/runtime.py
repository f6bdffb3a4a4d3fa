"""
Runtime execution shell for a single messaging session.

Responsibilities:
- Own the authoritative session state
- Serialize every event for the session through one inbox
- Call the pure reducer
- Execute commands with side effects (transport, pairing, timers,
  credential purge, release)
- Convert transport callbacks and timer expiry into events
- Relay outbound messages while CONNECTED

Non-responsibilities:
- Lifecycle decisions (reducer)
- Registry membership (release hook)
- Input validation (façade)
"""

from __future__ import annotations

import asyncio
import functools
import time
from collections import deque
from dataclasses import replace
from typing import Any, Callable, Sequence

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
from orchestrator.enums.error_kind import ErrorKind
from orchestrator.enums.state import LIVE_STATES, TERMINAL_STATES, State
from orchestrator.events import (
    AuthFailure,
    Connected,
    DisconnectRequested,
    Event,
    EventType,
    InternalFault,
    PairingChallenge,
    PairingExpired,
    RetryReady,
    SessionReleased,
    TransportClosed,
    TransportOpenFailed,
)
from orchestrator.pairing import PairingCoordinator
from orchestrator.reducer import reduce
from orchestrator.retry import classify_close
from orchestrator.state_dataclass import LifecyclePolicy, SessionState
from orchestrator.runtime_context import RuntimeExecutionContext

from transport.base import (
    AuthenticationFailed,
    MediaAttachment,
    MessageContent,
    PairingChallengeReceived,
    TransportEvent,
    TransportReady,
)
from transport.base import TransportClosed as TransportClosedNotice

from session.errors import (
    InternalError,
    PreconditionError,
    SessionError,
    TransientTransportError,
)

from observability.logger import log_event
from observability.metrics import timed

from constants import STATUS_WATCH_QUEUE_MAX


TIMER_RECONNECT = "reconnect"


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


class SessionRuntime:
    """
    Runtime execution boundary for a single identity.

    Architectural role:
    Runtime is the bridge between the pure lifecycle layer
    (reducer + immutable state) and the imperative world
    (transport, timers, credential storage).

    Guarantees:
    - Events are applied strictly in arrival order, one at a time, by a
      single worker task (the session's only dispatch point)
    - Reducer is called exactly once per event
    - State is swapped before any side effect of that event executes
    - Readers always see one complete SessionState
    - Follow-up events produced by command execution are applied before
      the next inbox event
    - Failures inside event handling become InternalFault events; they
      never escape the worker
    """

    def __init__(
        self,
        *,
        context: RuntimeExecutionContext,
        policy: LifecyclePolicy,
        initial_state: SessionState | None = None,
    ) -> None:
        self._ctx = context
        self._policy = policy
        self._state = initial_state or SessionState(identity=context.identity)

        self._inbox: asyncio.Queue[tuple[Event, asyncio.Future[SessionState] | None]] = (
            asyncio.Queue()
        )
        self._timers: dict[str, asyncio.Task[None]] = {}

        # Transport handle is owned exclusively by this runtime
        self._handle: Any = None
        self._handle_run_id: int = 0
        self._open_task: asyncio.Task[Any] | None = None
        # Set by abort_open(); no open may start once it is set
        self._open_aborted = False

        self._pairing = PairingCoordinator(
            identity=context.identity,
            encoder=context.encoder,
            post_event=self.post_event,
        )

        self._changed = asyncio.Condition()
        self._watchers: set[asyncio.Queue[SessionState]] = set()

        self._released = asyncio.Event()
        self._closed = False
        self._worker = asyncio.create_task(
            self._run(), name=f"session-runtime:{context.identity}"
        )

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def identity(self) -> str:
        return self._ctx.identity

    @property
    def state(self) -> SessionState:
        """
        Return the current immutable session state.

        Consumers must never modify this state directly.
        """
        return self._state

    @property
    def is_finished(self) -> bool:
        """True once the session is tearing down or has ended."""
        return (
            self._closed
            or self._state.state in TERMINAL_STATES
            or self._state.state is State.DISCONNECTING
        )

    # ------------------------------------------------------------------
    # Event entry points
    # ------------------------------------------------------------------

    def post_event(self, event: Event) -> None:
        """
        Enqueue an event without waiting for it to be applied.

        Used by transport callbacks, timers and the pairing coordinator.
        Events posted after the runtime closed are dropped.
        """
        if self._closed:
            log_event({
                "ts_ms": _now_ms(),
                "event_type": "EVENT_AFTER_CLOSE",
                "identity": self.identity,
                "dropped_event": event.event_type.value,
            })
            return
        self._inbox.put_nowait((event, None))

    async def dispatch(self, event: Event) -> SessionState:
        """
        Enqueue an event and wait until it (and every follow-up event it
        caused) has been applied. Returns the resulting state.
        """
        if self._closed:
            return self._state
        future: asyncio.Future[SessionState] = asyncio.get_running_loop().create_future()
        self._inbox.put_nowait((event, future))
        return await future

    def abort_open(self) -> None:
        """
        Interrupt an in-flight transport.open().

        Called before a disconnect is dispatched so teardown does not
        wait for a slow handshake. Also prevents an open that has been
        requested but not yet started.
        """
        self._open_aborted = True
        task = self._open_task
        if task is not None and not task.done():
            task.cancel()

    async def shutdown(self, *, purge_credentials: bool = True) -> SessionState:
        """
        Disconnect and wait for the runtime to release everything it owns.

        Idempotent: a session that already ended returns its final state.
        """
        self.abort_open()
        await self.dispatch(
            DisconnectRequested(
                event_type=EventType.DISCONNECT_REQUESTED,
                ts_ms=_now_ms(),
                purge_credentials=purge_credentials,
            )
        )
        await self.closed()
        return self._state

    async def closed(self) -> None:
        """Wait until the worker has exited."""
        await asyncio.gather(self._worker, return_exceptions=True)

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    async def wait_until(
        self,
        predicate: Callable[[SessionState], bool],
        timeout_s: float,
    ) -> bool:
        """
        Wait until predicate(state) holds or timeout_s elapses.

        Returns True if the predicate was satisfied.
        """
        async def _wait() -> None:
            async with self._changed:
                await self._changed.wait_for(lambda: predicate(self._state))

        try:
            await asyncio.wait_for(_wait(), timeout=timeout_s)
        except asyncio.TimeoutError:
            return predicate(self._state)
        return True

    def subscribe(self) -> asyncio.Queue[SessionState]:
        """
        Register a queue that receives every new state.

        Slow consumers lose the oldest states, never the newest.
        """
        queue: asyncio.Queue[SessionState] = asyncio.Queue(maxsize=STATUS_WATCH_QUEUE_MAX)
        self._watchers.add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[SessionState]) -> None:
        self._watchers.discard(queue)

    async def _publish(self) -> None:
        state = self._state
        for queue in self._watchers:
            if queue.full():
                queue.get_nowait()
            queue.put_nowait(state)
        async with self._changed:
            self._changed.notify_all()

    # ------------------------------------------------------------------
    # Outbound messages
    # ------------------------------------------------------------------

    async def send_message(
        self,
        *,
        recipient: str,
        text: str,
        attachments: Sequence[MediaAttachment] = (),
    ) -> list[str]:
        """
        Relay an outbound message through the transport.

        With attachments, one transport send is made per valid
        attachment and the text is used as the caption of the first.
        Invalid attachments are skipped.

        Raises:
            PreconditionError if the session is not CONNECTED.
            TransientTransportError / TerminalAuthError as raised by
            the transport.
            InternalError for any other transport failure, or if no
            attachment could be sent.
        """
        if not attachments:
            return [await self._send_one(recipient, MessageContent(text=text))]

        message_ids: list[str] = []
        for index, attachment in enumerate(attachments):
            if not attachment.is_valid():
                log_event({
                    "ts_ms": _now_ms(),
                    "event_type": "ATTACHMENT_SKIPPED",
                    "identity": self.identity,
                    "index": index,
                    "reason": "missing data or mimetype",
                })
                continue

            content = MessageContent(
                attachment=attachment,
                caption=text if not message_ids else None,
            )
            message_ids.append(await self._send_one(recipient, content))

        if not message_ids:
            raise InternalError("No media files could be sent successfully.")
        return message_ids

    async def _send_one(self, recipient: str, content: MessageContent) -> str:
        state = self._state
        handle = self._handle
        if state.state is not State.CONNECTED or handle is None:
            raise PreconditionError(
                f"Session for {self.identity} is not connected "
                f"(state: {state.state.value}).",
                state=state.state,
            )

        with timed(
            "transport_send",
            identity=self.identity,
            run_id=self._handle_run_id,
            details={"recipient": recipient, "media": content.attachment is not None},
        ) as metric:
            try:
                message_id = await self._ctx.transport.send(handle, recipient, content)
            except SessionError:
                raise
            except Exception as exc:
                raise InternalError(
                    f"Transport error while sending: {type(exc).__name__}: {exc}"
                ) from exc
            metric["message_id"] = message_id
        return message_id

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    async def _run(self) -> None:
        try:
            while not self._released.is_set():
                event, future = await self._inbox.get()
                try:
                    await self._apply(event)
                except Exception as exc:  # pylint: disable=broad-exception-caught
                    await self._apply_fault(event, exc)
                finally:
                    if future is not None and not future.done():
                        future.set_result(self._state)
        finally:
            self._closed = True
            await self._teardown_leftovers()
            # Callers waiting on events that will never be applied
            while not self._inbox.empty():
                _, future = self._inbox.get_nowait()
                if future is not None and not future.done():
                    future.set_result(self._state)
            async with self._changed:
                self._changed.notify_all()

    async def _apply(self, event: Event) -> None:
        """
        Process a single event through the lifecycle pipeline.

        Processing steps:
        1. Pass the current state and event to the pure reducer
        2. Atomically swap in the new state
        3. Execute all emitted commands sequentially
        4. Apply follow-up events produced by those commands
        """
        pending: deque[Event] = deque([event])

        while pending:
            current = pending.popleft()
            prev = self._state
            new_state, commands = reduce(prev, current, self._policy)
            self._state = new_state
            if new_state != prev:
                await self._publish()

            for cmd in commands:
                try:
                    await self._execute_command(cmd, pending)
                except Exception as exc:  # pylint: disable=broad-exception-caught
                    log_event({
                        "ts_ms": _now_ms(),
                        "event_type": "COMMAND_FAILED",
                        "identity": self.identity,
                        "command_type": cmd.command_type.value,
                        "exception": type(exc).__name__,
                        "message": str(exc),
                    })
                    pending.append(
                        InternalFault(
                            event_type=EventType.INTERNAL_FAULT,
                            ts_ms=_now_ms(),
                            reason=(
                                f"{cmd.command_type.value} failed: "
                                f"{type(exc).__name__}: {exc}"
                            ),
                        )
                    )

    async def _apply_fault(self, event: Event, exc: Exception) -> None:
        log_event({
            "ts_ms": _now_ms(),
            "event_type": "EVENT_HANDLING_FAILED",
            "identity": self.identity,
            "failed_event": event.event_type.value,
            "exception": type(exc).__name__,
            "message": str(exc),
        })
        try:
            await self._apply(
                InternalFault(
                    event_type=EventType.INTERNAL_FAULT,
                    ts_ms=_now_ms(),
                    reason=f"{event.event_type.value} handling failed: {exc}",
                )
            )
        except Exception as nested:  # pylint: disable=broad-exception-caught
            log_event({
                "ts_ms": _now_ms(),
                "event_type": "FAULT_HANDLING_FAILED",
                "identity": self.identity,
                "exception": type(nested).__name__,
                "message": str(nested),
            })
            # The reducer could not end the session; end it here so
            # watchers and the registry still see a final state
            if self._state.state not in TERMINAL_STATES:
                self._state = replace(
                    self._state,
                    state=State.TERMINATED,
                    error_kind=ErrorKind.INTERNAL,
                    last_error=f"{event.event_type.value} handling failed: {exc}",
                    retry_pending=False,
                    next_retry_at_ms=None,
                )
                await self._publish()
            await self._release(purge=False)

    # ------------------------------------------------------------------
    # Command execution (side effects)
    # ------------------------------------------------------------------

    async def _execute_command(self, cmd: Command, pending: deque[Event]) -> None:
        """Execute a single command with side effects."""

        if isinstance(cmd, LogEvent):
            log_event(cmd.event)

        elif isinstance(cmd, OpenTransport):
            await self._open_transport(cmd.run_id, pending)

        elif isinstance(cmd, CloseTransport):
            await self._close_transport()

        elif isinstance(cmd, EncodePairing):
            self._pairing.encode(pairing_seq=cmd.pairing_seq, payload=cmd.payload)

        elif isinstance(cmd, CancelPairing):
            self._pairing.cancel()

        elif isinstance(cmd, ScheduleRetry):
            self._schedule_retry(attempt=cmd.attempt, delay_ms=cmd.delay_ms)

        elif isinstance(cmd, CancelRetry):
            self._cancel_timer(TIMER_RECONNECT)

        elif isinstance(cmd, StartTimer):
            self._start_timer(
                timer_id=cmd.timer_id,
                duration_ms=cmd.duration_ms,
                pairing_seq=cmd.pairing_seq,
            )

        elif isinstance(cmd, CancelTimer):
            self._cancel_timer(cmd.timer_id)

        elif isinstance(cmd, ReleaseSession):
            await self._release(purge=cmd.purge_credentials)
            pending.append(
                SessionReleased(event_type=EventType.SESSION_RELEASED, ts_ms=_now_ms())
            )

        else:
            log_event({
                "ts_ms": _now_ms(),
                "event_type": "COMMAND_NOT_IMPLEMENTED",
                "identity": self.identity,
                "command_type": type(cmd).__name__,
            })

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _open_transport(self, run_id: int, pending: deque[Event]) -> None:
        """
        Open a handle for run_id.

        The open runs as its own task so abort_open() can interrupt it.
        Failures become TransportOpenFailed follow-up events.
        """
        await self._close_transport()

        if self._open_aborted:
            log_event({
                "ts_ms": _now_ms(),
                "event_type": "TRANSPORT_OPEN_ABORTED",
                "identity": self.identity,
                "run_id": run_id,
            })
            return

        sink = functools.partial(self._on_transport_event, run_id)
        task = asyncio.create_task(
            self._ctx.transport.open(self._ctx.credential_path, sink)
        )
        self._open_task = task
        with timed("transport_open", identity=self.identity, run_id=run_id) as metric:
            await asyncio.wait({task})
            self._open_task = None
            metric["result"] = (
                "aborted" if task.cancelled()
                else "failed" if task.exception() is not None
                else "opened"
            )

        if task.cancelled():
            log_event({
                "ts_ms": _now_ms(),
                "event_type": "TRANSPORT_OPEN_ABORTED",
                "identity": self.identity,
                "run_id": run_id,
            })
            return

        exc = task.exception()
        if exc is not None:
            pending.append(
                TransportOpenFailed(
                    event_type=EventType.TRANSPORT_OPEN_FAILED,
                    ts_ms=_now_ms(),
                    run_id=run_id,
                    reason=f"{type(exc).__name__}: {exc}",
                    transient=isinstance(exc, TransientTransportError),
                )
            )
            return

        handle = task.result()
        if run_id != self._state.run_id or self._state.state not in LIVE_STATES:
            # Run was superseded while opening; nobody will ever close this
            await self._safe_close(handle, run_id)
            return

        self._handle = handle
        self._handle_run_id = run_id

    async def _close_transport(self) -> None:
        """Close the current handle, if any. Idempotent."""
        handle = self._handle
        if handle is None:
            return
        run_id = self._handle_run_id
        self._handle = None
        self._handle_run_id = 0
        await self._safe_close(handle, run_id)

    async def _safe_close(self, handle: Any, run_id: int) -> None:
        try:
            await self._ctx.transport.close(handle)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_event({
                "ts_ms": _now_ms(),
                "event_type": "TRANSPORT_CLOSE_FAILED",
                "identity": self.identity,
                "run_id": run_id,
                "exception": type(exc).__name__,
                "message": str(exc),
            })
        else:
            log_event({
                "ts_ms": _now_ms(),
                "event_type": "TRANSPORT_CLOSED",
                "identity": self.identity,
                "run_id": run_id,
            })

    def _on_transport_event(self, run_id: int, notice: TransportEvent) -> None:
        """
        Single dispatch point for everything the transport reports.

        Each handle gets this method bound to the run it was opened for;
        the reducer drops events whose run is no longer current.
        """
        ts = _now_ms()
        event: Event

        if isinstance(notice, PairingChallengeReceived):
            event = PairingChallenge(
                event_type=EventType.PAIRING_CHALLENGE,
                ts_ms=ts,
                run_id=run_id,
                payload=notice.payload,
            )
        elif isinstance(notice, TransportReady):
            event = Connected(
                event_type=EventType.CONNECTED,
                ts_ms=ts,
                run_id=run_id,
                info=notice.info,
            )
        elif isinstance(notice, TransportClosedNotice):
            event = TransportClosed(
                event_type=EventType.TRANSPORT_CLOSED,
                ts_ms=ts,
                run_id=run_id,
                reason=classify_close(notice.reason),
                raw_reason=str(getattr(notice.reason, "value", notice.reason)),
            )
        elif isinstance(notice, AuthenticationFailed):
            event = AuthFailure(
                event_type=EventType.AUTH_FAILURE,
                ts_ms=ts,
                run_id=run_id,
                detail=notice.detail,
            )
        else:
            log_event({
                "ts_ms": ts,
                "event_type": "UNKNOWN_TRANSPORT_EVENT",
                "identity": self.identity,
                "run_id": run_id,
                "notice_type": type(notice).__name__,
            })
            return

        self.post_event(event)

    # ------------------------------------------------------------------
    # Release
    # ------------------------------------------------------------------

    async def _release(self, *, purge: bool) -> None:
        """
        Release everything this session owns, then leave the registry.

        Transport close and purge errors are logged, not raised.
        """
        try:
            await self._teardown_leftovers()

            if purge:
                try:
                    await self._ctx.transport.purge_credentials(self._ctx.credential_path)
                except Exception as exc:  # pylint: disable=broad-exception-caught
                    log_event({
                        "ts_ms": _now_ms(),
                        "event_type": "CREDENTIAL_PURGE_FAILED",
                        "identity": self.identity,
                        "exception": type(exc).__name__,
                        "message": str(exc),
                    })
                else:
                    log_event({
                        "ts_ms": _now_ms(),
                        "event_type": "CREDENTIALS_PURGED",
                        "identity": self.identity,
                    })

            self._ctx.on_released(self, self._state)
        finally:
            self._released.set()

    async def _teardown_leftovers(self) -> None:
        """Cancel timers and tasks and close any handle still held."""
        self.abort_open()
        timers = list(self._timers.values())
        for timer_id in list(self._timers):
            self._cancel_timer(timer_id)
        if timers:
            await asyncio.gather(*timers, return_exceptions=True)
        await self._pairing.aclose()
        await self._close_transport()

    # ------------------------------------------------------------------
    # Timer management
    # ------------------------------------------------------------------

    def _start_timer(self, *, timer_id: str, duration_ms: int, pairing_seq: int) -> None:
        """
        Start or replace a timer that emits a pairing expiry event.

        Timer tasks re-enter the inbox when they expire, maintaining the
        single event entry point invariant.
        """
        self._cancel_timer(timer_id)

        async def _timer_task() -> None:
            try:
                await asyncio.sleep(duration_ms / 1000.0)
            except asyncio.CancelledError:
                return
            self._timers.pop(timer_id, None)
            self.post_event(
                PairingExpired(
                    event_type=EventType.PAIRING_EXPIRED,
                    ts_ms=_now_ms(),
                    pairing_seq=pairing_seq,
                )
            )

        self._timers[timer_id] = asyncio.create_task(_timer_task())

    def _schedule_retry(self, *, attempt: int, delay_ms: int) -> None:
        """
        Schedule a reconnect attempt.

        Retry is just a delayed RetryReady event.
        """
        self._cancel_timer(TIMER_RECONNECT)

        async def _retry_task() -> None:
            try:
                await asyncio.sleep(delay_ms / 1000.0)
            except asyncio.CancelledError:
                return
            self._timers.pop(TIMER_RECONNECT, None)
            self.post_event(
                RetryReady(
                    event_type=EventType.RETRY_READY,
                    ts_ms=_now_ms(),
                    attempt=attempt,
                )
            )

        self._timers[TIMER_RECONNECT] = asyncio.create_task(_retry_task())

    def _cancel_timer(self, timer_id: str) -> None:
        """
        Cancel an in-flight timer if it exists.

        Idempotent: safe to call even if timer doesn't exist.
        """
        task = self._timers.pop(timer_id, None)
        if task is not None and not task.done():
            task.cancel()
