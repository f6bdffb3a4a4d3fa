# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio
from pathlib import Path
from typing import Any

import pytest

import orchestrator.runtime as runtime_mod
from orchestrator.enums.error_kind import ErrorKind
from orchestrator.events import EventType, StartRequested
from orchestrator.pairing import PairingCoordinator
from orchestrator.runtime import SessionRuntime
from orchestrator.runtime_context import RuntimeExecutionContext
from orchestrator.state_dataclass import LifecyclePolicy, SessionState
from orchestrator.enums.state import State
from session.registry import SessionRegistry

from fakes import FakeTransport, encode_tagged, settle


def test_runtime_emits_reducer_decisions_via_logger(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> None:
    emitted: list[dict[str, Any]] = []
    monkeypatch.setattr(runtime_mod, "log_event", emitted.append)

    async def scenario() -> SessionState:
        runtime = SessionRuntime(
            context=RuntimeExecutionContext(
                identity="u1",
                credential_path=tmp_path / "session_u1",
                transport=FakeTransport(),
                encoder=encode_tagged,
            ),
            policy=LifecyclePolicy(),
        )
        state = await runtime.dispatch(
            StartRequested(event_type=EventType.START_REQUESTED, ts_ms=123)
        )
        await runtime.shutdown(purge_credentials=False)
        return state

    state = asyncio.run(scenario())

    assert state.state is State.STARTING
    decisions = [e.get("decision") for e in emitted]
    assert "start" in decisions
    assert "disconnect_requested" in decisions
    assert any(e.get("event_type") == "TRANSPORT_CLOSED" for e in emitted)


def test_release_hook_called_once_with_final_state(tmp_path: Path) -> None:
    released: list[SessionState] = []

    async def scenario() -> SessionRuntime:
        runtime = SessionRuntime(
            context=RuntimeExecutionContext(
                identity="u1",
                credential_path=tmp_path / "session_u1",
                transport=FakeTransport(),
                encoder=encode_tagged,
                on_released=lambda rt, final: released.append(final),
            ),
            policy=LifecyclePolicy(),
        )
        await runtime.dispatch(
            StartRequested(event_type=EventType.START_REQUESTED, ts_ms=0)
        )
        await runtime.shutdown()
        await runtime.shutdown()
        return runtime

    runtime = asyncio.run(scenario())

    assert len(released) == 1
    assert released[0].state is State.DISCONNECTING
    assert runtime.state.state is State.TERMINATED
    assert runtime.is_finished


def _registry(transport: FakeTransport, tmp_path: Path) -> SessionRegistry:
    return SessionRegistry(
        transport=transport,
        policy=LifecyclePolicy(),
        encoder=encode_tagged,
        credentials_dir=tmp_path,
    )


def test_command_failure_ends_session_as_internal_error(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> None:
    emitted: list[dict[str, Any]] = []
    monkeypatch.setattr(runtime_mod, "log_event", emitted.append)

    def broken_encode(self: PairingCoordinator, *, pairing_seq: int, payload: str | bytes) -> None:
        raise RuntimeError("encoder pool unavailable")

    monkeypatch.setattr(PairingCoordinator, "encode", broken_encode)
    transport = FakeTransport()

    async def scenario() -> SessionRegistry:
        registry = _registry(transport, tmp_path)
        await registry.get_or_create("u1")
        transport.challenge()
        await settle(lambda: registry.get("u1") is None)
        return registry

    registry = asyncio.run(scenario())

    final = registry.outcome("u1")
    assert final is not None
    assert final.state is State.TERMINATED
    assert final.error_kind is ErrorKind.INTERNAL
    assert "encoder pool unavailable" in (final.last_error or "")
    assert transport.current.closed
    assert transport.purged == []
    assert len([e for e in emitted if e.get("event_type") == "COMMAND_FAILED"]) == 1


def test_failure_while_handling_a_fault_still_ends_session(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> None:
    emitted: list[dict[str, Any]] = []
    monkeypatch.setattr(runtime_mod, "log_event", emitted.append)
    transport = FakeTransport()

    def broken_reduce(state: SessionState, event: Any, policy: LifecyclePolicy) -> Any:
        raise RuntimeError("reducer bug")

    async def scenario() -> tuple[SessionRegistry, SessionState]:
        registry = _registry(transport, tmp_path)
        session, _ = await registry.get_or_create("u1")
        transport.ready()
        await settle(lambda: session.runtime.state.state is State.CONNECTED)
        updates = session.runtime.subscribe()

        monkeypatch.setattr(runtime_mod, "reduce", broken_reduce)
        transport.drop()

        final = await asyncio.wait_for(updates.get(), timeout=1.0)
        await asyncio.wait_for(session.runtime.closed(), timeout=1.0)
        return registry, final

    registry, final = asyncio.run(scenario())

    assert final.state is State.TERMINATED
    assert final.error_kind is ErrorKind.INTERNAL
    assert registry.get("u1") is None
    outcome = registry.outcome("u1")
    assert outcome is not None
    assert outcome.error_kind is ErrorKind.INTERNAL
    assert transport.current.closed
    assert transport.purged == []
    event_types = {e.get("event_type") for e in emitted}
    assert "EVENT_HANDLING_FAILED" in event_types
    assert "FAULT_HANDLING_FAILED" in event_types
