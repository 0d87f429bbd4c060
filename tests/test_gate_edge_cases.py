"""Gate edge case tests: cancellation, odd operations, callbacks and events."""

from __future__ import annotations

import asyncio
import logging as py_logging

import pytest
from conftest import ControlledOperation, drain

from authgate.errors import AuthorizationDenied, AuthorizationFailed
from authgate.gate import AuthorizationGate, GateEvent, GateState


@pytest.mark.asyncio
async def test_cancelling_one_waiter_leaves_the_round_intact(operation: ControlledOperation) -> None:
    gate = AuthorizationGate(operation)

    abandoned = gate.acquire()
    kept = gate.acquire()
    abandoned.cancel()
    await drain()

    assert not operation.latest.cancelled()
    assert gate.state is GateState.PENDING

    operation.latest.set_result("token")

    assert await kept == "token"
    assert abandoned.cancelled()
    assert gate.is_authorized


@pytest.mark.asyncio
async def test_round_with_every_waiter_cancelled_still_caches(operation: ControlledOperation) -> None:
    gate = AuthorizationGate(operation)

    waiter = gate.acquire()
    waiter.cancel()
    operation.latest.set_result("token")
    await drain()

    assert gate.value == "token"
    assert gate.acquire().result() == "token"
    assert operation.calls == 1


@pytest.mark.asyncio
async def test_operation_raising_synchronously_fails_the_round() -> None:
    calls = {"count": 0}

    def operation() -> asyncio.Future[str]:
        calls["count"] += 1
        raise RuntimeError("no permission service")

    gate = AuthorizationGate(operation)

    with pytest.raises(AuthorizationFailed) as excinfo:
        await gate.acquire()

    assert isinstance(excinfo.value.reason, RuntimeError)
    assert gate.state is GateState.IDLE

    with pytest.raises(AuthorizationFailed):
        await gate.acquire()
    assert calls["count"] == 2


@pytest.mark.asyncio
async def test_operation_raising_base_exception_leaves_gate_idle() -> None:
    calls = {"count": 0}

    async def granted() -> str:
        return "token"

    def operation() -> object:
        calls["count"] += 1
        if calls["count"] == 1:
            raise asyncio.CancelledError()
        return granted()

    gate = AuthorizationGate(operation)  # type: ignore[arg-type]

    with pytest.raises(asyncio.CancelledError):
        gate.acquire()

    assert gate.state is GateState.IDLE
    assert await asyncio.wait_for(gate.acquire(), timeout=1.0) == "token"
    assert calls["count"] == 2


@pytest.mark.asyncio
async def test_operation_returning_non_awaitable_fails_the_round() -> None:
    gate = AuthorizationGate(lambda: "not-awaitable")  # type: ignore[arg-type, return-value]

    with pytest.raises(AuthorizationFailed) as excinfo:
        await gate.acquire()

    assert isinstance(excinfo.value.reason, TypeError)
    assert gate.invocations == 1


@pytest.mark.asyncio
async def test_cancelled_attempt_cancels_callers_and_resets(operation: ControlledOperation) -> None:
    gate = AuthorizationGate(operation)

    waiters = [gate.acquire() for _ in range(2)]
    operation.latest.cancel()

    for waiter in waiters:
        with pytest.raises(asyncio.CancelledError):
            await waiter
    assert gate.state is GateState.IDLE

    retry = gate.acquire()
    assert operation.calls == 2
    operation.latest.set_result("token")
    assert await retry == "token"


@pytest.mark.asyncio
async def test_coroutine_operation_is_awaited_once_per_round() -> None:
    started = asyncio.Event()
    release = asyncio.Event()
    calls = {"count": 0}

    async def operation() -> str:
        calls["count"] += 1
        started.set()
        await release.wait()
        return "granted"

    gate = AuthorizationGate(operation)
    waiters = [gate.acquire() for _ in range(3)]
    await started.wait()
    release.set()

    assert await asyncio.gather(*waiters) == ["granted"] * 3
    assert calls["count"] == 1


@pytest.mark.asyncio
async def test_request_delivers_success_once(operation: ControlledOperation) -> None:
    gate = AuthorizationGate(operation)
    successes: list[str] = []
    failures: list[AuthorizationFailed] = []

    waiter = gate.request(successes.append, failures.append)
    operation.latest.set_result("token")
    await waiter
    await drain()

    assert successes == ["token"]
    assert failures == []


@pytest.mark.asyncio
async def test_request_replay_runs_callback_on_the_loop(operation: ControlledOperation) -> None:
    gate = AuthorizationGate(operation)
    first = gate.acquire()
    operation.latest.set_result("token")
    await first

    successes: list[str] = []
    gate.request(successes.append, lambda exc: None)
    assert successes == []

    await drain()
    assert successes == ["token"]


@pytest.mark.asyncio
async def test_retry_from_failure_callback_starts_fresh_attempt(
    operation: ControlledOperation,
) -> None:
    gate = AuthorizationGate(operation)
    retries: list[asyncio.Future[str]] = []

    def on_failure(exc: AuthorizationFailed) -> None:
        assert gate.state is GateState.IDLE
        retries.append(gate.acquire())

    waiter = gate.request(lambda value: None, on_failure)
    operation.latest.set_exception(AuthorizationDenied("not yet"))
    with pytest.raises(AuthorizationFailed):
        await waiter

    assert len(retries) == 1
    assert operation.calls == 2
    operation.latest.set_result("token")
    assert await retries[0] == "token"


@pytest.mark.asyncio
async def test_request_not_called_back_when_cancelled(operation: ControlledOperation) -> None:
    gate = AuthorizationGate(operation)
    seen: list[object] = []

    waiter = gate.request(seen.append, seen.append)
    waiter.cancel()
    operation.latest.set_result("token")
    await drain()

    assert seen == []


@pytest.mark.asyncio
async def test_events_record_transitions(
    operation: ControlledOperation, caplog, monkeypatch
) -> None:
    gate = AuthorizationGate(operation, name="camera")
    monkeypatch.setattr(py_logging.getLogger("authgate"), "propagate", True)
    caplog.set_level("INFO", logger="authgate")

    first = gate.acquire()
    second = gate.acquire()
    operation.latest.set_exception(AuthorizationDenied("no"))
    await asyncio.gather(first, second, return_exceptions=True)

    third = gate.acquire()
    operation.latest.set_result("ok")
    await third
    gate.acquire()

    steps = [event.step for event in gate.list_events()]
    assert steps == ["start", "join", "failure", "start", "success", "replay"]
    assert all(isinstance(event, GateEvent) for event in gate.list_events())
    assert "gate-event gate=camera step=failure" in caplog.text

    gate.clear_events()
    assert gate.list_events() == []
