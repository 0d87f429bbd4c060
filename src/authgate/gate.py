"""Single-flight authorization gate with cache-on-success.

The gate wraps an asynchronous operation (typically a permission or token
request) so that repeated triggers share one in-flight call, a success is
remembered for the lifetime of the gate, and a failure leaves the gate idle so
the next trigger tries again.
"""

from __future__ import annotations

import asyncio
import logging as py_logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from functools import partial
from typing import Generic, TypeVar, cast

from authgate.errors import AuthorizationFailed

T = TypeVar("T")

logger = py_logging.getLogger(__name__)


class GateState(str, Enum):
    IDLE = "idle"
    PENDING = "pending"
    AUTHORIZED = "authorized"


@dataclass(frozen=True)
class GateEvent:
    step: str
    message: str


def _consume(source: asyncio.Future[object]) -> None:
    # Marks the outcome as retrieved even when every waiter has gone away.
    if not source.cancelled():
        source.exception()


class AuthorizationGate(Generic[T]):
    """Guards ``operation`` so at most one attempt is outstanding.

    ``acquire()`` must be called from a running event loop. All bookkeeping
    happens on that loop, so no locking is involved.
    """

    def __init__(self, operation: Callable[[], Awaitable[T]], *, name: str = "authorization") -> None:
        self.name = name
        self._operation = operation
        self._pending: asyncio.Future[T] | None = None
        self._attempt: asyncio.Future[T] | None = None
        self._invocations = 0
        self._events: list[GateEvent] = []

    @property
    def state(self) -> GateState:
        if self._pending is None:
            return GateState.IDLE
        if self._pending.done():
            return GateState.AUTHORIZED
        return GateState.PENDING

    @property
    def invocations(self) -> int:
        return self._invocations

    @property
    def is_authorized(self) -> bool:
        return self.state is GateState.AUTHORIZED

    @property
    def value(self) -> T | None:
        if self._pending is not None and self._pending.done():
            return self._pending.result()
        return None

    def list_events(self) -> list[GateEvent]:
        return list(self._events)

    def clear_events(self) -> None:
        self._events.clear()

    def acquire(self) -> asyncio.Future[T]:
        """Return a future for the guarded operation's outcome.

        Starts an attempt when the gate is idle, joins the attempt in flight
        when there is one, and replays the cached success otherwise. A failed
        attempt raises :class:`AuthorizationFailed` in every caller of its
        round.
        """
        loop = asyncio.get_running_loop()
        pending = self._pending
        if pending is None:
            pending = self._start(loop)
        elif pending.done():
            self._record("replay", "Returning cached authorization.")
            replay: asyncio.Future[T] = loop.create_future()
            replay.set_result(pending.result())
            return replay
        else:
            self._record("join", "Joining authorization already in flight.")
        return self._follow(pending, loop)

    def request(
        self,
        on_success: Callable[[T], object],
        on_failure: Callable[[AuthorizationFailed], object],
    ) -> asyncio.Future[T]:
        """Callback flavour of :meth:`acquire`.

        Exactly one callback runs, on the event loop, once the outcome is known.
        Neither runs if the returned future is cancelled.
        """
        waiter = self.acquire()

        def deliver(done: asyncio.Future[T]) -> None:
            if done.cancelled():
                return
            exc = done.exception()
            if exc is None:
                on_success(done.result())
            else:
                on_failure(cast(AuthorizationFailed, exc))

        waiter.add_done_callback(deliver)
        return waiter

    def _start(self, loop: asyncio.AbstractEventLoop) -> asyncio.Future[T]:
        self._invocations += 1
        self._record("start", f"Invoking operation (invocation {self._invocations}).")

        # Anything that escapes here leaves the gate idle.
        attempt: asyncio.Future[T]
        try:
            attempt = asyncio.ensure_future(self._operation())
        except Exception as exc:
            attempt = loop.create_future()
            attempt.set_exception(exc)

        pending: asyncio.Future[T] = loop.create_future()
        pending.add_done_callback(_consume)
        self._pending = pending
        # Strong reference; the loop only keeps weak ones to running tasks.
        self._attempt = attempt
        attempt.add_done_callback(partial(self._settle, pending))
        return pending

    def _settle(self, pending: asyncio.Future[T], attempt: asyncio.Future[T]) -> None:
        self._attempt = None
        if attempt.cancelled():
            self._pending = None
            self._record("cancelled", "Operation was cancelled; gate is idle again.")
            pending.cancel()
            return

        reason = attempt.exception()
        if reason is not None:
            # Cleared before anyone is notified so a retry starts a new attempt.
            self._pending = None
            failure = AuthorizationFailed(
                f"{self.name} failed: {str(reason) or type(reason).__name__}",
                hint="Call acquire() again to retry.",
                reason=reason,
            )
            failure.__cause__ = reason
            # One instance is shared by every caller of the round.
            self._record("failure", f"Operation failed: {type(reason).__name__}: {reason}")
            pending.set_exception(failure)
            return

        self._record("success", "Operation succeeded; caching the result.")
        pending.set_result(attempt.result())

    def _follow(self, pending: asyncio.Future[T], loop: asyncio.AbstractEventLoop) -> asyncio.Future[T]:
        waiter: asyncio.Future[T] = loop.create_future()

        def relay(source: asyncio.Future[T]) -> None:
            if waiter.done():
                return
            if source.cancelled():
                waiter.cancel()
                return
            exc = source.exception()
            if exc is not None:
                waiter.set_exception(exc)
            else:
                waiter.set_result(source.result())

        def detach(done: asyncio.Future[T]) -> None:
            if done.cancelled():
                pending.remove_done_callback(relay)

        pending.add_done_callback(relay)
        waiter.add_done_callback(detach)
        return waiter

    def _record(self, step: str, message: str) -> None:
        self._events.append(GateEvent(step=step, message=message))
        logger.info(
            "gate-event gate=%s step=%s message=%s",
            self.name,
            step,
            message,
            extra={"gate": self.name},
        )
