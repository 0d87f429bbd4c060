"""Caller-initiated retries around an authorization gate."""

from __future__ import annotations

import asyncio
import logging as py_logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from authgate.errors import AuthGateError, AuthorizationFailed, ExitCode
from authgate.gate import AuthorizationGate

T = TypeVar("T")

logger = py_logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    initial_backoff_seconds: float = 0.5
    multiplier: float = 2.0


async def acquire_with_retry(
    gate: AuthorizationGate[T],
    *,
    policy: RetryPolicy,
    sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
) -> T:
    attempt = 0
    backoff = policy.initial_backoff_seconds
    last_error: AuthorizationFailed | None = None

    while attempt < policy.max_attempts:
        attempt += 1
        try:
            return await gate.acquire()
        except AuthorizationFailed as exc:
            last_error = exc
            if attempt >= policy.max_attempts:
                break
            logger.info(
                "Attempt %s/%s for %s failed; retrying in %.2fs",
                attempt,
                policy.max_attempts,
                gate.name,
                backoff,
            )
            await sleep(backoff)
            backoff *= policy.multiplier

    if last_error is not None:
        raise last_error
    raise AuthGateError(
        "Retry policy exhausted without acquiring the gate.",
        code=ExitCode.CONFIG_ERROR,
        hint="Use max_attempts of at least 1.",
    )
