"""Scripted authorizer used by the demo command and the tests."""

from __future__ import annotations

import asyncio
import logging as py_logging

from authgate.errors import AuthorizationDenied

logger = py_logging.getLogger(__name__)


class ScriptedAuthorizer:
    """Denies the first ``failures_before_success`` requests, then grants."""

    def __init__(
        self,
        failures_before_success: int = 0,
        *,
        latency_seconds: float = 0.0,
        grant: str = "granted",
    ) -> None:
        if failures_before_success < 0:
            raise ValueError("failures_before_success must not be negative")
        if latency_seconds < 0:
            raise ValueError("latency_seconds must not be negative")
        self.failures_before_success = failures_before_success
        self.latency_seconds = latency_seconds
        self.grant = grant
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        call = self.calls
        logger.debug("Authorization request %s started", call)
        await asyncio.sleep(self.latency_seconds)
        if call <= self.failures_before_success:
            logger.debug("Authorization request %s denied", call)
            raise AuthorizationDenied(f"request {call} denied")
        logger.debug("Authorization request %s granted", call)
        return self.grant
