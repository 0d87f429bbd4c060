"""Error model and exit code contract."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum


class ExitCode(IntEnum):
    SUCCESS = 0
    INVALID_ARGS = 2
    CONFIG_ERROR = 3
    RUNTIME_ERROR = 4
    AUTHORIZATION_FAILED = 5


@dataclass
class AuthGateError(Exception):
    message: str
    code: ExitCode = ExitCode.RUNTIME_ERROR
    hint: str = ""

    def __str__(self) -> str:
        if self.hint:
            return f"{self.message} Hint: {self.hint}"
        return self.message


@dataclass
class AuthorizationFailed(AuthGateError):
    """The guarded operation failed; ``reason`` is whatever it raised."""

    code: ExitCode = ExitCode.AUTHORIZATION_FAILED
    reason: BaseException | None = None


class AuthorizationDenied(Exception):
    """Raised by an authorizer that refuses the request."""


def user_facing_error(message: str, *, hint: str = "") -> str:
    if hint:
        return f"Error: {message}. Next step: {hint}"
    return f"Error: {message}."
