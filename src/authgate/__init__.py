"""Single-flight, cache-on-success gate for asynchronous authorization requests."""

from .errors import AuthGateError, AuthorizationDenied, AuthorizationFailed, ExitCode
from .gate import AuthorizationGate, GateEvent, GateState
from .retry import RetryPolicy, acquire_with_retry
from .simulate import ScriptedAuthorizer

__version__ = "0.1.0"

__all__ = [
    "acquire_with_retry",
    "AuthGateError",
    "AuthorizationDenied",
    "AuthorizationFailed",
    "AuthorizationGate",
    "ExitCode",
    "GateEvent",
    "GateState",
    "RetryPolicy",
    "ScriptedAuthorizer",
]
