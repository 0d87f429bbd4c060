"""Demo command: drives an authorization gate through scripted rounds."""

from __future__ import annotations

import argparse
import asyncio
import logging as py_logging
import sys
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import TextIO

from typing_extensions import TypedDict

from .config import GateSettings, load_config, save_config
from .errors import AuthGateError, AuthorizationFailed, ExitCode, user_facing_error
from .gate import AuthorizationGate
from .logging import configure_logging, normalize_level
from .retry import acquire_with_retry
from .simulate import ScriptedAuthorizer

_VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARN", "ERROR")


class RoundSummary(TypedDict):
    round: int
    callers: int
    outcome: str
    detail: str
    invocations: int


def _int_type(flag: str, *, minimum: int, maximum: int) -> Callable[[str], int]:
    def parse(value: str) -> int:
        try:
            number = int(value)
        except ValueError as exc:
            raise argparse.ArgumentTypeError(f"{flag} must be an integer") from exc
        if number < minimum or number > maximum:
            raise argparse.ArgumentTypeError(f"{flag} must be between {minimum} and {maximum}")
        return number

    return parse


def _latency_type(value: str) -> float:
    try:
        seconds = float(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError("--latency must be a number") from exc
    if seconds < 0 or seconds > 10:
        raise argparse.ArgumentTypeError("--latency must be between 0 and 10 seconds")
    return seconds


def _log_level_type(value: str) -> str:
    normalized = normalize_level(value)
    if normalized not in _VALID_LOG_LEVELS:
        accepted = ", ".join(_VALID_LOG_LEVELS)
        raise argparse.ArgumentTypeError(f"--log-level must be one of: {accepted}")
    return normalized


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="authgate",
        description="Drive a single-flight authorization gate against a scripted authorizer.",
    )
    parser.add_argument(
        "--failures",
        type=_int_type("--failures", minimum=0, maximum=100),
        default=None,
        help="Requests the authorizer denies before granting",
    )
    parser.add_argument(
        "--callers",
        type=_int_type("--callers", minimum=1, maximum=100),
        default=None,
        help="Concurrent callers per round",
    )
    parser.add_argument(
        "--rounds",
        type=_int_type("--rounds", minimum=1, maximum=100),
        default=None,
    )
    parser.add_argument("--latency", type=_latency_type, default=None, help="Authorizer latency in seconds")
    parser.add_argument(
        "--retry",
        action="store_true",
        help="Acquire once with the configured retry policy instead of fixed rounds",
    )
    parser.add_argument("--config", type=Path, default=None)
    parser.add_argument("--write-config", type=Path, default=None, metavar="PATH")
    parser.add_argument("--log-level", type=_log_level_type, default=None)
    parser.add_argument("--log-file", type=Path, default=None)
    return parser


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = build_parser()
    return parser.parse_args(argv)


def resolve_settings(namespace: argparse.Namespace) -> GateSettings:
    settings = load_config(namespace.config, strict=namespace.config is not None)
    if namespace.log_level is not None:
        settings.log_level = namespace.log_level
    if namespace.failures is not None:
        settings.demo.failures_before_success = namespace.failures
    if namespace.callers is not None:
        settings.demo.callers = namespace.callers
    if namespace.rounds is not None:
        settings.demo.rounds = namespace.rounds
    if namespace.latency is not None:
        settings.demo.latency_seconds = namespace.latency
    return settings


async def run_rounds(gate: AuthorizationGate[str], *, callers: int, rounds: int) -> list[RoundSummary]:
    summaries: list[RoundSummary] = []
    for index in range(1, rounds + 1):
        before = gate.invocations
        results = await asyncio.gather(
            *(gate.acquire() for _ in range(callers)),
            return_exceptions=True,
        )
        failures = [item for item in results if isinstance(item, AuthorizationFailed)]
        if failures:
            outcome, detail = "failed", str(failures[0].reason)
        else:
            outcome, detail = "granted", str(results[0])
        summaries.append(
            RoundSummary(
                round=index,
                callers=callers,
                outcome=outcome,
                detail=detail,
                invocations=gate.invocations - before,
            )
        )
    return summaries


def format_summary(summary: RoundSummary) -> str:
    plural = "" if summary["invocations"] == 1 else "s"
    return (
        f"round {summary['round']}: {summary['outcome']} ({summary['detail']}) "
        f"callers={summary['callers']} invocation{plural}={summary['invocations']}"
    )


async def run_demo(settings: GateSettings, *, use_retry: bool = False, stream: TextIO | None = None) -> int:
    out = stream or sys.stdout
    demo = settings.demo
    authorizer = ScriptedAuthorizer(
        demo.failures_before_success,
        latency_seconds=demo.latency_seconds,
    )
    gate: AuthorizationGate[str] = AuthorizationGate(authorizer, name="demo")

    if use_retry:
        policy = settings.retry.to_policy()
        try:
            value = await acquire_with_retry(gate, policy=policy)
        except AuthorizationFailed as exc:
            print(f"retry: failed after {gate.invocations} invocations ({exc.reason})", file=out)
        else:
            print(f"retry: {value} after {gate.invocations} invocations", file=out)
    else:
        for summary in await run_rounds(gate, callers=demo.callers, rounds=demo.rounds):
            print(format_summary(summary), file=out)

    print(f"final state: {gate.state.value}", file=out)
    if gate.is_authorized:
        return int(ExitCode.SUCCESS)
    return int(ExitCode.AUTHORIZATION_FAILED)


def main(argv: Sequence[str] | None = None) -> int:
    logger = configure_logging("WARN")
    parser = build_parser()
    try:
        namespace = parser.parse_args(argv)
    except SystemExit as exc:
        if exc.code not in (None, 0):
            logger.warning("Argument parsing failed with exit code %s", exc.code)
        return int(exc.code or 0)

    try:
        settings = resolve_settings(namespace)
        logger = configure_logging(level=settings.log_level, log_file=namespace.log_file)

        if namespace.write_config is not None:
            written = save_config(settings, namespace.write_config)
            print(f"Wrote config to {written}")
            return int(ExitCode.SUCCESS)

        logger.debug("Starting demo with %s", settings.model_dump())
        return asyncio.run(run_demo(settings, use_retry=namespace.retry))
    except AuthGateError as exc:
        logger.error(
            "Handled AuthGateError (code=%s): %s",
            int(exc.code),
            exc.message,
            exc_info=logger.isEnabledFor(py_logging.DEBUG),
        )
        print(user_facing_error(exc.message, hint=exc.hint), file=sys.stderr)
        return int(exc.code)
    except Exception:
        logger.exception("Unhandled exception in CLI entrypoint")
        print(user_facing_error("Unexpected runtime failure"), file=sys.stderr)
        return int(ExitCode.RUNTIME_ERROR)


def run(argv: Sequence[str] | None = None) -> int:
    return main(argv)
