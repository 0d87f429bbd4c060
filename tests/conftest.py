from __future__ import annotations

import asyncio
from pathlib import Path

import pytest


@pytest.hookimpl(trylast=True)
def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    del config
    for item in items:
        path = Path(str(getattr(item, "path", item.fspath)))

        if "integration" in path.parts:
            item.add_marker(pytest.mark.integration)
            item.add_marker(pytest.mark.slow)

        if "property" in path.parts:
            item.add_marker(pytest.mark.property)


class ControlledOperation:
    """Operation whose attempts stay pending until the test resolves them."""

    def __init__(self) -> None:
        self.calls = 0
        self.attempts: list[asyncio.Future[str]] = []

    def __call__(self) -> asyncio.Future[str]:
        self.calls += 1
        attempt: asyncio.Future[str] = asyncio.get_running_loop().create_future()
        self.attempts.append(attempt)
        return attempt

    @property
    def latest(self) -> asyncio.Future[str]:
        return self.attempts[-1]


async def drain(turns: int = 5) -> None:
    for _ in range(turns):
        await asyncio.sleep(0)


@pytest.fixture
def operation() -> ControlledOperation:
    return ControlledOperation()
