from __future__ import annotations

from typing import Awaitable, Optional, TypeVar

import anyio

from app.core.config import settings

T = TypeVar("T")


class RequestTimeoutError(Exception):
    def __init__(self, seconds: float):
        self.seconds = seconds
        super().__init__(f"Request timed out after {int(seconds * 1000)}ms")


async def run_with_timeout(awaitable: Awaitable[T], seconds: Optional[float] = None) -> T:
    """Await ``awaitable`` but give up after ``seconds``.

    Opt-in for long-running handler logic; the request monitor itself never
    imposes a timeout.
    """
    limit = settings.REQUEST_TIMEOUT_SECONDS if seconds is None else seconds
    try:
        with anyio.fail_after(limit):
            return await awaitable
    except TimeoutError as exc:
        raise RequestTimeoutError(limit) from exc
