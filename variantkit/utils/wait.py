from __future__ import annotations

import asyncio
import time

from variantkit.core.exceptions import PageInteractionTimeout


def wait_until(predicate, timeout: float, interval: float = 0.2):
    """Waits for a predicate to return a truthy value."""

    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        result = predicate()
        if result:
            return result
        time.sleep(interval)
    return predicate()


async def with_timeout(awaitable, timeout: float, operation: str):
    """Awaits with a hard ceiling, raising PageInteractionTimeout when it is hit."""

    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as exc:
        raise PageInteractionTimeout(operation, timeout) from exc
