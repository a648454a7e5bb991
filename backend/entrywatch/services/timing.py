"""Cancellable waits for backoff and inter-item delays."""

import asyncio
from typing import Awaitable, Callable

SleepFunc = Callable[[float], Awaitable[None]]


async def cancellable_sleep(
    delay: float,
    cancel_event: asyncio.Event | None = None,
    sleep: SleepFunc = asyncio.sleep,
) -> bool:
    """
    Sleep for `delay` seconds unless `cancel_event` is set first.

    Returns:
        True if the wait was cut short by the cancel event
    """
    if cancel_event is None:
        await sleep(delay)
        return False
    if cancel_event.is_set():
        return True

    sleeper = asyncio.ensure_future(sleep(delay))
    waiter = asyncio.ensure_future(cancel_event.wait())
    try:
        await asyncio.wait({sleeper, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in (sleeper, waiter):
            if not task.done():
                task.cancel()
    return cancel_event.is_set()
