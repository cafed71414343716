"""
Structured fan-out for concurrent adapter calls.
"""

import asyncio
from collections.abc import Awaitable
from typing import Any


async def join_all(*awaitables: Awaitable[Any]) -> list[Any]:
    """
    Await every call concurrently and return results in argument order.

    The first failure propagates and every sibling still running is cancelled
    and awaited before the error leaves this function, so no adapter call
    outlives the build that started it.
    """
    tasks = [asyncio.ensure_future(awaitable) for awaitable in awaitables]
    if not tasks:
        return []
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise
