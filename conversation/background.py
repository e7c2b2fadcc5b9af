"""
Fire-and-forget helpers.

Work started from a callback (host trigger phrase, auto claim extraction, async
transcript listeners) runs as its own task; failures are logged and never reach
the code that started it.
"""

from __future__ import annotations

import asyncio
import inspect
from typing import Any, Callable, Optional

from logging_setup import StructuredLogger


def run_detached(
    awaitable: Any,
    *,
    logger: StructuredLogger,
    description: str,
) -> Optional[asyncio.Future]:
    """
    Schedule `awaitable` on the running loop and log its failure, if any.

    Returns None (and closes a coroutine) when no event loop is running.
    """
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        if inspect.iscoroutine(awaitable):
            awaitable.close()
        logger.warning("Background work dropped: no running event loop", task=description)
        return None

    task = asyncio.ensure_future(awaitable, loop=loop)

    def _done(t: asyncio.Future) -> None:
        if t.cancelled():
            return
        exc = t.exception()
        if exc is not None:
            logger.error(
                "Background work failed",
                task=description,
                error=str(exc),
                error_type=type(exc).__name__,
            )

    task.add_done_callback(_done)
    return task


def call_detached(
    callback: Callable[..., Any],
    *args: Any,
    logger: StructuredLogger,
    description: str,
) -> None:
    """Call `callback`; schedule its result if it is awaitable. Never raises."""
    try:
        result = callback(*args)
    except Exception as e:
        logger.error(
            "Callback failed",
            task=description,
            error=str(e),
            error_type=type(e).__name__,
        )
        return
    if inspect.isawaitable(result):
        run_detached(result, logger=logger, description=description)
