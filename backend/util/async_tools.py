"""
Async Hygiene Tools
Named background tasks that the app can cancel at shutdown, plus a timeout
wrapper that raises a service-level error.
"""

import asyncio
import functools
import logging
from typing import Awaitable, Coroutine, Dict, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')

# Live supervised tasks by name; finished tasks drop out on their own
_supervised_tasks: Dict[str, asyncio.Task] = {}


class AsyncTimeoutError(Exception):
    """Raised when an awaited operation exceeds its deadline."""


def _task_finished(name: str, task: asyncio.Task) -> None:
    if _supervised_tasks.get(name) is task:
        del _supervised_tasks[name]
    if task.cancelled():
        logger.debug(f"[async_tools] Task '{name}' cancelled")
        return
    error = task.exception()
    if error is not None:
        logger.error(f"[async_tools] Task '{name}' crashed: {error!r}")


def create_supervised_task(coro: Coroutine[None, None, T], *, name: str) -> "asyncio.Task[T]":
    """
    Schedule ``coro`` under a unique name so shutdown can find and cancel it.

    Raises:
        ValueError: a task with this name is still running
    """
    running = _supervised_tasks.get(name)
    if running is not None and not running.done():
        raise ValueError(f"Supervised task '{name}' is already running")

    task = asyncio.create_task(coro, name=name)
    _supervised_tasks[name] = task
    task.add_done_callback(functools.partial(_task_finished, name))
    return task


async def timeout(awaitable: Awaitable[T], seconds: float) -> T:
    """Await with a deadline; raises ``AsyncTimeoutError`` when it passes."""
    try:
        return await asyncio.wait_for(awaitable, timeout=seconds)
    except asyncio.TimeoutError:
        raise AsyncTimeoutError(f"Operation timed out after {seconds}s")


async def shutdown_supervised_tasks() -> int:
    """Cancel every supervised task still running; returns how many were cancelled."""
    pending = [task for task in _supervised_tasks.values() if not task.done()]
    _supervised_tasks.clear()
    for task in pending:
        task.cancel()
    if pending:
        await asyncio.gather(*pending, return_exceptions=True)
        logger.info(f"[async_tools] Cancelled {len(pending)} supervised tasks")
    return len(pending)
