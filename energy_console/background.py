"""Fire-and-forget work for the calculator: delayed reveals and lead e-mails.

Tasks are held in a module-level set until they finish so the event loop
never drops them, and failures are logged instead of vanishing with the task.
"""
from __future__ import annotations

import asyncio
import logging
from concurrent.futures import Executor
from functools import partial
from typing import Any, Awaitable, Callable, Optional, Set

logger = logging.getLogger(__name__)

_running: Set[asyncio.Task[Any]] = set()

ErrorHook = Callable[[BaseException], None]


def _log_outcome(task: asyncio.Task[Any], label: str, on_error: Optional[ErrorHook]) -> None:
    _running.discard(task)
    if task.cancelled():
        logger.debug("Task %s cancelled", label)
        return
    exc = task.exception()
    if exc is None:
        return
    logger.error("Task %s failed", label, exc_info=exc)
    if on_error is not None:
        try:
            on_error(exc)
        except Exception:  # noqa: BLE001
            logger.exception("on_error hook for %s raised", label)


def spawn(coro: Awaitable[Any], *, name: Optional[str] = None,
          on_error: Optional[ErrorHook] = None) -> asyncio.Task[Any]:
    """Schedule ``coro`` on the running loop and keep a reference until it ends.

    ``on_error`` receives the exception of a failed task; cancellation is not
    an error.
    """
    task = asyncio.create_task(coro, name=name)  # type: ignore[arg-type]
    _running.add(task)
    label = name or task.get_name()
    task.add_done_callback(lambda t: _log_outcome(t, label, on_error))
    return task


def pending_count() -> int:
    return sum(1 for t in _running if not t.done())


async def drain(timeout: float = 5.0) -> None:
    """Wait for outstanding jobs, cancelling whatever is left after ``timeout``."""
    tasks = [t for t in _running if not t.done()]
    if not tasks:
        return
    done, still_running = await asyncio.wait(tasks, timeout=timeout)
    for task in still_running:
        task.cancel()
    if still_running:
        logger.warning("Cancelled %d background tasks at shutdown", len(still_running))


async def run_sync(func: Callable[..., Any], *args: Any,
                   executor: Optional[Executor] = None, **kwargs: Any) -> Any:
    """Run blocking code (smtplib) in an executor and await the result."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(executor, partial(func, *args, **kwargs))


__all__ = ["spawn", "run_sync", "drain", "pending_count"]
