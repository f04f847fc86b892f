"""Supervision for fire-and-continue asyncio tasks.

A task spawned here stays referenced until it finishes, and its failure
lands in the log instead of vanishing with the task object.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Set

logger = logging.getLogger(__name__)

_running: Set[asyncio.Task[Any]] = set()
# most recent task per name; only consulted when supersede=True
_latest: Dict[str, asyncio.Task[Any]] = {}

ErrorHook = Callable[[BaseException], None]


def _supervisor(name: Optional[str], on_error: Optional[ErrorHook]) -> Callable[[asyncio.Task[Any]], None]:
    def _done(task: asyncio.Task[Any]) -> None:
        _running.discard(task)
        label = name or task.get_name()
        if name and _latest.get(name) is task:
            del _latest[name]
        if task.cancelled():
            logger.debug("Background task %s cancelled", label)
            return
        exc = task.exception()
        if exc is None:
            return
        logger.error("Background task %s failed", label, exc_info=exc)
        if on_error is not None:
            try:
                on_error(exc)
            except Exception:  # noqa: BLE001
                logger.exception("on_error hook for background task %s failed", label)

    return _done


def spawn(coro: Awaitable[Any], *, name: Optional[str] = None,
          on_error: Optional[ErrorHook] = None,
          supersede: bool = False) -> asyncio.Task[Any]:
    """Schedule `coro` on the running loop and supervise it.

    Args:
        coro: Coroutine to run.
        name: Task name, used in log lines and for supersede.
        on_error: Called with the exception if the task fails.
        supersede: Cancel a still-running task spawned earlier under the same
            name. Only for work that writes nothing before its final commit.
    """
    if supersede and name:
        previous = _latest.get(name)
        if previous is not None and not previous.done():
            logger.debug("Background task %s superseded", name)
            previous.cancel()

    task = asyncio.create_task(coro, name=name)  # type: ignore[arg-type]
    _running.add(task)
    if name:
        _latest[name] = task
    task.add_done_callback(_supervisor(name, on_error))
    return task


__all__ = ["spawn"]
