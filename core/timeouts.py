"""Race an awaitable against a timer without cancelling the loser."""

import asyncio
import logging
from typing import Awaitable, TypeVar

log = logging.getLogger(__name__)

T = TypeVar("T")


def _discard_outcome(label: str):
    def _callback(task: "asyncio.Future") -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log.debug("late failure from %s ignored: %s", label, exc)
        else:
            log.debug("late result from %s ignored", label)

    return _callback


async def bounded(operation: Awaitable[T], timeout: float, *, label: str = "operation") -> T:
    """Return the operation's result, or raise ``TimeoutError`` once ``timeout`` elapses.

    The operation keeps running after a timeout; whatever it eventually
    produces is dropped.
    """
    task = asyncio.ensure_future(operation)
    done, _ = await asyncio.wait({task}, timeout=timeout)
    if task in done:
        return task.result()
    task.add_done_callback(_discard_outcome(label))
    raise TimeoutError(f"{label} exceeded {timeout:.1f}s")
