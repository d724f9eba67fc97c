import asyncio
import logging
from collections.abc import Awaitable, Coroutine
from typing import Any

from pydantic import BaseModel

logger = logging.getLogger(__name__)


class BestEffortResult(BaseModel):
    ok: bool
    error: str | None = None


async def best_effort(action: Awaitable[Any], *, description: str) -> BestEffortResult:
    """
    Await a secondary bookkeeping step whose failure must not undo or fail
    the primary action. Failures are logged and reported in the result.
    """
    try:
        await action
    except Exception as exc:
        logger.warning("%s failed: %s", description, exc, exc_info=True)
        return BestEffortResult(ok=False, error=str(exc))
    return BestEffortResult(ok=True)


def spawn_tracked(
    tasks: set[asyncio.Task], coro: Coroutine[Any, Any, Any]
) -> asyncio.Task:
    # keep a strong reference until the task finishes
    task = asyncio.create_task(coro)
    tasks.add(task)
    task.add_done_callback(tasks.discard)
    return task
