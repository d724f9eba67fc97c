"""
Weekly board state, threaded explicitly by the caller.

``WeekViewState`` is immutable: navigation returns a new state and the
caller decides which one is current. ``LatestFetch`` makes sure a slow
response for a week the user already navigated away from is cancelled
rather than painted over the newer one.
"""

import asyncio
from collections.abc import Coroutine
from datetime import date
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict

from retenes.errors import FetchSuperseded
from retenes.models import Assignment
from retenes.store import AssignmentStore
from retenes.week import bucket_by_day, monday_of, shift_week, week_bounds

T = TypeVar("T")


class WeekViewState(BaseModel):
    model_config = ConfigDict(frozen=True)

    window_start: date

    @property
    def window_end(self) -> date:
        return week_bounds(self.window_start)[1]


class DayBucket(BaseModel):
    date: date
    assignments: list[Assignment]


class WeekSnapshot(BaseModel):
    window_start: date
    window_end: date
    days: list[DayBucket]

    @property
    def assignments(self) -> list[Assignment]:
        return [a for day in self.days for a in day.assignments]


def initial_state(today: date | None = None) -> WeekViewState:
    return WeekViewState(window_start=monday_of(today))


def navigate(state: WeekViewState, delta_weeks: int) -> WeekViewState:
    return WeekViewState(window_start=shift_week(state.window_start, delta_weeks))


class LatestFetch:
    """
    One in-flight fetch per key. Starting a new fetch for a key cancels the
    previous one, whose caller gets ``FetchSuperseded``.
    """

    def __init__(self) -> None:
        self._tasks: dict[str, asyncio.Task] = {}

    async def run(self, key: str, coro: Coroutine[Any, Any, T]) -> T:
        previous = self._tasks.get(key)
        if previous is not None and not previous.done():
            previous.cancel()

        task = asyncio.create_task(coro)
        self._tasks[key] = task
        try:
            return await task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            # our own caller being cancelled is not a supersede
            if current is not None and current.cancelling():
                raise
            raise FetchSuperseded(f"fetch for {key!r} was superseded") from None
        finally:
            if self._tasks.get(key) is task:
                del self._tasks[key]

    def in_flight(self, key: str) -> bool:
        task = self._tasks.get(key)
        return task is not None and not task.done()


async def load_week(
    store: AssignmentStore,
    state: WeekViewState,
    fetcher: LatestFetch | None = None,
) -> WeekSnapshot:
    start, end = week_bounds(state.window_start)
    fetch = store.list_assignments_in_range(start, end)
    if fetcher is not None:
        assignments = await fetcher.run("week", fetch)
    else:
        assignments = await fetch

    buckets = bucket_by_day(assignments, state.window_start)
    return WeekSnapshot(
        window_start=start,
        window_end=end,
        days=[DayBucket(date=d, assignments=items) for d, items in buckets.items()],
    )
