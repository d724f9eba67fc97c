import asyncio
from datetime import date

import pytest

from retenes.database import InMemoryCollectionDatabase
from retenes.errors import FetchSuperseded
from retenes.store import AssignmentStore
from retenes.view import LatestFetch, initial_state, load_week, navigate


class GatedStore(AssignmentStore):
    """
    Store whose range reads block until the test releases that week.
    """

    def __init__(self) -> None:
        super().__init__(InMemoryCollectionDatabase())
        self.gates: dict[date, asyncio.Event] = {}
        self.started: dict[date, asyncio.Event] = {}

    def gate(self, start: date) -> asyncio.Event:
        self.started.setdefault(start, asyncio.Event())
        return self.gates.setdefault(start, asyncio.Event())

    async def list_assignments_in_range(self, start, end):
        gate = self.gate(start)
        self.started[start].set()
        await gate.wait()
        return await super().list_assignments_in_range(start, end)


def test_navigation_returns_new_state() -> None:
    state = initial_state(date(2024, 6, 13))
    later = navigate(state, 1)

    assert state.window_start == date(2024, 6, 10)
    assert state.window_end == date(2024, 6, 16)
    assert later.window_start == date(2024, 6, 17)
    assert navigate(later, -1) == state


@pytest.mark.asyncio
async def test_load_week_buckets_every_day() -> None:
    store = AssignmentStore(InMemoryCollectionDatabase())
    ana = await store.create_person({"name": "Ana", "dni": "1", "phone": "987654321"})
    await store.create_assignment(
        {
            "reten_id": ana.id,
            "unit_id": "unit-a",
            "unit_name": "Unit A",
            "assignment_date": "2024-06-12",
            "start_time": "08:00",
            "end_time": "17:00",
        }
    )

    snapshot = await load_week(store, initial_state(date(2024, 6, 10)))

    assert snapshot.window_end == date(2024, 6, 16)
    assert [len(day.assignments) for day in snapshot.days] == [0, 0, 1, 0, 0, 0, 0]
    assert snapshot.days[2].date == date(2024, 6, 12)


@pytest.mark.asyncio
async def test_latest_fetch_cancels_superseded_fetch() -> None:
    fetcher = LatestFetch()
    started = asyncio.Event()

    async def slow() -> str:
        started.set()
        await asyncio.sleep(10)
        return "old"

    async def fast() -> str:
        return "new"

    first = asyncio.create_task(fetcher.run("week", slow()))
    await started.wait()

    assert await fetcher.run("week", fast()) == "new"
    with pytest.raises(FetchSuperseded):
        await first
    assert not fetcher.in_flight("week")


@pytest.mark.asyncio
async def test_latest_fetch_keys_are_independent() -> None:
    fetcher = LatestFetch()

    async def value(v: str) -> str:
        await asyncio.sleep(0)
        return v

    results = await asyncio.gather(
        fetcher.run("week", value("w")), fetcher.run("report", value("r"))
    )
    assert results == ["w", "r"]


@pytest.mark.asyncio
async def test_cancelling_the_caller_is_not_a_supersede() -> None:
    fetcher = LatestFetch()
    started = asyncio.Event()

    async def slow() -> None:
        started.set()
        await asyncio.sleep(10)

    caller = asyncio.create_task(fetcher.run("week", slow()))
    await started.wait()
    caller.cancel()

    with pytest.raises(asyncio.CancelledError):
        await caller


@pytest.mark.asyncio
async def test_rapid_navigation_keeps_only_latest_week() -> None:
    store = GatedStore()
    fetcher = LatestFetch()
    this_week = initial_state(date(2024, 6, 10))
    next_week = navigate(this_week, 1)

    store.gate(this_week.window_start)
    store.gate(next_week.window_start)

    stale = asyncio.create_task(load_week(store, this_week, fetcher))
    await store.started[this_week.window_start].wait()

    current = asyncio.create_task(load_week(store, next_week, fetcher))
    await store.started[next_week.window_start].wait()
    store.gates[next_week.window_start].set()

    snapshot = await current
    assert snapshot.window_start == next_week.window_start
    with pytest.raises(FetchSuperseded):
        await stale
