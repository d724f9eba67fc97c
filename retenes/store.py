"""
Create/read/update/delete of on-call persons and their assignments against
the persistence collaborator.

Every mutating call writes through immediately; nothing is cached between
calls, so each view change sees a fresh read.
"""

import re
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from datetime import UTC, date, datetime
from typing import Any, TypeVar

import pydantic
from pydantic import BaseModel, TypeAdapter

from retenes.database import InMemoryCollectionDatabase, Row
from retenes.errors import NotFoundError, RetenesError, ServiceError, ValidationError
from retenes.models import (
    ASSIGNMENT_REQUIRED_FIELDS,
    RETEN_REQUIRED_FIELDS,
    Assignment,
    MonthlyReportRow,
    Reten,
)
from retenes.report import aggregate_monthly, month_bounds

RETENES = "retenes"
ASSIGNMENTS = "reten_assignments"

RETEN_FIELDS = frozenset(
    {"name", "dni", "phone", "email", "photo", "status", "notes"}
)
ASSIGNMENT_FIELDS = frozenset(
    {
        "reten_id",
        "unit_id",
        "unit_name",
        "assignment_date",
        "start_time",
        "end_time",
        "assignment_type",
        "status",
        "reason",
        "notes",
        "constancy_code",
        "notification_sent",
    }
)
# the constancy code is issued once, on create
ASSIGNMENT_UPDATE_FIELDS = ASSIGNMENT_FIELDS - {"constancy_code"}
OPTIONAL_TEXT_FIELDS = frozenset({"email", "photo", "notes", "reason", "constancy_code"})

NowFn = Callable[[], datetime]
M = TypeVar("M", bound=BaseModel)

_date_adapter = TypeAdapter(date)


def _prepare(fields: Mapping[str, Any], allowed: frozenset[str]) -> Row:
    row: Row = {}
    for key, value in fields.items():
        if key not in allowed:
            continue
        if isinstance(value, str):
            value = value.strip()
            if key in OPTIONAL_TEXT_FIELDS and not value:
                value = None
        row[key] = value
    return row


def _require(row: Row, required: tuple[str, ...], kind: str) -> None:
    missing = [f for f in required if row.get(f) is None or row.get(f) == ""]
    if missing:
        raise ValidationError(
            f"{kind} is missing required fields: {', '.join(missing)}", missing
        )


def _build(model: type[M], data: Row) -> M:
    try:
        return model.model_validate(data)
    except pydantic.ValidationError as exc:
        fields = [".".join(str(p) for p in err["loc"]) for err in exc.errors()]
        raise ValidationError(
            f"invalid {model.__name__.lower()} fields: {', '.join(fields)}", fields
        ) from exc


def coerce_date(value: date | str, field: str = "date") -> date:
    try:
        return _date_adapter.validate_python(value)
    except pydantic.ValidationError as exc:
        raise ValidationError(f"{field} is not a valid date: {value!r}", [field]) from exc


class AssignmentStore:
    def __init__(
        self,
        db: InMemoryCollectionDatabase,
        *,
        now_fn: NowFn | None = None,
        constancy_prefix: str = "RET",
    ) -> None:
        self._db = db
        self._now_fn = now_fn or (lambda: datetime.now(UTC))
        self._constancy_prefix = constancy_prefix

    @contextmanager
    def _backend(self) -> Iterator[None]:
        # anything the collaborator raises that isn't already ours is a service failure
        try:
            yield
        except RetenesError:
            raise
        except Exception as exc:
            raise ServiceError(str(exc)) from exc

    # ---------------------------------------------------------------
    # persons
    # ---------------------------------------------------------------

    async def list_persons(self) -> list[Reten]:
        with self._backend():
            rows = self._db.select(RETENES)
        return sorted((Reten.model_validate(r) for r in rows), key=lambda p: p.name)

    async def get_person(self, reten_id: str) -> Reten:
        with self._backend():
            row = self._db.get(RETENES, reten_id)
        if row is None:
            raise NotFoundError("reten", reten_id)
        return Reten.model_validate(row)

    async def create_person(self, fields: Mapping[str, Any]) -> Reten:
        row = _prepare(fields, RETEN_FIELDS)
        _require(row, RETEN_REQUIRED_FIELDS, "reten")
        now = self._now_fn()
        candidate = _build(Reten, {**row, "id": "", "created_at": now, "updated_at": now})
        with self._backend():
            stored = self._db.insert(RETENES, candidate.model_dump(exclude={"id"}))
        return Reten.model_validate(stored)

    async def update_person(self, reten_id: str, fields: Mapping[str, Any]) -> Reten:
        current = await self.get_person(reten_id)
        changes = _prepare(fields, RETEN_FIELDS)
        merged = {**current.model_dump(), **changes, "updated_at": self._now_fn()}
        _require(merged, RETEN_REQUIRED_FIELDS, "reten")
        candidate = _build(Reten, merged)
        with self._backend():
            stored = self._db.update(
                RETENES, reten_id, candidate.model_dump(exclude={"id"})
            )
        if stored is None:
            raise NotFoundError("reten", reten_id)
        return Reten.model_validate(stored)

    async def delete_person(self, reten_id: str) -> None:
        """
        Delete a person together with their assignments, so no assignment is
        left pointing at a missing person.
        """
        await self.get_person(reten_id)
        with self._backend():
            for row in self._db.select(
                ASSIGNMENTS, lambda r: r["reten_id"] == reten_id
            ):
                self._db.delete(ASSIGNMENTS, row["id"])
            deleted = self._db.delete(RETENES, reten_id)
        if not deleted:
            raise NotFoundError("reten", reten_id)

    # ---------------------------------------------------------------
    # assignments
    # ---------------------------------------------------------------

    async def get_assignment(self, assignment_id: str) -> Assignment:
        with self._backend():
            row = self._db.get(ASSIGNMENTS, assignment_id)
        if row is None:
            raise NotFoundError("assignment", assignment_id)
        return Assignment.model_validate(row)

    async def list_assignments_in_range(
        self, start: date | str, end: date | str
    ) -> list[Assignment]:
        first = coerce_date(start, "start")
        last = coerce_date(end, "end")
        with self._backend():
            rows = self._db.select(
                ASSIGNMENTS, lambda r: first <= r["assignment_date"] <= last
            )
        assignments = [Assignment.model_validate(r) for r in rows]
        return sorted(assignments, key=lambda a: (a.assignment_date, a.start_time))

    async def list_assignments_for_person(self, reten_id: str) -> list[Assignment]:
        with self._backend():
            rows = self._db.select(ASSIGNMENTS, lambda r: r["reten_id"] == reten_id)
        assignments = [Assignment.model_validate(r) for r in rows]
        return sorted(
            assignments,
            key=lambda a: (a.assignment_date, a.start_time),
            reverse=True,
        )

    async def create_assignment(self, fields: Mapping[str, Any]) -> Assignment:
        row = _prepare(fields, ASSIGNMENT_FIELDS)
        _require(row, ASSIGNMENT_REQUIRED_FIELDS, "assignment")
        await self.get_person(row["reten_id"])

        now = self._now_fn()
        if not row.get("constancy_code"):
            row["constancy_code"] = self._next_constancy_code(now.year)
        elif self._constancy_code_taken(row["constancy_code"]):
            raise ValidationError(
                f"constancy code {row['constancy_code']} is already in use",
                ["constancy_code"],
            )
        if row.get("notification_sent"):
            row["notification_sent_at"] = now
        candidate = _build(
            Assignment, {**row, "id": "", "created_at": now, "updated_at": now}
        )
        with self._backend():
            stored = self._db.insert(ASSIGNMENTS, candidate.model_dump(exclude={"id"}))
        return Assignment.model_validate(stored)

    async def update_assignment(
        self, assignment_id: str, fields: Mapping[str, Any]
    ) -> Assignment:
        """
        Apply a partial update. Only the given fields change; the mandatory
        fields must still be present afterwards.
        """
        current = await self.get_assignment(assignment_id)
        changes = _prepare(fields, ASSIGNMENT_UPDATE_FIELDS)
        now = self._now_fn()

        if changes.get("reten_id") and changes["reten_id"] != current.reten_id:
            await self.get_person(changes["reten_id"])
        if changes.get("notification_sent") and not current.notification_sent:
            changes["notification_sent_at"] = now
        elif changes.get("notification_sent") is False:
            changes["notification_sent_at"] = None

        merged = {**current.model_dump(), **changes, "updated_at": now}
        _require(merged, ASSIGNMENT_REQUIRED_FIELDS, "assignment")
        candidate = _build(Assignment, merged)
        with self._backend():
            stored = self._db.update(
                ASSIGNMENTS, assignment_id, candidate.model_dump(exclude={"id"})
            )
        if stored is None:
            raise NotFoundError("assignment", assignment_id)
        return Assignment.model_validate(stored)

    async def mark_notification_sent(self, assignment_id: str) -> Assignment:
        return await self.update_assignment(assignment_id, {"notification_sent": True})

    async def delete_assignment(self, assignment_id: str) -> None:
        with self._backend():
            deleted = self._db.delete(ASSIGNMENTS, assignment_id)
        if not deleted:
            raise NotFoundError("assignment", assignment_id)

    def _constancy_code_taken(self, code: str) -> bool:
        with self._backend():
            return bool(
                self._db.select(ASSIGNMENTS, lambda r: r.get("constancy_code") == code)
            )

    def _next_constancy_code(self, year: int) -> str:
        prefix = f"{self._constancy_prefix}-{year}-"
        with self._backend():
            codes = [
                r["constancy_code"]
                for r in self._db.select(ASSIGNMENTS)
                if (r.get("constancy_code") or "").startswith(prefix)
            ]
        sequence = 0
        for code in codes:
            match = re.search(r"(\d+)$", code)
            if match:
                sequence = max(sequence, int(match.group(1)))
        return f"{prefix}{sequence + 1:06d}"

    # ---------------------------------------------------------------
    # reports
    # ---------------------------------------------------------------

    async def monthly_report(self, year: int, month: int) -> list[MonthlyReportRow]:
        first, last = month_bounds(year, month)
        assignments = await self.list_assignments_in_range(first, last)
        persons = {p.id: p for p in await self.list_persons()}
        return aggregate_monthly(assignments, persons)
