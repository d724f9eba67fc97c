"""
Monthly coverage report: one row per on-call person with at least one
assignment in the month.
"""

import calendar
from collections.abc import Iterable, Mapping
from datetime import MAXYEAR, MINYEAR, date, datetime

import pandas as pd

from retenes.errors import ValidationError
from retenes.models import Assignment, AssignmentDetail, MonthlyReportRow, Reten

MISSING = "N/A"

EXPORT_HEADERS = [
    "Person",
    "National-ID",
    "Phone",
    "Total Assignments",
    "Total Hours",
    "Units Covered",
    "Assignment Detail",
]


def month_bounds(year: int, month: int) -> tuple[date, date]:
    if not MINYEAR <= year <= MAXYEAR:
        raise ValidationError(
            f"year must be between {MINYEAR} and {MAXYEAR}, got {year}", ["year"]
        )
    if not 1 <= month <= 12:
        raise ValidationError(f"month must be between 1 and 12, got {month}", ["month"])
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last_day)


def assignment_hours(assignment: Assignment) -> float:
    """
    Wall-clock duration in hours. An end time before the start time gives a
    negative value; it is not corrected.
    """
    anchor = assignment.assignment_date
    start = datetime.combine(anchor, assignment.start_time)
    end = datetime.combine(anchor, assignment.end_time)
    return (end - start).total_seconds() / 3600


def aggregate_monthly(
    assignments: Iterable[Assignment], persons: Mapping[str, Reten]
) -> list[MonthlyReportRow]:
    rows: dict[str, MonthlyReportRow] = {}
    unit_ids: dict[str, set[str]] = {}

    for assignment in assignments:
        row = rows.get(assignment.reten_id)
        if row is None:
            person = persons.get(assignment.reten_id)
            row = MonthlyReportRow(
                reten_id=assignment.reten_id,
                reten_name=person.name if person else MISSING,
                reten_dni=person.dni if person else MISSING,
                reten_phone=person.phone if person else MISSING,
            )
            rows[assignment.reten_id] = row
            unit_ids[assignment.reten_id] = set()

        row.total_assignments += 1
        row.total_hours += assignment_hours(assignment)
        unit_ids[assignment.reten_id].add(assignment.unit_id)
        row.units_covered = len(unit_ids[assignment.reten_id])
        if assignment.unit_name not in row.unit_names:
            row.unit_names.append(assignment.unit_name)
        row.assignments.append(
            AssignmentDetail(
                date=assignment.assignment_date,
                unit=assignment.unit_name,
                start_time=assignment.start_time.strftime("%H:%M"),
                end_time=assignment.end_time.strftime("%H:%M"),
                status=assignment.status,
            )
        )

    return sorted(rows.values(), key=lambda r: r.reten_name)


def export_rows(rows: Iterable[MonthlyReportRow]) -> list[dict[str, str | int]]:
    return [
        {
            "Person": row.reten_name,
            "National-ID": row.reten_dni,
            "Phone": row.reten_phone,
            "Total Assignments": row.total_assignments,
            "Total Hours": f"{row.total_hours:.2f}",
            "Units Covered": row.units_covered,
            "Assignment Detail": "; ".join(
                f"{a.date.isoformat()} {a.unit} ({a.start_time}-{a.end_time})"
                for a in row.assignments
            ),
        }
        for row in rows
    ]


def report_dataframe(rows: Iterable[MonthlyReportRow]) -> pd.DataFrame:
    return pd.DataFrame(export_rows(rows), columns=EXPORT_HEADERS)
