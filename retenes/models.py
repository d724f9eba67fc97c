"""
On-call roster entries, their unit assignments and the derived report rows.
"""

from datetime import date, datetime, time
from enum import StrEnum

from pydantic import BaseModel, Field, field_serializer

RETEN_REQUIRED_FIELDS = ("name", "dni", "phone")
ASSIGNMENT_REQUIRED_FIELDS = (
    "reten_id",
    "unit_id",
    "assignment_date",
    "start_time",
    "end_time",
)


class RetenStatus(StrEnum):
    AVAILABLE = "available"
    ASSIGNED = "assigned"
    UNAVAILABLE = "unavailable"


class AssignmentType(StrEnum):
    PLANNED = "planned"
    IMMEDIATE = "immediate"


class AssignmentStatus(StrEnum):
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class Reten(BaseModel):
    id: str
    name: str
    dni: str
    phone: str
    email: str | None = None
    photo: str | None = None
    status: RetenStatus = RetenStatus.AVAILABLE
    notes: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class Assignment(BaseModel):
    id: str
    reten_id: str
    unit_id: str
    unit_name: str = ""  # snapshot taken when the assignment is saved
    assignment_date: date
    start_time: time  # local wall-clock, no timezone
    end_time: time
    assignment_type: AssignmentType = AssignmentType.PLANNED
    status: AssignmentStatus = AssignmentStatus.SCHEDULED
    reason: str | None = None
    notes: str | None = None
    constancy_code: str | None = None
    notification_sent: bool = False
    notification_sent_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @field_serializer("start_time", "end_time", when_used="json")
    def _serialize_clock(self, value: time) -> str:
        return value.strftime("%H:%M")


class AssignmentDetail(BaseModel):
    date: date
    unit: str
    start_time: str
    end_time: str
    status: AssignmentStatus


class MonthlyReportRow(BaseModel):
    reten_id: str
    reten_name: str
    reten_dni: str
    reten_phone: str
    total_assignments: int = 0
    total_hours: float = 0.0
    units_covered: int = 0
    unit_names: list[str] = Field(default_factory=list)
    assignments: list[AssignmentDetail] = Field(default_factory=list)
