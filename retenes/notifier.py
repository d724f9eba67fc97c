"""
Message composition for the messaging-app hand-off.

Nothing here delivers anything. The server side only records the hand-off
through ``log_hand_off`` (or whatever ``dispatch_fn`` the app is configured
with); the HTTP client opens the returned deep link and the external
application completes the send.
"""

import logging
import re
from collections.abc import Iterable, Mapping
from datetime import date
from urllib.parse import quote

from pydantic import BaseModel

from retenes.errors import InvalidPhoneError
from retenes.models import Assignment, AssignmentType, Reten
from retenes.week import week_bounds

logger = logging.getLogger(__name__)

DEFAULT_MESSAGING_HOST = "wa.me"
DEFAULT_MIN_PHONE_DIGITS = 9
PENDING_CODE = "PENDIENTE"

TYPE_LABELS = {
    AssignmentType.PLANNED: "Planificada",
    AssignmentType.IMMEDIATE: "Inmediata",
}


class Notification(BaseModel):
    phone: str
    message: str
    url: str


def sanitize_phone(
    phone: str | None, min_digits: int = DEFAULT_MIN_PHONE_DIGITS
) -> str:
    digits = re.sub(r"\D", "", phone or "")
    if not digits or len(digits) < min_digits:
        raise InvalidPhoneError(
            f"phone number {phone!r} has fewer than {min_digits} digits"
        )
    return digits


def format_day(day: date) -> str:
    return day.strftime("%d/%m/%Y")


def constancy_message(person: Reten, assignment: Assignment) -> str:
    lines = [
        "*CONSTANCIA DE ASIGNACIÓN*",
        "",
        f"Código: {assignment.constancy_code or PENDING_CODE}",
        f"Retén: {person.name}",
        f"DNI: {person.dni}",
        f"Unidad: {assignment.unit_name}",
        f"Fecha: {format_day(assignment.assignment_date)}",
        f"Horario: {assignment.start_time:%H:%M} - {assignment.end_time:%H:%M}",
        f"Tipo: {TYPE_LABELS[assignment.assignment_type]}",
    ]
    if assignment.reason:
        lines.append(f"Razón: {assignment.reason}")
    lines += ["", "Por favor presente esta constancia en la unidad asignada."]
    return "\n".join(lines)


def deep_link(host: str, phone: str, message: str) -> str:
    return f"https://{host}/{phone}?text={quote(message, safe='')}"


def compose_constancy(
    person: Reten,
    assignment: Assignment,
    *,
    messaging_host: str = DEFAULT_MESSAGING_HOST,
    min_phone_digits: int = DEFAULT_MIN_PHONE_DIGITS,
) -> Notification:
    phone = sanitize_phone(person.phone, min_phone_digits)
    message = constancy_message(person, assignment)
    return Notification(
        phone=phone, message=message, url=deep_link(messaging_host, phone, message)
    )


def weekly_summary(
    window_start: date,
    assignments: Iterable[Assignment],
    persons: Mapping[str, Reten],
) -> str:
    """
    Plain-text digest of a week, one line per assignment, meant to be
    pasted into a chat or an email by hand.
    """
    start, end = week_bounds(window_start)
    lines = [
        "*ASIGNACIONES DE RETENES - SEMANA*",
        "",
        f"Período: {format_day(start)} - {format_day(end)}",
        "",
    ]
    for a in assignments:
        person = persons.get(a.reten_id)
        lines.append(
            f"• {person.name if person else 'N/A'}: {a.unit_name} - "
            f"{a.assignment_date.isoformat()} ({a.start_time:%H:%M}-{a.end_time:%H:%M})"
        )
    return "\n".join(lines)


async def log_hand_off(url: str) -> None:
    """
    Default ``dispatch_fn``. A server cannot open the messaging app on the
    user's device, so this only logs the link; the client opens the ``url``
    returned by the notify endpoint.
    """
    logger.info("handing off to messaging app: %s", url)
