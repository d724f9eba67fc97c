from datetime import date, time
from urllib.parse import parse_qs, urlsplit

import pytest

from retenes.errors import InvalidPhoneError, ServiceError
from retenes.models import Assignment, AssignmentType, Reten
from retenes.notifier import compose_constancy, sanitize_phone, weekly_summary
from retenes.tasks import best_effort


@pytest.fixture
def ana() -> Reten:
    return Reten(id="ana-id", name="Ana Ruiz", dni="12345678", phone="+51 987-654 321")


@pytest.fixture
def assignment() -> Assignment:
    return Assignment(
        id="a1",
        reten_id="ana-id",
        unit_id="unit-a",
        unit_name="Unit A",
        assignment_date=date(2024, 6, 5),
        start_time=time(8, 0),
        end_time=time(17, 0),
        constancy_code="RET-2024-000007",
    )


def test_sanitize_phone_strips_non_digits() -> None:
    assert sanitize_phone("+51 987-654 321") == "51987654321"


@pytest.mark.parametrize("phone", ["123", "", None, "abc-def"])
def test_sanitize_phone_rejects_short_or_empty(phone) -> None:
    with pytest.raises(InvalidPhoneError):
        sanitize_phone(phone)


def test_message_contains_unit_and_padded_date(ana, assignment) -> None:
    notification = compose_constancy(ana, assignment)

    assert notification.phone == "51987654321"
    assert "Unit A" in notification.message
    assert "05/06/2024" in notification.message


def test_message_section_order(ana, assignment) -> None:
    lines = compose_constancy(ana, assignment).message.splitlines()
    labels = [line.split(":")[0] for line in lines if ":" in line]
    assert labels == ["Código", "Retén", "DNI", "Unidad", "Fecha", "Horario", "Tipo"]
    assert "Horario: 08:00 - 17:00" in lines
    assert "Tipo: Planificada" in lines


def test_reason_line_only_when_given(ana, assignment) -> None:
    assert "Razón" not in compose_constancy(ana, assignment).message

    urgent = assignment.model_copy(
        update={"reason": "Descanso médico", "assignment_type": AssignmentType.IMMEDIATE}
    )
    message = compose_constancy(ana, urgent).message
    assert "Razón: Descanso médico" in message
    assert "Tipo: Inmediata" in message


def test_missing_code_uses_placeholder(ana, assignment) -> None:
    no_code = assignment.model_copy(update={"constancy_code": None})
    assert "Código: PENDIENTE" in compose_constancy(ana, no_code).message


def test_url_carries_phone_and_encoded_message(ana, assignment) -> None:
    notification = compose_constancy(ana, assignment, messaging_host="chat.example")
    parts = urlsplit(notification.url)

    assert parts.scheme == "https"
    assert parts.netloc == "chat.example"
    assert parts.path == "/51987654321"
    assert " " not in notification.url
    assert parse_qs(parts.query)["text"] == [notification.message]


def test_invalid_phone_fails_composition(ana, assignment) -> None:
    with pytest.raises(InvalidPhoneError):
        compose_constancy(ana.model_copy(update={"phone": "123"}), assignment)


def test_weekly_summary_lists_each_assignment(ana, assignment) -> None:
    other = assignment.model_copy(
        update={"id": "a2", "reten_id": "gone-id", "unit_name": "Unit B"}
    )
    text = weekly_summary(date(2024, 6, 3), [assignment, other], {"ana-id": ana})

    assert "Período: 03/06/2024 - 09/06/2024" in text
    assert "• Ana Ruiz: Unit A - 2024-06-05 (08:00-17:00)" in text
    assert "• N/A: Unit B - 2024-06-05 (08:00-17:00)" in text


@pytest.mark.asyncio
async def test_best_effort_reports_failure_without_raising() -> None:
    async def failing():
        raise ServiceError("db down")

    result = await best_effort(failing(), description="recording flag")
    assert result.ok is False
    assert result.error == "db down"


@pytest.mark.asyncio
async def test_best_effort_success() -> None:
    async def fine():
        return None

    assert (await best_effort(fine(), description="recording flag")).ok is True
