import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, date, datetime, time

from fastapi import APIRouter, FastAPI, Query, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from retenes.config import Settings, configure_logging
from retenes.database import InMemoryCollectionDatabase
from retenes.errors import (
    InvalidPhoneError,
    NotFoundError,
    RetenesError,
    ServiceError,
    ValidationError,
)
from retenes.models import (
    Assignment,
    AssignmentStatus,
    AssignmentType,
    MonthlyReportRow,
    Reten,
    RetenStatus,
)
from retenes.notifier import compose_constancy, log_hand_off, weekly_summary
from retenes.report import report_dataframe
from retenes.store import AssignmentStore
from retenes.tasks import best_effort, spawn_tracked
from retenes.view import WeekSnapshot, initial_state, load_week, navigate

logger = logging.getLogger(__name__)

router = APIRouter()

NowFn = Callable[[], datetime]
DispatchFn = Callable[[str], Awaitable[None]]


class RetenFields(BaseModel):
    name: str | None = None
    dni: str | None = None
    phone: str | None = None
    email: str | None = None
    photo: str | None = None
    status: RetenStatus | None = None
    notes: str | None = None


class AssignmentUpdate(BaseModel):
    reten_id: str | None = None
    unit_id: str | None = None
    unit_name: str | None = None
    assignment_date: date | None = None
    start_time: time | None = None
    end_time: time | None = None
    assignment_type: AssignmentType | None = None
    status: AssignmentStatus | None = None
    reason: str | None = None
    notes: str | None = None
    notification_sent: bool | None = None


class AssignmentFields(AssignmentUpdate):
    constancy_code: str | None = None


def _store(request: Request) -> AssignmentStore:
    return request.app.state.store


def _week_state(request: Request, day: date | None, offset: int):
    today = day or request.app.state.now_fn().date()
    return navigate(initial_state(today), offset)


@router.get("/health")
async def health_check() -> dict[str, str]:
    return {"status": "ok"}


# -------------------------------------------------------
# on-call persons
# -------------------------------------------------------


@router.get("/retenes")
async def list_retenes(request: Request) -> list[Reten]:
    return await _store(request).list_persons()


@router.post("/retenes", status_code=201)
async def create_reten(fields: RetenFields, request: Request) -> Reten:
    return await _store(request).create_person(fields.model_dump(exclude_unset=True))


@router.get("/retenes/{reten_id}")
async def get_reten(reten_id: str, request: Request) -> Reten:
    return await _store(request).get_person(reten_id)


@router.patch("/retenes/{reten_id}")
async def update_reten(reten_id: str, fields: RetenFields, request: Request) -> Reten:
    return await _store(request).update_person(
        reten_id, fields.model_dump(exclude_unset=True)
    )


@router.delete("/retenes/{reten_id}")
async def delete_reten(reten_id: str, request: Request) -> dict[str, str]:
    await _store(request).delete_person(reten_id)
    return {"status": "deleted", "id": reten_id}


@router.get("/retenes/{reten_id}/assignments")
async def list_reten_assignments(reten_id: str, request: Request) -> list[Assignment]:
    store = _store(request)
    await store.get_person(reten_id)
    return await store.list_assignments_for_person(reten_id)


# -------------------------------------------------------
# assignments
# -------------------------------------------------------


@router.get("/assignments")
async def list_assignments(start: date, end: date, request: Request) -> list[Assignment]:
    return await _store(request).list_assignments_in_range(start, end)


@router.post("/assignments", status_code=201)
async def create_assignment(fields: AssignmentFields, request: Request) -> Assignment:
    return await _store(request).create_assignment(
        fields.model_dump(exclude_unset=True)
    )


@router.get("/assignments/{assignment_id}")
async def get_assignment(assignment_id: str, request: Request) -> Assignment:
    return await _store(request).get_assignment(assignment_id)


@router.patch("/assignments/{assignment_id}")
async def update_assignment(
    assignment_id: str, fields: AssignmentUpdate, request: Request
) -> Assignment:
    return await _store(request).update_assignment(
        assignment_id, fields.model_dump(exclude_unset=True)
    )


@router.delete("/assignments/{assignment_id}")
async def delete_assignment(assignment_id: str, request: Request) -> dict[str, str]:
    await _store(request).delete_assignment(assignment_id)
    return {"status": "deleted", "id": assignment_id}


@router.post("/assignments/{assignment_id}/notify")
async def notify_assignment(assignment_id: str, request: Request) -> dict:
    store = _store(request)
    settings: Settings = request.app.state.settings

    assignment = await store.get_assignment(assignment_id)
    person = await store.get_person(assignment.reten_id)
    notification = compose_constancy(
        person,
        assignment,
        messaging_host=settings.messaging_host,
        min_phone_digits=settings.min_phone_digits,
    )

    try:
        await request.app.state.dispatch_fn(notification.url)
    except Exception as exc:
        logger.error(
            "hand-off for assignment %s failed: %s", assignment_id, exc, exc_info=True
        )
        raise ServiceError(f"could not open messaging app: {exc}") from exc

    # the send already happened; recording it is bookkeeping only
    spawn_tracked(
        request.app.state.background_tasks,
        best_effort(
            store.mark_notification_sent(assignment_id),
            description=f"recording notification for assignment {assignment_id}",
        ),
    )

    return {
        "status": "dispatched",
        "assignment_id": assignment_id,
        "phone": notification.phone,
        "url": notification.url,
        "message": notification.message,
    }


# -------------------------------------------------------
# weekly board
# -------------------------------------------------------


@router.get("/week")
async def get_week(
    request: Request,
    day: date | None = Query(default=None, alias="date"),
    offset: int = 0,
) -> WeekSnapshot:
    return await load_week(_store(request), _week_state(request, day, offset))


@router.get("/week/summary")
async def get_week_summary(
    request: Request,
    day: date | None = Query(default=None, alias="date"),
    offset: int = 0,
) -> dict[str, str]:
    store = _store(request)
    snapshot = await load_week(store, _week_state(request, day, offset))
    persons = {p.id: p for p in await store.list_persons()}
    return {
        "text": weekly_summary(snapshot.window_start, snapshot.assignments, persons)
    }


# -------------------------------------------------------
# reports
# -------------------------------------------------------


@router.get("/reports/monthly")
async def get_monthly_report(
    year: int, month: int, request: Request
) -> list[MonthlyReportRow]:
    return await _store(request).monthly_report(year, month)


@router.get("/reports/monthly/export")
async def export_monthly_report(year: int, month: int, request: Request) -> Response:
    rows = await _store(request).monthly_report(year, month)
    csv = report_dataframe(rows).to_csv(index=False)
    filename = f"reporte_retenes_{year}_{month:02d}.csv"
    return Response(
        content=csv,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# -------------------------------------------------------
# error mapping
# -------------------------------------------------------

ERROR_STATUS: dict[type[RetenesError], int] = {
    ValidationError: 422,
    InvalidPhoneError: 422,
    NotFoundError: 404,
    ServiceError: 502,
}


async def handle_retenes_error(request: Request, exc: Exception) -> JSONResponse:
    status = next(
        (code for kind, code in ERROR_STATUS.items() if isinstance(exc, kind)), 500
    )
    if status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    else:
        logger.info("%s %s rejected: %s", request.method, request.url.path, exc)

    body: dict = {"detail": str(exc)}
    if isinstance(exc, ValidationError) and exc.fields:
        body["fields"] = exc.fields
    return JSONResponse(status_code=status, content=body)


def create_app(
    settings: Settings | None = None,
    db: InMemoryCollectionDatabase | None = None,
) -> FastAPI:
    settings = settings or Settings.from_env()
    configure_logging(settings)

    app = FastAPI(title="Retenes")
    app.state.settings = settings
    app.state.database = db if db is not None else InMemoryCollectionDatabase()

    app.state.now_fn = lambda: datetime.now(UTC)
    app.state.dispatch_fn = log_hand_off
    app.state.background_tasks = set()

    # read now_fn through app.state so tests can swap the clock after startup
    app.state.store = AssignmentStore(
        app.state.database,
        now_fn=lambda: app.state.now_fn(),
        constancy_prefix=settings.constancy_prefix,
    )

    app.add_exception_handler(RetenesError, handle_retenes_error)
    app.include_router(router)
    return app
