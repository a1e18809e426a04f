import logging

from fastapi import (
    APIRouter,
    BackgroundTasks,
    Depends,
    FastAPI,
    Header,
    Request,
    status,
)
from fastapi.responses import JSONResponse

from absence_tracker.auth import extract_bearer_token, resolve_user
from absence_tracker.context import AppContext
from absence_tracker.dashboard import DashboardFilters
from absence_tracker.errors import CaseError
from absence_tracker.models import (
    AddMemberRequest,
    CaseView,
    EndMembershipRequest,
    HrCaseActionView,
    HrDashboard,
    NewMember,
    Profile,
    ReassignDistrictRequest,
    ReceiveCaseRequest,
    RecordOutcomeRequest,
    ReportAbsenceRequest,
    Team,
    TeamDashboard,
    TeamMembership,
    Workforce,
)
from absence_tracker.notifier import case_finalized_message, case_reported_message

logger = logging.getLogger(__name__)

router = APIRouter()


def get_context(request: Request) -> AppContext:
    return request.app.state.context


def get_current_user(
    context: AppContext = Depends(get_context),
    authorization: str | None = Header(default=None),
) -> Profile:
    return resolve_user(context.db, extract_bearer_token(authorization))


async def handle_case_error(request: Request, exc: CaseError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@router.get("/health")
async def health_check() -> dict[str, str]:
    return {"status": "ok"}


@router.post("/team/cases", status_code=status.HTTP_201_CREATED)
async def report_absence(
    payload: ReportAbsenceRequest,
    background_tasks: BackgroundTasks,
    context: AppContext = Depends(get_context),
    user: Profile = Depends(get_current_user),
) -> dict[str, CaseView]:
    """Team lead reports a worker absent. Opens a pending case."""
    case = context.workflow.report(user, payload)
    background_tasks.add_task(context.notifier.notify, case_reported_message(case))
    return {"data": case}


@router.get("/team/cases")
async def list_team_cases(
    worker_ids: str | None = None,
    context: AppContext = Depends(get_context),
    user: Profile = Depends(get_current_user),
) -> dict[str, list[CaseView]]:
    ids = [i.strip() for i in worker_ids.split(",") if i.strip()] if worker_ids else None
    return {"data": context.dashboard.team_cases(user, ids)}


@router.get("/team/dashboard")
async def team_dashboard(
    context: AppContext = Depends(get_context),
    user: Profile = Depends(get_current_user),
) -> TeamDashboard:
    return context.dashboard.team_dashboard(user)


@router.post("/team/members", status_code=status.HTTP_201_CREATED)
async def add_team_member(
    payload: AddMemberRequest,
    context: AppContext = Depends(get_context),
    user: Profile = Depends(get_current_user),
) -> dict[str, NewMember]:
    worker, membership = context.roster.add_member(user, payload)
    return {"data": NewMember(worker=worker, membership=membership)}


@router.post("/team/members/{membership_id}/end")
async def end_team_membership(
    membership_id: str,
    payload: EndMembershipRequest,
    context: AppContext = Depends(get_context),
    user: Profile = Depends(get_current_user),
) -> dict[str, TeamMembership]:
    return {"data": context.roster.end_membership(user, membership_id, payload)}


@router.post("/hr/cases/{case_id}/receive")
async def receive_case(
    case_id: str,
    payload: ReceiveCaseRequest,
    context: AppContext = Depends(get_context),
    user: Profile = Depends(get_current_user),
) -> dict[str, CaseView]:
    """HR receives a pending case; the SLA deadline is set here."""
    return {"data": context.workflow.receive(user, case_id, payload)}


@router.post("/hr/cases/{case_id}/outcome")
async def record_outcome(
    case_id: str,
    payload: RecordOutcomeRequest,
    context: AppContext = Depends(get_context),
    user: Profile = Depends(get_current_user),
) -> dict[str, CaseView]:
    return {"data": context.workflow.record_outcome(user, case_id, payload)}


@router.post("/hr/cases/{case_id}/approve-swap")
async def approve_swap(
    case_id: str,
    background_tasks: BackgroundTasks,
    context: AppContext = Depends(get_context),
    user: Profile = Depends(get_current_user),
) -> dict[str, CaseView]:
    case = context.workflow.approve_swap(user, case_id)
    background_tasks.add_task(context.notifier.notify, case_finalized_message(case))
    background_tasks.add_task(context.archive.archive_finalization, case)
    return {"data": case}


@router.post("/hr/cases/{case_id}/mark-vacant")
async def mark_vacant(
    case_id: str,
    background_tasks: BackgroundTasks,
    context: AppContext = Depends(get_context),
    user: Profile = Depends(get_current_user),
) -> dict[str, CaseView]:
    case = context.workflow.mark_vacant(user, case_id)
    background_tasks.add_task(context.notifier.notify, case_finalized_message(case))
    background_tasks.add_task(context.archive.archive_finalization, case)
    return {"data": case}


@router.get("/hr/cases/{case_id}/history")
async def case_history(
    case_id: str,
    context: AppContext = Depends(get_context),
    user: Profile = Depends(get_current_user),
) -> dict[str, list[HrCaseActionView]]:
    return {"data": context.workflow.history(user, case_id)}


@router.get("/hr/dashboard")
async def hr_dashboard(
    district_id: str | None = None,
    team_id: str | None = None,
    status: str | None = None,
    recruitment_status: str | None = None,
    start_date: str | None = None,
    end_date: str | None = None,
    context: AppContext = Depends(get_context),
    user: Profile = Depends(get_current_user),
) -> HrDashboard:
    filters = DashboardFilters(
        district_id=district_id,
        team_id=team_id,
        status=status,
        recruitment_status=recruitment_status,
        start_date=start_date,
        end_date=end_date,
    )
    return context.dashboard.hr_dashboard(user, filters)


@router.get("/hr/workforce")
async def hr_workforce(
    district_id: str | None = None,
    team_id: str | None = None,
    context: AppContext = Depends(get_context),
    user: Profile = Depends(get_current_user),
) -> Workforce:
    return context.dashboard.workforce(user, district_id, team_id)


@router.patch("/hr/teams/{team_id}/district")
async def reassign_team_district(
    team_id: str,
    payload: ReassignDistrictRequest,
    context: AppContext = Depends(get_context),
    user: Profile = Depends(get_current_user),
) -> dict[str, Team]:
    return {"data": context.roster.reassign_district(user, team_id, payload)}


@router.post("/line/webhook")
async def line_webhook(request: Request) -> JSONResponse:
    """Logs event types and group ids so the bot's group id can be found."""
    try:
        body = await request.json()
    except ValueError:
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"ok": False})

    events = body.get("events") if isinstance(body, dict) else None
    for event in events if isinstance(events, list) else []:
        if not isinstance(event, dict):
            continue
        source = event.get("source") or {}
        if event.get("type"):
            logger.info("LINE event type: %s", event["type"])
        if isinstance(source, dict) and source.get("groupId"):
            logger.info("LINE groupId: %s", source["groupId"])
    return JSONResponse(content={"ok": True})


def create_app(context: AppContext | None = None) -> FastAPI:
    if context is None:
        context = AppContext.from_env()
    logging.basicConfig(level=context.settings.log_level)

    app = FastAPI(title="Absence Tracker")
    app.state.context = context
    app.add_exception_handler(CaseError, handle_case_error)
    app.include_router(router)
    return app
