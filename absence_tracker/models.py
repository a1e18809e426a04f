"""
Domain models for absence cases, teams and the HR audit trail.
"""

from datetime import date, datetime
from enum import StrEnum

from pydantic import BaseModel, Field


class Role(StrEnum):
    TEAM_LEAD = "team_lead"
    HR_PROV = "hr_prov"


class WorkerStatus(StrEnum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class EndedReason(StrEnum):
    QUIT = "quit"
    ABSENT_3DAYS = "absent_3days"
    REPLACED = "replaced"
    OTHER = "other"


class AbsenceReason(StrEnum):
    ABSENT = "absent"
    MISSING = "missing"
    QUIT = "quit"


class HrStatus(StrEnum):
    PENDING = "pending"  # Reported, not yet received by HR
    IN_SLA = "in_sla"  # Received, SLA clock running
    SLA_EXPIRED = "sla_expired"  # Persisted only when finalized as vacant
    CLOSED = "closed"  # Finalized as swapped


class RecruitmentStatus(StrEnum):
    AWAITING = "awaiting"
    FOUND = "found"
    NOT_FOUND = "not_found"


class FinalStatus(StrEnum):
    OPEN = "open"
    SWAPPED = "swapped"
    VACANT = "vacant"
    CLOSED = "closed"


class HrActionType(StrEnum):
    RECEIVE_SEND = "RECEIVE_SEND"
    RECORD_OUTCOME = "RECORD_OUTCOME"


class District(BaseModel):
    id: str
    name: str


class Team(BaseModel):
    id: str
    name: str
    capacity: int = Field(default=0, ge=0)  # Target headcount
    district_id: str | None = None


class Worker(BaseModel):
    id: str
    full_name: str
    national_id: str | None = None
    status: WorkerStatus = WorkerStatus.ACTIVE
    team_id: str | None = None


class TeamMembership(BaseModel):
    id: str
    worker_id: str
    team_id: str
    start_date: date
    end_date: date | None = None
    ended_reason: EndedReason | None = None
    active: bool = True


class Profile(BaseModel):
    """The authenticated caller, as resolved from a bearer token."""

    user_id: str
    role: str  # Not a Role: unknown roles must resolve and then be denied
    display_name: str | None = None
    team_id: str | None = None  # Set for team leads only


class AbsenceCase(BaseModel):
    """The root entity of the workflow."""

    id: str
    team_id: str
    worker_id: str
    membership_id: str | None = None
    reason: AbsenceReason
    reported_at: datetime
    reported_by: str | None = None
    last_seen_date: date | None = None
    note: str | None = None

    hr_status: HrStatus = HrStatus.PENDING
    hr_received_at: datetime | None = None
    document_sent: bool = False
    sla_deadline_at: date | None = None  # Set together with hr_received_at

    recruitment_status: RecruitmentStatus = RecruitmentStatus.AWAITING
    recruitment_updated_at: datetime | None = None
    replacement_worker_name: str | None = None
    replacement_start_date: date | None = None

    final_status: FinalStatus = FinalStatus.OPEN
    hr_swap_approved_at: datetime | None = None


class HrCaseActionDocument(BaseModel):
    id: str
    action_id: str
    doc_scope: str
    doc_no: str
    created_at: datetime


class HrCaseAction(BaseModel):
    id: str
    case_id: str
    action_type: HrActionType
    signed_by: str
    note: str | None = None
    created_at: datetime


class VacancyPeriod(BaseModel):
    id: str
    case_id: str
    team_id: str
    started_at: date


class ArchivedDocument(BaseModel):
    id: str
    case_id: str
    doc_type: str
    storage_path: str
    content: bytes
    created_at: datetime


# Request payloads. Fields are optional strings; the workflow validates them.


class DocumentRef(BaseModel):
    doc_scope: str | None = None
    doc_no: str | None = None


class ReportAbsenceRequest(BaseModel):
    worker_id: str | None = None
    reason: str | None = None
    last_seen_date: str | None = None
    note: str | None = None


class ReceiveCaseRequest(BaseModel):
    signed_by: str | None = None
    note: str | None = None
    documents: list[DocumentRef] = []


class RecordOutcomeRequest(BaseModel):
    outcome: str | None = None
    replacement_worker_name: str | None = None
    replacement_start_date: str | None = None
    signed_by: str | None = None
    note: str | None = None
    documents: list[DocumentRef] = []


class AddMemberRequest(BaseModel):
    full_name: str | None = None
    national_id: str | None = None


class EndMembershipRequest(BaseModel):
    ended_reason: str | None = None


class ReassignDistrictRequest(BaseModel):
    district_id: str | None = None


# Read projections.


class DeadlineFlags(BaseModel):
    is_overdue: bool = False
    is_in_sla: bool = False
    due_soon: bool = False


class CaseView(AbsenceCase):
    """A case joined with display names and the flags derived at read time."""

    team_name: str | None = None
    worker_name: str | None = None
    removed_from_team: bool = False
    effective_hr_status: HrStatus
    flags: DeadlineFlags
    last_update_at: datetime
    vacancy_days: int | None = None  # Calendar days since the vacancy opened


class HrCaseActionView(HrCaseAction):
    documents: list[HrCaseActionDocument] = []


class TeamSummary(BaseModel):
    id: str
    name: str
    district_id: str | None = None
    capacity: int
    active_headcount: int
    missing: int
    open_cases: int = 0
    last_update: datetime | None = None


class DistrictSummary(BaseModel):
    id: str
    name: str
    teams_count: int = 0
    missing_total: int = 0
    open_cases: int = 0
    overdue: int = 0
    last_update: datetime | None = None


class DashboardSummary(BaseModel):
    total_teams: int = 0
    total_capacity: int = 0
    active_headcount: int = 0
    missing: int = 0
    open_cases_in_sla: int = 0
    open_cases_overdue: int = 0
    due_24h: int = 0


class HrDashboard(BaseModel):
    summary: DashboardSummary
    districts: list[DistrictSummary]
    teams: list[TeamSummary]
    cases: list[CaseView]


class MemberView(BaseModel):
    membership_id: str
    worker_id: str
    full_name: str
    national_id: str | None = None
    status: WorkerStatus
    start_date: date


class NewMember(BaseModel):
    worker: Worker
    membership: TeamMembership


class TeamDashboard(BaseModel):
    team: TeamSummary
    members: list[MemberView]
    cases: list[CaseView]


class Workforce(BaseModel):
    district_id: str | None = None
    teams: list[TeamSummary]
    members: list[MemberView] = []
