"""
Read-only summaries over teams, memberships and cases.

Nothing here writes to the store. Overdue and due-soon flags are always
derived from the SLA deadline and today's date; the stored ``hr_status``
is never consulted for them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime

from pydantic import BaseModel

from absence_tracker.business_days import (
    Clock,
    calendar_days_between,
    parse_date,
    to_utc_date,
    utc_now,
)
from absence_tracker.config import Settings
from absence_tracker.database import Database
from absence_tracker.errors import Forbidden, NotFound, ValidationError
from absence_tracker.models import (
    AbsenceCase,
    CaseView,
    DashboardSummary,
    DeadlineFlags,
    DistrictSummary,
    FinalStatus,
    HrDashboard,
    HrStatus,
    MemberView,
    Profile,
    RecruitmentStatus,
    Team,
    TeamDashboard,
    TeamSummary,
    Worker,
    Workforce,
)
from absence_tracker.policy import Operation, authorize

logger = logging.getLogger(__name__)

CASE_STATUS_FILTERS = ("open", "closed", "in_sla", "overdue")


def days_until_deadline(case: AbsenceCase, today: date) -> int | None:
    if case.sla_deadline_at is None:
        return None
    return (case.sla_deadline_at - today).days


def deadline_flags(case: AbsenceCase, today: date) -> DeadlineFlags:
    """Classify an open case by calendar days left before its deadline."""
    diff = days_until_deadline(case, today)
    if diff is None or case.final_status != FinalStatus.OPEN:
        return DeadlineFlags()
    return DeadlineFlags(
        is_overdue=diff < 0,
        is_in_sla=diff >= 0,
        due_soon=0 <= diff <= 1,
    )


def effective_hr_status(case: AbsenceCase, today: date) -> HrStatus:
    """The stored status, except an open case past its deadline reads as expired."""
    if deadline_flags(case, today).is_overdue:
        return HrStatus.SLA_EXPIRED
    return case.hr_status


def last_update_at(case: AbsenceCase) -> datetime:
    timestamps = [
        case.reported_at,
        case.hr_received_at,
        case.recruitment_updated_at,
        case.hr_swap_approved_at,
    ]
    return max(t for t in timestamps if t is not None)


def _latest(*values: datetime | None) -> datetime | None:
    present = [v for v in values if v is not None]
    return max(present) if present else None


@dataclass(frozen=True)
class ActiveMemberships:
    """A point-in-time snapshot of which memberships are active."""

    ids: frozenset[str]
    pairs: frozenset[tuple[str, str]]  # (team_id, worker_id)
    headcount: dict[str, int]

    @classmethod
    def from_db(cls, db: Database) -> ActiveMemberships:
        active = db.get_active_memberships()
        headcount: dict[str, int] = {}
        for membership in active:
            headcount[membership.team_id] = headcount.get(membership.team_id, 0) + 1
        return cls(
            ids=frozenset(m.id for m in active),
            pairs=frozenset((m.team_id, m.worker_id) for m in active),
            headcount=headcount,
        )

    def removed_from_team(self, case: AbsenceCase) -> bool:
        if case.membership_id:
            return case.membership_id not in self.ids
        return (case.team_id, case.worker_id) not in self.pairs


def build_case_view(
    db: Database,
    case: AbsenceCase,
    today: date,
    memberships: ActiveMemberships,
    team: Team | None = None,
    worker: Worker | None = None,
) -> CaseView:
    team = team or db.teams.get(case.team_id)
    worker = worker or db.workers.get(case.worker_id)

    vacancy_days = None
    if case.final_status == FinalStatus.VACANT:
        periods = db.vacancy_periods.filter(lambda p: p.case_id == case.id)
        if periods:
            vacancy_days = calendar_days_between(periods[0].started_at, today)

    return CaseView(
        **case.model_dump(),
        team_name=team.name if team else None,
        worker_name=worker.full_name if worker else None,
        removed_from_team=memberships.removed_from_team(case),
        effective_hr_status=effective_hr_status(case, today),
        flags=deadline_flags(case, today),
        last_update_at=last_update_at(case),
        vacancy_days=vacancy_days,
    )


def summarize_team(
    team: Team, headcount: int, cases: list[AbsenceCase]
) -> TeamSummary:
    return TeamSummary(
        id=team.id,
        name=team.name,
        district_id=team.district_id,
        capacity=team.capacity,
        active_headcount=headcount,
        missing=max(0, team.capacity - headcount),
        open_cases=sum(1 for c in cases if c.final_status == FinalStatus.OPEN),
        last_update=_latest(*(last_update_at(c) for c in cases)),
    )


class DashboardFilters(BaseModel):
    district_id: str | None = None
    team_id: str | None = None
    status: str | None = None
    recruitment_status: str | None = None
    start_date: str | None = None
    end_date: str | None = None


class DashboardAggregator:
    def __init__(self, db: Database, settings: Settings, clock: Clock = utc_now):
        self._db = db
        self._settings = settings
        self._clock = clock

    def today(self) -> date:
        return to_utc_date(self._clock())

    def hr_dashboard(self, user: Profile, filters: DashboardFilters) -> HrDashboard:
        authorize(user, Operation.VIEW_HR_DASHBOARD)
        status, recruitment, start, end = self._validate_filters(filters)
        today = self.today()

        teams = sorted(self._db.teams.all(), key=lambda t: t.name)
        if filters.team_id:
            teams = [t for t in teams if t.id == filters.team_id]
        elif filters.district_id:
            teams = [t for t in teams if t.district_id == filters.district_id]

        team_ids = {t.id for t in teams}
        memberships = ActiveMemberships.from_db(self._db)
        all_cases = self._db.cases.filter(lambda c: c.team_id in team_ids)
        cases_by_team: dict[str, list[AbsenceCase]] = {t.id: [] for t in teams}
        for case in all_cases:
            cases_by_team[case.team_id].append(case)

        team_summaries = [
            summarize_team(t, memberships.headcount.get(t.id, 0), cases_by_team[t.id])
            for t in teams
        ]

        summary = DashboardSummary(
            total_teams=len(team_summaries),
            total_capacity=sum(t.capacity for t in team_summaries),
            active_headcount=sum(t.active_headcount for t in team_summaries),
            missing=sum(t.missing for t in team_summaries),
        )
        for case in all_cases:
            flags = deadline_flags(case, today)
            summary.open_cases_in_sla += flags.is_in_sla
            summary.open_cases_overdue += flags.is_overdue
            summary.due_24h += flags.due_soon

        districts = self._district_rollup(team_summaries, cases_by_team, today)

        selected = [
            c
            for c in all_cases
            if self._matches(c, status, recruitment, start, end, today)
        ]
        selected.sort(key=lambda c: c.reported_at, reverse=True)
        selected = selected[: self._settings.dashboard_case_limit]

        teams_by_id = {t.id: t for t in teams}
        case_views = [
            build_case_view(
                self._db, c, today, memberships, team=teams_by_id[c.team_id]
            )
            for c in selected
        ]
        return HrDashboard(
            summary=summary,
            districts=districts,
            teams=team_summaries,
            cases=case_views,
        )

    def team_dashboard(self, user: Profile) -> TeamDashboard:
        authorize(user, Operation.VIEW_TEAM_DASHBOARD)
        team = self._own_team(user)
        memberships = ActiveMemberships.from_db(self._db)
        cases = self._db.get_cases_for_team(team.id)
        return TeamDashboard(
            team=summarize_team(team, memberships.headcount.get(team.id, 0), cases),
            members=self.active_members(team.id),
            cases=self._latest_case_views(team, cases, memberships),
        )

    def team_cases(
        self, user: Profile, worker_ids: list[str] | None = None
    ) -> list[CaseView]:
        """The most recent case for each worker in the caller's team."""
        authorize(user, Operation.VIEW_TEAM_CASES)
        team = self._own_team(user)
        cases = self._db.get_cases_for_team(team.id)
        if worker_ids:
            wanted = set(worker_ids)
            cases = [c for c in cases if c.worker_id in wanted]
        memberships = ActiveMemberships.from_db(self._db)
        return self._latest_case_views(team, cases, memberships)

    def workforce(
        self, user: Profile, district_id: str | None = None, team_id: str | None = None
    ) -> Workforce:
        authorize(user, Operation.VIEW_WORKFORCE)
        if district_id and self._db.districts.get(district_id) is None:
            raise NotFound("District not found.")

        teams = sorted(self._db.teams.all(), key=lambda t: t.name)
        if district_id:
            teams = [t for t in teams if t.district_id == district_id]

        memberships = ActiveMemberships.from_db(self._db)
        summaries = [
            summarize_team(
                t,
                memberships.headcount.get(t.id, 0),
                self._db.get_cases_for_team(t.id),
            )
            for t in teams
        ]
        members = []
        if team_id and team_id in {t.id for t in teams}:
            members = self.active_members(team_id)
        return Workforce(district_id=district_id, teams=summaries, members=members)

    def active_members(self, team_id: str) -> list[MemberView]:
        members = []
        for membership in self._db.get_active_memberships(team_id=team_id):
            worker = self._db.workers.get(membership.worker_id)
            if worker is None:
                logger.warning(
                    "Membership %s points at missing worker %s",
                    membership.id,
                    membership.worker_id,
                )
                continue
            members.append(
                MemberView(
                    membership_id=membership.id,
                    worker_id=worker.id,
                    full_name=worker.full_name,
                    national_id=worker.national_id,
                    status=worker.status,
                    start_date=membership.start_date,
                )
            )
        members.sort(key=lambda m: (m.start_date, m.full_name))
        return members

    def _own_team(self, user: Profile) -> Team:
        if not user.team_id:
            raise Forbidden("No team assigned to this profile.")
        team = self._db.teams.get(user.team_id)
        if team is None:
            raise NotFound("Team not found.")
        return team

    def _latest_case_views(
        self, team: Team, cases: list[AbsenceCase], memberships: ActiveMemberships
    ) -> list[CaseView]:
        latest: dict[str, AbsenceCase] = {}
        for case in cases:
            current = latest.get(case.worker_id)
            if current is None or case.reported_at > current.reported_at:
                latest[case.worker_id] = case
        today = self.today()
        views = [
            build_case_view(self._db, c, today, memberships, team=team)
            for c in latest.values()
        ]
        views.sort(key=lambda v: v.reported_at, reverse=True)
        return views

    def _district_rollup(
        self,
        team_summaries: list[TeamSummary],
        cases_by_team: dict[str, list[AbsenceCase]],
        today: date,
    ) -> list[DistrictSummary]:
        rollup: dict[str, DistrictSummary] = {}
        for team in team_summaries:
            if team.district_id is None:
                continue
            if team.district_id not in rollup:
                district = self._db.districts.get(team.district_id)
                if district is None:
                    continue
                rollup[team.district_id] = DistrictSummary(
                    id=district.id, name=district.name
                )
            row = rollup[team.district_id]
            row.teams_count += 1
            row.missing_total += team.missing
            row.open_cases += team.open_cases
            row.overdue += sum(
                deadline_flags(c, today).is_overdue for c in cases_by_team[team.id]
            )
            row.last_update = _latest(row.last_update, team.last_update)
        return sorted(rollup.values(), key=lambda d: d.name)

    def _validate_filters(
        self, filters: DashboardFilters
    ) -> tuple[str | None, RecruitmentStatus | None, date | None, date | None]:
        status = (filters.status or "").strip() or None
        if status is not None and status not in CASE_STATUS_FILTERS:
            raise ValidationError(
                f"Status filter must be one of: {', '.join(CASE_STATUS_FILTERS)}."
            )

        recruitment = None
        if filters.recruitment_status:
            try:
                recruitment = RecruitmentStatus(filters.recruitment_status.strip())
            except ValueError:
                raise ValidationError("Unknown recruitment status filter.") from None

        try:
            start = parse_date(filters.start_date) if filters.start_date else None
            end = parse_date(filters.end_date) if filters.end_date else None
        except ValueError as exc:
            raise ValidationError(str(exc)) from None
        return status, recruitment, start, end

    @staticmethod
    def _matches(
        case: AbsenceCase,
        status: str | None,
        recruitment: RecruitmentStatus | None,
        start: date | None,
        end: date | None,
        today: date,
    ) -> bool:
        if recruitment is not None and case.recruitment_status != recruitment:
            return False
        reported_on = to_utc_date(case.reported_at)
        if start is not None and reported_on < start:
            return False
        if end is not None and reported_on > end:
            return False
        if status == "open":
            return case.final_status == FinalStatus.OPEN
        if status == "closed":
            return case.final_status != FinalStatus.OPEN
        if status == "in_sla":
            return deadline_flags(case, today).is_in_sla
        if status == "overdue":
            return deadline_flags(case, today).is_overdue
        return True
