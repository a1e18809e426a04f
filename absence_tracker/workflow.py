"""
The absence-case state machine.

    CREATED (pending, awaiting, open)
      --receive-->         RECEIVED (in_sla, awaiting, open)
      --record_outcome-->  FOUND / NOT_FOUND (in_sla, found|not_found, open)
    FOUND     --approve_swap [today <= deadline]--> SWAPPED (closed, found, swapped)
    NOT_FOUND --mark_vacant  [today >  deadline]--> VACANT (sla_expired, not_found, vacant)

Every transition is a conditional update: the fields a precondition looked
at are re-checked inside the store lock at write time, and a writer that lost
the race re-reads the case so it fails with the reason that now applies.
"""

import logging
from collections.abc import Callable, Iterable, Mapping
from datetime import date, datetime, timedelta
from typing import Any
from uuid import uuid4

from absence_tracker.business_days import (
    Clock,
    calculate_business_deadline,
    parse_date,
    to_utc_date,
    utc_now,
)
from absence_tracker.config import Settings
from absence_tracker.dashboard import ActiveMemberships, build_case_view
from absence_tracker.database import Database
from absence_tracker.errors import ConflictError, Forbidden, NotFound, ValidationError
from absence_tracker.models import (
    AbsenceCase,
    AbsenceReason,
    CaseView,
    DocumentRef,
    FinalStatus,
    HrActionType,
    HrCaseAction,
    HrCaseActionDocument,
    HrCaseActionView,
    HrStatus,
    Profile,
    ReceiveCaseRequest,
    RecordOutcomeRequest,
    RecruitmentStatus,
    ReportAbsenceRequest,
    VacancyPeriod,
)
from absence_tracker.policy import Operation, authorize

logger = logging.getLogger(__name__)

OUTCOMES = (RecruitmentStatus.FOUND, RecruitmentStatus.NOT_FOUND)


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


def _require(value: str | None, message: str) -> str:
    cleaned = _clean(value)
    if cleaned is None:
        raise ValidationError(message)
    return cleaned


def _parse_payload_date(value: str, field: str) -> date:
    try:
        return parse_date(value)
    except ValueError:
        raise ValidationError(f"{field} is not a valid date.") from None


class CaseWorkflow:
    def __init__(
        self,
        db: Database,
        settings: Settings,
        clock: Clock = utc_now,
        max_attempts: int = 3,
    ) -> None:
        self._db = db
        self._settings = settings
        self._clock = clock
        self._max_attempts = max_attempts

    def today(self) -> date:
        return to_utc_date(self._clock())

    def report(self, user: Profile, payload: ReportAbsenceRequest) -> CaseView:
        """A team lead reports one of their own workers as absent."""
        authorize(user, Operation.REPORT_ABSENCE)

        worker_id = _require(payload.worker_id, "Worker id is required.")
        reason_text = _require(payload.reason, "Reason is required.").lower()
        try:
            reason = AbsenceReason(reason_text)
        except ValueError:
            allowed = ", ".join(r.value for r in AbsenceReason)
            raise ValidationError(f"Reason must be one of: {allowed}.") from None

        last_seen_date = None
        if _clean(payload.last_seen_date):
            last_seen_date = _parse_payload_date(
                payload.last_seen_date, "Last seen date"
            )

        if self._db.workers.get(worker_id) is None:
            raise NotFound("Worker not found.")
        if not user.team_id:
            raise Forbidden("No team assigned to this profile.")

        membership = self._db.get_active_membership(user.team_id, worker_id)
        if membership is None:
            raise Forbidden("Worker is not an active member of your team.")

        case = AbsenceCase(
            id=str(uuid4()),
            team_id=user.team_id,
            worker_id=worker_id,
            membership_id=membership.id,
            reason=reason,
            reported_at=self._clock(),
            reported_by=user.user_id,
            last_seen_date=last_seen_date,
            note=_clean(payload.note),
        )
        self._db.cases.put(case.id, case)
        logger.info(
            "Case %s reported for worker %s (team %s, reason %s)",
            case.id,
            worker_id,
            case.team_id,
            reason.value,
        )
        return self.view(case)

    def receive(
        self, user: Profile, case_id: str, payload: ReceiveCaseRequest
    ) -> CaseView:
        """HR acknowledges a pending case and starts the SLA clock."""
        authorize(user, Operation.RECEIVE_CASE)
        signed_by = _require(payload.signed_by, "Signed by is required.")
        documents = self._validate_documents(
            payload.documents, self._settings.receive_required_scopes
        )
        note = _clean(payload.note)

        def check(case: AbsenceCase) -> None:
            if case.hr_status != HrStatus.PENDING:
                raise ConflictError("Case is already in progress.")

        def changes(case: AbsenceCase, now: datetime) -> dict[str, Any]:
            return {
                "hr_received_at": now,
                "sla_deadline_at": calculate_business_deadline(
                    now, self._settings.sla_business_days
                ),
                "hr_status": HrStatus.IN_SLA,
                "document_sent": True,
            }

        def audit(case: AbsenceCase, now: datetime) -> None:
            self._log_action(
                case.id, HrActionType.RECEIVE_SEND, signed_by, note, documents, now
            )

        updated = self._transition(
            case_id, check, changes, guard=("hr_status",), on_commit=audit
        )
        logger.info(
            "Case %s received by %s, SLA deadline %s",
            case_id,
            user.user_id,
            updated.sla_deadline_at,
        )
        return self.view(updated)

    def record_outcome(
        self, user: Profile, case_id: str, payload: RecordOutcomeRequest
    ) -> CaseView:
        authorize(user, Operation.RECORD_OUTCOME)

        try:
            outcome = RecruitmentStatus(_clean(payload.outcome))
        except ValueError:
            outcome = None
        if outcome not in OUTCOMES:
            raise ValidationError("Outcome must be 'found' or 'not_found'.")

        replacement_name = None
        replacement_start = None
        if outcome == RecruitmentStatus.FOUND:
            replacement_name = _require(
                payload.replacement_worker_name,
                "Replacement worker name is required.",
            )
            start_text = _require(
                payload.replacement_start_date,
                "Replacement start date is required.",
            )
            replacement_start = _parse_payload_date(
                start_text, "Replacement start date"
            )

        signed_by = _require(payload.signed_by, "Signed by is required.")
        documents = self._validate_documents(payload.documents)
        note = _clean(payload.note)

        def check(case: AbsenceCase) -> None:
            if case.final_status != FinalStatus.OPEN:
                raise ConflictError("Case is already finalized.")

        def changes(case: AbsenceCase, now: datetime) -> dict[str, Any]:
            return {
                "recruitment_status": outcome,
                "recruitment_updated_at": now,
                "replacement_worker_name": replacement_name,
                "replacement_start_date": replacement_start,
            }

        def audit(case: AbsenceCase, now: datetime) -> None:
            self._log_action(
                case.id, HrActionType.RECORD_OUTCOME, signed_by, note, documents, now
            )

        updated = self._transition(
            case_id, check, changes, guard=("final_status",), on_commit=audit
        )
        logger.info("Case %s recruitment outcome: %s", case_id, outcome.value)
        return self.view(updated)

    def approve_swap(self, user: Profile, case_id: str) -> CaseView:
        """Finalize a found case as swapped, on or before its SLA deadline."""
        authorize(user, Operation.APPROVE_SWAP)

        def check(case: AbsenceCase) -> None:
            if case.final_status != FinalStatus.OPEN:
                raise ConflictError("Case is already finalized.")
            if case.recruitment_status != RecruitmentStatus.FOUND:
                raise ConflictError("Recruitment outcome is not found yet.")
            if case.sla_deadline_at is None:
                raise ConflictError("SLA deadline is missing.")
            if self.today() > case.sla_deadline_at:
                raise ConflictError("SLA deadline has passed.")

        def changes(case: AbsenceCase, now: datetime) -> dict[str, Any]:
            return {
                "hr_swap_approved_at": now,
                "final_status": FinalStatus.SWAPPED,
                "hr_status": HrStatus.CLOSED,
            }

        updated = self._transition(
            case_id,
            check,
            changes,
            guard=("final_status", "recruitment_status", "sla_deadline_at"),
        )
        logger.info("Case %s finalized as swapped", case_id)
        return self.view(updated)

    def mark_vacant(self, user: Profile, case_id: str) -> CaseView:
        """Finalize a not-found case as vacant once its SLA deadline has passed."""
        authorize(user, Operation.MARK_VACANT)

        def check(case: AbsenceCase) -> None:
            if case.final_status != FinalStatus.OPEN:
                raise ConflictError("Case is already finalized.")
            if case.recruitment_status != RecruitmentStatus.NOT_FOUND:
                raise ConflictError(
                    "Recruitment outcome is not marked as not found."
                )
            if case.sla_deadline_at is None:
                raise ConflictError("SLA deadline is missing.")
            if self.today() <= case.sla_deadline_at:
                raise ConflictError("SLA deadline has not expired yet.")

        def changes(case: AbsenceCase, now: datetime) -> dict[str, Any]:
            return {
                "final_status": FinalStatus.VACANT,
                "hr_status": HrStatus.SLA_EXPIRED,
            }

        def open_vacancy(case: AbsenceCase, now: datetime) -> None:
            period = VacancyPeriod(
                id=str(uuid4()),
                case_id=case.id,
                team_id=case.team_id,
                started_at=case.sla_deadline_at + timedelta(days=1),
            )
            self._db.vacancy_periods.put(period.id, period)

        updated = self._transition(
            case_id,
            check,
            changes,
            guard=("final_status", "recruitment_status", "sla_deadline_at"),
            on_commit=open_vacancy,
        )
        logger.info("Case %s finalized as vacant", case_id)
        return self.view(updated)

    def history(self, user: Profile, case_id: str) -> list[HrCaseActionView]:
        """Signed HR actions for a case, newest first."""
        authorize(user, Operation.VIEW_CASE_HISTORY)
        self._load_case(case_id)

        # Reversed first so actions sharing a timestamp also come out newest first
        actions = sorted(
            reversed(self._db.get_actions_for_case(case_id)),
            key=lambda a: a.created_at,
            reverse=True,
        )
        return [
            HrCaseActionView(
                **action.model_dump(),
                documents=sorted(
                    self._db.get_documents_for_action(action.id),
                    key=lambda d: d.created_at,
                ),
            )
            for action in actions
        ]

    def view(self, case: AbsenceCase) -> CaseView:
        return build_case_view(
            self._db, case, self.today(), ActiveMemberships.from_db(self._db)
        )

    def _load_case(self, case_id: str) -> AbsenceCase:
        case = self._db.cases.get(case_id)
        if case is None:
            raise NotFound("Case not found.")
        return case

    def _transition(
        self,
        case_id: str,
        check: Callable[[AbsenceCase], None],
        build_changes: Callable[[AbsenceCase, datetime], Mapping[str, Any]],
        guard: Iterable[str],
        on_commit: Callable[[AbsenceCase, datetime], None] | None = None,
    ) -> AbsenceCase:
        guard = tuple(guard)
        for _ in range(self._max_attempts):
            current = self._load_case(case_id)
            try:
                check(current)
            except ConflictError as exc:
                logger.info("Case %s rejected: %s", case_id, exc.reason)
                raise

            now = self._clock()
            changes = build_changes(current, now)
            expected = {field: getattr(current, field) for field in guard}
            with self._db.atomic():
                updated = self._db.cases.compare_and_update(
                    case_id, expected, changes
                )
                if updated is not None and on_commit is not None:
                    on_commit(updated, now)
            if updated is not None:
                return updated
            logger.info("Case %s changed during update, re-checking", case_id)

        raise ConflictError("Case is being updated by someone else; try again.")

    def _validate_documents(
        self, documents: list[DocumentRef], required_scopes: Iterable[str] = ()
    ) -> list[tuple[str, str]]:
        cleaned = []
        for doc in documents:
            scope = _clean(doc.doc_scope)
            number = _clean(doc.doc_no)
            if scope is None and number is None:
                continue
            if scope is None or number is None:
                raise ValidationError(
                    "Each document needs a scope and document number."
                )
            cleaned.append((scope, number))

        if not cleaned:
            raise ValidationError("At least one document is required.")

        present = {scope.upper() for scope, _ in cleaned}
        missing = [scope for scope in required_scopes if scope not in present]
        if missing:
            raise ValidationError(f"Documents must include: {', '.join(missing)}.")
        return cleaned

    def _log_action(
        self,
        case_id: str,
        action_type: HrActionType,
        signed_by: str,
        note: str | None,
        documents: list[tuple[str, str]],
        now: datetime,
    ) -> None:
        action = HrCaseAction(
            id=str(uuid4()),
            case_id=case_id,
            action_type=action_type,
            signed_by=signed_by,
            note=note,
            created_at=now,
        )
        self._db.actions.put(action.id, action)
        for scope, number in documents:
            document = HrCaseActionDocument(
                id=str(uuid4()),
                action_id=action.id,
                doc_scope=scope,
                doc_no=number,
                created_at=now,
            )
            self._db.action_documents.put(document.id, document)
