import logging
from uuid import uuid4

from absence_tracker.business_days import Clock, to_utc_date, utc_now
from absence_tracker.database import Database
from absence_tracker.errors import ConflictError, Forbidden, NotFound, ValidationError
from absence_tracker.models import (
    AddMemberRequest,
    EndedReason,
    EndMembershipRequest,
    Profile,
    ReassignDistrictRequest,
    Team,
    TeamMembership,
    Worker,
    WorkerStatus,
)
from absence_tracker.policy import Operation, authorize

logger = logging.getLogger(__name__)


class RosterService:
    """Team membership changes made by team leads and district moves made by HR."""

    def __init__(self, db: Database, clock: Clock = utc_now) -> None:
        self._db = db
        self._clock = clock

    def add_member(
        self, user: Profile, payload: AddMemberRequest
    ) -> tuple[Worker, TeamMembership]:
        authorize(user, Operation.MANAGE_TEAM_MEMBERS)
        full_name = (payload.full_name or "").strip()
        if not full_name:
            raise ValidationError("Full name is required.")
        if not user.team_id:
            raise Forbidden("No team assigned to this profile.")

        worker = Worker(
            id=str(uuid4()),
            full_name=full_name,
            national_id=(payload.national_id or "").strip() or None,
            status=WorkerStatus.ACTIVE,
            team_id=user.team_id,
        )
        membership = TeamMembership(
            id=str(uuid4()),
            worker_id=worker.id,
            team_id=user.team_id,
            start_date=to_utc_date(self._clock()),
            active=True,
        )
        with self._db.atomic():
            self._db.workers.put(worker.id, worker)
            self._db.memberships.put(membership.id, membership)

        logger.info("Worker %s joined team %s", worker.id, user.team_id)
        return worker, membership

    def end_membership(
        self, user: Profile, membership_id: str, payload: EndMembershipRequest
    ) -> TeamMembership:
        """Close a membership; the worker goes inactive once no membership remains."""
        authorize(user, Operation.MANAGE_TEAM_MEMBERS)
        try:
            reason = EndedReason((payload.ended_reason or "").strip())
        except ValueError:
            allowed = ", ".join(r.value for r in EndedReason)
            raise ValidationError(f"Ended reason must be one of: {allowed}.") from None

        membership = self._db.memberships.get(membership_id)
        if membership is None:
            raise NotFound("Membership not found.")
        if membership.team_id != user.team_id:
            raise Forbidden("Membership belongs to another team.")

        with self._db.atomic():
            closed = self._db.memberships.compare_and_update(
                membership_id,
                {"active": True},
                {
                    "active": False,
                    "end_date": to_utc_date(self._clock()),
                    "ended_reason": reason,
                },
            )
            if closed is None:
                raise ConflictError("Membership has already ended.")
            if not self._db.get_active_memberships(worker_id=closed.worker_id):
                self._db.workers.compare_and_update(
                    closed.worker_id, {}, {"status": WorkerStatus.INACTIVE}
                )

        logger.info(
            "Membership %s ended (%s) for worker %s",
            membership_id,
            reason.value,
            closed.worker_id,
        )
        return closed

    def reassign_district(
        self, user: Profile, team_id: str, payload: ReassignDistrictRequest
    ) -> Team:
        authorize(user, Operation.REASSIGN_DISTRICT)
        district_id = (payload.district_id or "").strip()
        if not district_id:
            raise ValidationError("District is required.")
        if self._db.districts.get(district_id) is None:
            raise ValidationError("Invalid district.")

        team = self._db.teams.compare_and_update(
            team_id, {}, {"district_id": district_id}
        )
        if team is None:
            raise NotFound("Team not found.")
        logger.info("Team %s moved to district %s", team_id, district_id)
        return team
