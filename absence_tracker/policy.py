from enum import StrEnum

from absence_tracker.errors import Forbidden
from absence_tracker.models import Profile, Role


class Operation(StrEnum):
    REPORT_ABSENCE = "report_absence"
    VIEW_TEAM_CASES = "view_team_cases"
    VIEW_TEAM_DASHBOARD = "view_team_dashboard"
    MANAGE_TEAM_MEMBERS = "manage_team_members"
    RECEIVE_CASE = "receive_case"
    RECORD_OUTCOME = "record_outcome"
    APPROVE_SWAP = "approve_swap"
    MARK_VACANT = "mark_vacant"
    VIEW_CASE_HISTORY = "view_case_history"
    VIEW_HR_DASHBOARD = "view_hr_dashboard"
    VIEW_WORKFORCE = "view_workforce"
    REASSIGN_DISTRICT = "reassign_district"


ALLOWED_OPERATIONS: dict[Role, frozenset[Operation]] = {
    Role.TEAM_LEAD: frozenset(
        {
            Operation.REPORT_ABSENCE,
            Operation.VIEW_TEAM_CASES,
            Operation.VIEW_TEAM_DASHBOARD,
            Operation.MANAGE_TEAM_MEMBERS,
        }
    ),
    Role.HR_PROV: frozenset(
        {
            Operation.RECEIVE_CASE,
            Operation.RECORD_OUTCOME,
            Operation.APPROVE_SWAP,
            Operation.MARK_VACANT,
            Operation.VIEW_CASE_HISTORY,
            Operation.VIEW_HR_DASHBOARD,
            Operation.VIEW_WORKFORCE,
            Operation.REASSIGN_DISTRICT,
        }
    ),
}


def is_allowed(role: str | None, operation: Operation) -> bool:
    """Unknown or missing roles are denied everything."""
    try:
        known = Role(role)
    except ValueError:
        return False
    return operation in ALLOWED_OPERATIONS[known]


def authorize(user: Profile, operation: Operation) -> None:
    if not is_allowed(user.role, operation):
        raise Forbidden(f"Role {user.role!r} may not {operation.value}.")
