class CaseError(Exception):
    """Base class for errors returned to callers as a typed result."""

    code = "error"
    status_code = 500

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason

    def to_dict(self) -> dict[str, str]:
        return {"error": self.code, "detail": self.reason}


class Unauthorized(CaseError):
    code = "unauthorized"
    status_code = 401


class Forbidden(CaseError):
    code = "forbidden"
    status_code = 403


class NotFound(CaseError):
    code = "not_found"
    status_code = 404


class ValidationError(CaseError):
    code = "validation_error"
    status_code = 400


class ConflictError(CaseError):
    code = "conflict"
    status_code = 409


class DependencyError(CaseError):
    """A store or collaborator could not be reached."""

    code = "dependency_error"
    status_code = 502
