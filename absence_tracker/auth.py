import logging

from absence_tracker.database import Database
from absence_tracker.errors import Unauthorized
from absence_tracker.models import Profile

logger = logging.getLogger(__name__)

BEARER_PREFIX = "Bearer "


def extract_bearer_token(authorization: str | None) -> str | None:
    if not authorization or not authorization.startswith(BEARER_PREFIX):
        return None
    token = authorization[len(BEARER_PREFIX) :].strip()
    return token or None


def resolve_user(db: Database, token: str | None) -> Profile:
    """Look up the caller for a bearer token. Fails closed."""
    if not token:
        raise Unauthorized("Unauthorized")

    profile = db.sessions.get(token)
    if profile is None:
        logger.warning("Rejected unknown bearer token")
        raise Unauthorized("Unauthorized")
    return profile
