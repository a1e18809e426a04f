from datetime import UTC, datetime

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from absence_tracker.api import create_app
from absence_tracker.config import Settings
from absence_tracker.context import AppContext
from absence_tracker.database import Database, load_sample_data
from absence_tracker.models import (
    DocumentRef,
    ReceiveCaseRequest,
    RecordOutcomeRequest,
    ReportAbsenceRequest,
)

SOMSAK_ID = "5c2e9a1f-3b4d-4e6f-8a7b-9c0d1e2f3a41"


class FrozenClock:
    """A clock tests can move by hand."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, *args: int) -> None:
        self.now = datetime(*args, tzinfo=UTC)


@pytest.fixture
def clock() -> FrozenClock:
    # Friday
    return FrozenClock(datetime(2024, 3, 1, 9, 0, tzinfo=UTC))


@pytest.fixture
def context(clock: FrozenClock) -> AppContext:
    """A fresh store with the sample roster loaded, per test."""
    db = Database()
    load_sample_data(db)
    return AppContext(settings=Settings(), db=db, clock=clock)


@pytest_asyncio.fixture
async def client(context: AppContext):
    app = create_app(context)
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as async_client:
        yield async_client


@pytest.fixture
def hr(context: AppContext):
    return context.db.sessions.get("hr-token")


@pytest.fixture
def lead(context: AppContext):
    return context.db.sessions.get("lead-north-token")


@pytest.fixture
def receive_payload() -> ReceiveCaseRequest:
    return ReceiveCaseRequest(
        signed_by="Suda Rattana",
        documents=[
            DocumentRef(doc_scope="INTERNAL", doc_no="MT 0012/2567"),
            DocumentRef(doc_scope="TO_DISTRICT", doc_no="SK 0345/2567"),
        ],
    )


@pytest.fixture
def open_case(context: AppContext, lead):
    """Report a case for a worker of the north team."""

    def _open(worker_id: str = SOMSAK_ID, reason: str = "absent"):
        return context.workflow.report(
            lead, ReportAbsenceRequest(worker_id=worker_id, reason=reason)
        )

    return _open


@pytest.fixture
def received_case(context: AppContext, hr, open_case, receive_payload):
    """Report and receive a case at the current clock time."""

    def _received(worker_id: str = SOMSAK_ID):
        case = open_case(worker_id)
        return context.workflow.receive(hr, case.id, receive_payload)

    return _received


@pytest.fixture
def outcome_payload():
    def _outcome(
        outcome: str,
        name: str | None = None,
        start: str | None = None,
    ) -> RecordOutcomeRequest:
        return RecordOutcomeRequest(
            outcome=outcome,
            replacement_worker_name=name,
            replacement_start_date=start,
            signed_by="Suda Rattana",
            documents=[DocumentRef(doc_scope="INTERNAL", doc_no="MT 0020/2567")],
        )

    return _outcome
