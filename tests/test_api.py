import asyncio

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from absence_tracker.api import create_app
from absence_tracker.config import LineConfig, Settings
from absence_tracker.context import AppContext
from absence_tracker.database import Database, load_sample_data
from absence_tracker.notifier import LineNotifier

LEAD = {"Authorization": "Bearer lead-north-token"}
HR = {"Authorization": "Bearer hr-token"}
HR_2 = {"Authorization": "Bearer hr-token-2"}

NORTH_TEAM_ID = "a3f1c2d4-5b6e-4f70-8a91-b2c3d4e5f601"
BAN_PONG_ID = "4e8a1b2c-7d6f-4a3e-9b1c-0d2e3f4a5b61"
MUEANG_ID = "9d1c5f7e-2a6b-4c1e-8f3a-1b2c3d4e5f60"
SOMSAK_ID = "5c2e9a1f-3b4d-4e6f-8a7b-9c0d1e2f3a41"
SOMSAK_MEMBERSHIP_ID = "e1a2b3c4-d5e6-4f70-8192-a3b4c5d6e701"

RECEIVE = {
    "signed_by": "Suda Rattana",
    "documents": [
        {"doc_scope": "INTERNAL", "doc_no": "MT 0012/2567"},
        {"doc_scope": "TO_DISTRICT", "doc_no": "SK 0345/2567"},
    ],
}


async def report(client: AsyncClient, worker_id: str = SOMSAK_ID) -> dict:
    response = await client.post(
        "/team/cases", json={"worker_id": worker_id, "reason": "absent"}, headers=LEAD
    )
    assert response.status_code == 201
    return response.json()["data"]


def outcome(result: str, **extra) -> dict:
    return {
        "outcome": result,
        "signed_by": "Suda Rattana",
        "documents": [{"doc_scope": "INTERNAL", "doc_no": "MT 0020/2567"}],
        **extra,
    }


@pytest.mark.asyncio
async def test_health(client: AsyncClient) -> None:
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "headers",
    [{}, {"Authorization": "Bearer nope"}, {"Authorization": "hr-token"}],
)
async def test_missing_or_unknown_token_is_401(client: AsyncClient, headers) -> None:
    response = await client.get("/hr/dashboard", headers=headers)
    assert response.status_code == 401
    assert response.json() == {"error": "unauthorized", "detail": "Unauthorized"}


@pytest.mark.asyncio
async def test_wrong_role_is_403(client: AsyncClient) -> None:
    response = await client.get("/hr/dashboard", headers=LEAD)
    assert response.status_code == 403
    assert response.json()["error"] == "forbidden"

    response = await client.get(
        "/hr/dashboard", headers={"Authorization": "Bearer auditor-token"}
    )
    assert response.status_code == 403

    response = await client.post(
        "/team/cases", json={"worker_id": SOMSAK_ID, "reason": "absent"}, headers=HR
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_swap_flow(client: AsyncClient, context: AppContext, clock) -> None:
    """Report on Friday, receive, find a replacement and approve before the deadline."""
    case = await report(client)
    assert case["hr_status"] == "pending"
    assert case["worker_name"] == "Somsak Jaidee"

    response = await client.post(f"/hr/cases/{case['id']}/receive", json=RECEIVE, headers=HR)
    assert response.status_code == 200
    received = response.json()["data"]
    assert received["hr_status"] == "in_sla"
    assert received["sla_deadline_at"] == "2024-03-06"

    clock.set(2024, 3, 5, 10, 0)
    response = await client.post(
        f"/hr/cases/{case['id']}/outcome",
        json=outcome(
            "found",
            replacement_worker_name="Chai Dee",
            replacement_start_date="2024-03-11",
        ),
        headers=HR,
    )
    assert response.status_code == 200
    assert response.json()["data"]["recruitment_status"] == "found"

    response = await client.post(f"/hr/cases/{case['id']}/approve-swap", headers=HR)
    assert response.status_code == 200
    swapped = response.json()["data"]
    assert swapped["final_status"] == "swapped"
    assert swapped["hr_status"] == "closed"

    (document,) = context.db.documents.all()
    assert document.case_id == case["id"]
    assert document.doc_type == "Substitution Approval"
    assert document.content.startswith(b"%PDF")


@pytest.mark.asyncio
async def test_vacancy_flow(client: AsyncClient, context: AppContext, clock) -> None:
    case = await report(client)
    await client.post(f"/hr/cases/{case['id']}/receive", json=RECEIVE, headers=HR)
    await client.post(
        f"/hr/cases/{case['id']}/outcome", json=outcome("not_found"), headers=HR
    )

    response = await client.post(f"/hr/cases/{case['id']}/mark-vacant", headers=HR)
    assert response.status_code == 409
    assert response.json() == {
        "error": "conflict",
        "detail": "SLA deadline has not expired yet.",
    }

    clock.set(2024, 3, 7, 9, 0)
    response = await client.post(f"/hr/cases/{case['id']}/mark-vacant", headers=HR)
    assert response.status_code == 200
    vacant = response.json()["data"]
    assert vacant["final_status"] == "vacant"
    assert vacant["hr_status"] == "sla_expired"
    assert vacant["vacancy_days"] == 0

    (document,) = context.db.documents.all()
    assert document.doc_type == "Vacancy Notice"


@pytest.mark.asyncio
async def test_concurrent_receive_has_one_winner(
    client: AsyncClient, context: AppContext
) -> None:
    case = await report(client)

    responses = await asyncio.gather(
        client.post(f"/hr/cases/{case['id']}/receive", json=RECEIVE, headers=HR),
        client.post(f"/hr/cases/{case['id']}/receive", json=RECEIVE, headers=HR_2),
    )

    assert sorted(r.status_code for r in responses) == [200, 409]
    assert len(context.db.get_actions_for_case(case["id"])) == 1


@pytest.mark.asyncio
async def test_history_lists_signed_actions(client: AsyncClient) -> None:
    case = await report(client)
    await client.post(f"/hr/cases/{case['id']}/receive", json=RECEIVE, headers=HR)

    response = await client.get(f"/hr/cases/{case['id']}/history", headers=HR)
    assert response.status_code == 200
    (action,) = response.json()["data"]
    assert action["action_type"] == "RECEIVE_SEND"
    assert action["signed_by"] == "Suda Rattana"
    assert [d["doc_no"] for d in action["documents"]] == [
        "MT 0012/2567",
        "SK 0345/2567",
    ]


@pytest.mark.asyncio
async def test_unknown_case_is_404(client: AsyncClient) -> None:
    for path in ("receive", "approve-swap", "mark-vacant"):
        response = await client.post(
            f"/hr/cases/nonexistent/{path}", json=RECEIVE, headers=HR
        )
        assert response.status_code == 404
        assert response.json()["detail"] == "Case not found."

    response = await client.get("/hr/cases/nonexistent/history", headers=HR)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_validation_errors_are_400(client: AsyncClient) -> None:
    case = await report(client)

    response = await client.post(f"/hr/cases/{case['id']}/receive", json={}, headers=HR)
    assert response.status_code == 400
    assert response.json() == {
        "error": "validation_error",
        "detail": "Signed by is required.",
    }

    response = await client.post(
        f"/hr/cases/{case['id']}/outcome", json=outcome("maybe"), headers=HR
    )
    assert response.status_code == 400

    response = await client.post(
        "/team/cases", json={"worker_id": SOMSAK_ID, "reason": "sick"}, headers=LEAD
    )
    assert response.status_code == 400

    response = await client.get("/hr/dashboard?status=late", headers=HR)
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_team_cases_and_dashboard(client: AsyncClient) -> None:
    case = await report(client)

    response = await client.get("/team/cases", headers=LEAD)
    assert response.status_code == 200
    assert [c["id"] for c in response.json()["data"]] == [case["id"]]

    response = await client.get("/team/cases?worker_ids=someone-else", headers=LEAD)
    assert response.json()["data"] == []

    response = await client.get("/team/dashboard", headers=LEAD)
    assert response.status_code == 200
    data = response.json()
    assert data["team"]["id"] == NORTH_TEAM_ID
    assert data["team"]["open_cases"] == 1
    assert len(data["members"]) == 3


@pytest.mark.asyncio
async def test_hr_dashboard_reports_overdue(client: AsyncClient, clock) -> None:
    case = await report(client)
    await client.post(f"/hr/cases/{case['id']}/receive", json=RECEIVE, headers=HR)
    clock.set(2024, 3, 7, 9, 0)

    response = await client.get("/hr/dashboard?status=overdue", headers=HR)
    assert response.status_code == 200
    data = response.json()
    assert data["summary"]["open_cases_overdue"] == 1
    (row,) = data["cases"]
    assert row["hr_status"] == "in_sla"
    assert row["effective_hr_status"] == "sla_expired"
    assert row["flags"]["is_overdue"] is True


@pytest.mark.asyncio
async def test_team_members_endpoints(client: AsyncClient) -> None:
    response = await client.post(
        "/team/members", json={"full_name": "Chai Dee"}, headers=LEAD
    )
    assert response.status_code == 201
    created = response.json()["data"]
    assert created["worker"]["full_name"] == "Chai Dee"
    assert created["membership"]["team_id"] == NORTH_TEAM_ID

    response = await client.post(
        f"/team/members/{SOMSAK_MEMBERSHIP_ID}/end",
        json={"ended_reason": "absent_3days"},
        headers=LEAD,
    )
    assert response.status_code == 200
    assert response.json()["data"]["active"] is False

    response = await client.post(
        f"/team/members/{SOMSAK_MEMBERSHIP_ID}/end",
        json={"ended_reason": "absent_3days"},
        headers=LEAD,
    )
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_workforce_and_district_reassignment(client: AsyncClient) -> None:
    response = await client.get(
        f"/hr/workforce?district_id={MUEANG_ID}&team_id={NORTH_TEAM_ID}", headers=HR
    )
    assert response.status_code == 200
    assert len(response.json()["members"]) == 3

    response = await client.patch(
        f"/hr/teams/{NORTH_TEAM_ID}/district",
        json={"district_id": BAN_PONG_ID},
        headers=HR,
    )
    assert response.status_code == 200
    assert response.json()["data"]["district_id"] == BAN_PONG_ID

    response = await client.get(f"/hr/workforce?district_id={BAN_PONG_ID}", headers=HR)
    assert {t["id"] for t in response.json()["teams"]} >= {NORTH_TEAM_ID}

    response = await client.get("/hr/workforce?district_id=atlantis", headers=HR)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_line_webhook(client: AsyncClient) -> None:
    body = {
        "events": [
            {"type": "join", "source": {"type": "group", "groupId": "C123"}},
            "garbage",
        ]
    }
    response = await client.post("/line/webhook", json=body)
    assert response.status_code == 200
    assert response.json() == {"ok": True}

    response = await client.post(
        "/line/webhook",
        content=b"not json",
        headers={"Content-Type": "application/json"},
    )
    assert response.status_code == 400
    assert response.json() == {"ok": False}


def line_context(clock, handler) -> AppContext:
    db = Database()
    load_sample_data(db)
    config = LineConfig(enabled=True, channel_access_token="token", group_id="C123")
    notifier = LineNotifier(config, transport=httpx.MockTransport(handler))
    return AppContext(
        settings=Settings(line=config), db=db, clock=clock, notifier=notifier
    )


@pytest_asyncio.fixture
async def line_client(clock):
    sent: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        sent.append(request)
        return httpx.Response(200, json={})

    app = create_app(line_context(clock, handler))
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as async_client:
        yield async_client, sent


@pytest.mark.asyncio
async def test_report_pushes_line_message(line_client) -> None:
    client, sent = line_client
    await report(client)

    (request,) = sent
    assert request.headers["Authorization"] == "Bearer token"
    payload = request.read().decode()
    assert '"to":"C123"' in payload.replace(" ", "")
    assert "Somsak Jaidee" in payload


@pytest.mark.asyncio
async def test_line_failure_does_not_fail_the_request(clock) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="boom")

    app = create_app(line_context(clock, handler))
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as client:
        case = await report(client)
    assert case["hr_status"] == "pending"
