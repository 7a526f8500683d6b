"""
Tests for the HTTP surface: cron secret, job enqueueing, and domain error mapping.
"""

import os
import uuid
from types import SimpleNamespace

import pytest
from unittest.mock import patch, AsyncMock
from httpx import AsyncClient, ASGITransport

from adsteward.config import Settings, get_settings
from adsteward.errors import ActionExpiredError, NotFoundError, UpstreamError, ValidationFailure
from adsteward.schemas import ActionOutcome


@pytest.fixture
def container():
    dispatcher = AsyncMock()
    dispatcher.enqueue.return_value = "reports"
    return SimpleNamespace(
        settings=Settings(telegram_admin_chat_id="100"),
        dispatcher=dispatcher,
        orchestrator=AsyncMock(),
        actions=AsyncMock(),
    )


@pytest.fixture
async def client(container):
    get_settings.cache_clear()
    with patch.dict(os.environ, {"ENVIRONMENT": "development", "API_KEY": "", "CRON_SECRET": "s3cret"}):
        get_settings.cache_clear()
        from adsteward.main import app
        app.state.container = container
        try:
            async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
                yield c
        finally:
            del app.state.container
            get_settings.cache_clear()


@pytest.mark.anyio
async def test_cron_requires_secret(client, container):
    response = await client.post("/api/cron/daily-report")
    assert response.status_code == 401
    container.dispatcher.enqueue.assert_not_called()


@pytest.mark.anyio
async def test_cron_daily_report_enqueues_for_admin_chat(client, container):
    response = await client.post("/api/cron/daily-report", headers={"X-Cron-Secret": "s3cret"})

    assert response.status_code == 200
    assert response.json()["status"] == "queued"
    job = container.dispatcher.enqueue.await_args.args[0]
    assert job.kind == "report"
    assert job.chat_id == 100
    assert job.report_type == "daily"


@pytest.mark.anyio
async def test_cron_sync_accepts_bearer_secret(client, container):
    response = await client.post(
        "/api/cron/sync", json={"mode": "full"}, headers={"Authorization": "Bearer s3cret"},
    )

    assert response.status_code == 200
    assert container.dispatcher.enqueue.await_args.args[0].mode == "full"


@pytest.mark.anyio
async def test_chat_question_is_queued(client, container):
    response = await client.post("/api/chat/questions", json={"chat_id": 5, "user_id": "u1", "question": "CPA?"})

    assert response.status_code == 202
    job = container.dispatcher.enqueue.await_args.args[0]
    assert (job.kind, job.user_id, job.question) == ("user_question", "u1", "CPA?")


@pytest.mark.anyio
async def test_focus_requires_id_for_campaign(client):
    response = await client.post("/api/chat/focus", json={"user_id": "u1", "target": "campaign"})
    assert response.status_code == 400


@pytest.mark.anyio
async def test_approve_action_returns_outcome(client, container):
    action_id = uuid.uuid4()
    container.orchestrator.execute_action.return_value = ActionOutcome(
        action_id=action_id, status="executed", executed=True, message="Action executed",
    )

    response = await client.post(f"/api/actions/{action_id}/approve")

    assert response.status_code == 200
    assert response.json()["status"] == "executed"


@pytest.mark.anyio
@pytest.mark.parametrize("error,status", [
    (NotFoundError("PendingAction", "x"), 404),
    (ActionExpiredError("x", 25.0), 410),
    (ValidationFailure("bad"), 400),
    (UpstreamError("yandex_direct", "token=abc leaked"), 502),
])
async def test_approve_action_maps_domain_errors(client, container, error, status):
    container.orchestrator.execute_action.side_effect = error

    response = await client.post(f"/api/actions/{uuid.uuid4()}/approve")

    assert response.status_code == status
    assert "token=abc" not in response.text


@pytest.mark.anyio
async def test_invalid_action_id_is_400(client):
    response = await client.post("/api/actions/not-a-uuid/reject")
    assert response.status_code == 400


@pytest.mark.anyio
async def test_reject_proposal_in_wrong_state_is_400(client, container):
    container.orchestrator.reject_proposal.side_effect = ValidationFailure("Proposal is already implemented")

    response = await client.post(f"/api/proposals/{uuid.uuid4()}/reject")

    assert response.status_code == 400
    assert response.json()["detail"] == "Proposal is already implemented"
