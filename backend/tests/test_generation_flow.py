from __future__ import annotations

import json

import httpx
import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from conftest import RUNWARE_URL
from studio.models import JobPollState, JobStatus, NotificationState, PendingJob, UserMedia
from studio.services.generation_service import NO_CONNECTION_MESSAGE, REQUEST_TIMEOUT_MESSAGE
from studio.services.reconciliation_service import CANCELLED_AFTER_SUBMIT, CANCELLED_BEFORE_SUBMIT

TOKEN_QUERY = {"provider": "runware", "token": "hook-secret"}


def _generation(**overrides) -> dict:
    body = {
        "user_id": "user-1",
        "provider": "runware",
        "model": "google:4@1",
        "model_name": "Imagen 4",
        "prompt": "a red fox in the snow",
        "aspect_ratio": "1:1",
        "title": "Fox",
        "cost": 0.04,
        "delivery_method": "async",
        "notification_id": "notif-1",
    }
    body.update(overrides)
    return body


def _accept(request: httpx.Request) -> httpx.Response:
    task = json.loads(request.content)[1]
    return httpx.Response(200, json={"data": [{"taskType": task["taskType"], "taskUUID": task["taskUUID"]}]})


def _complete(request: httpx.Request) -> httpx.Response:
    task = json.loads(request.content)[1]
    return httpx.Response(
        200,
        json={"data": [{"taskType": "imageInference", "taskUUID": task["taskUUID"], "imageURL": "https://cdn.test/s.png"}]},
    )


async def _media(container, task_id: str) -> UserMedia | None:
    async with container.sessionmaker() as db:
        return await container.media.get_by_task_id(db, task_id)


# ── Async path ──

@pytest.mark.asyncio
async def test_async_generation_completes_through_webhook(client, container, provider_stub) -> None:
    provider_stub.route("POST", RUNWARE_URL, _accept)

    submitted = await client.post("/api/v1/generations", json=_generation())

    assert submitted.status_code == 202
    data = submitted.json()["data"]
    task_id = data["task_id"]
    assert data["outcome"] == "accepted"
    assert data["notification_id"] == "notif-1"
    assert data["polling"] is False

    pending = (await client.get(f"/api/v1/jobs/{task_id}")).json()["data"]
    assert pending["status"] == JobStatus.processing.value
    assert pending["metadata"]["model"] == "Imagen 4"
    async with container.sessionmaker() as db:
        assert await db.get(JobPollState, task_id) is not None

    hook = await client.post(
        "/webhook-receiver",
        params=TOKEN_QUERY,
        json={"data": [{"taskType": "imageInference", "taskUUID": task_id, "imageURL": "https://cdn.test/a.png"}]},
    )
    assert hook.status_code == 200

    job = (await client.get(f"/api/v1/jobs/{task_id}")).json()["data"]
    assert job["status"] == JobStatus.completed.value
    assert job["result_url"] == "https://cdn.test/a.png"
    assert job["completed_at"] is not None
    assert await container.reconciliation.lookup_notification_id(task_id) == "notif-1"
    notification = (await client.get("/api/v1/notifications/notif-1")).json()["data"]
    assert notification["state"] == NotificationState.completed.value
    assert notification["message"] == "✅ Fox ready!"


@pytest.mark.asyncio
async def test_consume_archives_and_clears_the_job(client, container, provider_stub) -> None:
    provider_stub.route("POST", RUNWARE_URL, _accept)
    task_id = (await client.post("/api/v1/generations", json=_generation())).json()["data"]["task_id"]

    early = await client.post(f"/api/v1/jobs/{task_id}/consume")
    assert early.status_code == 409
    assert early.json()["error"]["code"] == "conflict"

    await client.post(
        "/webhook-receiver",
        params=TOKEN_QUERY,
        json={"taskUUID": task_id, "imageURL": "https://cdn.test/a.png"},
    )
    consumed = await client.post(f"/api/v1/jobs/{task_id}/consume", json={"media_url": "https://media.test/a.jpg"})

    assert consumed.status_code == 200
    record = consumed.json()["data"]
    assert record["status"] == "completed"
    assert record["media_url"] == "https://media.test/a.jpg"
    assert record["cost"] == 0.04
    assert (await client.get(f"/api/v1/jobs/{task_id}")).status_code == 404
    assert await container.reconciliation.lookup_notification_id(task_id) is None


@pytest.mark.asyncio
async def test_list_and_delete_jobs(client, provider_stub) -> None:
    provider_stub.route("POST", RUNWARE_URL, _accept)
    first = (await client.post("/api/v1/generations", json=_generation(notification_id="n-1"))).json()["data"]
    await client.post("/api/v1/generations", json=_generation(notification_id="n-2"))

    listed = (await client.get("/api/v1/jobs", params={"user_id": "user-1"})).json()["data"]
    assert listed["total"] == 2

    deleted = await client.delete(f"/api/v1/jobs/{first['task_id']}")
    again = await client.delete(f"/api/v1/jobs/{first['task_id']}")

    assert deleted.status_code == 200
    assert deleted.json()["data"] == {"task_id": first["task_id"], "deleted": True}
    assert again.status_code == 404
    assert (await client.get("/api/v1/jobs", params={"user_id": "user-1"})).json()["data"]["total"] == 1


@pytest.mark.asyncio
async def test_duplicate_notification_id_is_a_conflict(client, provider_stub) -> None:
    provider_stub.route("POST", RUNWARE_URL, _accept)
    await client.post("/api/v1/generations", json=_generation())

    response = await client.post("/api/v1/generations", json=_generation())

    assert response.status_code == 409
    assert response.json()["error"]["code"] == "duplicate_task_id"


# ── Sync path ──

@pytest.mark.asyncio
async def test_sync_generation_archives_media(client, container, provider_stub) -> None:
    provider_stub.route("POST", RUNWARE_URL, _complete)

    response = await client.post("/api/v1/generations", json=_generation(delivery_method="sync"))

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["outcome"] == "completed"
    assert data["result_url"] == "https://cdn.test/s.png"
    assert (await client.get("/api/v1/jobs", params={"user_id": "user-1"})).json()["data"]["total"] == 0
    record = await _media(container, data["task_id"])
    assert record.status == "completed"
    assert record.media_url == "https://cdn.test/s.png"
    assert record.title == "Fox"
    link = await container.reconciliation.get("notif-1")
    assert link.state == NotificationState.completed.value


# ── Failures ──

@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error, message",
    [
        (httpx.ConnectError("offline"), NO_CONNECTION_MESSAGE),
        (httpx.ReadTimeout("slow"), REQUEST_TIMEOUT_MESSAGE),
    ],
)
async def test_transport_failures_surface_user_messages(client, container, provider_stub, error, message) -> None:
    provider_stub.route("POST", RUNWARE_URL, error)

    response = await client.post("/api/v1/generations", json=_generation())

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["outcome"] == "failed"
    assert data["error_message"] == message
    assert (await client.get(f"/api/v1/jobs/{data['task_id']}")).status_code == 404
    record = await _media(container, data["task_id"])
    assert record.status == "failed"
    assert record.cost == 0.04
    link = await container.reconciliation.get("notif-1")
    assert link.state == NotificationState.failed.value
    assert link.error_message == message


@pytest.mark.asyncio
async def test_failed_submission_keeps_pending_row_when_archive_fails(client, container, provider_stub, monkeypatch) -> None:
    provider_stub.route("POST", RUNWARE_URL, httpx.ConnectError("offline"))

    async def failing_archive(*args, **kwargs):
        raise OperationalError("INSERT INTO user_media", {}, Exception("disk full"))

    monkeypatch.setattr(container.media, "archive", failing_archive)

    with pytest.raises(OperationalError):
        await client.post("/api/v1/generations", json=_generation())

    async with container.sessionmaker() as db:
        rows = (await db.execute(select(PendingJob))).scalars().all()
        assert len(rows) == 1
        assert (await db.execute(select(UserMedia))).scalars().all() == []

@pytest.mark.asyncio
async def test_provider_error_message_is_passed_through(client, provider_stub) -> None:
    provider_stub.route("POST", RUNWARE_URL, (200, {"errors": [{"message": "Invalid dimensions"}]}))

    data = (await client.post("/api/v1/generations", json=_generation(delivery_method="sync"))).json()["data"]

    assert data["outcome"] == "failed"
    assert data["error_message"] == "Invalid dimensions"


# ── Cancellation races ──

@pytest.mark.asyncio
async def test_cancel_before_submit_never_reaches_provider(client, container, provider_stub, monkeypatch) -> None:
    provider_stub.route("POST", RUNWARE_URL, _accept)
    register = container.reconciliation.register

    async def register_then_cancel(**kwargs):
        link = await register(**kwargs)
        await container.reconciliation.cancel(kwargs["notification_id"])
        return link

    monkeypatch.setattr(container.reconciliation, "register", register_then_cancel)

    data = (await client.post("/api/v1/generations", json=_generation())).json()["data"]

    assert data["outcome"] == "failed"
    assert data["error_message"] == CANCELLED_BEFORE_SUBMIT
    assert provider_stub.requests == []
    assert (await client.get(f"/api/v1/jobs/{data['task_id']}")).status_code == 404


@pytest.mark.asyncio
async def test_cancel_during_submit_is_archived_as_billed(client, container, provider_stub, monkeypatch) -> None:
    provider_stub.route("POST", RUNWARE_URL, _accept)
    submit = container.gateway.submit

    async def cancel_then_submit(request, task_id):
        await container.reconciliation.cancel(request.notification_id)
        return await submit(request, task_id)

    monkeypatch.setattr(container.gateway, "submit", cancel_then_submit)

    data = (await client.post("/api/v1/generations", json=_generation())).json()["data"]

    assert data["outcome"] == "failed"
    assert data["error_message"] == CANCELLED_AFTER_SUBMIT
    assert len(provider_stub.requests) == 1
    record = await _media(container, data["task_id"])
    assert record.status == "cancelled"
    assert record.cost == 0.04
    link = await container.reconciliation.get("notif-1")
    assert link.state == NotificationState.cancelled.value


@pytest.mark.asyncio
async def test_cancel_endpoint_after_billing(client, container, provider_stub) -> None:
    provider_stub.route("POST", RUNWARE_URL, _accept)
    task_id = (await client.post("/api/v1/generations", json=_generation())).json()["data"]["task_id"]

    response = await client.post("/api/v1/notifications/notif-1/cancel")

    assert response.status_code == 200
    assert response.json()["data"] == {
        "notification_id": "notif-1",
        "task_id": task_id,
        "deleted": False,
        "archived": True,
        "state": "cancelled",
    }
    job = (await client.get(f"/api/v1/jobs/{task_id}")).json()["data"]
    assert job["status"] == JobStatus.failed.value
    assert job["error_message"] == CANCELLED_AFTER_SUBMIT
    async with container.sessionmaker() as db:
        rows = (await db.execute(select(UserMedia).where(UserMedia.task_id == task_id))).scalars().all()
    assert [row.status for row in rows] == ["cancelled"]
