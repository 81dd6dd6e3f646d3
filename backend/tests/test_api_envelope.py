import json

import pytest

from conftest import age_job
from studio.api.envelope import error_envelope, studio_error_envelope, success_envelope
from studio.core.errors import NotFoundError, ProviderHTTPError
from studio.models import JobProvider, JobStatus, JobType, NotificationState
from studio.schemas import PendingJobCreate


def test_success_envelope_shape() -> None:
    response = success_envelope({"value": 1})
    body = json.loads(response.body.decode("utf-8"))
    assert body["ok"] is True
    assert body["data"] == {"value": 1}
    assert body["error"] is None
    assert isinstance(body.get("meta"), dict)


def test_error_envelope_shape() -> None:
    response = error_envelope(code="bad_request", message="Invalid", status_code=400, details={"field": "x"})
    body = json.loads(response.body.decode("utf-8"))
    assert body["ok"] is False
    assert body["error"]["code"] == "bad_request"
    assert body["error"]["message"] == "Invalid"
    assert body["error"]["details"] == {"field": "x"}


def test_success_envelope_dumps_schemas_inside_containers() -> None:
    job = PendingJobCreate(task_id="t-1", user_id="user-1", job_type=JobType.video, provider=JobProvider.falai)
    body = json.loads(success_envelope({"items": [job], "total": 1}).body.decode("utf-8"))
    assert body["data"]["total"] == 1
    assert body["data"]["items"][0]["task_id"] == "t-1"
    assert body["data"]["items"][0]["job_type"] == "video"


def test_studio_error_envelope_carries_code_and_path() -> None:
    response = studio_error_envelope(NotFoundError("Job not found: x"), status_code=404, path="/api/v1/jobs/x")
    body = json.loads(response.body.decode("utf-8"))
    assert response.status_code == 404
    assert body["error"]["code"] == "not_found"
    assert body["error"]["details"] is None
    assert body["meta"]["path"] == "/api/v1/jobs/x"

    upstream = studio_error_envelope(ProviderHTTPError(503, "busy"), status_code=502, path="/")
    assert json.loads(upstream.body.decode("utf-8"))["error"]["details"] == {"status_code": 503}


@pytest.mark.asyncio
async def test_health_reports_database(client) -> None:
    response = await client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["database"] == "connected"


@pytest.mark.asyncio
async def test_request_ids_are_echoed(client) -> None:
    response = await client.get("/api/v1/notifications/missing", headers={"x-request-id": "req-123"})

    assert response.status_code == 404
    assert response.headers["x-request-id"] == "req-123"
    body = response.json()
    assert body["ok"] is False
    assert body["error"]["code"] == "not_found"
    assert body["meta"]["path"] == "/api/v1/notifications/missing"


@pytest.mark.asyncio
async def test_validation_errors_use_envelope(client) -> None:
    response = await client.post("/api/v1/generations", json={"user_id": "user-1", "provider": "midjourney"})

    assert response.status_code == 422
    assert response.json()["error"]["code"] == "validation_error"


@pytest.mark.asyncio
async def test_cancel_unknown_notification_is_404(client) -> None:
    response = await client.post("/api/v1/notifications/missing/cancel")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_maintenance_reap_sweeps_the_ledger(client, container) -> None:
    async with container.sessionmaker() as db:
        for task_id in ("stuck", "queued", "done", "fresh"):
            await container.jobs.create(
                db,
                PendingJobCreate(task_id=task_id, user_id="user-1", job_type=JobType.image, provider=JobProvider.runware),
            )
        await container.jobs.update_status(db, "stuck", JobStatus.processing)
        await container.jobs.update_status(db, "done", JobStatus.completed, result_url="https://cdn.test/d.png")
    await age_job(container.sessionmaker, "stuck", minutes=15)
    await age_job(container.sessionmaker, "done", days=8, completed=True)
    await container.reconciliation.register(
        notification_id="notif-1", user_id="user-1", model_name="Imagen", prompt="a cat", title="Cat", job_type="image"
    )
    await container.reconciliation.associate("notif-1", "stuck")

    response = await client.post("/api/v1/maintenance/reap")

    assert response.status_code == 200
    assert response.json()["data"] == {"stuck": ["stuck"], "orphaned": 0, "cleaned": 1, "stuck_count": 1}
    listed = (await client.get("/api/v1/jobs", params={"user_id": "user-1"})).json()["data"]
    assert {item["task_id"] for item in listed["items"]} == {"queued", "fresh"}
    link = await container.reconciliation.get("notif-1")
    assert link.state == NotificationState.failed.value
    assert link.error_message == "Generation timed out after 10 minutes. Please try again."
