from __future__ import annotations

import json
from datetime import timedelta
from typing import Any, Callable, Union

import httpx
import pytest
from sqlalchemy import update
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

import studio.models  # noqa: F401
from studio.container import build_container
from studio.core.config import Settings
from studio.core.database import Base, build_sessionmaker, utcnow
from studio.main import create_app
from studio.models import PendingJob

RUNWARE_URL = "https://api.runware.ai/v1"
WAVESPEED_URL = "https://api.wavespeed.ai/api/v3"
FAL_URL = "https://queue.fal.run"
STORAGE_URL = "https://storage.test"
WEBHOOK_URL = "https://jobs.test/webhook-receiver"

StubResponse = Union[tuple[int, Any], Exception, Callable[[httpx.Request], httpx.Response]]


class ProviderStub:
    """httpx.MockTransport handler routing by method and URL prefix.

    The longest matching prefix wins; among equal prefixes the newest route
    wins. Each route holds a queue of responses. The last one repeats once the
    queue is drained, so a single ``(200, body)`` answers every matching call.
    """

    def __init__(self) -> None:
        self.routes: list[tuple[str, str, list[StubResponse]]] = []
        self.requests: list[httpx.Request] = []

    def route(self, method: str, prefix: str, *responses: StubResponse) -> None:
        self.routes.insert(0, (method, prefix, list(responses)))

    def calls(self, method: str, prefix: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method and str(r.url).startswith(prefix)]

    def json_bodies(self, method: str, prefix: str) -> list[Any]:
        return [json.loads(r.content) for r in self.calls(method, prefix)]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url)
        best: list[StubResponse] | None = None
        best_length = -1
        for method, prefix, queue in self.routes:
            if request.method == method and url.startswith(prefix) and len(prefix) > best_length:
                best, best_length = queue, len(prefix)
        if best is None:
            return httpx.Response(404, json={"error": f"no stub for {request.method} {url}"})

        response = best.pop(0) if len(best) > 1 else best[0]
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(request)
        status_code, body = response
        return httpx.Response(status_code, json=body)


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def make_settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "app_env": "test",
        "database_url_override": "sqlite+aiosqlite://",
        "runware_api_key": "rw-key",
        "runware_api_url": RUNWARE_URL,
        "wavespeed_api_key": "ws-key",
        "wavespeed_api_url": WAVESPEED_URL,
        "falai_api_key": "fal-key",
        "falai_queue_url": FAL_URL,
        "webhook_base_url": WEBHOOK_URL,
        "webhook_secret": "hook-secret",
        "wavespeed_webhook_secret": "ws-hook-secret",
        "webhook_auth_required": True,
        "poll_interval_seconds": 5.0,
        "poll_max_attempts": 3,
        "poll_initial_delay_image_seconds": 5.0,
        "poll_initial_delay_video_seconds": 30.0,
        "poll_scheduler_enabled": False,
        "reaper_enabled": False,
        "supabase_url": STORAGE_URL,
        "supabase_service_role_key": "service-role",
        "apns_key_id": "",
        "apns_team_id": "",
        "apns_private_key": "",
        "apns_bundle_id": "",
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def sessionmaker(engine):
    return build_sessionmaker(engine)


@pytest.fixture
def provider_stub() -> ProviderStub:
    return ProviderStub()


@pytest.fixture
def apns_stub() -> ProviderStub:
    stub = ProviderStub()
    stub.route("POST", "https://api.sandbox.push.apple.com/3/device/", (200, {}))
    return stub


@pytest.fixture
def fake_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
async def container(settings, engine, provider_stub, apns_stub, fake_sleep):
    http = httpx.AsyncClient(transport=httpx.MockTransport(provider_stub))
    push_http = httpx.AsyncClient(transport=httpx.MockTransport(apns_stub))
    container = build_container(settings, engine=engine, http=http, push_http=push_http, sleep=fake_sleep)
    yield container
    container.scheduler.stop()
    await http.aclose()
    await push_http.aclose()


@pytest.fixture
async def client(container):
    app = create_app(container)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client


async def age_job(sessionmaker, task_id: str, *, minutes: float = 0, days: float = 0, completed: bool = False) -> None:
    """Move a job's timestamps into the past."""
    past = utcnow() - timedelta(minutes=minutes, days=days)
    values: dict[str, Any] = {"created_at": past, "updated_at": past}
    if completed:
        values["completed_at"] = past
    async with sessionmaker() as db:
        await db.execute(update(PendingJob).where(PendingJob.task_id == task_id).values(**values))
        await db.commit()
