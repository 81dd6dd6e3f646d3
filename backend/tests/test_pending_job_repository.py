from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from conftest import age_job
from studio.core.errors import DuplicateTaskIdError, NotFoundError, StoreError
from studio.models import JobProvider, JobStatus, JobType, UserMedia
from studio.repositories.pending_job_repository import PendingJobRepository
from studio.repositories.user_media_repository import UserMediaRepository
from studio.schemas import PendingJobCreate, PendingJobMetadata


def _job(task_id: str, *, user_id: str = "user-1", job_type: JobType = JobType.image, **metadata) -> PendingJobCreate:
    return PendingJobCreate(
        task_id=task_id,
        user_id=user_id,
        job_type=job_type,
        provider=JobProvider.runware,
        metadata=PendingJobMetadata(**metadata),
    )


@pytest.fixture
def media() -> UserMediaRepository:
    return UserMediaRepository()


@pytest.fixture
def jobs(media) -> PendingJobRepository:
    return PendingJobRepository(media)


# ── Create / read ──

@pytest.mark.asyncio
async def test_create_then_get_returns_pending_row(sessionmaker, jobs) -> None:
    async with sessionmaker() as db:
        await jobs.create(db, _job("task-1", model="Nano Banana", prompt="a red fox"))
        job = await jobs.get(db, "task-1")

    assert job is not None
    assert job.status == JobStatus.pending.value
    assert job.result_url is None
    assert job.error_message is None
    assert job.completed_at is None
    assert job.notification_sent is False
    assert job.metadata_json == {"model": "Nano Banana", "prompt": "a red fox"}


@pytest.mark.asyncio
async def test_create_duplicate_task_id_is_rejected(sessionmaker, jobs) -> None:
    async with sessionmaker() as db:
        await jobs.create(db, _job("task-1"))
    async with sessionmaker() as db:
        with pytest.raises(DuplicateTaskIdError):
            await jobs.create(db, _job("task-1", user_id="user-2"))
    async with sessionmaker() as db:
        job = await jobs.get(db, "task-1")

    assert job.user_id == "user-1"


@pytest.mark.asyncio
async def test_list_by_user_is_newest_first(sessionmaker, jobs) -> None:
    async with sessionmaker() as db:
        for task_id in ("old", "mid", "new"):
            await jobs.create(db, _job(task_id))
        await jobs.create(db, _job("someone-else", user_id="user-2"))
    await age_job(sessionmaker, "old", minutes=10)
    await age_job(sessionmaker, "mid", minutes=5)

    async with sessionmaker() as db:
        listed = await jobs.list_by_user(db, "user-1")

    assert [job.task_id for job in listed] == ["new", "mid", "old"]


# ── Status transitions ──

@pytest.mark.asyncio
async def test_repeated_identical_terminal_update_is_idempotent(sessionmaker, jobs) -> None:
    async with sessionmaker() as db:
        await jobs.create(db, _job("task-1"))
        first = await jobs.update_status(db, "task-1", JobStatus.completed, result_url="https://cdn.test/a.png")
        first_completed_at = first.job.completed_at
        second = await jobs.update_status(db, "task-1", JobStatus.completed, result_url="https://cdn.test/a.png")

    assert first.outcome == "applied"
    assert second.outcome == "duplicate"
    assert second.job.status == JobStatus.completed.value
    assert second.job.result_url == "https://cdn.test/a.png"
    assert second.job.completed_at == first_completed_at


@pytest.mark.asyncio
async def test_different_terminal_outcome_never_overwrites_first(sessionmaker, jobs) -> None:
    async with sessionmaker() as db:
        await jobs.create(db, _job("task-1"))
        await jobs.update_status(db, "task-1", JobStatus.completed, result_url="https://cdn.test/a.png")
        late_failure = await jobs.update_status(db, "task-1", JobStatus.failed, error_message="boom")
        late_url = await jobs.update_status(db, "task-1", JobStatus.completed, result_url="https://cdn.test/b.png")
        job = await jobs.get(db, "task-1")

    assert late_failure.outcome == "conflict"
    assert late_url.outcome == "conflict"
    assert job.status == JobStatus.completed.value
    assert job.result_url == "https://cdn.test/a.png"
    assert job.error_message is None


@pytest.mark.asyncio
async def test_non_terminal_update_after_terminal_is_ignored(sessionmaker, jobs) -> None:
    async with sessionmaker() as db:
        await jobs.create(db, _job("task-1"))
        await jobs.update_status(db, "task-1", JobStatus.failed, error_message="provider said no")
        update = await jobs.update_status(db, "task-1", JobStatus.processing)

    assert update.outcome == "ignored"
    assert update.job.status == JobStatus.failed.value


@pytest.mark.asyncio
async def test_terminal_rows_hold_exactly_one_outcome(sessionmaker, jobs) -> None:
    async with sessionmaker() as db:
        for task_id in ("ok", "bad", "running"):
            await jobs.create(db, _job(task_id))
        await jobs.update_status(db, "ok", JobStatus.completed, result_url="https://cdn.test/ok.png")
        await jobs.update_status(db, "bad", JobStatus.failed)
        await jobs.update_status(db, "running", JobStatus.processing)
        rows = {task_id: await jobs.get(db, task_id) for task_id in ("ok", "bad", "running")}

    ok, bad, running = rows["ok"], rows["bad"], rows["running"]
    assert ok.result_url and ok.error_message is None and ok.completed_at is not None
    assert bad.error_message == "Generation failed" and bad.result_url is None and bad.completed_at is not None
    assert running.completed_at is None and running.result_url is None and running.error_message is None


@pytest.mark.asyncio
async def test_completed_without_result_url_is_a_store_error(sessionmaker, jobs) -> None:
    async with sessionmaker() as db:
        await jobs.create(db, _job("task-1"))
        with pytest.raises(StoreError):
            await jobs.update_status(db, "task-1", JobStatus.completed)
        job = await jobs.get(db, "task-1")

    assert job.status == JobStatus.pending.value


@pytest.mark.asyncio
async def test_updates_on_missing_rows_raise_not_found(sessionmaker, jobs) -> None:
    async with sessionmaker() as db:
        with pytest.raises(NotFoundError):
            await jobs.update_status(db, "ghost", JobStatus.processing)
        with pytest.raises(NotFoundError):
            await jobs.update_provider(db, "ghost", JobProvider.falai)
        with pytest.raises(NotFoundError):
            await jobs.update_metadata(db, "ghost", {"provider_request_id": "req-1"})
        assert await jobs.delete(db, "ghost") is False


# ── Partial updates ──

@pytest.mark.asyncio
async def test_update_metadata_merges_and_enables_request_id_lookup(sessionmaker, jobs) -> None:
    async with sessionmaker() as db:
        await jobs.create(db, _job("task-1", model="Kling", prompt="waves", cost=0.5))
        await jobs.update_metadata(db, "task-1", {"provider_request_id": "fal-req-9"})
        found = await jobs.find_by_provider_request_id(db, "fal-req-9")
        missing = await jobs.find_by_provider_request_id(db, "fal-req-0")

    assert found is not None and found.task_id == "task-1"
    assert found.metadata_json == {
        "model": "Kling",
        "prompt": "waves",
        "cost": 0.5,
        "provider_request_id": "fal-req-9",
    }
    assert missing is None


@pytest.mark.asyncio
async def test_update_provider_reassigns_job(sessionmaker, jobs) -> None:
    async with sessionmaker() as db:
        await jobs.create(db, _job("task-1"))
        job = await jobs.update_provider(db, "task-1", "falai")

    assert job.provider == JobProvider.falai.value


@pytest.mark.asyncio
async def test_mark_notification_sent_only_once(sessionmaker, jobs) -> None:
    async with sessionmaker() as db:
        await jobs.create(db, _job("task-1"))
        assert await jobs.mark_notification_sent(db, "task-1") is True
        assert await jobs.mark_notification_sent(db, "task-1") is False
        job = await jobs.get(db, "task-1")

    assert job.notification_sent is True


# ── Sweeps ──

@pytest.mark.asyncio
async def test_cleanup_by_age_deletes_only_old_terminal_rows(sessionmaker, jobs) -> None:
    async with sessionmaker() as db:
        for task_id in ("old-done", "new-done", "old-pending"):
            await jobs.create(db, _job(task_id))
        await jobs.update_status(db, "old-done", JobStatus.completed, result_url="https://cdn.test/x.png")
        await jobs.update_status(db, "new-done", JobStatus.failed)
    await age_job(sessionmaker, "old-done", days=8, completed=True)
    await age_job(sessionmaker, "old-pending", days=8)

    async with sessionmaker() as db:
        removed = await jobs.cleanup_by_age(db, older_than=timedelta(days=7))
        remaining = {job.task_id for job in await jobs.list_by_user(db, "user-1")}

    assert removed == 1
    assert remaining == {"new-done", "old-pending"}


@pytest.mark.asyncio
async def test_reap_orphaned_only_touches_old_pending_rows(sessionmaker, jobs) -> None:
    async with sessionmaker() as db:
        for task_id in ("orphan", "fresh", "working"):
            await jobs.create(db, _job(task_id))
        await jobs.update_status(db, "working", JobStatus.processing)
    await age_job(sessionmaker, "orphan", minutes=40)
    await age_job(sessionmaker, "working", minutes=40)

    async with sessionmaker() as db:
        removed = await jobs.reap_orphaned(db, older_than=timedelta(minutes=30))
        remaining = {job.task_id for job in await jobs.list_by_user(db, "user-1")}

    assert removed == 1
    assert remaining == {"fresh", "working"}


@pytest.mark.asyncio
async def test_reap_stuck_archives_failure_and_deletes_row(sessionmaker, jobs) -> None:
    async with sessionmaker() as db:
        await jobs.create(db, _job("stuck", job_type=JobType.video, model="Veo 3", prompt="a drone shot", cost=1.2))
        await jobs.create(db, _job("recent"))
        await jobs.update_status(db, "stuck", JobStatus.processing)
        await jobs.update_status(db, "recent", JobStatus.processing)
    await age_job(sessionmaker, "stuck", minutes=15)

    async with sessionmaker() as db:
        reaped = await jobs.reap_stuck(db, older_than=timedelta(minutes=10))

    async with sessionmaker() as db:
        assert await jobs.get(db, "stuck") is None
        assert await jobs.get(db, "recent") is not None
        archived = (await db.execute(select(UserMedia))).scalars().all()

    assert reaped == ["stuck"]
    assert len(archived) == 1
    record = archived[0]
    assert record.task_id == "stuck"
    assert record.status == JobStatus.failed.value
    assert record.error_message == "Generation timed out after 10 minutes. Please try again."
    assert record.model == "Veo 3"
    assert record.prompt == "a drone shot"
    assert record.cost == 1.2
    assert record.media_type == "video"
    assert record.file_extension == "mp4"
    assert record.media_url == ""


@pytest.mark.asyncio
async def test_reap_stuck_rolls_back_delete_when_archive_fails(sessionmaker, jobs, media, monkeypatch) -> None:
    async with sessionmaker() as db:
        await jobs.create(db, _job("stuck"))
    await age_job(sessionmaker, "stuck", minutes=15)

    async def failing_archive(*args, **kwargs):
        raise SQLAlchemyError("disk full")

    monkeypatch.setattr(media, "archive_job", failing_archive)

    async with sessionmaker() as db:
        with pytest.raises(StoreError):
            await jobs.reap_stuck(db, older_than=timedelta(minutes=10))

    async with sessionmaker() as db:
        assert await jobs.get(db, "stuck") is not None
        assert (await db.execute(select(UserMedia))).scalars().all() == []


@pytest.mark.asyncio
async def test_archive_twice_returns_existing_record(sessionmaker, jobs, media) -> None:
    async with sessionmaker() as db:
        job = await jobs.create(db, _job("task-1", model="Flux"))
        first = await media.archive_job(db, job, status="completed", media_url="https://cdn.test/f.png")
        await db.commit()
        second = await media.archive_job(db, job, status="failed", error_message="late")
        await db.commit()
        rows = (await db.execute(select(UserMedia))).scalars().all()

    assert second.id == first.id
    assert second.status == "completed"
    assert len(rows) == 1
