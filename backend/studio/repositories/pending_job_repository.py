from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Iterable, Literal, Optional

from sqlalchemy import delete, desc, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from studio.core.database import utcnow
from studio.core.errors import DuplicateTaskIdError, NotFoundError, StoreError
from studio.core.logging import get_logger
from studio.models import ACTIVE_STATUSES, TERMINAL_STATUSES, JobProvider, JobStatus, PendingJob
from studio.repositories.user_media_repository import UserMediaRepository
from studio.schemas import PendingJobCreate, PendingJobMetadata

logger = get_logger("repositories.pending_jobs")

UpdateOutcome = Literal["applied", "duplicate", "conflict", "ignored"]

DEFAULT_FAILURE_MESSAGE = "Generation failed"


@dataclass
class StatusUpdate:
    outcome: UpdateOutcome
    job: PendingJob

    @property
    def applied(self) -> bool:
        return self.outcome == "applied"


def stuck_timeout_message(minutes: int) -> str:
    return f"Generation timed out after {minutes} minutes. Please try again."


class PendingJobRepository:
    """Durable ledger of in-flight generation jobs.

    Every mutating call commits its own transaction. ``update_status`` is the
    only concurrency guard: the terminal transition is a conditional UPDATE
    that matches active rows only, so duplicate or out-of-order callbacks can
    never flip an outcome that is already recorded.
    """

    def __init__(self, media_repository: UserMediaRepository | None = None) -> None:
        self.media = media_repository or UserMediaRepository()

    async def _commit(self, db: AsyncSession, action: str) -> None:
        try:
            await db.commit()
        except SQLAlchemyError as exc:
            await db.rollback()
            logger.error("pending_job_store_error", action=action, error=str(exc))
            raise StoreError(f"{action} failed: {exc}") from exc

    async def create(self, db: AsyncSession, payload: PendingJobCreate) -> PendingJob:
        now = utcnow()
        job = PendingJob(
            task_id=payload.task_id,
            user_id=payload.user_id,
            job_type=payload.job_type.value,
            provider=payload.provider.value,
            status=payload.status.value,
            metadata_json=payload.metadata.to_json(),
            device_token=payload.device_token,
            notification_sent=False,
            created_at=now,
            updated_at=now,
        )
        db.add(job)
        try:
            await db.commit()
        except IntegrityError as exc:
            await db.rollback()
            raise DuplicateTaskIdError(f"Task id already exists: {payload.task_id}") from exc
        except SQLAlchemyError as exc:
            await db.rollback()
            raise StoreError(f"create failed: {exc}") from exc
        logger.info("pending_job_created", task_id=job.task_id, provider=job.provider, job_type=job.job_type)
        return job

    async def get(self, db: AsyncSession, task_id: str) -> PendingJob | None:
        row = await db.execute(
            select(PendingJob)
            .where(PendingJob.task_id == task_id)
            .execution_options(populate_existing=True)
        )
        return row.scalar_one_or_none()

    async def find_by_provider_request_id(self, db: AsyncSession, request_id: str) -> PendingJob | None:
        """Secondary correlation lookup for providers that call back with their own id."""
        row = await db.execute(
            select(PendingJob)
            .where(PendingJob.metadata_json["provider_request_id"].as_string() == request_id)
            .execution_options(populate_existing=True)
            .limit(1)
        )
        return row.scalar_one_or_none()

    async def list_by_user(self, db: AsyncSession, user_id: str, *, limit: int = 100) -> list[PendingJob]:
        rows = await db.execute(
            select(PendingJob)
            .where(PendingJob.user_id == user_id)
            .order_by(desc(PendingJob.created_at))
            .limit(limit)
        )
        return list(rows.scalars().all())

    async def update_status(
        self,
        db: AsyncSession,
        task_id: str,
        status: JobStatus | str,
        *,
        result_url: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> StatusUpdate:
        status = JobStatus(status)
        now = utcnow()
        values: dict[str, Any] = {"status": status.value, "updated_at": now}
        if status == JobStatus.completed:
            if not result_url:
                raise StoreError("A completed job requires a result URL")
            values.update(result_url=result_url, error_message=None, completed_at=now)
        elif status == JobStatus.failed:
            error_message = error_message or DEFAULT_FAILURE_MESSAGE
            values.update(result_url=None, error_message=error_message, completed_at=now)

        stmt = (
            update(PendingJob)
            .where(PendingJob.task_id == task_id, PendingJob.status.in_(ACTIVE_STATUSES))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        try:
            result = await db.execute(stmt)
        except SQLAlchemyError as exc:
            await db.rollback()
            raise StoreError(f"update_status failed: {exc}") from exc
        await self._commit(db, "update_status")

        job = await self.get(db, task_id)
        if job is None:
            raise NotFoundError(f"Pending job not found: {task_id}")
        if result.rowcount:
            logger.info("pending_job_status_updated", task_id=task_id, status=status.value)
            return StatusUpdate("applied", job)

        if status.value not in TERMINAL_STATUSES:
            return StatusUpdate("ignored", job)
        same_outcome = job.status == status.value and (
            job.result_url == result_url if status == JobStatus.completed else job.error_message == error_message
        )
        if same_outcome:
            return StatusUpdate("duplicate", job)
        logger.warning(
            "pending_job_terminal_conflict",
            task_id=task_id,
            recorded_status=job.status,
            attempted_status=status.value,
        )
        return StatusUpdate("conflict", job)

    async def _update_fields(self, db: AsyncSession, task_id: str, action: str, **values: Any) -> PendingJob:
        values["updated_at"] = utcnow()
        try:
            result = await db.execute(
                update(PendingJob)
                .where(PendingJob.task_id == task_id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
        except SQLAlchemyError as exc:
            await db.rollback()
            raise StoreError(f"{action} failed: {exc}") from exc
        await self._commit(db, action)
        if not result.rowcount:
            raise NotFoundError(f"Pending job not found: {task_id}")
        job = await self.get(db, task_id)
        if job is None:
            raise NotFoundError(f"Pending job not found: {task_id}")
        return job

    async def update_provider(self, db: AsyncSession, task_id: str, provider: JobProvider | str) -> PendingJob:
        return await self._update_fields(db, task_id, "update_provider", provider=JobProvider(provider).value)

    async def update_metadata(
        self,
        db: AsyncSession,
        task_id: str,
        metadata: PendingJobMetadata | dict[str, Any],
        *,
        merge: bool = True,
    ) -> PendingJob:
        incoming = PendingJobMetadata.coerce(metadata).to_json()
        if merge:
            job = await self.get(db, task_id)
            if job is None:
                raise NotFoundError(f"Pending job not found: {task_id}")
            incoming = {**PendingJobMetadata.coerce(job.metadata_json).to_json(), **incoming}
        return await self._update_fields(db, task_id, "update_metadata", metadata_json=incoming)

    async def mark_notification_sent(self, db: AsyncSession, task_id: str) -> bool:
        result = await db.execute(
            update(PendingJob)
            .where(PendingJob.task_id == task_id, PendingJob.notification_sent == False)  # noqa: E712
            .values(notification_sent=True, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        await self._commit(db, "mark_notification_sent")
        return bool(result.rowcount)

    async def reset_notification_sent(self, db: AsyncSession, task_id: str) -> None:
        await db.execute(
            update(PendingJob)
            .where(PendingJob.task_id == task_id)
            .values(notification_sent=False, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        await self._commit(db, "reset_notification_sent")

    async def delete(self, db: AsyncSession, task_id: str) -> bool:
        result = await db.execute(delete(PendingJob).where(PendingJob.task_id == task_id))
        await self._commit(db, "delete")
        deleted = bool(result.rowcount)
        if deleted:
            logger.info("pending_job_deleted", task_id=task_id)
        return deleted

    async def cleanup_by_age(
        self,
        db: AsyncSession,
        *,
        older_than: timedelta,
        statuses: Iterable[str] = TERMINAL_STATUSES,
    ) -> int:
        cutoff = utcnow() - older_than
        finished_at = func.coalesce(PendingJob.completed_at, PendingJob.created_at)
        result = await db.execute(
            delete(PendingJob).where(
                PendingJob.status.in_([JobStatus(s).value for s in statuses]),
                finished_at < cutoff,
            )
        )
        await self._commit(db, "cleanup_by_age")
        return int(result.rowcount or 0)

    async def reap_orphaned(self, db: AsyncSession, *, older_than: timedelta) -> int:
        """Drop rows that never left ``pending``; the submission most likely never reached the provider."""
        cutoff = utcnow() - older_than
        result = await db.execute(
            delete(PendingJob).where(
                PendingJob.status == JobStatus.pending.value,
                PendingJob.created_at < cutoff,
            )
        )
        await self._commit(db, "reap_orphaned")
        return int(result.rowcount or 0)

    async def reap_stuck(self, db: AsyncSession, *, older_than: timedelta) -> list[str]:
        """Archive a timed-out failure for every stuck row, then delete it, in one transaction."""
        cutoff = utcnow() - older_than
        message = stuck_timeout_message(max(1, int(older_than.total_seconds() // 60)))
        rows = await db.execute(
            select(PendingJob).where(
                PendingJob.status.in_(ACTIVE_STATUSES),
                PendingJob.created_at < cutoff,
            )
        )
        stuck = list(rows.scalars().all())
        reaped: list[str] = []
        try:
            for job in stuck:
                deleted = await db.execute(
                    delete(PendingJob)
                    .where(PendingJob.task_id == job.task_id, PendingJob.status.in_(ACTIVE_STATUSES))
                    .execution_options(synchronize_session=False)
                )
                if not deleted.rowcount:
                    # A callback finalized it between the scan and the delete.
                    continue
                await self.media.archive_job(db, job, status=JobStatus.failed.value, error_message=message)
                reaped.append(job.task_id)
            await db.commit()
        except SQLAlchemyError as exc:
            await db.rollback()
            logger.error("reap_stuck_failed", error=str(exc))
            raise StoreError(f"reap_stuck failed: {exc}") from exc
        for job in stuck:
            if job.task_id in reaped:
                db.expunge(job)
        return reaped
