"""
Notification/Job Reconciliation Map.

Bidirectional index between client notification ids and provider task ids,
persisted in ``notification_links``. Also owns the notification lifecycle
(in_progress -> completed / failed / cancelled) and the cancellation policy.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from studio.core.config import Settings
from studio.core.errors import NotFoundError
from studio.core.logging import get_logger
from studio.models import JobStatus, JobType, NotificationLink, NotificationState, PendingJob
from studio.repositories.notification_link_repository import NotificationLinkRepository
from studio.repositories.pending_job_repository import PendingJobRepository
from studio.repositories.user_media_repository import UserMediaRepository
from studio.schemas import PendingJobMetadata
from studio.utils import best_prompt_match

logger = get_logger("services.reconciliation")

CANCELLED_BEFORE_SUBMIT = "Task cancelled by user"
CANCELLED_AFTER_SUBMIT = "Cancelled by user"


@dataclass(frozen=True)
class CancellationResult:
    notification_id: str
    task_id: Optional[str]
    deleted: bool
    archived: bool
    state: str


class ReconciliationService:
    def __init__(
        self,
        sessionmaker: async_sessionmaker[AsyncSession],
        settings: Settings,
        *,
        links: NotificationLinkRepository | None = None,
        jobs: PendingJobRepository | None = None,
        media: UserMediaRepository | None = None,
    ) -> None:
        self.sessionmaker = sessionmaker
        self.settings = settings
        self.links = links or NotificationLinkRepository()
        self.media = media or UserMediaRepository()
        self.jobs = jobs or PendingJobRepository(self.media)

    # ── Map ──

    async def register(
        self,
        *,
        notification_id: str,
        user_id: str,
        model_name: Optional[str],
        prompt: Optional[str],
        title: Optional[str],
        job_type: JobType | str,
        aspect_ratio: Optional[str] = None,
        cost: Optional[float] = None,
    ) -> NotificationLink:
        link = NotificationLink(
            notification_id=notification_id,
            user_id=user_id,
            model_name=model_name,
            prompt=prompt,
            title=title or model_name,
            job_type=JobType(job_type).value,
            aspect_ratio=aspect_ratio,
            cost=cost,
            state=NotificationState.in_progress.value,
            progress=0.0,
            message="Submitting...",
            can_cancel=True,
        )
        async with self.sessionmaker() as db:
            await self.links.create(db, link)
        logger.info("notification_registered", notification_id=notification_id, model=model_name)
        return link

    async def associate(self, notification_id: str, task_id: str) -> NotificationLink:
        async with self.sessionmaker() as db:
            link = await self.links.update(db, notification_id, task_id=task_id, message="Generating...")
        logger.info("notification_associated", notification_id=notification_id, task_id=task_id)
        return link

    async def mark_billable(self, notification_id: str) -> None:
        async with self.sessionmaker() as db:
            await self.links.update(db, notification_id, can_cancel=False)

    async def get(self, notification_id: str) -> NotificationLink | None:
        async with self.sessionmaker() as db:
            return await self.links.get(db, notification_id)

    async def lookup_task_id(self, notification_id: str) -> Optional[str]:
        link = await self.get(notification_id)
        return link.task_id if link else None

    async def lookup_notification_id(self, task_id: str) -> Optional[str]:
        async with self.sessionmaker() as db:
            link = await self.links.get_by_task_id(db, task_id)
        return link.notification_id if link else None

    async def remove(self, task_id: str) -> bool:
        async with self.sessionmaker() as db:
            removed = await self.links.clear_task(db, task_id)
        if removed:
            logger.info("notification_link_removed", task_id=task_id)
        return removed

    async def resolve_notification(
        self,
        task_id: str,
        *,
        model_name: Optional[str] = None,
        prompt: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> NotificationLink | None:
        """Primary lookup by task id; prompt similarity against unlinked in-progress records otherwise."""
        async with self.sessionmaker() as db:
            link = await self.links.get_by_task_id(db, task_id)
            if link is not None:
                return link
            if not model_name or not prompt:
                return None
            candidates = await self.links.list_unlinked_in_progress(db, model_name=model_name, user_id=user_id)

        match = best_prompt_match(
            prompt,
            candidates,
            prompt_of=lambda candidate: candidate.prompt,
            threshold=self.settings.notification_match_threshold,
        )
        if match is None:
            logger.info("notification_match_missed", task_id=task_id, model=model_name, candidates=len(candidates))
            return None
        link, score = match
        logger.warning(
            "notification_fuzzy_matched",
            task_id=task_id,
            notification_id=link.notification_id,
            score=round(score, 3),
        )
        return await self.associate(link.notification_id, task_id)

    # ── Lifecycle ──

    async def mark_completed(self, notification_id: str, result_url: str) -> NotificationLink | None:
        link = await self.get(notification_id)
        if link is None or link.state != NotificationState.in_progress.value:
            return link
        async with self.sessionmaker() as db:
            return await self._complete_link(db, link, result_url)

    async def mark_failed(self, notification_id: str, error_message: str) -> NotificationLink | None:
        link = await self.get(notification_id)
        if link is None or link.state != NotificationState.in_progress.value:
            return link
        async with self.sessionmaker() as db:
            return await self.links.update(
                db,
                notification_id,
                state=NotificationState.failed.value,
                message="❌ Generation failed",
                error_message=error_message,
                can_cancel=False,
            )

    async def is_cancelled(self, notification_id: str) -> bool:
        link = await self.get(notification_id)
        return link is not None and link.state == NotificationState.cancelled.value

    async def settle_cancelled(self, notification_id: str) -> bool:
        """Archive a job the provider accepted after the user had already cancelled."""
        link = await self.get(notification_id)
        if link is None or link.state != NotificationState.cancelled.value or not link.task_id:
            return False
        async with self.sessionmaker() as db:
            finished = await self._archive_cancelled(db, link)
            if finished is not None:
                await self._complete_link(db, link, finished.result_url)
                return True
        logger.warning("generation_cancelled_after_billing", notification_id=notification_id, task_id=link.task_id)
        return True

    async def cancel(self, notification_id: str) -> CancellationResult:
        """
        Before the provider accepted the work the pending row is deleted outright.
        Afterwards the job is only failed and archived with its cost; nothing is
        deleted or refunded. A job the provider already completed stays completed.
        """
        link = await self.get(notification_id)
        if link is None:
            raise NotFoundError(f"Notification not found: {notification_id}")
        if link.state != NotificationState.in_progress.value:
            return CancellationResult(notification_id, link.task_id, False, False, link.state)

        task_id = link.task_id
        async with self.sessionmaker() as db:
            if link.can_cancel or task_id is None:
                deleted = await self.jobs.delete(db, task_id) if task_id else False
                await self.links.update(
                    db,
                    notification_id,
                    state=NotificationState.cancelled.value,
                    message="Cancelled",
                    error_message=CANCELLED_BEFORE_SUBMIT,
                    task_id=None,
                )
                logger.info("generation_cancelled_before_billing", notification_id=notification_id, task_id=task_id)
                return CancellationResult(notification_id, task_id, deleted, False, NotificationState.cancelled.value)

            finished = await self._archive_cancelled(db, link)
            if finished is not None:
                await self._complete_link(db, link, finished.result_url)
                return CancellationResult(notification_id, task_id, False, True, NotificationState.completed.value)

            await self.links.update(
                db,
                notification_id,
                state=NotificationState.cancelled.value,
                message="Cancelled",
                error_message=CANCELLED_AFTER_SUBMIT,
                can_cancel=False,
            )
        logger.warning("generation_cancelled_after_billing", notification_id=notification_id, task_id=task_id)
        return CancellationResult(notification_id, task_id, False, True, NotificationState.cancelled.value)

    async def _archive_cancelled(self, db: AsyncSession, link: NotificationLink) -> Optional[PendingJob]:
        """Stage and commit the history row. Returns the job if it had already completed."""
        job = None
        if link.task_id:
            try:
                update = await self.jobs.update_status(
                    db, link.task_id, JobStatus.failed, error_message=CANCELLED_AFTER_SUBMIT
                )
                job = update.job
            except NotFoundError:
                logger.info("cancel_job_already_cleaned_up", task_id=link.task_id)

        if job is not None and job.status == JobStatus.completed.value:
            await self.media.archive_job(db, job, status=JobStatus.completed.value, media_url=job.result_url or "")
            await db.commit()
            logger.info("cancel_found_completed_job", notification_id=link.notification_id, task_id=job.task_id)
            return job

        if job is not None:
            await self.media.archive_job(
                db, job, status=NotificationState.cancelled.value, error_message=CANCELLED_AFTER_SUBMIT
            )
        else:
            await self.media.archive(
                db,
                task_id=link.task_id,
                user_id=link.user_id,
                media_type=link.job_type,
                provider=None,
                metadata=PendingJobMetadata(
                    prompt=link.prompt,
                    model=link.model_name,
                    title=link.title,
                    aspect_ratio=link.aspect_ratio,
                    cost=link.cost,
                ),
                status=NotificationState.cancelled.value,
                error_message=CANCELLED_AFTER_SUBMIT,
            )
        await db.commit()
        return None

    async def _complete_link(self, db: AsyncSession, link: NotificationLink, result_url: Optional[str]) -> NotificationLink:
        title = link.title or link.model_name or "Generation"
        return await self.links.update(
            db,
            link.notification_id,
            state=NotificationState.completed.value,
            progress=1.0,
            message=f"✅ {title} ready!",
            result_url=result_url,
            error_message=None,
            can_cancel=False,
        )
