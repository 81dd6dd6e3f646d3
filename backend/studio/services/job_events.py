"""Side effects of a job reaching a terminal state: notification record and push alert."""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession

from studio.core.logging import get_logger
from studio.models import JobStatus, PendingJob
from studio.repositories.pending_job_repository import PendingJobRepository
from studio.schemas import PendingJobMetadata
from studio.services.push_service import PushNotificationService
from studio.services.reconciliation_service import ReconciliationService

logger = get_logger("services.job_events")


class JobEventPublisher:
    """Shared by the webhook receiver and the poll scheduler. Never raises."""

    def __init__(
        self,
        *,
        jobs: PendingJobRepository,
        reconciliation: ReconciliationService,
        push: PushNotificationService,
    ) -> None:
        self.jobs = jobs
        self.reconciliation = reconciliation
        self.push = push

    async def sync_notification(self, job: PendingJob) -> None:
        metadata = PendingJobMetadata.coerce(job.metadata_json)
        link = await self.reconciliation.resolve_notification(
            job.task_id,
            model_name=metadata.model,
            prompt=metadata.prompt,
            user_id=job.user_id,
        )
        if link is None:
            return
        if job.status == JobStatus.completed.value:
            await self.reconciliation.mark_completed(link.notification_id, job.result_url)
        elif job.status == JobStatus.failed.value:
            await self.reconciliation.mark_failed(link.notification_id, job.error_message)

    async def send_push(self, db: AsyncSession, job: PendingJob) -> bool:
        if job.status != JobStatus.completed.value or not job.device_token or job.notification_sent:
            return False
        # Claim the flag first; only the delivery whose UPDATE matched may push.
        if not await self.jobs.mark_notification_sent(db, job.task_id):
            logger.info("push_already_claimed", task_id=job.task_id)
            return False
        try:
            sent = await self.push.send(job.device_token, job.task_id, job.job_type)
        except Exception:
            await self.jobs.reset_notification_sent(db, job.task_id)
            raise
        if not sent:
            await self.jobs.reset_notification_sent(db, job.task_id)
        return sent

    async def job_updated(self, db: AsyncSession, job: PendingJob, *, applied: bool) -> None:
        if applied and job.is_terminal:
            try:
                await self.sync_notification(job)
            except Exception as exc:  # noqa: BLE001
                logger.error("notification_sync_failed", task_id=job.task_id, error=str(exc))
        try:
            await self.send_push(db, job)
        except Exception as exc:  # noqa: BLE001
            logger.error("push_side_effect_failed", task_id=job.task_id, error=str(exc))
