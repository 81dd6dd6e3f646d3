"""
Generation orchestration.

Ties the Provider Gateway, the Pending Job Store and the Reconciliation Map
together for one client request, and handles the "consume" step once the
client has picked up a terminal job.
"""

from __future__ import annotations

from typing import Optional
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from studio.core.config import Settings
from studio.core.errors import (
    GatewayError,
    JobStateConflictError,
    NetworkError,
    NotFoundError,
)
from studio.core.logging import get_logger
from studio.models import JobStatus, PendingJob, UserMedia
from studio.repositories.pending_job_repository import PendingJobRepository
from studio.repositories.user_media_repository import UserMediaRepository
from studio.schemas import GenerationRequest, GenerationResponse, PendingJobCreate
from studio.services.poll_scheduler import PollScheduler
from studio.services.providers import Accepted, Completed, Failed, ProviderGateway
from studio.services.reconciliation_service import (
    CANCELLED_AFTER_SUBMIT,
    CANCELLED_BEFORE_SUBMIT,
    ReconciliationService,
)

logger = get_logger("services.generation")

NO_CONNECTION_MESSAGE = "No internet connection. Please check your network."
REQUEST_TIMEOUT_MESSAGE = "Request timed out. Please try again."


def user_facing_message(error: GatewayError) -> str:
    if isinstance(error, NetworkError):
        return REQUEST_TIMEOUT_MESSAGE if error.timed_out else NO_CONNECTION_MESSAGE
    return error.message or "Generation failed"


class GenerationService:
    def __init__(
        self,
        sessionmaker: async_sessionmaker[AsyncSession],
        settings: Settings,
        *,
        gateway: ProviderGateway,
        jobs: PendingJobRepository,
        media: UserMediaRepository,
        reconciliation: ReconciliationService,
        polls: PollScheduler,
    ) -> None:
        self.sessionmaker = sessionmaker
        self.settings = settings
        self.gateway = gateway
        self.jobs = jobs
        self.media = media
        self.reconciliation = reconciliation
        self.polls = polls

    # ── Submit ──

    async def submit_generation(self, request: GenerationRequest) -> GenerationResponse:
        task_id = str(uuid4())
        notification_id = request.notification_id or str(uuid4())
        is_async = request.delivery_method == "async"
        log = logger.bind(task_id=task_id, notification_id=notification_id, provider=request.provider.value)

        await self.reconciliation.register(
            notification_id=notification_id,
            user_id=request.user_id,
            model_name=request.display_model,
            prompt=request.prompt,
            title=request.title,
            job_type=request.job_type,
            aspect_ratio=request.aspect_ratio,
            cost=request.cost,
        )
        if is_async:
            async with self.sessionmaker() as db:
                await self.jobs.create(
                    db,
                    PendingJobCreate(
                        task_id=task_id,
                        user_id=request.user_id,
                        job_type=request.job_type,
                        provider=request.provider,
                        metadata=request.metadata(),
                        device_token=request.device_token,
                    ),
                )

        if await self.reconciliation.is_cancelled(notification_id):
            if is_async:
                async with self.sessionmaker() as db:
                    await self.jobs.delete(db, task_id)
            log.info("generation_cancelled_before_submit")
            return GenerationResponse(
                notification_id=notification_id,
                task_id=task_id,
                outcome="failed",
                error_message=CANCELLED_BEFORE_SUBMIT,
            )

        result = await self.gateway.submit(request, task_id)
        await self.reconciliation.mark_billable(notification_id)

        if isinstance(result, Accepted):
            return await self._on_accepted(request, notification_id, result, is_async)
        if isinstance(result, Completed):
            return await self._on_completed(request, notification_id, result, is_async)
        return await self._on_failed(request, notification_id, result, is_async)

    async def _on_accepted(
        self,
        request: GenerationRequest,
        notification_id: str,
        result: Accepted,
        is_async: bool,
    ) -> GenerationResponse:
        task_id = result.task_id
        await self.reconciliation.associate(notification_id, task_id)
        if await self.reconciliation.is_cancelled(notification_id):
            await self.reconciliation.settle_cancelled(notification_id)
            return GenerationResponse(
                notification_id=notification_id,
                task_id=task_id,
                outcome="failed",
                error_message=CANCELLED_AFTER_SUBMIT,
            )

        if is_async:
            async with self.sessionmaker() as db:
                try:
                    if result.provider_request_id:
                        await self.jobs.update_metadata(
                            db, task_id, {"provider_request_id": result.provider_request_id}
                        )
                    await self.jobs.update_status(db, task_id, JobStatus.processing)
                except NotFoundError:
                    logger.warning("generation_job_missing_after_accept", task_id=task_id)

        webhook_registered = self.gateway.supports_webhooks(request.provider)
        if result.poll_handle is not None:
            await self.polls.schedule(result.poll_handle, webhook_registered=webhook_registered)

        logger.info(
            "generation_accepted",
            task_id=task_id,
            notification_id=notification_id,
            provider_request_id=result.provider_request_id,
            webhook=webhook_registered,
        )
        return GenerationResponse(
            notification_id=notification_id,
            task_id=task_id,
            outcome="accepted",
            polling=result.poll_handle is not None and not webhook_registered,
        )

    async def _on_completed(
        self,
        request: GenerationRequest,
        notification_id: str,
        result: Completed,
        is_async: bool,
    ) -> GenerationResponse:
        task_id = result.task_id
        await self.reconciliation.associate(notification_id, task_id)
        async with self.sessionmaker() as db:
            if is_async:
                try:
                    await self.jobs.update_status(db, task_id, JobStatus.completed, result_url=result.result_url)
                except NotFoundError:
                    logger.warning("generation_job_missing_after_complete", task_id=task_id)
            await self.media.archive(
                db,
                task_id=task_id,
                user_id=request.user_id,
                media_type=request.job_type.value,
                provider=request.provider.value,
                metadata=request.metadata(),
                status=JobStatus.completed.value,
                media_url=result.result_url,
            )
            await db.commit()
        await self.reconciliation.mark_completed(notification_id, result.result_url)
        logger.info("generation_completed", task_id=task_id, notification_id=notification_id)
        return GenerationResponse(
            notification_id=notification_id,
            task_id=task_id,
            outcome="completed",
            result_url=result.result_url,
        )

    async def _on_failed(
        self,
        request: GenerationRequest,
        notification_id: str,
        result: Failed,
        is_async: bool,
    ) -> GenerationResponse:
        task_id = result.task_id
        message = user_facing_message(result.error)
        await self.reconciliation.mark_failed(notification_id, message)
        async with self.sessionmaker() as db:
            # Payment was already captured; the billing trace is staged before the row goes.
            await self.media.archive(
                db,
                task_id=task_id,
                user_id=request.user_id,
                media_type=request.job_type.value,
                provider=request.provider.value,
                metadata=request.metadata(),
                status=JobStatus.failed.value,
                error_message=message,
            )
            if is_async:
                # Commits the archive together with the delete.
                await self.jobs.delete(db, task_id)
            else:
                await db.commit()
        logger.warning(
            "generation_failed",
            task_id=task_id,
            notification_id=notification_id,
            error_code=result.error.code,
            error=message,
        )
        return GenerationResponse(
            notification_id=notification_id,
            task_id=task_id,
            outcome="failed",
            error_message=message,
        )

    # ── Jobs ──

    async def list_jobs(self, user_id: str, *, limit: int = 100) -> list[PendingJob]:
        async with self.sessionmaker() as db:
            return await self.jobs.list_by_user(db, user_id, limit=limit)

    async def get_job(self, task_id: str) -> PendingJob:
        async with self.sessionmaker() as db:
            job = await self.jobs.get(db, task_id)
        if job is None:
            raise NotFoundError(f"Pending job not found: {task_id}")
        return job

    async def delete_job(self, task_id: str) -> None:
        async with self.sessionmaker() as db:
            deleted = await self.jobs.delete(db, task_id)
        if not deleted:
            raise NotFoundError(f"Pending job not found: {task_id}")

    async def consume(self, task_id: str, *, media_url: Optional[str] = None) -> UserMedia:
        """Archive a terminal job into history, drop the pending row and the map link."""
        async with self.sessionmaker() as db:
            job = await self.jobs.get(db, task_id)
            if job is None:
                raise NotFoundError(f"Pending job not found: {task_id}")
            if not job.is_terminal:
                raise JobStateConflictError(f"Job {task_id} is still {job.status}")
            if job.status == JobStatus.completed.value:
                record = await self.media.archive_job(
                    db, job, status=JobStatus.completed.value, media_url=media_url or job.result_url or ""
                )
            else:
                record = await self.media.archive_job(
                    db, job, status=JobStatus.failed.value, error_message=job.error_message
                )
            await self.jobs.delete(db, task_id)
        await self.reconciliation.remove(task_id)
        logger.info("generation_consumed", task_id=task_id, status=record.status)
        return record
