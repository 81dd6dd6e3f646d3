"""
Persisted polling fallback.

One ``job_poll_states`` row per polled task. ``tick`` runs on the scheduler,
polls every due row once and either finalizes the job or pushes the next
attempt out by the row's interval. All state is in the database, so polling
resumes after a restart.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from studio.core.config import Settings
from studio.core.errors import GatewayError, NotFoundError
from studio.core.logging import get_logger
from studio.models import JobPollState, JobStatus
from studio.repositories.pending_job_repository import PendingJobRepository
from studio.repositories.poll_state_repository import PollStateRepository
from studio.services.job_events import JobEventPublisher
from studio.services.providers import PollHandle, ProviderGateway

logger = get_logger("services.poll_scheduler")

POLL_TIMEOUT_MESSAGE = "Generation timed out"


@dataclass
class TickResult:
    polled: int = 0
    completed: int = 0
    failed: int = 0
    timed_out: int = 0
    dropped: int = 0


class PollScheduler:
    def __init__(
        self,
        sessionmaker: async_sessionmaker[AsyncSession],
        settings: Settings,
        *,
        gateway: ProviderGateway,
        jobs: PendingJobRepository,
        events: JobEventPublisher,
        polls: PollStateRepository | None = None,
    ) -> None:
        self.sessionmaker = sessionmaker
        self.settings = settings
        self.gateway = gateway
        self.jobs = jobs
        self.events = events
        self.polls = polls or PollStateRepository()

    async def schedule(self, handle: PollHandle, *, webhook_registered: bool = False) -> JobPollState:
        """Persist a poll schedule. With a webhook registered, the first poll waits out the grace period."""
        policy = self.gateway.policy_for(handle.job_type)
        initial_delay = policy.initial_delay
        if webhook_registered:
            initial_delay = max(initial_delay, self.settings.webhook_grace_seconds)
        async with self.sessionmaker() as db:
            state = await self.polls.schedule(
                db,
                task_id=handle.task_id,
                provider=handle.provider,
                handle=handle.to_json(),
                initial_delay_seconds=initial_delay,
                interval_seconds=policy.interval,
                max_attempts=policy.max_attempts,
            )
        logger.info(
            "poll_scheduled",
            task_id=handle.task_id,
            provider=handle.provider,
            initial_delay=initial_delay,
            max_attempts=policy.max_attempts,
        )
        return state

    async def _finalize(
        self,
        db: AsyncSession,
        state: JobPollState,
        status: JobStatus,
        *,
        result_url: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> None:
        try:
            update = await self.jobs.update_status(
                db, state.task_id, status, result_url=result_url, error_message=error_message
            )
        except NotFoundError:
            logger.info("poll_job_already_cleaned_up", task_id=state.task_id)
        else:
            await self.events.job_updated(db, update.job, applied=update.applied)
        await self.polls.remove(db, state.task_id)

    async def poll_state(self, db: AsyncSession, state: JobPollState, result: TickResult) -> None:
        job = await self.jobs.get(db, state.task_id)
        if job is None or job.is_terminal:
            await self.polls.remove(db, state.task_id)
            result.dropped += 1
            return

        handle = PollHandle.from_json(state.handle_json or {})
        result.polled += 1
        try:
            outcome = await self.gateway.poll_once(handle)
        except GatewayError as exc:
            logger.warning("poll_attempt_error", task_id=state.task_id, attempt=state.attempts + 1, error=exc.message)
            last_status = "error"
            outcome = None
        else:
            last_status = outcome.raw_status or outcome.state

        if outcome is not None and outcome.state == "completed" and outcome.result_url:
            await self._finalize(db, state, JobStatus.completed, result_url=outcome.result_url)
            result.completed += 1
            return
        if outcome is not None and outcome.state == "failed":
            await self._finalize(db, state, JobStatus.failed, error_message=outcome.error_message)
            result.failed += 1
            return

        state = await self.polls.reschedule(db, state, last_status=last_status)
        if state.attempts >= state.max_attempts:
            logger.warning("poll_budget_exhausted", task_id=state.task_id, attempts=state.attempts)
            await self._finalize(db, state, JobStatus.failed, error_message=POLL_TIMEOUT_MESSAGE)
            result.timed_out += 1

    async def tick(self, *, limit: int = 50) -> TickResult:
        result = TickResult()
        async with self.sessionmaker() as db:
            due = [state.task_id for state in await self.polls.due(db, limit=limit)]
            for task_id in due:
                try:
                    state = await db.get(JobPollState, task_id, populate_existing=True)
                    if state is None:
                        continue
                    await self.poll_state(db, state, result)
                except Exception as exc:  # noqa: BLE001
                    await db.rollback()
                    logger.error("poll_tick_item_failed", task_id=task_id, error=str(exc))
        if result.polled or result.dropped:
            logger.info("poll_tick", **result.__dict__)
        return result
