"""
Reaper: periodic sweep over the pending job ledger.

Order matters: stuck jobs are archived as timed-out failures first, then rows
that never left ``pending`` are dropped, then old terminal rows are cleaned.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import timedelta

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from studio.core.config import Settings
from studio.core.logging import get_logger
from studio.models import TERMINAL_STATUSES
from studio.repositories.pending_job_repository import PendingJobRepository, stuck_timeout_message
from studio.services.reconciliation_service import ReconciliationService

logger = get_logger("services.reaper")


@dataclass
class SweepResult:
    stuck: list[str] = field(default_factory=list)
    orphaned: int = 0
    cleaned: int = 0

    def to_dict(self) -> dict:
        data = asdict(self)
        data["stuck_count"] = len(self.stuck)
        return data


class ReaperService:
    def __init__(
        self,
        sessionmaker: async_sessionmaker[AsyncSession],
        settings: Settings,
        *,
        jobs: PendingJobRepository,
        reconciliation: ReconciliationService,
    ) -> None:
        self.sessionmaker = sessionmaker
        self.settings = settings
        self.jobs = jobs
        self.reconciliation = reconciliation

    async def sweep(self) -> SweepResult:
        result = SweepResult()
        async with self.sessionmaker() as db:
            result.stuck = await self.jobs.reap_stuck(
                db, older_than=timedelta(minutes=self.settings.stuck_job_timeout_minutes)
            )
            logger.info("reaper_stuck_done", count=len(result.stuck))

            result.orphaned = await self.jobs.reap_orphaned(
                db, older_than=timedelta(minutes=self.settings.orphaned_job_minutes)
            )
            logger.info("reaper_orphaned_done", count=result.orphaned)

            result.cleaned = await self.jobs.cleanup_by_age(
                db,
                older_than=timedelta(days=self.settings.terminal_job_retention_days),
                statuses=TERMINAL_STATUSES,
            )
            logger.info("reaper_cleanup_done", count=result.cleaned)

        message = stuck_timeout_message(self.settings.stuck_job_timeout_minutes)
        for task_id in result.stuck:
            notification_id = await self.reconciliation.lookup_notification_id(task_id)
            if notification_id:
                await self.reconciliation.mark_failed(notification_id, message)
        return result

    async def run_scheduled(self) -> None:
        try:
            result = await self.sweep()
            logger.info("reaper_sweep_done", stuck=len(result.stuck), orphaned=result.orphaned, cleaned=result.cleaned)
        except Exception as exc:  # noqa: BLE001
            logger.error("reaper_sweep_failed", error=str(exc))
