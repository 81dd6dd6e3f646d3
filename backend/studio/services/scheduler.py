"""Interval jobs: persisted poll ticks and the reaper sweep."""

from __future__ import annotations

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from studio.core.config import Settings
from studio.core.logging import get_logger
from studio.services.poll_scheduler import PollScheduler
from studio.services.reaper_service import ReaperService

logger = get_logger("services.scheduler")


class JobScheduler:
    def __init__(self, settings: Settings, *, polls: PollScheduler, reaper: ReaperService) -> None:
        self.settings = settings
        self.polls = polls
        self.reaper = reaper
        self._scheduler: AsyncIOScheduler | None = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None

    async def _poll_tick(self) -> None:
        try:
            await self.polls.tick()
        except Exception as exc:  # noqa: BLE001
            logger.error("poll_tick_failed", error=str(exc))

    def start(self) -> None:
        if self._scheduler is not None:
            return
        if not (self.settings.poll_scheduler_enabled or self.settings.reaper_enabled):
            return

        self._scheduler = AsyncIOScheduler(timezone="UTC")
        if self.settings.poll_scheduler_enabled:
            self._scheduler.add_job(
                self._poll_tick,
                trigger=IntervalTrigger(seconds=self.settings.poll_tick_seconds),
                id="job_poll_tick",
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )
        if self.settings.reaper_enabled:
            self._scheduler.add_job(
                self.reaper.run_scheduled,
                trigger=IntervalTrigger(minutes=self.settings.reaper_interval_minutes),
                id="pending_job_reaper",
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )
        if self.settings.poll_scheduler_enabled and self.settings.reaper_enabled and self.settings.reaper_preempts_polling:
            logger.warning(
                "poll_window_exceeds_stuck_timeout",
                poll_window_seconds=self.settings.poll_window_seconds,
                stuck_job_timeout_minutes=self.settings.stuck_job_timeout_minutes,
            )
        self._scheduler.start()
        logger.info(
            "job_scheduler_started",
            poll_tick_seconds=self.settings.poll_tick_seconds if self.settings.poll_scheduler_enabled else None,
            reaper_interval_minutes=self.settings.reaper_interval_minutes if self.settings.reaper_enabled else None,
        )

    def stop(self) -> None:
        if self._scheduler is None:
            return
        self._scheduler.shutdown(wait=False)
        self._scheduler = None
        logger.info("job_scheduler_stopped")
