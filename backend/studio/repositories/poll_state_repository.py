from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from studio.core.database import utcnow
from studio.models import JobPollState


class PollStateRepository:
    async def schedule(
        self,
        db: AsyncSession,
        *,
        task_id: str,
        provider: str,
        handle: dict[str, Any],
        initial_delay_seconds: float,
        interval_seconds: float,
        max_attempts: int,
    ) -> JobPollState:
        existing = await db.get(JobPollState, task_id)
        if existing is not None:
            return existing
        state = JobPollState(
            task_id=task_id,
            provider=provider,
            handle_json=handle,
            attempts=0,
            max_attempts=max_attempts,
            interval_seconds=interval_seconds,
            next_poll_at=utcnow() + timedelta(seconds=initial_delay_seconds),
        )
        db.add(state)
        await db.commit()
        return state

    async def due(self, db: AsyncSession, *, now: datetime | None = None, limit: int = 50) -> list[JobPollState]:
        rows = await db.execute(
            select(JobPollState)
            .where(JobPollState.next_poll_at <= (now or utcnow()))
            .order_by(JobPollState.next_poll_at)
            .limit(limit)
        )
        return list(rows.scalars().all())

    async def reschedule(self, db: AsyncSession, state: JobPollState, *, last_status: str | None) -> JobPollState:
        state.attempts = (state.attempts or 0) + 1
        state.last_status = last_status
        state.next_poll_at = utcnow() + timedelta(seconds=state.interval_seconds)
        state.updated_at = utcnow()
        await db.commit()
        return state

    async def remove(self, db: AsyncSession, task_id: str) -> None:
        await db.execute(delete(JobPollState).where(JobPollState.task_id == task_id))
        await db.commit()
