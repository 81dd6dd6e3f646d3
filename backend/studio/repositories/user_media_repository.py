from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import desc, select
from sqlalchemy.ext.asyncio import AsyncSession

from studio.core.database import utcnow
from studio.models import JobType, PendingJob, UserMedia
from studio.schemas import PendingJobMetadata


class UserMediaRepository:
    """Append-only generation history. Callers own the transaction."""

    async def get_by_task_id(self, db: AsyncSession, task_id: str) -> UserMedia | None:
        row = await db.execute(select(UserMedia).where(UserMedia.task_id == task_id))
        return row.scalar_one_or_none()

    async def list_by_user(self, db: AsyncSession, user_id: str, *, limit: int = 100) -> list[UserMedia]:
        rows = await db.execute(
            select(UserMedia)
            .where(UserMedia.user_id == user_id)
            .order_by(desc(UserMedia.created_at))
            .limit(limit)
        )
        return list(rows.scalars().all())

    async def archive_job(
        self,
        db: AsyncSession,
        job: PendingJob,
        *,
        status: str,
        error_message: Optional[str] = None,
        media_url: str = "",
    ) -> UserMedia:
        return await self.archive(
            db,
            task_id=job.task_id,
            user_id=job.user_id,
            media_type=job.job_type,
            provider=job.provider,
            metadata=PendingJobMetadata.coerce(job.metadata_json),
            status=status,
            error_message=error_message,
            media_url=media_url,
            created_at=job.created_at,
        )

    async def archive(
        self,
        db: AsyncSession,
        *,
        task_id: Optional[str],
        user_id: str,
        media_type: str,
        provider: Optional[str],
        metadata: PendingJobMetadata,
        status: str,
        error_message: Optional[str] = None,
        media_url: str = "",
        created_at: Optional[datetime] = None,
    ) -> UserMedia:
        """Stage a history row; an existing row for the same task wins."""
        if task_id:
            existing = await self.get_by_task_id(db, task_id)
            if existing is not None:
                return existing

        is_video = media_type == JobType.video.value
        media = UserMedia(
            task_id=task_id,
            user_id=user_id,
            media_type=media_type,
            media_url=media_url or "",
            file_extension="mp4" if is_video else "jpg",
            model=metadata.model,
            title=metadata.title or metadata.model or "Generation",
            prompt=metadata.prompt,
            aspect_ratio=metadata.aspect_ratio,
            resolution=metadata.resolution if is_video else None,
            duration=metadata.duration if is_video else None,
            cost=metadata.cost,
            type=metadata.type,
            endpoint=metadata.endpoint,
            provider=provider,
            status=status,
            error_message=error_message,
            created_at=created_at or utcnow(),
            archived_at=utcnow(),
        )
        db.add(media)
        await db.flush()
        return media
