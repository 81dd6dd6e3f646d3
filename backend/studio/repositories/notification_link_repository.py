from __future__ import annotations

from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from studio.core.database import utcnow
from studio.core.errors import DuplicateTaskIdError, NotFoundError
from studio.models import NotificationLink, NotificationState


class NotificationLinkRepository:
    async def create(self, db: AsyncSession, link: NotificationLink) -> NotificationLink:
        db.add(link)
        try:
            await db.commit()
        except IntegrityError as exc:
            await db.rollback()
            raise DuplicateTaskIdError(f"Notification already registered: {link.notification_id}") from exc
        return link

    async def get(self, db: AsyncSession, notification_id: str) -> NotificationLink | None:
        row = await db.execute(
            select(NotificationLink)
            .where(NotificationLink.notification_id == notification_id)
            .execution_options(populate_existing=True)
        )
        return row.scalar_one_or_none()

    async def get_by_task_id(self, db: AsyncSession, task_id: str) -> NotificationLink | None:
        row = await db.execute(
            select(NotificationLink)
            .where(NotificationLink.task_id == task_id)
            .execution_options(populate_existing=True)
        )
        return row.scalar_one_or_none()

    async def list_unlinked_in_progress(
        self,
        db: AsyncSession,
        *,
        model_name: str | None,
        user_id: str | None = None,
    ) -> list[NotificationLink]:
        stmt = select(NotificationLink).where(
            NotificationLink.state == NotificationState.in_progress.value,
            NotificationLink.task_id.is_(None),
        )
        if model_name:
            stmt = stmt.where(NotificationLink.model_name == model_name)
        if user_id:
            stmt = stmt.where(NotificationLink.user_id == user_id)
        rows = await db.execute(stmt.order_by(NotificationLink.created_at))
        return list(rows.scalars().all())

    async def update(self, db: AsyncSession, notification_id: str, **values: Any) -> NotificationLink:
        values["updated_at"] = utcnow()
        try:
            result = await db.execute(
                update(NotificationLink)
                .where(NotificationLink.notification_id == notification_id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            await db.commit()
        except IntegrityError as exc:
            await db.rollback()
            raise DuplicateTaskIdError(f"Task id already linked: {values.get('task_id')}") from exc
        if not result.rowcount:
            raise NotFoundError(f"Notification not found: {notification_id}")
        link = await self.get(db, notification_id)
        if link is None:
            raise NotFoundError(f"Notification not found: {notification_id}")
        return link

    async def clear_task(self, db: AsyncSession, task_id: str) -> bool:
        result = await db.execute(
            update(NotificationLink)
            .where(NotificationLink.task_id == task_id)
            .values(task_id=None, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        return bool(result.rowcount)
