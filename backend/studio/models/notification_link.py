"""Notification <-> task reconciliation records."""

from __future__ import annotations

import enum

from sqlalchemy import Boolean, Column, DateTime, Float, Index, String, Text

from studio.core.database import Base, utcnow


class NotificationState(str, enum.Enum):
    in_progress = "in_progress"
    completed = "completed"
    failed = "failed"
    cancelled = "cancelled"


class NotificationLink(Base):
    __tablename__ = "notification_links"

    notification_id = Column(String(64), primary_key=True)
    task_id = Column(String(128), nullable=True, unique=True)
    user_id = Column(String(64), nullable=False, index=True)
    model_name = Column(String(255), nullable=True)
    prompt = Column(Text, nullable=True)
    title = Column(String(255), nullable=True)
    job_type = Column(String(16), nullable=False, default="image")
    aspect_ratio = Column(String(16), nullable=True)
    cost = Column(Float, nullable=True)
    state = Column(String(16), nullable=False, default=NotificationState.in_progress.value)
    progress = Column(Float, nullable=False, default=0.0)
    message = Column(String(255), nullable=True)
    can_cancel = Column(Boolean, nullable=False, default=True)
    result_url = Column(Text, nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_notification_links_state_model", "state", "model_name"),
    )
