"""Append-only generation history (completed, failed, cancelled)."""

from __future__ import annotations

from uuid import uuid4

from sqlalchemy import Column, DateTime, Float, Integer, String, Text

from studio.core.database import Base, utcnow


class UserMedia(Base):
    __tablename__ = "user_media"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    task_id = Column(String(128), nullable=True, unique=True)
    user_id = Column(String(64), nullable=False, index=True)
    media_type = Column(String(16), nullable=False)  # image|video
    media_url = Column(Text, nullable=False, default="")
    file_extension = Column(String(8), nullable=False, default="jpg")
    model = Column(String(255), nullable=True)
    title = Column(String(255), nullable=True)
    prompt = Column(Text, nullable=True)
    aspect_ratio = Column(String(16), nullable=True)
    resolution = Column(String(16), nullable=True)
    duration = Column(Integer, nullable=True)
    cost = Column(Float, nullable=True)
    type = Column(String(64), nullable=True)
    endpoint = Column(String(255), nullable=True)
    provider = Column(String(32), nullable=True)
    status = Column(String(16), nullable=False, index=True)  # completed|failed|cancelled
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)
    archived_at = Column(DateTime, default=utcnow, nullable=False)
