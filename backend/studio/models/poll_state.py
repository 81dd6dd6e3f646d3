"""Persisted polling schedule for jobs without webhook delivery."""

from __future__ import annotations

from sqlalchemy import Column, DateTime, Float, Integer, JSON, String

from studio.core.database import Base, utcnow


class JobPollState(Base):
    __tablename__ = "job_poll_states"

    task_id = Column(String(128), primary_key=True)
    provider = Column(String(32), nullable=False)
    handle_json = Column("handle", JSON, nullable=False, default=dict)
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=120)
    interval_seconds = Column(Float, nullable=False, default=5.0)
    next_poll_at = Column(DateTime, nullable=False, index=True)
    last_status = Column(String(32), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
