"""Pending generation job ledger."""

from __future__ import annotations

import enum

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, Index, JSON, String, Text

from studio.core.database import Base, utcnow


class JobType(str, enum.Enum):
    image = "image"
    video = "video"


class JobProvider(str, enum.Enum):
    runware = "runware"
    wavespeed = "wavespeed"
    falai = "falai"


class JobStatus(str, enum.Enum):
    pending = "pending"
    processing = "processing"
    completed = "completed"
    failed = "failed"


ACTIVE_STATUSES = (JobStatus.pending.value, JobStatus.processing.value)
TERMINAL_STATUSES = (JobStatus.completed.value, JobStatus.failed.value)


class PendingJob(Base):
    __tablename__ = "pending_jobs"

    task_id = Column(String(128), primary_key=True)
    user_id = Column(String(64), nullable=False, index=True)
    job_type = Column(String(16), nullable=False)
    provider = Column(String(32), nullable=False)
    status = Column(String(16), nullable=False, default=JobStatus.pending.value, index=True)
    result_url = Column(Text, nullable=True)
    error_message = Column(Text, nullable=True)
    metadata_json = Column("metadata", JSON, nullable=False, default=dict)
    device_token = Column(String(255), nullable=True)
    notification_sent = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
    completed_at = Column(DateTime, nullable=True)

    __table_args__ = (
        CheckConstraint("provider IN ('runware', 'wavespeed', 'falai')", name="ck_pending_jobs_provider"),
        CheckConstraint("job_type IN ('image', 'video')", name="ck_pending_jobs_job_type"),
        CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed')",
            name="ck_pending_jobs_status",
        ),
        Index("ix_pending_jobs_user_created", "user_id", "created_at"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES
