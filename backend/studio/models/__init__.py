"""Models package."""
from studio.models.pending_job import (
    PendingJob,
    JobType, JobProvider, JobStatus,
    ACTIVE_STATUSES, TERMINAL_STATUSES,
)
from studio.models.user_media import UserMedia
from studio.models.notification_link import NotificationLink, NotificationState
from studio.models.poll_state import JobPollState

__all__ = [
    "PendingJob",
    "JobType",
    "JobProvider",
    "JobStatus",
    "ACTIVE_STATUSES",
    "TERMINAL_STATUSES",
    "UserMedia",
    "NotificationLink",
    "NotificationState",
    "JobPollState",
]
