"""Provider Gateway package."""
from studio.services.providers.base import (
    Accepted,
    Completed,
    Failed,
    PollHandle,
    PollingPolicy,
    PollOutcome,
    ProviderClient,
    SubmissionResult,
)
from studio.services.providers.gateway import ProviderGateway

__all__ = [
    "Accepted",
    "Completed",
    "Failed",
    "PollHandle",
    "PollingPolicy",
    "PollOutcome",
    "ProviderClient",
    "ProviderGateway",
    "SubmissionResult",
]
