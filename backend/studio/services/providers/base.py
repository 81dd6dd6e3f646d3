"""Shared gateway types and the HTTP plumbing every provider client uses."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Literal, Optional, Union

import httpx

from studio.core.config import Settings
from studio.core.errors import GatewayError, NetworkError, ProviderHTTPError, ProviderReportedError
from studio.core.logging import get_logger
from studio.models import JobProvider
from studio.schemas import GenerationRequest

logger = get_logger("providers.base")


# ── Submission results ──

@dataclass(frozen=True)
class Completed:
    task_id: str
    result_url: str


@dataclass(frozen=True)
class Accepted:
    task_id: str
    provider_request_id: Optional[str] = None
    poll_handle: Optional["PollHandle"] = None


@dataclass(frozen=True)
class Failed:
    task_id: str
    reason: str
    error: GatewayError


SubmissionResult = Union[Completed, Accepted, Failed]


# ── Polling ──

@dataclass(frozen=True)
class PollHandle:
    """Everything needed to query a provider for one task, persisted between ticks."""

    provider: str
    task_id: str
    request_id: str
    job_type: str = "image"
    model: Optional[str] = None
    status_url: Optional[str] = None
    response_url: Optional[str] = None

    def to_json(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> "PollHandle":
        return cls(**{key: data.get(key) for key in cls.__dataclass_fields__ if key in data})


@dataclass(frozen=True)
class PollOutcome:
    state: Literal["completed", "failed", "pending"]
    result_url: Optional[str] = None
    error_message: Optional[str] = None
    raw_status: Optional[str] = None


@dataclass(frozen=True)
class PollingPolicy:
    initial_delay: float
    interval: float
    max_attempts: int

    @property
    def budget_seconds(self) -> float:
        return self.initial_delay + self.interval * self.max_attempts


class ProviderClient:
    """Base class for one provider's submit/poll wire protocol."""

    provider: JobProvider
    supports_webhooks: bool = True

    def __init__(self, http: httpx.AsyncClient, settings: Settings) -> None:
        self.http = http
        self.settings = settings

    @property
    def configured(self) -> bool:
        return True

    async def _send(
        self,
        method: str,
        url: str,
        *,
        json: Any = None,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        content: bytes | None = None,
    ) -> Any:
        try:
            response = await self.http.request(method, url, json=json, params=params, headers=headers, content=content)
        except httpx.TimeoutException as exc:
            logger.warning("provider_timeout", provider=self.provider.value, url=url, error=str(exc))
            raise NetworkError("Request timed out. Please try again.", timed_out=True) from exc
        except httpx.TransportError as exc:
            logger.warning("provider_unreachable", provider=self.provider.value, url=url, error=str(exc))
            raise NetworkError() from exc

        if not response.is_success:
            logger.warning(
                "provider_http_error",
                provider=self.provider.value,
                url=url,
                status=response.status_code,
                body=response.text[:500],
            )
            raise ProviderHTTPError(response.status_code, response.text)
        try:
            return response.json()
        except ValueError as exc:
            raise ProviderReportedError("Provider returned an unreadable response") from exc

    async def submit(self, request: GenerationRequest, task_id: str, webhook_url: Optional[str]) -> SubmissionResult:
        raise NotImplementedError

    async def poll_once(self, handle: PollHandle) -> PollOutcome:
        raise NotImplementedError
