"""
Provider Gateway
================
Single entry point for submitting generation requests to any provider.
Returns ``Completed`` / ``Accepted`` / ``Failed`` and never raises for a
provider-side failure; polling helpers are exposed for the sync path and
for the persisted poll scheduler.
"""

from __future__ import annotations

import asyncio
from typing import Mapping, Optional
from urllib.parse import urlencode

from studio.core.config import Settings
from studio.core.errors import GatewayError, GenerationTimeoutError, NetworkError, ProviderReportedError
from studio.core.logging import get_logger
from studio.models import JobProvider, JobType
from studio.schemas import GenerationRequest
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

logger = get_logger("providers.gateway")


class ProviderGateway:
    def __init__(
        self,
        clients: Mapping[JobProvider, ProviderClient],
        settings: Settings,
        *,
        sleep=asyncio.sleep,
    ) -> None:
        self.clients = dict(clients)
        self.settings = settings
        self._sleep = sleep

    def client_for(self, provider: JobProvider | str) -> ProviderClient:
        try:
            return self.clients[JobProvider(provider)]
        except (KeyError, ValueError):
            raise GatewayError(f"Unsupported provider: {getattr(provider, 'value', provider)}")

    def supports_webhooks(self, provider: JobProvider | str) -> bool:
        return bool(self.settings.webhook_base_url) and self.client_for(provider).supports_webhooks

    def webhook_url(self, provider: JobProvider | str) -> Optional[str]:
        if not self.supports_webhooks(provider):
            return None
        params = {"provider": JobProvider(provider).value}
        if self.settings.webhook_secret:
            params["token"] = self.settings.webhook_secret
        base = self.settings.webhook_base_url
        separator = "&" if "?" in base else "?"
        return f"{base}{separator}{urlencode(params)}"

    def policy_for(self, job_type: JobType | str) -> PollingPolicy:
        is_video = JobType(job_type) == JobType.video
        return PollingPolicy(
            initial_delay=(
                self.settings.poll_initial_delay_video_seconds
                if is_video
                else self.settings.poll_initial_delay_image_seconds
            ),
            interval=self.settings.poll_interval_seconds,
            max_attempts=self.settings.poll_max_attempts,
        )

    async def submit(self, request: GenerationRequest, task_id: str) -> SubmissionResult:
        """Submit once. Async delivery registers the webhook; sync delivery waits for a result."""
        webhook_url = None
        try:
            client = self.client_for(request.provider)
            if request.delivery_method == "async":
                webhook_url = self.webhook_url(request.provider)
            result = await client.submit(request, task_id, webhook_url)
            if isinstance(result, Accepted) and request.delivery_method == "sync":
                if result.poll_handle is None:
                    raise GatewayError("Provider accepted the job without a way to poll it")
                url = await self.wait_for_result(result.poll_handle)
                result = Completed(task_id=task_id, result_url=url)
        except GatewayError as exc:
            logger.warning(
                "generation_submit_failed",
                task_id=task_id,
                provider=request.provider.value,
                error_code=exc.code,
                error=exc.message,
            )
            return Failed(task_id=task_id, reason=exc.message, error=exc)

        logger.info(
            "generation_submitted",
            task_id=task_id,
            provider=request.provider.value,
            outcome=type(result).__name__.lower(),
            webhook=bool(webhook_url),
        )
        return result

    async def poll_once(self, handle: PollHandle) -> PollOutcome:
        return await self.client_for(handle.provider).poll_once(handle)

    async def wait_for_result(self, handle: PollHandle, policy: Optional[PollingPolicy] = None) -> str:
        """Poll until a result URL, an explicit failure, or the attempt budget runs out.

        Cancelling the awaiting task stops polling; nothing is written to the store here.
        """
        policy = policy or self.policy_for(handle.job_type)
        await self._sleep(policy.initial_delay)
        for attempt in range(1, policy.max_attempts + 1):
            try:
                outcome = await self.poll_once(handle)
            except NetworkError as exc:
                logger.warning("poll_network_error", task_id=handle.task_id, attempt=attempt, error=exc.message)
                outcome = PollOutcome(state="pending", raw_status="network_error")

            if outcome.state == "completed" and outcome.result_url:
                logger.info("poll_completed", task_id=handle.task_id, attempt=attempt)
                return outcome.result_url
            if outcome.state == "failed":
                raise ProviderReportedError(outcome.error_message or "Generation failed")

            logger.debug("poll_pending", task_id=handle.task_id, attempt=attempt, status=outcome.raw_status)
            if attempt < policy.max_attempts:
                await self._sleep(policy.interval)

        logger.warning("poll_budget_exhausted", task_id=handle.task_id, attempts=policy.max_attempts)
        raise GenerationTimeoutError(policy.budget_seconds)
