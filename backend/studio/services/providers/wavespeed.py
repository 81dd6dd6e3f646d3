"""WaveSpeed client: per-model endpoints, webhook URL passed as a query parameter."""

from __future__ import annotations

from typing import Optional

from studio.core.errors import GatewayError, NoResultError, ProviderHTTPError, ProviderReportedError
from studio.core.logging import get_logger
from studio.models import JobProvider
from studio.schemas import GenerationRequest
from studio.schemas.providers import WaveSpeedPrediction, WaveSpeedResponse
from studio.services.providers.base import (
    Accepted,
    Completed,
    PollHandle,
    PollOutcome,
    ProviderClient,
    SubmissionResult,
)
from studio.services.providers.images import normalize_jpeg, to_base64, to_data_uri
from studio.services.providers.requests import WaveSpeedRequest
from studio.services.providers.storage import StorageUploader

logger = get_logger("providers.wavespeed")

JPEG_QUALITY = 80
DEFAULT_FAILURE = "WaveSpeed job failed."


def _error_text(prediction: WaveSpeedPrediction) -> str:
    error = prediction.error
    if isinstance(error, dict):
        error = error.get("message")
    return str(error) if error else DEFAULT_FAILURE


class WaveSpeedClient(ProviderClient):
    provider = JobProvider.wavespeed

    def __init__(self, http, settings, storage: StorageUploader) -> None:
        super().__init__(http, settings)
        self.storage = storage

    @property
    def configured(self) -> bool:
        return bool(self.settings.wavespeed_api_key)

    @property
    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.settings.wavespeed_api_key}"}

    @staticmethod
    def requires_hosted_image(endpoint: str) -> bool:
        return "nano-banana" in endpoint or "google/" in endpoint

    async def build_request(
        self,
        request: GenerationRequest,
        webhook_url: Optional[str],
        image_bytes: Optional[bytes],
    ) -> WaveSpeedRequest:
        endpoint = (request.endpoint or request.model).strip("/")
        image: Optional[str] = None
        images: Optional[list[str]] = None
        if image_bytes:
            if self.requires_hosted_image(endpoint):
                jpeg = normalize_jpeg(image_bytes, quality=JPEG_QUALITY)
                images = [await self.storage.upload_jpeg(request.user_id, request.display_model, jpeg)]
            elif "/bytedance/" in f"/{endpoint}":
                images = [to_base64(image_bytes, quality=JPEG_QUALITY)]
            else:
                image = to_data_uri(image_bytes, quality=JPEG_QUALITY)
        return WaveSpeedRequest(
            endpoint=endpoint,
            prompt=request.prompt or None,
            aspect_ratio=request.aspect_ratio,
            image=image,
            images=images,
            enable_sync_mode=webhook_url is None,
            webhook_url=webhook_url,
            extra=dict(request.options.get("wavespeed", {})),
        )

    async def submit(self, request: GenerationRequest, task_id: str, webhook_url: Optional[str]) -> SubmissionResult:
        if not self.configured:
            raise GatewayError("WaveSpeed API key is not configured")
        payload = await self.build_request(request, webhook_url, request.source_image_bytes())
        logger.info("wavespeed_submit", task_id=task_id, endpoint=payload.endpoint, webhook=bool(webhook_url))
        raw = await self._send(
            "POST",
            payload.url(self.settings.wavespeed_api_url),
            json=payload.to_wire(),
            headers=self._headers,
        )
        response = WaveSpeedResponse.decode(raw)
        if response.code is not None and response.code != 200:
            raise ProviderReportedError(response.message or DEFAULT_FAILURE)
        prediction = response.data
        if prediction is None:
            raise NoResultError()

        url = prediction.first_output
        if url:
            return Completed(task_id=task_id, result_url=url)
        if (prediction.status or "").lower() == "failed":
            raise ProviderReportedError(_error_text(prediction))
        if not prediction.id:
            raise NoResultError("No prediction ID returned")
        handle = PollHandle(
            provider=self.provider.value,
            task_id=task_id,
            request_id=prediction.id,
            job_type=request.job_type.value,
            model=payload.endpoint,
            status_url=prediction.urls.get("get"),
        )
        return Accepted(task_id=task_id, provider_request_id=prediction.id, poll_handle=handle)

    async def poll_once(self, handle: PollHandle) -> PollOutcome:
        api = self.settings.wavespeed_api_url.rstrip("/")
        url = handle.status_url or f"{api}/predictions/{handle.request_id}/result"
        try:
            raw = await self._send("GET", url, headers=self._headers)
        except ProviderHTTPError as exc:
            if exc.status_code == 404:
                return PollOutcome(state="pending", raw_status="not_found")
            raise
        prediction = WaveSpeedResponse.decode(raw).data
        if prediction is None:
            return PollOutcome(state="pending")
        status = (prediction.status or "").lower()
        if status == "completed" and prediction.first_output:
            return PollOutcome(state="completed", result_url=prediction.first_output, raw_status=status)
        if status == "failed":
            return PollOutcome(state="failed", error_message=_error_text(prediction), raw_status=status)
        return PollOutcome(state="pending", raw_status=status or None)
