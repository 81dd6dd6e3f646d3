"""Fal.ai queue client: submit to the queue, webhook via ``fal_webhook``, poll status/response URLs."""

from __future__ import annotations

from typing import Optional

from studio.core.errors import GatewayError, NoResultError, ProviderHTTPError
from studio.core.logging import get_logger
from studio.models import JobProvider, JobType
from studio.schemas import GenerationRequest
from studio.schemas.providers import FalAiOutput, FalAiQueueResponse
from studio.services.providers.base import Accepted, PollHandle, PollOutcome, ProviderClient, SubmissionResult
from studio.services.providers.images import normalize_jpeg
from studio.services.providers.requests import FalAiRequest
from studio.services.providers.sizes import fal_image_size
from studio.services.providers.storage import StorageUploader

logger = get_logger("providers.falai")

DEFAULT_IMAGE_MODEL = "fal-ai/z-image/turbo"
FAILED_STATUSES = {"ERROR", "FAILED"}


class FalAiClient(ProviderClient):
    provider = JobProvider.falai

    def __init__(self, http, settings, storage: StorageUploader) -> None:
        super().__init__(http, settings)
        self.storage = storage

    @property
    def configured(self) -> bool:
        return bool(self.settings.falai_api_key)

    @property
    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Key {self.settings.falai_api_key}"}

    async def build_request(
        self,
        request: GenerationRequest,
        webhook_url: Optional[str],
        image_bytes: Optional[bytes],
    ) -> FalAiRequest:
        image_url = None
        if image_bytes:
            jpeg = normalize_jpeg(image_bytes, quality=90)
            image_url = await self.storage.upload_jpeg(request.user_id, request.display_model, jpeg)

        if request.job_type == JobType.video:
            return FalAiRequest(
                model=request.model,
                prompt=request.prompt or None,
                image_url=image_url,
                video_url=request.reference_video_url,
                character_orientation="video",
                keep_original_sound=True,
                webhook_url=webhook_url,
            )

        width, height = fal_image_size(request.aspect_ratio)
        seed = request.options.get("seed")
        return FalAiRequest(
            model=request.model or DEFAULT_IMAGE_MODEL,
            prompt=request.prompt,
            image_url=image_url,
            image_size={"width": width, "height": height},
            num_inference_steps=int(request.options.get("num_inference_steps", 8)),
            output_format="png",
            enable_safety_checker=True,
            acceleration="none",
            seed=int(seed) if seed is not None else None,
            webhook_url=webhook_url,
        )

    async def submit(self, request: GenerationRequest, task_id: str, webhook_url: Optional[str]) -> SubmissionResult:
        if not self.configured:
            raise GatewayError("Fal.ai API key is not configured")
        payload = await self.build_request(request, webhook_url, request.source_image_bytes())
        logger.info("falai_submit", task_id=task_id, model=payload.model, webhook=bool(webhook_url))
        raw = await self._send(
            "POST",
            payload.url(self.settings.falai_queue_url),
            json=payload.to_wire(),
            headers=self._headers,
        )
        queued = FalAiQueueResponse.model_validate(raw if isinstance(raw, dict) else {})
        request_id = queued.any_request_id
        if not request_id:
            raise NoResultError("No request ID returned")
        handle = PollHandle(
            provider=self.provider.value,
            task_id=task_id,
            request_id=request_id,
            job_type=request.job_type.value,
            model=payload.model,
            status_url=queued.status_url,
            response_url=queued.response_url,
        )
        return Accepted(
            task_id=task_id,
            provider_request_id=request_id if request_id != task_id else None,
            poll_handle=handle,
        )

    def _request_url(self, handle: PollHandle, suffix: str = "") -> str:
        base = f"{self.settings.falai_queue_url.rstrip('/')}/{handle.model}/requests/{handle.request_id}"
        return f"{base}{suffix}"

    async def poll_once(self, handle: PollHandle) -> PollOutcome:
        status_url = handle.status_url or self._request_url(handle, "/status")
        status_raw = await self._send("GET", status_url, headers=self._headers)
        status = FalAiQueueResponse.model_validate(status_raw if isinstance(status_raw, dict) else {}).status or ""
        status = status.upper()
        if status in FAILED_STATUSES:
            return PollOutcome(state="failed", error_message="Generation failed", raw_status=status)
        if status not in {"COMPLETED", "OK"}:
            return PollOutcome(state="pending", raw_status=status or None)

        response_url = handle.response_url or self._request_url(handle)
        try:
            result_raw = await self._send("GET", response_url, headers=self._headers)
        except ProviderHTTPError as exc:
            # The queue answers a finished-but-failed request with a 4xx on its response URL.
            if 400 <= exc.status_code < 500:
                return PollOutcome(state="failed", error_message=exc.body or exc.message, raw_status=status)
            raise
        result_url = FalAiOutput.model_validate(result_raw if isinstance(result_raw, dict) else {}).result_url
        if not result_url:
            return PollOutcome(state="failed", error_message="No result URL returned", raw_status=status)
        return PollOutcome(state="completed", result_url=result_url, raw_status=status)
