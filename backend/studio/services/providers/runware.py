"""Runware client: one POST endpoint, an array of tasks led by an authentication task."""

from __future__ import annotations

from typing import Any, Optional
from uuid import uuid4

from pydantic import ValidationError

from studio.core.errors import GatewayError, NoResultError, ProviderReportedError
from studio.core.logging import get_logger
from studio.models import JobProvider, JobType
from studio.schemas import GenerationRequest
from studio.schemas.providers import RunwareResponse
from studio.services.providers.base import (
    Accepted,
    Completed,
    PollHandle,
    PollOutcome,
    ProviderClient,
    SubmissionResult,
)
from studio.services.providers.images import to_data_uri
from studio.services.providers.quirks import runware_quirks
from studio.services.providers.requests import RunwareTask, runware_envelope
from studio.services.providers.sizes import resolve_dimensions, video_dimensions

logger = get_logger("providers.runware")

FAILED_STATUSES = {"error", "failed"}


class RunwareClient(ProviderClient):
    provider = JobProvider.runware

    @property
    def configured(self) -> bool:
        return bool(self.settings.runware_api_key)

    async def _run(self, task: RunwareTask) -> RunwareResponse:
        if not self.configured:
            raise GatewayError("Runware API key is not configured")
        raw = await self._send(
            "POST",
            self.settings.runware_api_url,
            json=runware_envelope(self.settings.runware_api_key, task),
        )
        try:
            response = RunwareResponse.model_validate(raw if isinstance(raw, dict) else {"data": raw})
        except ValidationError as exc:
            raise ProviderReportedError("Runware returned an unexpected response shape") from exc
        error = response.error_message()
        if error:
            raise ProviderReportedError(error)
        return response

    async def upload_image(self, image_bytes: bytes) -> str:
        """imageUpload task; returns the opaque imageUUID used to reference the asset."""
        task = RunwareTask(task_type="imageUpload", task_uuid=str(uuid4()), image=to_data_uri(image_bytes))
        response = await self._run(task)
        item = response.item_for(task.task_uuid)
        if item is None or not item.image_uuid:
            raise NoResultError("No image UUID returned")
        logger.info("runware_image_uploaded", image_uuid=item.image_uuid)
        return item.image_uuid

    def build_image_task(
        self,
        request: GenerationRequest,
        task_id: str,
        webhook_url: Optional[str],
        image_bytes: Optional[bytes],
    ) -> RunwareTask:
        dims = resolve_dimensions(request.model, request.aspect_ratio)
        kwargs: dict[str, Any] = {}
        if image_bytes:
            data_uri = to_data_uri(image_bytes, quality=90)
            if request.options.get("image_to_image_method") == "seedImage":
                kwargs.update(seed_image=data_uri, strength=float(request.options.get("strength", 0.7)))
            else:
                kwargs["reference_images"] = [data_uri]
        task = RunwareTask(
            task_type="imageInference",
            task_uuid=task_id,
            model=request.model,
            positive_prompt=request.prompt,
            width=dims[0] if dims else None,
            height=dims[1] if dims else None,
            number_results=1,
            include_cost=True,
            output_type="URL",
            delivery_method="async" if webhook_url else None,
            webhook_url=webhook_url,
            **kwargs,
        )
        return runware_quirks.apply(request, task)

    async def build_video_task(
        self,
        request: GenerationRequest,
        task_id: str,
        webhook_url: Optional[str],
        image_bytes: Optional[bytes],
    ) -> RunwareTask:
        width, height = video_dimensions(request.resolution, request.aspect_ratio)
        frame_images = None
        if image_bytes:
            image_uuid = await self.upload_image(image_bytes)
            frame_images = [{"inputImage": image_uuid, "frame": "first"}]
        task = RunwareTask(
            task_type="videoInference",
            task_uuid=task_id,
            model=request.model,
            positive_prompt=request.prompt or None,
            width=width,
            height=height,
            duration=request.duration,
            include_cost=True,
            output_type="URL",
            frame_images=frame_images,
            webhook_url=webhook_url,
        )
        return runware_quirks.apply(request, task)

    async def submit(self, request: GenerationRequest, task_id: str, webhook_url: Optional[str]) -> SubmissionResult:
        image_bytes = request.source_image_bytes()
        if request.job_type == JobType.video:
            task = await self.build_video_task(request, task_id, webhook_url, image_bytes)
        else:
            task = self.build_image_task(request, task_id, webhook_url, image_bytes)

        logger.info(
            "runware_submit",
            task_id=task_id,
            task_type=task.task_type,
            model=task.model,
            delivery=task.delivery_method or "sync",
            quirks=runware_quirks.matching(task),
        )
        response = await self._run(task)
        item = response.item_for(task_id)
        if item is not None and item.result_url:
            return Completed(task_id=task_id, result_url=item.result_url)
        if task.delivery_method == "async":
            handle = PollHandle(
                provider=self.provider.value,
                task_id=task_id,
                request_id=task_id,
                job_type=request.job_type.value,
                model=request.model,
            )
            return Accepted(task_id=task_id, poll_handle=handle)
        raise NoResultError()

    async def poll_once(self, handle: PollHandle) -> PollOutcome:
        task = RunwareTask(task_type="getResponse", task_uuid=handle.request_id)
        try:
            response = await self._run(task)
        except ProviderReportedError as exc:
            return PollOutcome(state="failed", error_message=exc.message, raw_status="error")
        item = response.item_for(handle.request_id)
        if item is None:
            return PollOutcome(state="pending")
        status = (item.status or "").lower()
        if item.result_url:
            return PollOutcome(state="completed", result_url=item.result_url, raw_status=status or "success")
        if status in FAILED_STATUSES:
            return PollOutcome(state="failed", error_message="Runware generation failed", raw_status=status)
        return PollOutcome(state="pending", raw_status=status or None)
