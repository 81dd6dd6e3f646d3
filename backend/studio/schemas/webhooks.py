"""
Webhook payload variants.

Each provider posts a differently shaped body with mixed key casing. Every
variant decodes its own shape and owns one ``normalize`` that yields the
canonical ``(task_id, status, result_url, error_message)`` tuple.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from studio.core.errors import MalformedPayloadError
from studio.models import JobProvider, JobStatus

DEFAULT_FAILURE_MESSAGE = "Generation failed"


@dataclass(frozen=True)
class CanonicalResult:
    provider: JobProvider
    task_id: Optional[str]
    status: JobStatus
    result_url: Optional[str] = None
    error_message: Optional[str] = None
    alternate_ids: tuple[str, ...] = field(default_factory=tuple)


def _error_text(value: Any) -> Optional[str]:
    if value is None or value == "" or value is False:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        for key in ("message", "msg", "detail", "error"):
            if value.get(key):
                return _error_text(value[key])
        return json.dumps(value, ensure_ascii=False)[:500]
    if isinstance(value, list):
        parts = [text for text in (_error_text(item) for item in value) if text]
        return "; ".join(parts) or None
    return str(value)


def _first_str(*values: Any) -> Optional[str]:
    for value in values:
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


class _Tolerant(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


# ── Runware ──

class RunwareItem(_Tolerant):
    task_uuid: Optional[str] = Field(None, validation_alias=AliasChoices("taskUUID", "taskUuid", "task_uuid"))
    video_url: Optional[str] = Field(None, validation_alias=AliasChoices("videoURL", "videoUrl", "video_url"))
    image_url: Optional[str] = Field(None, validation_alias=AliasChoices("imageURL", "imageUrl", "image_url"))
    status: Optional[str] = None
    error: Any = None


class RunwarePayload(_Tolerant):
    provider: Literal["runware"] = "runware"
    item: RunwareItem
    error: Any = None

    @classmethod
    def from_raw(cls, raw: Any) -> "RunwarePayload":
        # Bare array, {"data": [...]} envelope, or a flat task object.
        if isinstance(raw, list):
            items = [i for i in raw if isinstance(i, dict)]
            chosen = next(
                (i for i in items if any(k in i for k in ("taskUUID", "taskUuid", "task_uuid"))),
                items[0] if items else {},
            )
            return cls(item=RunwareItem.model_validate(chosen))
        if not isinstance(raw, dict):
            raise MalformedPayloadError("Runware payload must be an object or array")
        top_error = raw.get("error") or raw.get("errors")
        data = raw.get("data")
        if isinstance(data, list) and data and isinstance(data[0], dict):
            return cls(item=RunwareItem.model_validate(data[0]), error=top_error)
        return cls(item=RunwareItem.model_validate(raw), error=top_error)

    def normalize(self) -> CanonicalResult:
        url = _first_str(self.item.video_url, self.item.image_url)
        error = _error_text(self.error) or _error_text(self.item.error)
        raw_status = (self.item.status or "").lower()
        if url:
            status = JobStatus.completed
            error = None
        elif error or raw_status in {"error", "failed"}:
            status = JobStatus.failed
            error = error or DEFAULT_FAILURE_MESSAGE
        else:
            status = JobStatus.processing
        return CanonicalResult(
            provider=JobProvider.runware,
            task_id=_first_str(self.item.task_uuid),
            status=status,
            result_url=url,
            error_message=error if status == JobStatus.failed else None,
        )


# ── WaveSpeed ──

class WaveSpeedBody(_Tolerant):
    id: Optional[str] = Field(None, validation_alias=AliasChoices("id", "request_id", "requestId"))
    status: Optional[str] = None
    outputs: list[Any] = Field(default_factory=list)
    error: Any = None


class WaveSpeedPayload(_Tolerant):
    provider: Literal["wavespeed"] = "wavespeed"
    body: WaveSpeedBody

    @classmethod
    def from_raw(cls, raw: Any) -> "WaveSpeedPayload":
        if not isinstance(raw, dict):
            raise MalformedPayloadError("WaveSpeed payload must be an object")
        inner = raw.get("data")
        if not raw.get("id") and isinstance(inner, dict):
            return cls(body=WaveSpeedBody.model_validate(inner))
        return cls(body=WaveSpeedBody.model_validate(raw))

    def normalize(self) -> CanonicalResult:
        url = None
        if self.body.outputs:
            first = self.body.outputs[0]
            url = _first_str(first if isinstance(first, str) else (first.get("url") if isinstance(first, dict) else None))
        raw_status = (self.body.status or "").lower()
        error = None
        if url:
            status = JobStatus.completed
        elif raw_status == "failed":
            status = JobStatus.failed
            error = _error_text(self.body.error) or "WaveSpeed job failed."
        else:
            status = JobStatus.processing
        return CanonicalResult(
            provider=JobProvider.wavespeed,
            task_id=_first_str(self.body.id),
            status=status,
            result_url=url,
            error_message=error,
        )


# ── Fal.ai ──

class FalAiMedia(_Tolerant):
    url: Optional[str] = None


class FalAiResult(_Tolerant):
    request_id: Optional[str] = Field(None, validation_alias=AliasChoices("request_id", "requestId"))
    video: Optional[FalAiMedia] = None
    image: Optional[FalAiMedia] = None
    images: list[FalAiMedia] = Field(default_factory=list)
    detail: Any = None
    error: Any = None


class FalAiPayload(_Tolerant):
    provider: Literal["falai"] = "falai"
    request_id: Optional[str] = Field(None, validation_alias=AliasChoices("request_id", "requestId"))
    gateway_request_id: Optional[str] = Field(
        None, validation_alias=AliasChoices("gateway_request_id", "gatewayRequestId")
    )
    id: Optional[str] = None
    status: Optional[str] = None
    error: Any = None
    video: Optional[FalAiMedia] = None
    payload: Optional[FalAiResult] = None

    @classmethod
    def from_raw(cls, raw: Any) -> "FalAiPayload":
        if not isinstance(raw, dict):
            raise MalformedPayloadError("Fal.ai payload must be an object")
        if raw.get("payload") is not None and not isinstance(raw.get("payload"), dict):
            raw = {**raw, "payload": None}
        return cls.model_validate(raw)

    def _result_url(self) -> Optional[str]:
        candidates: list[Optional[str]] = []
        if self.payload:
            if self.payload.video:
                candidates.append(self.payload.video.url)
            if self.payload.images:
                candidates.append(self.payload.images[0].url)
            if self.payload.image:
                candidates.append(self.payload.image.url)
        if self.video:
            candidates.append(self.video.url)
        return _first_str(*candidates)

    def normalize(self) -> CanonicalResult:
        payload_request_id = self.payload.request_id if self.payload else None
        ids = [i for i in (self.request_id, self.gateway_request_id, self.id, payload_request_id) if i]
        task_id = _first_str(*ids)
        raw_status = (self.status or "").upper()
        url = self._result_url()
        error = None
        if raw_status == "ERROR":
            status = JobStatus.failed
            detail = (self.payload.detail or self.payload.error) if self.payload else None
            error = _error_text(self.error) or _error_text(detail) or DEFAULT_FAILURE_MESSAGE
            url = None
        elif raw_status == "OK" and url:
            status = JobStatus.completed
        else:
            status = JobStatus.processing
            url = None
        return CanonicalResult(
            provider=JobProvider.falai,
            task_id=task_id,
            status=status,
            result_url=url,
            error_message=error,
            alternate_ids=tuple(dict.fromkeys(i for i in ids if i != task_id)),
        )


ProviderPayload = Union[RunwarePayload, WaveSpeedPayload, FalAiPayload]

_VARIANTS: dict[JobProvider, type] = {
    JobProvider.runware: RunwarePayload,
    JobProvider.wavespeed: WaveSpeedPayload,
    JobProvider.falai: FalAiPayload,
}


def detect_provider(raw: Any) -> Optional[JobProvider]:
    """Guess the provider from the payload shape when no discriminator was sent."""
    if isinstance(raw, list):
        if any(isinstance(i, dict) and any(k in i for k in ("taskUUID", "taskUuid", "task_uuid")) for i in raw):
            return JobProvider.runware
        return None
    if not isinstance(raw, dict):
        return None

    has_fal_id = any(raw.get(k) for k in ("request_id", "requestId", "gateway_request_id"))
    if has_fal_id and raw.get("status") in {"OK", "ERROR"}:
        return JobProvider.falai

    if any(raw.get(k) for k in ("taskUUID", "taskUuid", "task_uuid")):
        return JobProvider.runware
    data = raw.get("data")
    if isinstance(data, list) and data and isinstance(data[0], dict) and data[0].get("taskUUID"):
        return JobProvider.runware

    if raw.get("id") and raw.get("status") in {"completed", "failed"}:
        return JobProvider.wavespeed
    return None


def decode_payload(provider: JobProvider, raw: Any) -> ProviderPayload:
    variant = _VARIANTS.get(provider)
    if variant is None:
        raise MalformedPayloadError("Unknown provider")
    try:
        return variant.from_raw(raw)
    except ValidationError as exc:
        raise MalformedPayloadError(f"Invalid {provider.value} payload: {exc.error_count()} field error(s)") from exc
