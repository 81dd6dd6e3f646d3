"""Provider HTTP response decoding, tolerant of camelCase / snake_case / mixed keys."""

from __future__ import annotations

from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class _Tolerant(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class RunwareResponseItem(_Tolerant):
    task_type: Optional[str] = Field(None, validation_alias=AliasChoices("taskType", "task_type"))
    task_uuid: Optional[str] = Field(None, validation_alias=AliasChoices("taskUUID", "taskUuid", "task_uuid"))
    image_url: Optional[str] = Field(None, validation_alias=AliasChoices("imageURL", "imageUrl", "image_url"))
    video_url: Optional[str] = Field(None, validation_alias=AliasChoices("videoURL", "videoUrl", "video_url"))
    image_uuid: Optional[str] = Field(None, validation_alias=AliasChoices("imageUUID", "imageUuid", "image_uuid"))
    status: Optional[str] = None
    cost: Optional[float] = None

    @property
    def result_url(self) -> Optional[str]:
        return self.video_url or self.image_url or None


class RunwareError(_Tolerant):
    code: Optional[str] = None
    message: Optional[str] = None
    task_uuid: Optional[str] = Field(None, validation_alias=AliasChoices("taskUUID", "taskUuid", "task_uuid"))


class RunwareResponse(_Tolerant):
    data: list[RunwareResponseItem] = Field(default_factory=list)
    errors: list[RunwareError] = Field(default_factory=list)
    error: Any = None
    status: Optional[str] = None

    def item_for(self, task_uuid: str) -> Optional[RunwareResponseItem]:
        for item in self.data:
            if item.task_uuid == task_uuid:
                return item
        return self.data[0] if self.data else None

    def error_message(self) -> Optional[str]:
        if self.errors:
            return "; ".join(e.message or e.code or "Unknown error" for e in self.errors)
        if isinstance(self.error, str) and self.error:
            return self.error
        if isinstance(self.error, dict):
            return self.error.get("message") or str(self.error)
        return None


class WaveSpeedPrediction(_Tolerant):
    id: Optional[str] = Field(None, validation_alias=AliasChoices("id", "request_id", "requestId"))
    status: Optional[str] = None
    outputs: list[Any] = Field(default_factory=list)
    error: Any = None
    urls: dict[str, Any] = Field(default_factory=dict)

    @property
    def first_output(self) -> Optional[str]:
        for output in self.outputs:
            if isinstance(output, str) and output:
                return output
        return None


class WaveSpeedResponse(_Tolerant):
    code: Optional[int] = None
    message: Optional[str] = None
    data: Optional[WaveSpeedPrediction] = None

    @classmethod
    def decode(cls, raw: Any) -> "WaveSpeedResponse":
        # Video effect endpoints answer with a flat prediction instead of the envelope.
        if isinstance(raw, dict) and "data" not in raw and raw.get("id"):
            return cls(data=WaveSpeedPrediction.model_validate(raw))
        return cls.model_validate(raw if isinstance(raw, dict) else {})


class FalAiQueueResponse(_Tolerant):
    request_id: Optional[str] = Field(None, validation_alias=AliasChoices("request_id", "requestId"))
    gateway_request_id: Optional[str] = Field(
        None, validation_alias=AliasChoices("gateway_request_id", "gatewayRequestId")
    )
    status: Optional[str] = None
    status_url: Optional[str] = Field(None, validation_alias=AliasChoices("status_url", "statusUrl"))
    response_url: Optional[str] = Field(None, validation_alias=AliasChoices("response_url", "responseUrl"))
    error: Any = None

    @property
    def any_request_id(self) -> Optional[str]:
        return self.request_id or self.gateway_request_id


class FalAiMediaRef(_Tolerant):
    url: Optional[str] = None


class FalAiOutput(_Tolerant):
    video: Optional[FalAiMediaRef] = None
    image: Optional[FalAiMediaRef] = None
    images: list[FalAiMediaRef] = Field(default_factory=list)

    @property
    def result_url(self) -> Optional[str]:
        if self.video and self.video.url:
            return self.video.url
        if self.images and self.images[0].url:
            return self.images[0].url
        if self.image and self.image.url:
            return self.image.url
        return None
