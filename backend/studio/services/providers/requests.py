"""
Typed provider request payloads.

Each provider request is a dataclass validated when it is constructed and
serialized exactly once, at the HTTP boundary, by ``to_wire``. Optional
fields left as ``None`` never reach the wire.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Optional
from urllib.parse import quote

RUNWARE_TASK_TYPES = {"imageInference", "videoInference", "imageUpload", "getResponse"}

_RUNWARE_WIRE_NAMES = {
    "task_type": "taskType",
    "task_uuid": "taskUUID",
    "model": "model",
    "positive_prompt": "positivePrompt",
    "width": "width",
    "height": "height",
    "number_results": "numberResults",
    "include_cost": "includeCost",
    "output_type": "outputType",
    "output_format": "outputFormat",
    "output_quality": "outputQuality",
    "reference_images": "referenceImages",
    "seed_image": "seedImage",
    "strength": "strength",
    "frame_images": "frameImages",
    "duration": "duration",
    "delivery_method": "deliveryMethod",
    "webhook_url": "webhookURL",
    "provider_settings": "providerSettings",
    "image": "image",
}


def _drop_none(values: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in values.items() if value is not None}


@dataclass(frozen=True)
class RunwareTask:
    task_type: str
    task_uuid: str
    model: Optional[str] = None
    positive_prompt: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    number_results: Optional[int] = None
    include_cost: Optional[bool] = None
    output_type: Optional[str] = None
    output_format: Optional[str] = None
    output_quality: Optional[int] = None
    reference_images: Optional[list[str]] = None
    seed_image: Optional[str] = None
    strength: Optional[float] = None
    frame_images: Optional[list[dict[str, str]]] = None
    duration: Optional[int] = None
    delivery_method: Optional[str] = None
    webhook_url: Optional[str] = None
    provider_settings: Optional[dict[str, Any]] = None
    image: Optional[str] = None

    def __post_init__(self) -> None:
        if self.task_type not in RUNWARE_TASK_TYPES:
            raise ValueError(f"Unsupported Runware task type: {self.task_type}")
        if not self.task_uuid:
            raise ValueError("Runware tasks require a taskUUID")
        if self.task_type in {"imageInference", "videoInference"} and not self.model:
            raise ValueError(f"{self.task_type} requires a model")
        if self.task_type == "imageUpload" and not self.image:
            raise ValueError("imageUpload requires an image")
        if self.strength is not None and not 0 <= self.strength <= 1:
            raise ValueError("strength must be within [0, 1]")
        if (self.width is None) != (self.height is None):
            raise ValueError("width and height must be set together")

    def to_wire(self) -> dict[str, Any]:
        return _drop_none({_RUNWARE_WIRE_NAMES[key]: value for key, value in asdict(self).items()})


def runware_envelope(api_key: str, task: RunwareTask) -> list[dict[str, Any]]:
    """Runware takes an array: the authentication task first, then the work."""
    return [{"taskType": "authentication", "apiKey": api_key}, task.to_wire()]


@dataclass(frozen=True)
class WaveSpeedRequest:
    endpoint: str
    prompt: Optional[str] = None
    aspect_ratio: Optional[str] = None
    image: Optional[str] = None
    images: Optional[list[str]] = None
    output_format: str = "jpeg"
    enable_sync_mode: bool = False
    enable_base64_output: bool = False
    webhook_url: Optional[str] = None
    extra: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.endpoint or self.endpoint.startswith("/"):
            raise ValueError("WaveSpeed endpoint must be a relative model path")
        if self.image and self.images:
            raise ValueError("WaveSpeed requests carry either image or images, not both")

    def url(self, api_url: str) -> str:
        base = f"{api_url.rstrip('/')}/{self.endpoint}"
        if not self.webhook_url:
            return base
        separator = "&" if "?" in base else "?"
        return f"{base}{separator}webhook={quote(self.webhook_url, safe='')}"

    def to_wire(self) -> dict[str, Any]:
        body = _drop_none(
            {
                "output_format": self.output_format,
                "enable_sync_mode": self.enable_sync_mode,
                "enable_base64_output": self.enable_base64_output,
                "prompt": self.prompt or None,
                "aspect_ratio": self.aspect_ratio or None,
                "image": self.image,
                "images": self.images,
            }
        )
        body.update(self.extra)
        return body


@dataclass(frozen=True)
class FalAiRequest:
    model: str
    prompt: Optional[str] = None
    image_url: Optional[str] = None
    video_url: Optional[str] = None
    character_orientation: Optional[str] = None
    keep_original_sound: Optional[bool] = None
    image_size: Optional[dict[str, int]] = None
    num_inference_steps: Optional[int] = None
    output_format: Optional[str] = None
    enable_safety_checker: Optional[bool] = None
    acceleration: Optional[str] = None
    seed: Optional[int] = None
    webhook_url: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.model or self.model.startswith("/"):
            raise ValueError("Fal.ai model must be a relative app id")
        if self.num_inference_steps is not None and self.num_inference_steps < 1:
            raise ValueError("num_inference_steps must be positive")

    def url(self, queue_url: str) -> str:
        base = f"{queue_url.rstrip('/')}/{self.model}"
        if not self.webhook_url:
            return base
        return f"{base}?fal_webhook={quote(self.webhook_url, safe='')}"

    def to_wire(self) -> dict[str, Any]:
        values = asdict(self)
        values.pop("model")
        values.pop("webhook_url")
        if values.get("prompt") == "":
            values["prompt"] = None
        return _drop_none(values)
