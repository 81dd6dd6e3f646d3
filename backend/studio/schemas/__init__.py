"""
Creator Studio Jobs - Pydantic Schemas
======================================
Request/Response schemas for the API layer.
"""

import base64
import binascii
import json
from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from studio.core.errors import EncodingError
from studio.models import JobProvider, JobStatus, JobType


# ── Pending Job Schemas ──

class PendingJobMetadata(BaseModel):
    """Structured metadata blob stored with every pending job."""

    model_config = ConfigDict(extra="allow")

    prompt: Optional[str] = None
    model: Optional[str] = None
    title: Optional[str] = None
    aspect_ratio: Optional[str] = None
    resolution: Optional[str] = None
    duration: Optional[int] = None
    cost: Optional[float] = None
    type: Optional[str] = None
    endpoint: Optional[str] = None
    provider_request_id: Optional[str] = None

    @classmethod
    def coerce(cls, value: Any) -> "PendingJobMetadata":
        # Rows written by older clients may hold the blob as a JSON string.
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                value = json.loads(value) if value.strip() else {}
            except json.JSONDecodeError:
                value = {}
        if not isinstance(value, dict):
            value = {}
        return cls.model_validate(value)

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


class PendingJobCreate(BaseModel):
    task_id: str = Field(..., min_length=1, max_length=128)
    user_id: str = Field(..., min_length=1, max_length=64)
    job_type: JobType
    provider: JobProvider
    status: JobStatus = JobStatus.pending
    metadata: PendingJobMetadata = Field(default_factory=PendingJobMetadata)
    device_token: Optional[str] = None


class PendingJobResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    task_id: str
    user_id: str
    job_type: str
    provider: str
    status: str
    result_url: Optional[str] = None
    error_message: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    device_token: Optional[str] = None
    notification_sent: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row) -> "PendingJobResponse":
        return cls(
            task_id=row.task_id,
            user_id=row.user_id,
            job_type=row.job_type,
            provider=row.provider,
            status=row.status,
            result_url=row.result_url,
            error_message=row.error_message,
            metadata=PendingJobMetadata.coerce(row.metadata_json).to_json(),
            device_token=row.device_token,
            notification_sent=bool(row.notification_sent),
            created_at=row.created_at,
            updated_at=row.updated_at,
            completed_at=row.completed_at,
        )


# ── Generation Schemas ──

class GenerationRequest(BaseModel):
    """A client generation request as accepted by the API."""

    model_config = ConfigDict(protected_namespaces=())

    user_id: str = Field(..., min_length=1, max_length=64)
    job_type: JobType = JobType.image
    provider: JobProvider
    model: str = Field(..., min_length=1, max_length=255)
    model_name: Optional[str] = None
    prompt: str = ""
    aspect_ratio: Optional[str] = None
    resolution: Optional[str] = None
    duration: Optional[int] = Field(None, ge=1, le=60)
    title: Optional[str] = None
    cost: Optional[float] = Field(None, ge=0)
    kind: Optional[str] = None
    endpoint: Optional[str] = None
    source_image_base64: Optional[str] = None
    reference_video_url: Optional[str] = None
    delivery_method: Literal["sync", "async"] = "async"
    notification_id: Optional[str] = None
    device_token: Optional[str] = None
    options: dict[str, Any] = Field(default_factory=dict)

    @field_validator("source_image_base64")
    @classmethod
    def _strip_data_uri(cls, value: Optional[str]) -> Optional[str]:
        if value and value.startswith("data:") and "," in value:
            return value.split(",", 1)[1]
        return value

    @property
    def display_model(self) -> str:
        return self.model_name or self.model

    def source_image_bytes(self) -> Optional[bytes]:
        if not self.source_image_base64:
            return None
        try:
            return base64.b64decode(self.source_image_base64, validate=True)
        except (binascii.Error, ValueError):
            raise EncodingError("Source image is not valid base64")

    def metadata(self, provider_request_id: Optional[str] = None) -> PendingJobMetadata:
        return PendingJobMetadata(
            prompt=self.prompt or None,
            model=self.display_model,
            title=self.title,
            aspect_ratio=self.aspect_ratio,
            resolution=self.resolution,
            duration=self.duration,
            cost=self.cost,
            type=self.kind,
            endpoint=self.endpoint or self.model,
            provider_request_id=provider_request_id,
        )


class GenerationResponse(BaseModel):
    notification_id: str
    task_id: str
    outcome: Literal["completed", "accepted", "failed"]
    result_url: Optional[str] = None
    error_message: Optional[str] = None
    polling: bool = False


# ── Notification Schemas ──

class NotificationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True, protected_namespaces=())

    notification_id: str
    task_id: Optional[str] = None
    user_id: str
    model_name: Optional[str] = None
    prompt: Optional[str] = None
    title: Optional[str] = None
    job_type: str
    state: str
    progress: float = 0.0
    message: Optional[str] = None
    can_cancel: bool = True
    result_url: Optional[str] = None
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ConsumeRequest(BaseModel):
    media_url: Optional[str] = None


class UserMediaResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    task_id: Optional[str] = None
    user_id: str
    media_type: str
    media_url: str = ""
    file_extension: str
    model: Optional[str] = None
    title: Optional[str] = None
    prompt: Optional[str] = None
    cost: Optional[float] = None
    provider: Optional[str] = None
    status: str
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None
    archived_at: Optional[datetime] = None


class HealthResponse(BaseModel):
    status: str
    version: str
    database: str
    uptime_seconds: float
