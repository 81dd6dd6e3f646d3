"""Upload sub-operation for providers that reference hosted images by URL."""

from __future__ import annotations

import asyncio
import re
from datetime import datetime, timezone

import httpx
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from studio.core.config import Settings
from studio.core.errors import GatewayError, NetworkError, ProviderHTTPError
from studio.core.logging import get_logger

logger = get_logger("providers.storage")

_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9._-]")


def sanitize_model_name(model: str) -> str:
    return _UNSAFE_NAME_CHARS.sub("_", model or "image")


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, NetworkError):
        return True
    return isinstance(exc, ProviderHTTPError) and exc.status_code >= 500


class StorageUploader:
    """Supabase Storage REST upload with bounded exponential backoff (delay = base ** attempt)."""

    def __init__(self, http: httpx.AsyncClient, settings: Settings, *, sleep=asyncio.sleep) -> None:
        self.http = http
        self.settings = settings
        self._sleep = sleep

    @property
    def configured(self) -> bool:
        return self.settings.storage_configured

    def object_path(self, user_id: str, model: str, *, now: datetime | None = None) -> str:
        stamp = int((now or datetime.now(timezone.utc)).timestamp())
        return f"{user_id}/{stamp}_{sanitize_model_name(model)}.jpg"

    def public_url(self, path: str) -> str:
        base = self.settings.supabase_url.rstrip("/")
        return f"{base}/storage/v1/object/public/{self.settings.supabase_image_bucket}/{path}"

    async def _put(self, path: str, jpeg_bytes: bytes) -> None:
        base = self.settings.supabase_url.rstrip("/")
        url = f"{base}/storage/v1/object/{self.settings.supabase_image_bucket}/{path}"
        headers = {
            "Authorization": f"Bearer {self.settings.supabase_service_role_key}",
            "apikey": self.settings.supabase_service_role_key,
            "Content-Type": "image/jpeg",
            "x-upsert": "true",
        }
        try:
            response = await self.http.post(url, content=jpeg_bytes, headers=headers)
        except httpx.TransportError as exc:
            raise NetworkError() from exc
        if not response.is_success:
            raise ProviderHTTPError(response.status_code, response.text)

    async def upload_jpeg(self, user_id: str, model: str, jpeg_bytes: bytes) -> str:
        if not self.configured:
            raise GatewayError("Image storage is not configured")
        path = self.object_path(user_id, model)
        base = max(1.0, float(self.settings.upload_backoff_base_seconds))
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(max(1, self.settings.upload_max_retries)),
            wait=wait_exponential(multiplier=base, exp_base=base),
            retry=retry_if_exception(_is_retryable),
            sleep=self._sleep,
            reraise=True,
        ):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.info("storage_upload_retry", path=path, attempt=attempt.retry_state.attempt_number)
                await self._put(path, jpeg_bytes)
        logger.info("storage_upload_done", path=path, size=len(jpeg_bytes))
        return self.public_url(path)
