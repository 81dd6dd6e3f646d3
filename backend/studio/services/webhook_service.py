"""
Webhook Receiver
================
Stateless handler for provider callbacks:
Received -> Authenticated -> Normalized -> Applied -> Acknowledged.

Each call returns a ``WebhookResponse``; nothing here raises to the route.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import time
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from studio.core.config import Settings
from studio.core.correlation import bind_webhook_delivery
from studio.core.errors import AuthenticationError, MalformedPayloadError, NotFoundError, StoreError
from studio.core.logging import get_logger
from studio.models import JobProvider, PendingJob
from studio.repositories.pending_job_repository import PendingJobRepository, StatusUpdate
from studio.schemas import PendingJobResponse
from studio.schemas.webhooks import CanonicalResult, decode_payload, detect_provider
from studio.services.job_events import JobEventPublisher

logger = get_logger("services.webhooks")

SIGNATURE_VERSION = "v3"


@dataclass
class WebhookResponse:
    status_code: int
    body: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, **body: Any) -> "WebhookResponse":
        return cls(200, {"status": "ok", **body})

    @classmethod
    def error(cls, status_code: int, error: str, details: Optional[str] = None) -> "WebhookResponse":
        body: dict[str, Any] = {"status": "error", "error": error}
        if details:
            body["details"] = details
        return cls(status_code, body)


def compute_signature(secret: str, webhook_id: str, timestamp: str, raw_body: bytes) -> str:
    message = f"{webhook_id}.{timestamp}.".encode("utf-8") + raw_body
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def _signature_candidates(header: str) -> list[str]:
    """``v3,<hex>`` entries, space separated when the secret is being rotated."""
    candidates = []
    for entry in header.split():
        version, _, value = entry.partition(",")
        if value and version == SIGNATURE_VERSION:
            candidates.append(value.strip())
    return candidates


class WebhookReceiver:
    def __init__(
        self,
        sessionmaker: async_sessionmaker[AsyncSession],
        settings: Settings,
        *,
        jobs: PendingJobRepository,
        events: JobEventPublisher,
        clock=time.time,
    ) -> None:
        self.sessionmaker = sessionmaker
        self.settings = settings
        self.jobs = jobs
        self.events = events
        self._clock = clock

    # ── Authenticated ──

    def _missing_credentials(self, provider: JobProvider, what: str) -> None:
        if self.settings.webhook_auth_required:
            raise AuthenticationError(f"Missing {what}")
        logger.warning("webhook_auth_skipped", provider=provider.value, reason=f"missing {what}")

    def _missing_secret(self, provider: JobProvider, setting: str) -> None:
        if self.settings.webhook_auth_required:
            logger.error("webhook_auth_misconfigured", provider=provider.value, setting=setting)
            raise AuthenticationError("Webhook authentication is not configured")
        logger.warning("webhook_auth_skipped", provider=provider.value, reason=f"{setting} not set")

    def verify_token(self, provider: JobProvider, token: Optional[str]) -> None:
        secret = self.settings.webhook_secret
        if not secret:
            self._missing_secret(provider, "webhook_secret")
            return
        if not token:
            self._missing_credentials(provider, "token")
            return
        if not hmac.compare_digest(token.encode("utf-8"), secret.encode("utf-8")):
            raise AuthenticationError("Invalid token")

    def verify_signature(self, headers: Mapping[str, str], raw_body: bytes) -> None:
        provider = JobProvider.wavespeed
        secret = self.settings.wavespeed_webhook_secret
        if not secret:
            self._missing_secret(provider, "wavespeed_webhook_secret")
            return

        webhook_id = headers.get("webhook-id")
        timestamp = headers.get("webhook-timestamp")
        signature = headers.get("webhook-signature")
        if not (webhook_id and timestamp and signature):
            self._missing_credentials(provider, "signature headers")
            return

        tolerance = self.settings.webhook_timestamp_tolerance_seconds
        if tolerance:
            try:
                sent_at = int(timestamp)
            except ValueError:
                raise AuthenticationError("Invalid webhook timestamp")
            if abs(self._clock() - sent_at) > tolerance:
                raise AuthenticationError("Webhook timestamp outside tolerance")

        expected = compute_signature(secret, webhook_id, timestamp, raw_body)
        if not any(hmac.compare_digest(expected, candidate) for candidate in _signature_candidates(signature)):
            raise AuthenticationError("Invalid signature")

    def authenticate(
        self,
        provider: JobProvider,
        headers: Mapping[str, str],
        query: Mapping[str, str],
        raw_body: bytes,
    ) -> None:
        if provider == JobProvider.wavespeed:
            self.verify_signature(headers, raw_body)
        else:
            self.verify_token(provider, query.get("token"))

    # ── Applied ──

    async def _find_job(self, db: AsyncSession, result: CanonicalResult) -> PendingJob | None:
        ids = (result.task_id, *result.alternate_ids)
        for candidate in ids:
            job = await self.jobs.get(db, candidate)
            if job is not None:
                return job
        for candidate in ids:
            job = await self.jobs.find_by_provider_request_id(db, candidate)
            if job is not None:
                logger.info("webhook_matched_provider_request_id", provider_id=candidate, task_id=job.task_id)
                return job
        return None

    async def apply(self, result: CanonicalResult) -> WebhookResponse:
        async with self.sessionmaker() as db:
            try:
                job = await self._find_job(db, result)
                if job is None:
                    logger.info("webhook_job_not_found", provider=result.provider.value, task_id=result.task_id)
                    return WebhookResponse.ok(message="Job not found")
                update: StatusUpdate = await self.jobs.update_status(
                    db,
                    job.task_id,
                    result.status,
                    result_url=result.result_url,
                    error_message=result.error_message,
                )
            except NotFoundError:
                logger.info("webhook_job_not_found", provider=result.provider.value, task_id=result.task_id)
                return WebhookResponse.ok(message="Job not found")
            except StoreError as exc:
                logger.error("webhook_store_error", task_id=result.task_id, error=exc.message)
                return WebhookResponse.error(500, "Database error", exc.message)

            job = update.job
            logger.info(
                "webhook_applied",
                provider=result.provider.value,
                task_id=job.task_id,
                status=job.status,
                outcome=update.outcome,
            )
            await self.events.job_updated(db, job, applied=update.applied)
            job = await self.jobs.get(db, job.task_id) or job
            return WebhookResponse.ok(job=PendingJobResponse.from_row(job).model_dump(mode="json"))

    # ── Entry point ──

    async def handle(
        self,
        raw_body: bytes,
        *,
        headers: Mapping[str, str],
        query: Mapping[str, str],
    ) -> WebhookResponse:
        bind_webhook_delivery(headers.get("webhook-id"))
        try:
            payload = json.loads(raw_body or b"null")
        except ValueError:
            logger.warning("webhook_invalid_json", size=len(raw_body or b""))
            return WebhookResponse.error(400, "Invalid JSON body")

        requested = (query.get("provider") or "").strip().lower()
        if requested and requested != "unknown":
            try:
                provider = JobProvider(requested)
            except ValueError:
                logger.warning("webhook_unknown_provider", provider=requested)
                return WebhookResponse.error(400, "Unknown provider")
        else:
            provider = detect_provider(payload)
            if provider is None:
                logger.warning("webhook_unknown_provider", provider="unknown")
                return WebhookResponse.error(400, "Unknown provider")
            logger.info("webhook_provider_detected", provider=provider.value)

        try:
            self.authenticate(provider, headers, query, raw_body)
        except AuthenticationError as exc:
            logger.warning("webhook_rejected", provider=provider.value, reason=exc.message)
            return WebhookResponse.error(401, "Unauthorized", exc.message)

        try:
            result = decode_payload(provider, payload).normalize()
        except MalformedPayloadError as exc:
            logger.warning("webhook_malformed", provider=provider.value, error=exc.message)
            return WebhookResponse.error(400, exc.message)
        if not result.task_id:
            logger.warning("webhook_missing_task_id", provider=provider.value)
            return WebhookResponse.error(400, "No task ID found")

        return await self.apply(result)
