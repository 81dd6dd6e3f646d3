"""
Creator Studio Jobs - Push Notification Service
===============================================
"Your generation is ready" alerts over APNs (HTTP/2, ES256 provider token).
Delivery is best effort: every failure is logged and reported as ``False``.
"""

from __future__ import annotations

import time
from typing import Optional

import httpx
from jose import JOSEError, jwt

from studio.core.config import Settings
from studio.core.logging import get_logger
from studio.models import JobType

logger = get_logger("services.push")

ALGORITHM = "ES256"
TOKEN_TTL_SECONDS = 50 * 60

PUSH_BODY = "Your AI generation is complete. Tap to view."


def push_title(job_type: str) -> str:
    return "Video Ready!" if job_type == JobType.video.value else "Image Ready!"


class PushNotificationService:
    """APNs sender. ``http`` must be an ``httpx.AsyncClient(http2=True)``."""

    def __init__(self, http: httpx.AsyncClient, settings: Settings, *, clock=time.time) -> None:
        self.http = http
        self.settings = settings
        self._clock = clock
        self._token: Optional[str] = None
        self._token_issued_at = 0.0

    @property
    def configured(self) -> bool:
        return self.settings.push_configured

    @property
    def host(self) -> str:
        return "api.sandbox.push.apple.com" if self.settings.apns_use_sandbox else "api.push.apple.com"

    def provider_token(self) -> str:
        """Signed provider JWT, reused until it is 50 minutes old."""
        now = self._clock()
        if self._token and now - self._token_issued_at < TOKEN_TTL_SECONDS:
            return self._token
        private_key = self.settings.apns_private_key.replace("\\n", "\n")
        self._token = jwt.encode(
            {"iss": self.settings.apns_team_id, "iat": int(now)},
            private_key,
            algorithm=ALGORITHM,
            headers={"kid": self.settings.apns_key_id},
        )
        self._token_issued_at = now
        return self._token

    @staticmethod
    def build_payload(job_id: str, job_type: str) -> dict:
        return {
            "aps": {
                "alert": {"title": push_title(job_type), "body": PUSH_BODY},
                "sound": "default",
                "badge": 1,
                "mutable-content": 1,
            },
            "job_id": job_id,
            "job_type": job_type,
        }

    async def send(self, device_token: str, job_id: str, job_type: str) -> bool:
        if not self.configured:
            logger.info("push_not_configured", job_id=job_id)
            return False
        if not device_token:
            return False

        try:
            token = self.provider_token()
        except (JOSEError, ValueError) as exc:
            logger.error("push_token_sign_failed", error=str(exc))
            return False

        url = f"https://{self.host}/3/device/{device_token}"
        headers = {
            "authorization": f"bearer {token}",
            "apns-topic": self.settings.apns_bundle_id,
            "apns-push-type": "alert",
            "apns-priority": "10",
        }
        try:
            response = await self.http.post(url, json=self.build_payload(job_id, job_type), headers=headers)
        except httpx.HTTPError as exc:
            logger.warning("push_send_failed", job_id=job_id, error=str(exc))
            return False

        if response.status_code != 200:
            logger.warning("push_rejected", job_id=job_id, status=response.status_code, body=response.text[:300])
            return False
        logger.info("push_sent", job_id=job_id, job_type=job_type)
        return True
