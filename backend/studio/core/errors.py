"""Error taxonomy for the generation job lifecycle."""

from __future__ import annotations


class StudioError(Exception):
    """Base class for all job lifecycle errors."""

    code = "studio_error"

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message


# ── Provider Gateway ──

class GatewayError(StudioError):
    code = "gateway_error"


class NetworkError(GatewayError):
    code = "network_error"

    def __init__(self, message: str = "Cannot reach server. Please try again later.", *, timed_out: bool = False) -> None:
        super().__init__(message)
        self.timed_out = timed_out


class ProviderHTTPError(GatewayError):
    code = "http_error"

    def __init__(self, status_code: int, body: str = "") -> None:
        super().__init__(f"Provider returned HTTP {status_code}")
        self.status_code = status_code
        self.body = body[:2000]


class EncodingError(GatewayError):
    code = "encoding_error"


class NoResultError(GatewayError):
    code = "no_result"

    def __init__(self, message: str = "No result URL returned") -> None:
        super().__init__(message)


class GenerationTimeoutError(GatewayError):
    code = "timeout"

    def __init__(self, waited_seconds: float) -> None:
        super().__init__(f"Timed out waiting for generation after {int(waited_seconds)} seconds")
        self.waited_seconds = waited_seconds


class ProviderReportedError(GatewayError):
    code = "provider_error"


# ── Webhook Receiver ──

class AuthenticationError(StudioError):
    code = "unauthorized"


class MalformedPayloadError(StudioError):
    code = "malformed_payload"


# ── Pending Job Store ──

class StoreError(StudioError):
    code = "store_error"


class NotFoundError(StoreError):
    code = "not_found"


class DuplicateTaskIdError(StoreError):
    code = "duplicate_task_id"


class JobStateConflictError(StudioError):
    """The job exists but is not in a state that allows the operation."""

    code = "conflict"
