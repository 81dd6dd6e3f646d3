from __future__ import annotations

from dataclasses import asdict, is_dataclass
from datetime import datetime, timezone
from typing import Any

from fastapi.responses import JSONResponse
from pydantic import BaseModel

from studio.core.correlation import get_correlation_id, get_request_id
from studio.core.errors import StudioError


def response_meta(extra: dict[str, Any] | None = None) -> dict[str, Any]:
    meta: dict[str, Any] = {
        "request_id": get_request_id() or None,
        "correlation_id": get_correlation_id() or None,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    if extra:
        meta.update(extra)
    return meta


def to_payload(data: Any) -> Any:
    """JSON-ready form of schemas and result dataclasses, nested in dicts or lists."""
    if isinstance(data, BaseModel):
        return data.model_dump(mode="json")
    if is_dataclass(data) and not isinstance(data, type):
        return asdict(data)
    if isinstance(data, dict):
        return {key: to_payload(value) for key, value in data.items()}
    if isinstance(data, (list, tuple)):
        return [to_payload(item) for item in data]
    return data


def success_envelope(
    data: Any,
    *,
    status_code: int = 200,
    meta: dict[str, Any] | None = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "ok": True,
            "data": to_payload(data),
            "error": None,
            "meta": response_meta(meta),
        },
    )


def error_envelope(
    *,
    code: str,
    message: str,
    status_code: int = 400,
    details: Any = None,
    meta: dict[str, Any] | None = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "ok": False,
            "data": None,
            "error": {
                "code": code,
                "message": message,
                "details": details,
            },
            "meta": response_meta(meta),
        },
    )


def studio_error_envelope(exc: StudioError, *, status_code: int, path: str) -> JSONResponse:
    details = {"status_code": exc.status_code} if getattr(exc, "status_code", None) else None
    return error_envelope(
        code=exc.code,
        message=exc.message or "Request failed",
        status_code=status_code,
        details=details,
        meta={"path": path},
    )
