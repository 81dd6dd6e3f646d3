"""Provider callback endpoint, mounted at the root so registered URLs stay stable."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from studio.api.deps import get_webhook_receiver
from studio.core.logging import get_logger
from studio.services.webhook_service import WebhookReceiver, WebhookResponse

logger = get_logger("api.webhooks")

router = APIRouter(tags=["Webhooks"])

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": (
        "authorization, x-client-info, apikey, content-type, webhook-id, webhook-timestamp, webhook-signature"
    ),
    "Access-Control-Allow-Methods": "POST, OPTIONS",
}


@router.options("/webhook-receiver")
async def webhook_preflight():
    return PlainTextResponse("ok", headers=CORS_HEADERS)


@router.post("/webhook-receiver")
async def receive_webhook(request: Request, receiver: WebhookReceiver = Depends(get_webhook_receiver)):
    raw_body = await request.body()
    try:
        result = await receiver.handle(raw_body, headers=request.headers, query=request.query_params)
    except Exception as exc:  # noqa: BLE001
        logger.error("webhook_unhandled_error", error=str(exc), error_type=type(exc).__name__)
        result = WebhookResponse.error(500, "Internal server error", str(exc))
    return JSONResponse(
        status_code=result.status_code,
        content=result.body,
        headers={"Access-Control-Allow-Origin": "*"},
    )
