"""Notification records and user-initiated cancellation."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from studio.api.deps import get_reconciliation_service
from studio.api.envelope import success_envelope
from studio.core.errors import NotFoundError
from studio.schemas import NotificationResponse
from studio.services.reconciliation_service import ReconciliationService

router = APIRouter(prefix="/notifications", tags=["Notifications"])


@router.get("/{notification_id}")
async def get_notification(
    notification_id: str,
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    link = await service.get(notification_id)
    if link is None:
        raise NotFoundError(f"Notification not found: {notification_id}")
    return success_envelope(NotificationResponse.model_validate(link))


@router.post("/{notification_id}/cancel")
async def cancel_notification(
    notification_id: str,
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    result = await service.cancel(notification_id)
    return success_envelope(result)
