"""FastAPI dependencies that hand out services from the app's container."""

from __future__ import annotations

from fastapi import Request

from studio.container import Container
from studio.services.generation_service import GenerationService
from studio.services.reaper_service import ReaperService
from studio.services.reconciliation_service import ReconciliationService
from studio.services.webhook_service import WebhookReceiver


def get_container(request: Request) -> Container:
    return request.app.state.container


def get_generation_service(request: Request) -> GenerationService:
    return get_container(request).generations


def get_reconciliation_service(request: Request) -> ReconciliationService:
    return get_container(request).reconciliation


def get_webhook_receiver(request: Request) -> WebhookReceiver:
    return get_container(request).webhooks


def get_reaper_service(request: Request) -> ReaperService:
    return get_container(request).reaper
