"""
Creator Studio Jobs - Service Container
=======================================
Builds every long-lived object once (engine, HTTP clients, repositories,
services) and hands them out by reference. The FastAPI app keeps the
container on ``app.state``; tests build one around an in-memory database.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from studio.core.config import Settings, get_settings
from studio.core.database import build_engine, build_sessionmaker
from studio.core.logging import get_logger
from studio.models import JobProvider
from studio.repositories.notification_link_repository import NotificationLinkRepository
from studio.repositories.pending_job_repository import PendingJobRepository
from studio.repositories.poll_state_repository import PollStateRepository
from studio.repositories.user_media_repository import UserMediaRepository
from studio.services.generation_service import GenerationService
from studio.services.job_events import JobEventPublisher
from studio.services.poll_scheduler import PollScheduler
from studio.services.providers import ProviderGateway
from studio.services.providers.falai import FalAiClient
from studio.services.providers.runware import RunwareClient
from studio.services.providers.storage import StorageUploader
from studio.services.providers.wavespeed import WaveSpeedClient
from studio.services.push_service import PushNotificationService
from studio.services.reaper_service import ReaperService
from studio.services.reconciliation_service import ReconciliationService
from studio.services.scheduler import JobScheduler
from studio.services.webhook_service import WebhookReceiver

logger = get_logger("container")


@dataclass
class Container:
    settings: Settings
    engine: AsyncEngine
    sessionmaker: async_sessionmaker[AsyncSession]
    http: httpx.AsyncClient
    push_http: httpx.AsyncClient
    jobs: PendingJobRepository
    media: UserMediaRepository
    gateway: ProviderGateway
    reconciliation: ReconciliationService
    push: PushNotificationService
    webhooks: WebhookReceiver
    polls: PollScheduler
    reaper: ReaperService
    generations: GenerationService
    scheduler: JobScheduler

    async def aclose(self) -> None:
        self.scheduler.stop()
        await self.http.aclose()
        await self.push_http.aclose()
        await self.engine.dispose()
        logger.info("container_closed")


def build_container(
    settings: Optional[Settings] = None,
    *,
    engine: Optional[AsyncEngine] = None,
    http: Optional[httpx.AsyncClient] = None,
    push_http: Optional[httpx.AsyncClient] = None,
    sleep=asyncio.sleep,
) -> Container:
    settings = settings or get_settings()
    engine = engine or build_engine(settings)
    sessionmaker = build_sessionmaker(engine)
    http = http or httpx.AsyncClient(timeout=settings.provider_http_timeout_seconds)
    push_http = push_http or httpx.AsyncClient(http2=True, timeout=30.0)

    media = UserMediaRepository()
    jobs = PendingJobRepository(media)

    storage = StorageUploader(http, settings, sleep=sleep)
    gateway = ProviderGateway(
        {
            JobProvider.runware: RunwareClient(http, settings),
            JobProvider.wavespeed: WaveSpeedClient(http, settings, storage),
            JobProvider.falai: FalAiClient(http, settings, storage),
        },
        settings,
        sleep=sleep,
    )

    reconciliation = ReconciliationService(
        sessionmaker,
        settings,
        links=NotificationLinkRepository(),
        jobs=jobs,
        media=media,
    )
    push = PushNotificationService(push_http, settings)
    events = JobEventPublisher(jobs=jobs, reconciliation=reconciliation, push=push)
    webhooks = WebhookReceiver(sessionmaker, settings, jobs=jobs, events=events)
    polls = PollScheduler(
        sessionmaker,
        settings,
        gateway=gateway,
        jobs=jobs,
        events=events,
        polls=PollStateRepository(),
    )
    reaper = ReaperService(sessionmaker, settings, jobs=jobs, reconciliation=reconciliation)
    generations = GenerationService(
        sessionmaker,
        settings,
        gateway=gateway,
        jobs=jobs,
        media=media,
        reconciliation=reconciliation,
        polls=polls,
    )
    scheduler = JobScheduler(settings, polls=polls, reaper=reaper)

    return Container(
        settings=settings,
        engine=engine,
        sessionmaker=sessionmaker,
        http=http,
        push_http=push_http,
        jobs=jobs,
        media=media,
        gateway=gateway,
        reconciliation=reconciliation,
        push=push,
        webhooks=webhooks,
        polls=polls,
        reaper=reaper,
        generations=generations,
        scheduler=scheduler,
    )
