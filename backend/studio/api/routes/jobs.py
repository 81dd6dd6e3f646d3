"""Pending job API: list, inspect, consume, delete."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from studio.api.deps import get_generation_service, get_reaper_service
from studio.api.envelope import success_envelope
from studio.schemas import ConsumeRequest, PendingJobResponse, UserMediaResponse
from studio.services.generation_service import GenerationService
from studio.services.reaper_service import ReaperService

router = APIRouter(prefix="/jobs", tags=["Jobs"])
maintenance_router = APIRouter(prefix="/maintenance", tags=["Maintenance"])


@router.get("")
async def list_jobs(
    user_id: str = Query(..., min_length=1, max_length=64),
    limit: int = Query(100, ge=1, le=500),
    service: GenerationService = Depends(get_generation_service),
):
    jobs = await service.list_jobs(user_id, limit=limit)
    items = [PendingJobResponse.from_row(job) for job in jobs]
    return success_envelope({"items": items, "total": len(items)})


@router.get("/{task_id}")
async def get_job(task_id: str, service: GenerationService = Depends(get_generation_service)):
    job = await service.get_job(task_id)
    return success_envelope(PendingJobResponse.from_row(job))


@router.post("/{task_id}/consume")
async def consume_job(
    task_id: str,
    payload: Optional[ConsumeRequest] = None,
    service: GenerationService = Depends(get_generation_service),
):
    record = await service.consume(task_id, media_url=payload.media_url if payload else None)
    return success_envelope(UserMediaResponse.model_validate(record))


@router.delete("/{task_id}")
async def delete_job(task_id: str, service: GenerationService = Depends(get_generation_service)):
    await service.delete_job(task_id)
    return success_envelope({"task_id": task_id, "deleted": True})


@maintenance_router.post("/reap")
async def run_reaper(reaper: ReaperService = Depends(get_reaper_service)):
    result = await reaper.sweep()
    return success_envelope(result.to_dict())
