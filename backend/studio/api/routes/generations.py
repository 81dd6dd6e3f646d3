"""Generation submission API."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status

from studio.api.deps import get_generation_service
from studio.api.envelope import success_envelope
from studio.schemas import GenerationRequest
from studio.services.generation_service import GenerationService

router = APIRouter(prefix="/generations", tags=["Generations"])


@router.post("")
async def submit_generation(
    payload: GenerationRequest,
    service: GenerationService = Depends(get_generation_service),
):
    result = await service.submit_generation(payload)
    status_code = status.HTTP_202_ACCEPTED if result.outcome == "accepted" else status.HTTP_200_OK
    return success_envelope(result, status_code=status_code)
