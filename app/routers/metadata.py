from fastapi import APIRouter
from app.models.deal import MetadataResponse
from app.models.phase import (
    Priority,
    TERMINAL_PHASE,
    FOLLOW_UP_PHASE,
    BILLING_PHASE,
    all_phases,
)

router = APIRouter(prefix="/api", tags=["metadata"])


@router.get("/metadata", response_model=MetadataResponse)
async def get_metadata():
    """フェーズ一覧（業務順）・緊急度・特別なフェーズを返す"""
    return MetadataResponse(
        phases=[phase.value for phase in all_phases()],
        priorities=[priority.value for priority in Priority],
        terminal_phase=TERMINAL_PHASE.value,
        follow_up_phase=FOLLOW_UP_PHASE.value,
        billing_phase=BILLING_PHASE.value,
    )
