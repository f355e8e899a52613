"""Comparables API router — tiered comparable search and learning feedback.
/api/v1/comparables
"""
from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request

from app.api.deps import get_search_service
from app.api.responses import ok
from app.schemas.base_schema import ApiResponse
from app.schemas.search_schema import ComparablesResult, ReinforceRequest, SearchRequest
from app.services.comparable_service import ComparableSearchService

router = APIRouter()


@router.post("/search", response_model=ApiResponse[ComparablesResult])
async def search_comparables(
    request: Request,
    payload: SearchRequest,
    background_tasks: BackgroundTasks,
    reinforce: bool = Query(False, description="Feed the returned set back to the learning store"),
    service: ComparableSearchService = Depends(get_search_service),
):
    """Find ranked comparables for a subject property."""
    result = await service.find_comparables(payload.subject, payload.options)

    if reinforce and result.results:
        subject = payload.subject.model_copy(update={"id": result.subject_id})
        background_tasks.add_task(service.reinforce, subject, [m.property for m in result.results])

    message = f"{len(result.results)} comparables found"
    if result.degraded:
        message += " (reduced confidence)"
    return ok(result, message, request)


@router.post("/reinforce", response_model=ApiResponse[dict], status_code=202)
async def reinforce_comparables(
    request: Request,
    payload: ReinforceRequest,
    background_tasks: BackgroundTasks,
    service: ComparableSearchService = Depends(get_search_service),
):
    """Accept a comparable set for learning. Runs in background."""
    background_tasks.add_task(service.reinforce, payload.subject, payload.accepted)
    return ok(
        {"accepted": len(payload.accepted)},
        "Reinforcement scheduled",
        request,
    )
