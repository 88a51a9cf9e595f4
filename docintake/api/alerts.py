"""
Alert API endpoints
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from docintake.core.database import get_db
from docintake.schemas.alert import AcknowledgeRequest, AlertResponse, EvaluationResponse, ResolveRequest
from docintake.services import alert_service

router = APIRouter()


@router.get("/alerts", response_model=List[AlertResponse])
async def get_active_alerts(
    client_id: Optional[str] = Query(None, description="Omit for practice-wide alerts"),
    db: AsyncSession = Depends(get_db),
):
    """Open (active or acknowledged) alerts, most severe first."""
    return await alert_service.get_active_alerts(db, client_id)


@router.post("/alerts/evaluate", response_model=EvaluationResponse)
async def evaluate_alerts(
    client_id: Optional[str] = Query(None),
    horizon_days: Optional[int] = Query(None, ge=0),
    review_threshold: Optional[float] = Query(None, ge=0.0, le=1.0,
                                              description="Confidence below which completed documents need review"),
    db: AsyncSession = Depends(get_db),
):
    """Create, update and auto-resolve alerts from current checklist and document state."""
    summary = await alert_service.evaluate(
        db, client_id=client_id, horizon_days=horizon_days, review_threshold=review_threshold
    )
    return EvaluationResponse.model_validate(summary)


@router.post("/alerts/{alert_id}/acknowledge", response_model=AlertResponse)
async def acknowledge_alert(
    alert_id: str,
    request: Optional[AcknowledgeRequest] = None,
    db: AsyncSession = Depends(get_db),
):
    return await alert_service.acknowledge(db, alert_id, user=request.user if request else None)


@router.post("/alerts/{alert_id}/resolve", response_model=AlertResponse)
async def resolve_alert(alert_id: str, request: ResolveRequest, db: AsyncSession = Depends(get_db)):
    """
    Resolve an alert with a note.

    Raises:
        HTTPException 400: If the note is empty
        HTTPException 404: If alert not found
        HTTPException 409: If already resolved
    """
    return await alert_service.resolve(db, alert_id, request.note, user=request.user)
