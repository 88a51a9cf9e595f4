"""
Collection session API endpoints
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from docintake.core.config import settings
from docintake.core.database import get_db
from docintake.schemas.session import ProgressReport, SessionResponse, SessionUpdate
from docintake.services import session_service

router = APIRouter()


@router.get("/clients/{client_id}/session", response_model=SessionResponse)
async def get_collection_session(client_id: str, db: AsyncSession = Depends(get_db)):
    return await session_service.get_session(db, client_id)


@router.patch("/clients/{client_id}/session", response_model=SessionResponse)
async def update_collection_session(client_id: str, update: SessionUpdate, db: AsyncSession = Depends(get_db)):
    """Set the session deadline and/or notes. Omitted fields are left unchanged."""
    return await session_service.update_session(db, client_id, **update.model_dump(exclude_unset=True))


@router.get("/clients/{client_id}/progress", response_model=ProgressReport)
async def get_progress(
    client_id: str,
    horizon_days: int = Query(None, ge=0),
    db: AsyncSession = Depends(get_db),
):
    """Session snapshot with category/priority breakdowns, overdue and due-soon items."""
    report = await session_service.get_progress_report(
        db, client_id, settings.ALERT_DEADLINE_HORIZON_DAYS if horizon_days is None else horizon_days
    )
    report["session"] = SessionResponse.model_validate(report["session"])
    return report
