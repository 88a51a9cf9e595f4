"""
Checklist API endpoints
"""
from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from docintake.core.database import get_db
from docintake.schemas.checklist import (
    ChecklistCreate,
    ChecklistItemResponse,
    ChecklistItemUpdate,
    ChecklistItemUpdateResponse,
    ReminderResponse,
)
from docintake.schemas.session import SessionResponse
from docintake.services import checklist_service

router = APIRouter()


@router.get("/clients/{client_id}/checklist", response_model=List[ChecklistItemResponse])
async def get_checklist(client_id: str, db: AsyncSession = Depends(get_db)):
    """Checklist items ordered by priority (high first), then earliest due date."""
    return await checklist_service.get_checklist(db, client_id)


@router.post("/clients/{client_id}/checklist", response_model=List[ChecklistItemResponse], status_code=201)
async def establish_checklist(client_id: str, checklist: ChecklistCreate, db: AsyncSession = Depends(get_db)):
    """
    Establish a client's required documents from a template and/or explicit items.

    Raises:
        HTTPException 400: If the template is unknown
    """
    return await checklist_service.establish_checklist(
        db,
        client_id,
        template=checklist.template,
        items=[item.model_dump() for item in checklist.items],
    )


@router.patch("/checklist-items/{item_id}", response_model=ChecklistItemUpdateResponse)
async def update_checklist_item(item_id: str, update: ChecklistItemUpdate, db: AsyncSession = Depends(get_db)):
    """
    Mark an item complete (optionally linking a processed document) or reopen it.

    Raises:
        HTTPException 404: If item or document not found
        HTTPException 400: If the document belongs to another client
        HTTPException 409: If the document has not finished processing
    """
    item, session = await checklist_service.update_item(db, item_id, update.is_completed, update.document_id)
    return ChecklistItemUpdateResponse(
        item=ChecklistItemResponse.model_validate(item),
        session=SessionResponse.model_validate(session),
    )


@router.delete("/checklist-items/{item_id}", response_model=SessionResponse)
async def delete_checklist_item(item_id: str, db: AsyncSession = Depends(get_db)):
    """Administrative removal of a required item. Returns the recomputed session."""
    return await checklist_service.delete_item(db, item_id)


@router.post("/clients/{client_id}/reminders", response_model=ReminderResponse)
async def send_reminder(
    client_id: str,
    horizon_days: int = Query(None, ge=0, description="Defaults to ALERT_DEADLINE_HORIZON_DAYS"),
    db: AsyncSession = Depends(get_db),
):
    count = await checklist_service.send_reminder(db, client_id, horizon_days=horizon_days)
    return ReminderResponse(client_id=client_id, reminders_sent=count)
