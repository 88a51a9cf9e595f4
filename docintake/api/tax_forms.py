"""
Tax form API endpoints
"""
from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from docintake.core.database import get_db
from docintake.schemas.tax_form import TaxFormResponse
from docintake.services import autofill_service

router = APIRouter()


@router.get("/clients/{client_id}/tax-forms", response_model=List[TaxFormResponse])
async def list_tax_forms(client_id: str, db: AsyncSession = Depends(get_db)):
    """Tax forms auto-filled from the client's processed documents."""
    return await autofill_service.list_forms(db, client_id)
