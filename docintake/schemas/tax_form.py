"""
Tax form Pydantic schemas
"""
from datetime import datetime
from typing import Optional, Dict, Any, List
from pydantic import BaseModel
from docintake.models.enums import TaxFormStatus


class TaxFormResponse(BaseModel):
    id: str
    client_id: str
    form_type: str
    tax_year: int
    status: TaxFormStatus
    fields: Dict[str, Any]
    source_documents: List[str]
    confidence: Optional[float] = None
    requires_review: bool
    warnings: List[str]
    updated_at: datetime

    class Config:
        from_attributes = True
