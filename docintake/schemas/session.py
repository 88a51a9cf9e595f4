"""
Collection session Pydantic schemas
"""
from datetime import datetime
from typing import Dict, List, Optional
from pydantic import BaseModel, Field, field_validator
from docintake.models.enums import SessionStatus
from docintake.utils.clock import to_naive_utc


class SessionResponse(BaseModel):
    """Schema for a client's collection session"""
    client_id: str
    status: SessionStatus
    progress_percentage: int = Field(..., ge=0, le=100, description="Derived from required checklist items")
    total_required: int
    completed_count: int
    last_activity: Optional[datetime] = None
    deadline: Optional[datetime] = None
    notes: Optional[str] = None

    class Config:
        from_attributes = True


class SessionUpdate(BaseModel):
    """Fields left out of the request body are not changed"""
    deadline: Optional[datetime] = None
    notes: Optional[str] = None

    @field_validator("deadline")
    @classmethod
    def deadline_as_utc(cls, v):
        return to_naive_utc(v)


class CountBreakdown(BaseModel):
    total: int
    completed: int


class DueItem(BaseModel):
    id: str
    document_type: str
    category: Optional[str] = None
    priority: str
    due_date: datetime


class ProgressReport(BaseModel):
    """Session snapshot with breakdowns"""
    session: SessionResponse
    total_items: int
    completed_items: int
    by_category: Dict[str, CountBreakdown]
    by_priority: Dict[str, CountBreakdown]
    overdue: List[DueItem]
    due_soon: List[DueItem]
