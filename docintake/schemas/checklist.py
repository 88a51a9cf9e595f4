"""
Checklist Pydantic schemas
"""
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field, field_validator, model_validator
from docintake.models.enums import ChecklistPriority
from docintake.schemas.session import SessionResponse
from docintake.utils.clock import to_naive_utc


class ChecklistItemCreate(BaseModel):
    """Explicit checklist item definition"""
    document_type: str = Field(..., min_length=1, description="Document type label, e.g. W-2")
    category: Optional[str] = None
    description: Optional[str] = None
    instructions: Optional[str] = None
    is_required: bool = True
    requires_client_action: bool = False
    priority: ChecklistPriority = ChecklistPriority.MEDIUM
    due_date: Optional[datetime] = None

    @field_validator("due_date")
    @classmethod
    def due_date_as_utc(cls, v):
        return to_naive_utc(v)


class ChecklistCreate(BaseModel):
    """Establish a client's checklist from a template and/or explicit items"""
    template: Optional[str] = Field(None, description="individual, self_employed or business")
    items: List[ChecklistItemCreate] = Field(default_factory=list)

    @model_validator(mode="after")
    def require_template_or_items(self):
        if self.template is None and not self.items:
            raise ValueError("Provide a template or at least one item")
        return self


class ChecklistItemUpdate(BaseModel):
    is_completed: bool
    document_id: Optional[str] = Field(None, description="Document fulfilling the item; must be processed")


class ChecklistItemResponse(BaseModel):
    """Schema for individual checklist item"""
    id: str = Field(..., description="ChecklistItem UUID")
    client_id: str
    document_type: str
    category: Optional[str] = None
    description: Optional[str] = None
    instructions: Optional[str] = None
    is_required: bool
    requires_client_action: bool
    priority: ChecklistPriority
    due_date: Optional[datetime] = None
    is_completed: bool
    completed_at: Optional[datetime] = None
    document_id: Optional[str] = None
    reminder_count: int
    last_reminder_at: Optional[datetime] = None
    reopen_count: int
    template_name: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class ChecklistItemUpdateResponse(BaseModel):
    """Updated item plus the recomputed session"""
    item: ChecklistItemResponse
    session: SessionResponse


class ReminderResponse(BaseModel):
    client_id: str
    reminders_sent: int = Field(..., description="Reminders recorded (one client_action_required alert each)")
