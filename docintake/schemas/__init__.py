"""
Pydantic schemas for request/response validation
"""
from docintake.schemas.document import DocumentResponse, ReviewRequest
from docintake.schemas.processing import (
    ProcessRequest,
    ProcessingResultResponse,
    ProcessingStatusResponse,
    ProcessingResultRecordResponse,
)
from docintake.schemas.session import SessionResponse, SessionUpdate, ProgressReport
from docintake.schemas.checklist import (
    ChecklistCreate,
    ChecklistItemCreate,
    ChecklistItemUpdate,
    ChecklistItemResponse,
    ChecklistItemUpdateResponse,
    ReminderResponse,
)
from docintake.schemas.alert import AlertResponse, AcknowledgeRequest, ResolveRequest, EvaluationResponse
from docintake.schemas.tax_form import TaxFormResponse

__all__ = [
    "DocumentResponse",
    "ReviewRequest",
    "ProcessRequest",
    "ProcessingResultResponse",
    "ProcessingStatusResponse",
    "ProcessingResultRecordResponse",
    "SessionResponse",
    "SessionUpdate",
    "ProgressReport",
    "ChecklistCreate",
    "ChecklistItemCreate",
    "ChecklistItemUpdate",
    "ChecklistItemResponse",
    "ChecklistItemUpdateResponse",
    "ReminderResponse",
    "AlertResponse",
    "AcknowledgeRequest",
    "ResolveRequest",
    "EvaluationResponse",
    "TaxFormResponse",
]
