"""
Database models package
"""
from docintake.models.enums import (
    ProcessingStatus,
    AnalysisStatus,
    ProcessingStage,
    StageOutcome,
    ProcessingPriority,
    ChecklistPriority,
    SessionStatus,
    AlertType,
    AlertSeverity,
    AlertStatus,
    TaxFormStatus,
)
from docintake.models.document import Document
from docintake.models.processing_result import ProcessingResultRecord
from docintake.models.checklist_item import ChecklistItem
from docintake.models.collection_session import CollectionSession
from docintake.models.alert import Alert
from docintake.models.tax_form import TaxForm

__all__ = [
    "ProcessingStatus",
    "AnalysisStatus",
    "ProcessingStage",
    "StageOutcome",
    "ProcessingPriority",
    "ChecklistPriority",
    "SessionStatus",
    "AlertType",
    "AlertSeverity",
    "AlertStatus",
    "TaxFormStatus",
    "Document",
    "ProcessingResultRecord",
    "ChecklistItem",
    "CollectionSession",
    "Alert",
    "TaxForm",
]
