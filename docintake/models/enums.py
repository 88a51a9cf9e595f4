"""
Enum definitions for database models
"""
import enum


class ProcessingStatus(str, enum.Enum):
    """Overall processing state of a document"""
    PENDING = "pending"          # Uploaded, never processed
    PROCESSING = "processing"    # A run currently owns the document
    COMPLETED = "completed"      # Terminal: all requested stages succeeded
    FAILED = "failed"            # Terminal: a stage failed, see error_message


class AnalysisStatus(str, enum.Enum):
    """State of the AI analysis sub-stage"""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ProcessingStage(str, enum.Enum):
    """Pipeline stages, in execution order"""
    OCR = "ocr"
    ANALYSIS = "analysis"
    AUTOFILL = "autofill"


class StageOutcome(str, enum.Enum):
    """Outcome recorded for one stage of one run"""
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class ProcessingPriority(str, enum.Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"


class ChecklistPriority(str, enum.Enum):
    """Checklist item priority (display order: high first)"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class SessionStatus(str, enum.Enum):
    """Collection session status, derived from checklist progress"""
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class AlertType(str, enum.Enum):
    MISSING_DOCUMENT = "missing_document"
    DEADLINE_APPROACHING = "deadline_approaching"
    QUALITY_ISSUE = "quality_issue"
    REVIEW_NEEDED = "review_needed"
    CLIENT_ACTION_REQUIRED = "client_action_required"
    SYSTEM_ERROR = "system_error"


class AlertSeverity(str, enum.Enum):
    CRITICAL = "critical"
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class AlertStatus(str, enum.Enum):
    """Alert lifecycle: active → acknowledged → resolved"""
    ACTIVE = "active"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"


class TaxFormStatus(str, enum.Enum):
    DRAFT = "draft"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


def enum_values(enum_cls):
    """Persist enum values (not member names) so stored rows read naturally."""
    return [member.value for member in enum_cls]
