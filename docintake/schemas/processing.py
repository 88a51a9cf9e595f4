"""
Processing Pydantic schemas
"""
from datetime import datetime
from typing import Optional, Dict, Any, List
from pydantic import BaseModel, Field
from docintake.models.enums import ProcessingPriority, ProcessingStage, ProcessingStatus, StageOutcome


class ProcessRequest(BaseModel):
    """Options for a processing run"""
    client_id: Optional[str] = Field(None, description="When given, must match the document's client")
    skip_ocr: bool = False
    skip_analysis: bool = False
    skip_autofill: bool = False
    priority: ProcessingPriority = ProcessingPriority.NORMAL


class StageResultResponse(BaseModel):
    stage: ProcessingStage
    outcome: StageOutcome
    output: Optional[Dict[str, Any]] = None
    confidence: Optional[float] = None
    error: Optional[str] = None
    duration_ms: int = 0

    class Config:
        from_attributes = True


class ProcessingResultResponse(BaseModel):
    """Outcome of one run, with per-stage outputs"""
    document_id: str
    status: ProcessingStatus
    attempt: int = Field(..., description="Run number for this document")
    stages: List[StageResultResponse]
    error: Optional[str] = None
    failed_stage: Optional[ProcessingStage] = None
    superseded: bool = Field(False, description="True if another run took over and this run's results were discarded")

    class Config:
        from_attributes = True


class ProcessingStatusResponse(BaseModel):
    """
    Live or persisted processing status.

    source is "live" while this instance tracks the run. Otherwise it is
    "persisted": progress is synthesized from the stored status and may be stale.
    stuck marks a processing document past its lease or staleness window.
    """
    document_id: str
    status: ProcessingStatus
    stage: Optional[ProcessingStage] = None
    progress: int = Field(..., ge=0, le=100)
    message: str
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    source: str
    attempt: int = 0
    priority: Optional[ProcessingPriority] = None
    stale: Optional[str] = None
    stuck: bool = False

    class Config:
        from_attributes = True


class ProcessingResultRecordResponse(BaseModel):
    """One row of stage result history"""
    id: str
    document_id: str
    attempt: int
    stage: ProcessingStage
    outcome: StageOutcome
    priority: ProcessingPriority
    output: Optional[Dict[str, Any]] = None
    confidence: Optional[float] = None
    error_message: Optional[str] = None
    duration_ms: Optional[int] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True
