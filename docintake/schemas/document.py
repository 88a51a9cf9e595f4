"""
Document Pydantic schemas
"""
from datetime import datetime
from typing import Optional, Dict, Any
from pydantic import BaseModel, Field
from docintake.models.enums import ProcessingStatus, AnalysisStatus, ProcessingStage


class DocumentResponse(BaseModel):
    """Schema for a stored document and its processing state"""
    id: str = Field(..., description="Document UUID")
    client_id: str
    name: str
    mime_type: str
    size_bytes: int
    category: Optional[str] = None
    sha256: Optional[str] = Field(None, description="SHA256 hash of file content")
    storage_url: str
    processing_status: ProcessingStatus
    analysis_status: AnalysisStatus
    document_type: Optional[str] = Field(None, description="Type detected by analysis, e.g. W-2")
    analysis_result: Optional[Dict[str, Any]] = Field(None, description="Validated analysis payload")
    error_message: Optional[str] = None
    failed_stage: Optional[ProcessingStage] = None
    processing_attempts: int
    processing_started_at: Optional[datetime] = None
    processing_completed_at: Optional[datetime] = None
    version: int
    parent_document_id: Optional[str] = None
    is_sensitive: bool
    uploaded_by: Optional[str] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    created_at: datetime
    file_extension: str = Field(..., description="File extension without the dot (e.g. pdf)")

    class Config:
        from_attributes = True


class ReviewRequest(BaseModel):
    """Reviewer sign-off"""
    reviewer: str = Field(..., min_length=1, description="Reviewer id")
