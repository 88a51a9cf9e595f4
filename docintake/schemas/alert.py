"""
Alert Pydantic schemas
"""
from datetime import datetime
from typing import Optional, Dict, Any, List
from pydantic import BaseModel, Field
from docintake.models.enums import AlertType, AlertSeverity, AlertStatus


class AlertResponse(BaseModel):
    id: str
    client_id: str
    type: AlertType
    severity: AlertSeverity
    status: AlertStatus
    subject_type: str
    subject_id: str
    condition_key: str = Field(..., description="Fingerprint of the underlying occurrence")
    title: str
    message: str
    action_required: Optional[str] = None
    deadline: Optional[datetime] = None
    assigned_to: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    created_at: datetime
    updated_at: datetime
    acknowledged_at: Optional[datetime] = None
    acknowledged_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    resolution_note: Optional[str] = None

    class Config:
        from_attributes = True


class AcknowledgeRequest(BaseModel):
    user: Optional[str] = None


class ResolveRequest(BaseModel):
    note: str = Field(..., description="Resolution note (required)")
    user: Optional[str] = None


class EvaluationResponse(BaseModel):
    """Counts from one evaluation pass and the resulting open alerts"""
    created: int
    updated: int
    resolved: int
    suppressed: int
    alerts: List[AlertResponse]

    class Config:
        from_attributes = True
