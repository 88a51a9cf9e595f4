"""
Alert database model
"""
import uuid
from sqlalchemy import Column, String, Enum, DateTime, Index, JSON, Text, text
from docintake.core.database import Base
from docintake.models.enums import AlertType, AlertSeverity, AlertStatus, enum_values
from docintake.utils.clock import utcnow


class Alert(Base):
    """
    Operator-facing alert.

    Identity for deduplication is (client_id, type, subject_id): at most one open
    (active or acknowledged) alert exists per key. condition_key fingerprints the
    underlying occurrence, so a resolved alert only suppresses the same occurrence,
    not a new one. Resolved alerts are kept for audit history.
    """
    __tablename__ = "alerts"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()), index=True)
    client_id = Column(String(64), nullable=False, index=True)
    type = Column(Enum(AlertType, values_callable=enum_values, native_enum=False, length=32), nullable=False)
    severity = Column(Enum(AlertSeverity, values_callable=enum_values, native_enum=False, length=16), nullable=False)
    status = Column(
        Enum(AlertStatus, values_callable=enum_values, native_enum=False, length=16),
        default=AlertStatus.ACTIVE, nullable=False, index=True,
    )
    subject_type = Column(String(32), nullable=False)  # "checklist_item" or "document"
    subject_id = Column(String(36), nullable=False)
    condition_key = Column(String, nullable=False)
    title = Column(String, nullable=False)
    message = Column(Text, nullable=False)
    action_required = Column(Text, nullable=True)
    deadline = Column(DateTime, nullable=True)
    assigned_to = Column(String, nullable=True)
    details = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
    acknowledged_at = Column(DateTime, nullable=True)
    acknowledged_by = Column(String, nullable=True)
    resolved_at = Column(DateTime, nullable=True)
    resolved_by = Column(String, nullable=True)
    resolution_note = Column(Text, nullable=True)

    __table_args__ = (
        Index(
            "uq_alerts_open_subject", "client_id", "type", "subject_id",
            unique=True,
            sqlite_where=text("status != 'resolved'"),
            postgresql_where=text("status != 'resolved'"),
        ),
    )

    def __repr__(self):
        return f"<Alert(id={self.id}, type={self.type.value}, severity={self.severity.value}, status={self.status.value})>"

    @property
    def is_open(self) -> bool:
        return self.status != AlertStatus.RESOLVED
