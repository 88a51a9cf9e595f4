"""
CollectionSession database model
"""
import uuid
from sqlalchemy import Column, String, Integer, Enum, DateTime, Text
from docintake.core.database import Base
from docintake.models.enums import SessionStatus, enum_values
from docintake.utils.clock import utcnow


class CollectionSession(Base):
    """
    Aggregate document-collection progress for one client.

    progress_percentage, total_required and completed_count are derived from the
    client's checklist items by the session tracker; they are never edited directly.
    Status transitions: not_started → in_progress → completed, and back again when
    a completed item is unmarked.
    """
    __tablename__ = "document_collection_sessions"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()), index=True)
    client_id = Column(String(64), nullable=False, unique=True, index=True)
    status = Column(
        Enum(SessionStatus, values_callable=enum_values, native_enum=False, length=32),
        default=SessionStatus.NOT_STARTED, nullable=False,
    )
    progress_percentage = Column(Integer, default=0, nullable=False)
    total_required = Column(Integer, default=0, nullable=False)
    completed_count = Column(Integer, default=0, nullable=False)
    last_activity = Column(DateTime, nullable=True)
    deadline = Column(DateTime, nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def __repr__(self):
        return (
            f"<CollectionSession(client_id={self.client_id}, status={self.status.value}, "
            f"{self.completed_count}/{self.total_required})>"
        )
