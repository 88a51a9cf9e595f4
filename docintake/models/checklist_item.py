"""
ChecklistItem database model
"""
import uuid
from sqlalchemy import Column, Integer, Enum, ForeignKey, String, Boolean, DateTime, Text
from docintake.core.database import Base
from docintake.models.enums import ChecklistPriority, enum_values
from docintake.utils.clock import utcnow


class ChecklistItem(Base):
    """
    ChecklistItem model tracking one required-document slot for a client.

    Invariants:
    - is_completed implies completed_at is set
    - a linked document_id implies that document finished processing (checked on link)

    Unmarking clears completed_at and document_id and bumps reopen_count, so alert
    evaluation can tell a re-occurring gap from one that never closed.
    """
    __tablename__ = "document_checklists"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()), index=True)
    client_id = Column(String(64), nullable=False, index=True)
    document_type = Column(String, nullable=False)  # e.g. "W-2", "1099-NEC", "id"
    category = Column(String, nullable=True)
    description = Column(Text, nullable=True)
    instructions = Column(Text, nullable=True)
    is_required = Column(Boolean, default=True, nullable=False)
    requires_client_action = Column(Boolean, default=False, nullable=False)  # e.g. signatures
    priority = Column(
        Enum(ChecklistPriority, values_callable=enum_values, native_enum=False, length=16),
        default=ChecklistPriority.MEDIUM, nullable=False,
    )
    due_date = Column(DateTime, nullable=True)
    is_completed = Column(Boolean, default=False, nullable=False)
    completed_at = Column(DateTime, nullable=True)
    document_id = Column(String(36), ForeignKey("documents.id"), nullable=True, index=True)
    reminder_count = Column(Integer, default=0, nullable=False)
    last_reminder_at = Column(DateTime, nullable=True)
    reopen_count = Column(Integer, default=0, nullable=False)
    template_name = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def __repr__(self):
        return (
            f"<ChecklistItem(id={self.id}, document_type={self.document_type}, "
            f"priority={self.priority.value}, completed={self.is_completed})>"
        )

    def mark_complete(self, document_id=None, when=None):
        """Mark the item complete, optionally linking the fulfilling document"""
        self.is_completed = True
        self.completed_at = self.completed_at or when or utcnow()
        if document_id is not None:
            self.document_id = document_id

    def unmark(self):
        """Reopen the item. The linked document itself is left untouched."""
        self.is_completed = False
        self.completed_at = None
        self.document_id = None
        self.reopen_count += 1

    def is_overdue(self, now) -> bool:
        return not self.is_completed and self.due_date is not None and self.due_date < now
