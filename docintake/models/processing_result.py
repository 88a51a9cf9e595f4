"""
Processing result history model
"""
import uuid
from sqlalchemy import Column, String, Integer, Float, Enum, DateTime, ForeignKey, JSON, Text
from sqlalchemy.orm import relationship
from docintake.core.database import Base
from docintake.models.enums import ProcessingStage, StageOutcome, ProcessingPriority, enum_values
from docintake.utils.clock import utcnow


class ProcessingResultRecord(Base):
    """
    Append-only record of one stage outcome within one processing run.

    attempt matches Document.processing_attempts at the time of the run, so the
    history of every run (including failed ones before a reprocess) is kept.
    """
    __tablename__ = "document_processing_results"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()), index=True)
    document_id = Column(String(36), ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True)
    attempt = Column(Integer, nullable=False)
    stage = Column(Enum(ProcessingStage, values_callable=enum_values, native_enum=False, length=32), nullable=False)
    outcome = Column(Enum(StageOutcome, values_callable=enum_values, native_enum=False, length=32), nullable=False)
    priority = Column(
        Enum(ProcessingPriority, values_callable=enum_values, native_enum=False, length=16),
        default=ProcessingPriority.NORMAL, nullable=False,
    )
    output = Column(JSON, nullable=True)
    confidence = Column(Float, nullable=True)
    error_message = Column(Text, nullable=True)
    duration_ms = Column(Integer, nullable=True)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    document = relationship("Document", back_populates="results")

    def __repr__(self):
        return (
            f"<ProcessingResultRecord(document_id={self.document_id}, attempt={self.attempt}, "
            f"stage={self.stage.value}, outcome={self.outcome.value})>"
        )
