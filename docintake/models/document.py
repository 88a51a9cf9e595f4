"""
Document database model
"""
import uuid
from datetime import timedelta
from sqlalchemy import Column, String, Integer, Float, Boolean, Enum, DateTime, ForeignKey, Index, JSON, Text, text
from sqlalchemy.orm import relationship
from docintake.core.database import Base
from docintake.models.enums import ProcessingStatus, AnalysisStatus, ProcessingStage, enum_values
from docintake.utils.clock import utcnow


class Document(Base):
    """
    Document model representing an uploaded client file.

    Features:
    - SHA256 hash for duplicate detection within a client
    - processing_status / analysis_status are written only by the processing orchestrator
    - Lease columns (lease_owner, lease_expires_at) make run ownership durable:
      a run claims the row with a conditional UPDATE and fences every later write on lease_owner
    - Versioning via parent_document_id is reserved for re-uploads, never for reprocessing
    """
    __tablename__ = "documents"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()), index=True)
    client_id = Column(String(64), nullable=False, index=True)
    name = Column(String, nullable=False)
    mime_type = Column(String, nullable=False)
    size_bytes = Column(Integer, nullable=False)
    category = Column(String, nullable=True)  # free text, e.g. "tax_documents"
    sha256 = Column(String(64), nullable=True, index=True)
    storage_url = Column(String, nullable=False)  # local path or object store URL

    processing_status = Column(
        Enum(ProcessingStatus, values_callable=enum_values, native_enum=False, length=32),
        default=ProcessingStatus.PENDING, nullable=False, index=True,
    )
    analysis_status = Column(
        Enum(AnalysisStatus, values_callable=enum_values, native_enum=False, length=32),
        default=AnalysisStatus.PENDING, nullable=False,
    )
    document_type = Column(String, nullable=True)  # detected by analysis, e.g. "W-2"
    ocr_text = Column(Text, nullable=True)  # cached OCR output, reused when OCR is skipped
    ocr_confidence = Column(Float, nullable=True)
    analysis_result = Column(JSON, nullable=True)  # schema varies by document_type
    error_message = Column(Text, nullable=True)
    failed_stage = Column(
        Enum(ProcessingStage, values_callable=enum_values, native_enum=False, length=32), nullable=True
    )
    processing_attempts = Column(Integer, default=0, nullable=False)
    processing_started_at = Column(DateTime, nullable=True)
    processing_completed_at = Column(DateTime, nullable=True)

    lease_owner = Column(String, nullable=True)
    lease_expires_at = Column(DateTime, nullable=True)

    version = Column(Integer, default=1, nullable=False)
    parent_document_id = Column(String(36), ForeignKey("documents.id"), nullable=True, index=True)
    is_sensitive = Column(Boolean, default=False, nullable=False)
    uploaded_by = Column(String, nullable=True)
    reviewed_by = Column(String, nullable=True)
    reviewed_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    # Relationships
    results = relationship(
        "ProcessingResultRecord", back_populates="document",
        cascade="all, delete-orphan", passive_deletes=True, order_by="ProcessingResultRecord.created_at",
    )

    __table_args__ = (
        # One root upload per content and client; versions may repeat content
        Index(
            "idx_documents_client_sha256", "client_id", "sha256", unique=True,
            sqlite_where=text("parent_document_id IS NULL"),
            postgresql_where=text("parent_document_id IS NULL"),
        ),
    )

    def __repr__(self):
        return f"<Document(id={self.id}, name={self.name}, processing_status={self.processing_status.value})>"

    @property
    def analysis_confidence(self):
        """Confidence of the last analysis, if any"""
        if not self.analysis_result:
            return None
        return self.analysis_result.get("confidence")

    @property
    def is_terminal(self) -> bool:
        return self.processing_status in (ProcessingStatus.COMPLETED, ProcessingStatus.FAILED)

    @property
    def file_extension(self) -> str:
        return self.name.split('.')[-1].lower() if '.' in self.name else ''

    def is_stuck(self, now, stale_after_seconds: int) -> bool:
        """Processing past its lease expiry or the staleness window; eligible for forced reprocess."""
        if self.processing_status != ProcessingStatus.PROCESSING:
            return False
        if self.lease_expires_at is not None and self.lease_expires_at < now:
            return True
        started = self.processing_started_at
        return started is not None and started < now - timedelta(seconds=stale_after_seconds)
