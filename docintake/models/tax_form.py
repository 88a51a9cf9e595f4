"""
TaxForm database model
"""
import uuid
from sqlalchemy import Column, String, Integer, Float, Boolean, Enum, DateTime, JSON, UniqueConstraint
from docintake.core.database import Base
from docintake.models.enums import TaxFormStatus, enum_values
from docintake.utils.clock import utcnow


class TaxForm(Base):
    """
    Tax form record filled from analysed documents.

    fields maps a form line to its contributions, one per source document:
        {"line_1a_wages": {"value": 65000.0,
                           "contributions": {"<document_id>": {"value": 65000.0,
                                                               "confidence": 0.96,
                                                               "source_field": "wages"}}}}
    Re-filling from the same document replaces its contribution.
    """
    __tablename__ = "tax_forms"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()), index=True)
    client_id = Column(String(64), nullable=False, index=True)
    form_type = Column(String(32), nullable=False)  # e.g. "Form-1040", "Schedule-C"
    tax_year = Column(Integer, nullable=False)
    status = Column(
        Enum(TaxFormStatus, values_callable=enum_values, native_enum=False, length=16),
        default=TaxFormStatus.DRAFT, nullable=False,
    )
    fields = Column(JSON, nullable=False, default=dict)
    source_documents = Column(JSON, nullable=False, default=list)
    confidence = Column(Float, nullable=True)
    requires_review = Column(Boolean, default=False, nullable=False)
    warnings = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("client_id", "form_type", "tax_year", name="uq_tax_forms_client_form_year"),
    )

    def __repr__(self):
        return f"<TaxForm(id={self.id}, form_type={self.form_type}, tax_year={self.tax_year})>"
