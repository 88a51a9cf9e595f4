"""
Document store: upload records, run leases, reviewer actions and deletion.

Only the processing orchestrator changes processing state, and it does so
through claim/renew_lease/release here. A run owns a document from a
successful claim until release; every write in between is fenced on
lease_owner so a run whose lease was taken over cannot overwrite the newer
run's state.
"""
import logging
from datetime import timedelta
from pathlib import Path
from typing import List, Optional

from sqlalchemy import select, update, delete, or_, and_, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from docintake.core.exceptions import (
    AlreadyProcessingError,
    ConflictError,
    ConsistencyError,
    NotFoundError,
    ValidationError,
)
from docintake.models.checklist_item import ChecklistItem
from docintake.models.document import Document
from docintake.models.enums import ProcessingStatus, AnalysisStatus
from docintake.models.processing_result import ProcessingResultRecord
from docintake.services import alert_service, autofill_service, session_service
from docintake.services.providers.base import DocumentRef
from docintake.utils.clock import utcnow

logger = logging.getLogger(__name__)


async def get_document(db: AsyncSession, document_id: str) -> Document:
    """Load a document or raise NotFoundError."""
    result = await db.execute(select(Document).where(Document.id == document_id))
    document = result.scalar_one_or_none()
    if not document:
        raise NotFoundError(f"Document with id {document_id} not found")
    return document


async def list_documents(db: AsyncSession, client_id: str) -> List[Document]:
    result = await db.execute(
        select(Document).where(Document.client_id == client_id).order_by(Document.created_at)
    )
    return list(result.scalars().all())


async def find_duplicate(db: AsyncSession, client_id: str, sha256: str) -> Optional[Document]:
    result = await db.execute(
        select(Document)
        .where(Document.client_id == client_id, Document.sha256 == sha256)
        .order_by(Document.version.desc())
    )
    return result.scalars().first()


async def create_document(
    db: AsyncSession,
    client_id: str,
    name: str,
    mime_type: str,
    size_bytes: int,
    storage_url: str,
    sha256: Optional[str] = None,
    category: Optional[str] = None,
    uploaded_by: Optional[str] = None,
    is_sensitive: bool = False,
    parent_document_id: Optional[str] = None,
) -> Document:
    """
    Record an uploaded file as a new pending document.

    Identical bytes for the same client are refused unless the upload is
    declared a new version of a parent document.

    Raises:
        ConflictError: duplicate content for this client
        NotFoundError: parent document does not exist
        ValidationError: parent belongs to another client
    """
    version = 1
    if parent_document_id is not None:
        parent = await get_document(db, parent_document_id)
        if parent.client_id != client_id:
            raise ValidationError(f"Parent document {parent_document_id} belongs to another client")
        result = await db.execute(
            select(func.max(Document.version)).where(
                or_(Document.id == parent.id, Document.parent_document_id == parent.id)
            )
        )
        version = (result.scalar() or parent.version) + 1
    elif sha256 is not None:
        existing = await find_duplicate(db, client_id, sha256)
        if existing:
            raise ConflictError(
                f"Duplicate file detected. This file was already uploaded as '{existing.name}' "
                f"(document_id: {existing.id})"
            )

    document = Document(
        client_id=client_id,
        name=name,
        mime_type=mime_type,
        size_bytes=size_bytes,
        storage_url=storage_url,
        sha256=sha256,
        category=category,
        uploaded_by=uploaded_by,
        is_sensitive=is_sensitive,
        parent_document_id=parent_document_id,
        version=version,
        processing_status=ProcessingStatus.PENDING,
        analysis_status=AnalysisStatus.PENDING,
    )
    try:
        async with db.begin_nested():
            db.add(document)
    except IntegrityError:
        # A concurrent upload of the same bytes committed first
        raise ConflictError(f"Duplicate file detected. This file was already uploaded for client {client_id}")
    logger.info("Created document %s (%s) for client %s, version %d", document.id, name, client_id, version)
    return document


def to_ref(document: Document) -> DocumentRef:
    return DocumentRef(
        id=document.id,
        client_id=document.client_id,
        name=document.name,
        mime_type=document.mime_type,
        storage_url=document.storage_url,
        category=document.category,
    )


# ============================================================================
# RUN LEASES
# ============================================================================

async def claim(
    db: AsyncSession,
    document_id: str,
    owner: str,
    ttl_seconds: int,
    stale_after_seconds: int,
    require_failed: bool = False,
    takeover: bool = False,
) -> Document:
    """
    Take ownership of a document's run with one conditional UPDATE.

    The row only matches when no live run owns it. takeover additionally
    matches a processing row whose lease expired or whose run started before
    the staleness window. require_failed limits the claim to failed documents.

    Returns the refreshed document, now `processing` with a new attempt number.

    Raises:
        NotFoundError: no such document
        AlreadyProcessingError: a live run owns the document
        ConflictError: the document is not in a claimable state
    """
    now = utcnow()
    if require_failed:
        claimable = Document.processing_status == ProcessingStatus.FAILED
    else:
        claimable = Document.processing_status != ProcessingStatus.PROCESSING
    if takeover:
        claimable = or_(
            Document.processing_status != ProcessingStatus.PROCESSING,
            and_(
                Document.processing_status == ProcessingStatus.PROCESSING,
                or_(
                    Document.lease_expires_at < now,
                    Document.processing_started_at < now - timedelta(seconds=stale_after_seconds),
                ),
            ),
        )

    result = await db.execute(
        update(Document)
        .where(Document.id == document_id, claimable)
        .values(
            processing_status=ProcessingStatus.PROCESSING,
            lease_owner=owner,
            lease_expires_at=now + timedelta(seconds=ttl_seconds),
            processing_attempts=Document.processing_attempts + 1,
            processing_started_at=now,
            processing_completed_at=None,
            error_message=None,
            failed_stage=None,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )

    if result.rowcount != 1:
        document = await get_document(db, document_id)
        if document.processing_status == ProcessingStatus.PROCESSING:
            raise AlreadyProcessingError(document_id)
        raise ConflictError(
            f"Document {document_id} is {document.processing_status.value}; "
            "only failed documents can be reprocessed without force"
        )

    # A failed analysis from the previous run no longer describes the document
    await db.execute(
        update(Document)
        .where(Document.id == document_id, Document.analysis_status == AnalysisStatus.FAILED)
        .values(analysis_status=AnalysisStatus.PENDING)
        .execution_options(synchronize_session=False)
    )

    result = await db.execute(
        select(Document).where(Document.id == document_id).execution_options(populate_existing=True)
    )
    document = result.scalar_one()
    logger.info("Run %s claimed document %s (attempt %d)", owner, document_id, document.processing_attempts)
    return document


async def renew_lease(db: AsyncSession, document_id: str, owner: str, ttl_seconds: int, **values) -> bool:
    """Extend the lease and apply `values` in one fenced UPDATE. False if the lease was lost."""
    now = utcnow()
    result = await db.execute(
        update(Document)
        .where(Document.id == document_id, Document.lease_owner == owner)
        .values(lease_expires_at=now + timedelta(seconds=ttl_seconds), updated_at=now, **values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def release(db: AsyncSession, document_id: str, owner: str, status: ProcessingStatus, **values) -> bool:
    """Persist a terminal state and drop the lease. False if the lease was lost."""
    now = utcnow()
    result = await db.execute(
        update(Document)
        .where(Document.id == document_id, Document.lease_owner == owner)
        .values(
            processing_status=status,
            processing_completed_at=now,
            lease_owner=None,
            lease_expires_at=None,
            updated_at=now,
            **values,
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def unlink_checklist_items(db: AsyncSession, document_id: str, recompute: bool = True) -> List[str]:
    """
    Reopen every checklist item fulfilled by a document and return their ids.

    Used when the document stops being `completed` (forced reprocess) or goes
    away, since a completed item may only link a completed document.
    """
    result = await db.execute(select(ChecklistItem).where(ChecklistItem.document_id == document_id))
    linked = list(result.scalars().all())
    if not linked:
        return []
    for item in linked:
        item.unmark()
        logger.info("Reopened checklist item %s linked to document %s", item.id, document_id)
    await db.flush()
    if recompute:
        for client_id in {item.client_id for item in linked}:
            await session_service.recompute_session(db, client_id)
    return [item.id for item in linked]


# ============================================================================
# REVIEW AND DELETION
# ============================================================================

async def review_document(db: AsyncSession, document_id: str, reviewer: str) -> Document:
    """Record a reviewer sign-off on a processed document."""
    if not reviewer or not reviewer.strip():
        raise ValidationError("reviewer is required")
    document = await get_document(db, document_id)
    if document.processing_status != ProcessingStatus.COMPLETED:
        raise ConsistencyError(
            f"Document {document_id} is {document.processing_status.value}; only processed documents can be reviewed"
        )
    document.reviewed_by = reviewer.strip()
    document.reviewed_at = utcnow()
    await db.flush()
    await alert_service.resolve_for_subject(db, document_id, "Document reviewed", resolved_by=document.reviewed_by)
    return document


async def delete_document(db: AsyncSession, document_id: str, unlink: bool = False) -> None:
    """
    Delete a document record and, when no other record shares it, its stored file.

    Raises:
        ConflictError: the document is processing, has newer versions, or is
            linked from checklist items and unlink is False
    """
    document = await get_document(db, document_id)
    if document.processing_status == ProcessingStatus.PROCESSING:
        raise AlreadyProcessingError(document_id)

    result = await db.execute(select(Document.id).where(Document.parent_document_id == document_id))
    if result.first() is not None:
        raise ConflictError(f"Document {document_id} has newer versions; delete those first")

    result = await db.execute(select(ChecklistItem.id).where(ChecklistItem.document_id == document_id))
    linked = list(result.scalars().all())
    if linked and not unlink:
        raise ConflictError(
            f"Document {document_id} is linked to {len(linked)} checklist item(s); pass unlink=true to reopen them"
        )
    await unlink_checklist_items(db, document_id, recompute=False)

    await alert_service.resolve_for_subject(db, document_id, "Document deleted")
    await autofill_service.withdraw_document(db, document.client_id, document_id)

    result = await db.execute(
        select(func.count(Document.id)).where(
            Document.storage_url == document.storage_url, Document.id != document_id
        )
    )
    shared = result.scalar()
    storage_url, client_id = document.storage_url, document.client_id

    await db.execute(delete(ProcessingResultRecord).where(ProcessingResultRecord.document_id == document_id))
    await db.delete(document)
    await db.flush()

    if linked:
        await session_service.recompute_session(db, client_id)

    if not shared and not storage_url.startswith(("http://", "https://")):
        Path(storage_url).unlink(missing_ok=True)
    logger.info("Deleted document %s", document_id)
