"""Checklist management service."""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from docintake.core.config import settings
from docintake.core.exceptions import ConsistencyError, NotFoundError, ValidationError
from docintake.models.checklist_item import ChecklistItem
from docintake.models.collection_session import CollectionSession
from docintake.models.document import Document
from docintake.models.enums import ChecklistPriority, ProcessingStatus
from docintake.services import alert_service, session_service
from docintake.services.checklist_templates import get_template, TEMPLATES
from docintake.utils.clock import utcnow

logger = logging.getLogger(__name__)

PRIORITY_RANK = {
    ChecklistPriority.HIGH: 0,
    ChecklistPriority.MEDIUM: 1,
    ChecklistPriority.LOW: 2,
}


def sort_items(items: Iterable[ChecklistItem]) -> List[ChecklistItem]:
    """Priority high to low, then earliest due date (undated last), then creation order."""
    return sorted(
        items,
        key=lambda item: (
            PRIORITY_RANK[item.priority],
            item.due_date is None,
            item.due_date or datetime.max,
            item.created_at or datetime.max,
        ),
    )


async def get_checklist(db: AsyncSession, client_id: str) -> List[ChecklistItem]:
    """All checklist items for a client in display order."""
    result = await db.execute(select(ChecklistItem).where(ChecklistItem.client_id == client_id))
    return sort_items(result.scalars().all())


async def get_item(db: AsyncSession, item_id: str) -> ChecklistItem:
    result = await db.execute(select(ChecklistItem).where(ChecklistItem.id == item_id))
    item = result.scalar_one_or_none()
    if not item:
        raise NotFoundError(f"Checklist item with id {item_id} not found")
    return item


async def establish_checklist(
    db: AsyncSession,
    client_id: str,
    template: Optional[str] = None,
    items: Optional[List[Dict[str, Any]]] = None,
) -> List[ChecklistItem]:
    """
    Create checklist items for a client from a named template and/or explicit definitions.

    Template items whose document type is already on the client's checklist are
    skipped, so establishing the same template twice adds nothing.

    Raises:
        ValidationError: unknown template, or neither template nor items given
    """
    if template is None and not items:
        raise ValidationError("Provide a template name or at least one item")

    now = utcnow()
    created: List[ChecklistItem] = []

    if template is not None:
        template_items = get_template(template)
        if template_items is None:
            raise ValidationError(
                f"Unknown checklist template '{template}'. Available: {', '.join(sorted(TEMPLATES))}"
            )
        result = await db.execute(
            select(ChecklistItem.document_type).where(ChecklistItem.client_id == client_id)
        )
        present = {doc_type.lower() for doc_type in result.scalars().all()}
        for entry in template_items:
            if entry.document_type.lower() in present:
                continue
            present.add(entry.document_type.lower())
            created.append(ChecklistItem(
                client_id=client_id,
                document_type=entry.document_type,
                category=entry.category,
                description=entry.description,
                instructions=entry.instructions,
                is_required=entry.is_required,
                requires_client_action=entry.requires_client_action,
                priority=entry.priority,
                due_date=now + timedelta(days=entry.due_in_days) if entry.due_in_days is not None else None,
                template_name=template,
            ))

    for definition in items or []:
        created.append(ChecklistItem(client_id=client_id, **definition))

    for item in created:
        db.add(item)
    await db.flush()
    logger.info("Added %d checklist item(s) for client %s", len(created), client_id)

    await session_service.recompute_session(db, client_id)
    return await get_checklist(db, client_id)


async def _verify_link(db: AsyncSession, item: ChecklistItem, document_id: str) -> Document:
    result = await db.execute(select(Document).where(Document.id == document_id))
    document = result.scalar_one_or_none()
    if not document:
        raise NotFoundError(f"Document with id {document_id} not found")
    if document.client_id != item.client_id:
        raise ValidationError(f"Document {document_id} belongs to another client")
    if document.processing_status != ProcessingStatus.COMPLETED:
        raise ConsistencyError(
            f"Document {document_id} is {document.processing_status.value}; "
            "wait for processing to complete before linking it"
        )
    return document


async def update_item(
    db: AsyncSession,
    item_id: str,
    is_completed: bool,
    document_id: Optional[str] = None,
) -> Tuple[ChecklistItem, CollectionSession]:
    """
    Set an item's completion state, optionally linking the fulfilling document.

    Repeating the same update is a no-op. The session is recomputed whenever
    completion actually changes.

    Raises:
        NotFoundError: unknown item or document
        ValidationError: document belongs to another client
        ConsistencyError: document has not finished processing
    """
    item = await get_item(db, item_id)

    if not is_completed:
        if not item.is_completed:
            return item, await session_service.get_session(db, item.client_id)
        item.unmark()
        logger.info("Checklist item %s reopened (reopen_count=%d)", item.id, item.reopen_count)
    else:
        if document_id is not None:
            await _verify_link(db, item, document_id)
        if item.is_completed:
            if document_id is not None and item.document_id != document_id:
                item.document_id = document_id
                await db.flush()
            return item, await session_service.get_session(db, item.client_id)
        item.mark_complete(document_id=document_id)
        logger.info("Checklist item %s completed (document %s)", item.id, document_id)

    await db.flush()
    session = await session_service.recompute_session(db, item.client_id)
    return item, session


async def delete_item(db: AsyncSession, item_id: str) -> CollectionSession:
    """Administrative removal of a checklist item. Its open alerts are resolved."""
    item = await get_item(db, item_id)
    client_id = item.client_id
    await db.delete(item)
    await db.flush()
    await alert_service.resolve_for_subject(db, item_id, "Checklist item removed")
    logger.info("Removed checklist item %s (%s) for client %s", item_id, item.document_type, client_id)
    return await session_service.recompute_session(db, client_id)


async def auto_complete_for_document(db: AsyncSession, document_id: str) -> Optional[ChecklistItem]:
    """
    Complete the first open item matching a processed document's type or category.

    Only called after the document's completed state is persisted. Returns the
    completed item, or None when nothing matches or the document is already linked.
    """
    result = await db.execute(select(Document).where(Document.id == document_id))
    document = result.scalar_one_or_none()
    if document is None or document.processing_status != ProcessingStatus.COMPLETED:
        return None

    result = await db.execute(select(ChecklistItem.id).where(ChecklistItem.document_id == document_id))
    if result.first() is not None:
        return None

    keys = {value.lower() for value in (document.document_type, document.category) if value}
    if not keys:
        return None

    for item in await get_checklist(db, document.client_id):
        if not item.is_completed and item.document_type.lower() in keys:
            item.mark_complete(document_id=document.id)
            await db.flush()
            await session_service.recompute_session(db, document.client_id)
            logger.info("Auto-completed checklist item %s from document %s", item.id, document_id)
            return item
    return None


async def relink_items(db: AsyncSession, item_ids: List[str], document_id: str) -> List[ChecklistItem]:
    """Re-complete items that were reopened when their document was re-run, once it completes again."""
    if not item_ids:
        return []
    result = await db.execute(select(ChecklistItem).where(ChecklistItem.id.in_(item_ids)))
    items = [item for item in result.scalars().all() if not item.is_completed]
    if not items:
        return []
    document = await _verify_link(db, items[0], document_id)
    for item in items:
        item.mark_complete(document_id=document.id)
        logger.info("Re-linked checklist item %s to reprocessed document %s", item.id, document_id)
    await db.flush()
    await session_service.recompute_session(db, document.client_id)
    return items


async def send_reminder(db: AsyncSession, client_id: str, horizon_days: Optional[int] = None) -> int:
    """
    Record a reminder on every incomplete required item that is overdue or due
    within the horizon, raising a client_action_required alert for each.

    Delivery (email/SMS) is left to the caller. Returns the number of reminders recorded.
    """
    horizon_days = settings.ALERT_DEADLINE_HORIZON_DAYS if horizon_days is None else horizon_days
    now = utcnow()
    horizon = now + timedelta(days=horizon_days)

    count = 0
    for item in await get_checklist(db, client_id):
        if item.is_completed or not item.is_required or item.due_date is None or item.due_date > horizon:
            continue
        item.reminder_count += 1
        item.last_reminder_at = now
        await db.flush()
        await alert_service.raise_reminder_alert(db, item, horizon_days)
        count += 1

    logger.info("Sent %d reminder(s) for client %s", count, client_id)
    return count
