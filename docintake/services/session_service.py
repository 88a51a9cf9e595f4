"""Collection session tracker: progress derived from a client's checklist."""

import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from docintake.models.checklist_item import ChecklistItem
from docintake.models.collection_session import CollectionSession
from docintake.models.enums import SessionStatus
from docintake.utils.clock import utcnow

logger = logging.getLogger(__name__)

UNSET: Any = object()


def compute_progress(completed: int, total: int) -> int:
    """round(100 * completed / total), halves rounded up; 100 when nothing is required."""
    if total == 0:
        return 100
    return (200 * completed + total) // (2 * total)


def derive_status(completed: int, total: int) -> SessionStatus:
    if total == 0 or completed >= total:
        return SessionStatus.COMPLETED
    if completed == 0:
        return SessionStatus.NOT_STARTED
    return SessionStatus.IN_PROGRESS


async def _load_session(db: AsyncSession, client_id: str) -> Optional[CollectionSession]:
    result = await db.execute(select(CollectionSession).where(CollectionSession.client_id == client_id))
    return result.scalar_one_or_none()


async def recompute_session(db: AsyncSession, client_id: str) -> CollectionSession:
    """
    Recount required and completed-required items and store the derived fields.

    Must be called after every change to an item's completion state. Creates
    the session on first use.
    """
    result = await db.execute(
        select(ChecklistItem.is_completed).where(
            ChecklistItem.client_id == client_id, ChecklistItem.is_required.is_(True)
        )
    )
    flags = list(result.scalars().all())
    total = len(flags)
    completed = sum(1 for flag in flags if flag)

    session = await _load_session(db, client_id)
    if session is None:
        session = CollectionSession(client_id=client_id, status=SessionStatus.NOT_STARTED)
        db.add(session)

    previous = session.status
    session.total_required = total
    session.completed_count = completed
    session.progress_percentage = compute_progress(completed, total)
    session.status = derive_status(completed, total)
    session.last_activity = utcnow()
    await db.flush()

    if previous != session.status:
        logger.info("Session for client %s: %s -> %s (%d/%d)",
                    client_id, previous.value, session.status.value, completed, total)
    return session


async def get_session(db: AsyncSession, client_id: str) -> CollectionSession:
    """Current snapshot, computed on first access."""
    session = await _load_session(db, client_id)
    if session is None:
        session = await recompute_session(db, client_id)
    return session


async def update_session(db: AsyncSession, client_id: str, deadline=UNSET, notes=UNSET) -> CollectionSession:
    """Set deadline and/or notes. Pass None to clear a field; omit to leave it."""
    session = await get_session(db, client_id)
    if deadline is not UNSET:
        session.deadline = deadline
    if notes is not UNSET:
        session.notes = notes
    await db.flush()
    return session


def _item_summary(item: ChecklistItem) -> Dict[str, Any]:
    return {
        "id": item.id,
        "document_type": item.document_type,
        "category": item.category,
        "priority": item.priority.value,
        "due_date": item.due_date,
    }


async def get_progress_report(db: AsyncSession, client_id: str, horizon_days: int) -> Dict[str, Any]:
    """Session snapshot plus category/priority breakdowns and deadline lists."""
    session = await get_session(db, client_id)
    result = await db.execute(select(ChecklistItem).where(ChecklistItem.client_id == client_id))
    items = list(result.scalars().all())

    now = utcnow()
    horizon = now + timedelta(days=horizon_days)
    by_category: Dict[str, Dict[str, int]] = {}
    by_priority: Dict[str, Dict[str, int]] = {}
    overdue: List[Dict[str, Any]] = []
    due_soon: List[Dict[str, Any]] = []

    for item in items:
        for bucket, key in ((by_category, item.category or "uncategorized"), (by_priority, item.priority.value)):
            counts = bucket.setdefault(key, {"total": 0, "completed": 0})
            counts["total"] += 1
            counts["completed"] += int(item.is_completed)
        if item.is_completed or item.due_date is None:
            continue
        if item.due_date < now:
            overdue.append(_item_summary(item))
        elif item.due_date <= horizon:
            due_soon.append(_item_summary(item))

    return {
        "session": session,
        "total_items": len(items),
        "completed_items": sum(1 for item in items if item.is_completed),
        "by_category": by_category,
        "by_priority": by_priority,
        "overdue": sorted(overdue, key=lambda entry: entry["due_date"]),
        "due_soon": sorted(due_soon, key=lambda entry: entry["due_date"]),
    }
