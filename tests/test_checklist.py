"""Checklist engine and collection session tracker."""

from datetime import timedelta

import pytest
from sqlalchemy import select

from docintake.core.exceptions import ConsistencyError, NotFoundError, ValidationError
from docintake.models import Alert, AlertType, ChecklistPriority, Document, ProcessingStatus, SessionStatus
from docintake.services import checklist_service, session_service
from docintake.services.session_service import compute_progress, derive_status
from docintake.utils.clock import utcnow


async def _document(db, client_id="client-1", status=ProcessingStatus.COMPLETED, document_type="W-2"):
    document = Document(
        client_id=client_id,
        name="w2.pdf",
        mime_type="application/pdf",
        size_bytes=10,
        storage_url="/tmp/none.pdf",
        processing_status=status,
        document_type=document_type,
    )
    db.add(document)
    await db.flush()
    return document


async def _items_by_type(db, client_id="client-1"):
    return {item.document_type: item for item in await checklist_service.get_checklist(db, client_id)}


@pytest.mark.asyncio
async def test_establish_from_template(db):
    items = await checklist_service.establish_checklist(db, "client-1", template="individual")

    assert [item.document_type for item in items] == [
        "engagement_letter", "id", "W-2", "1099-INT", "1099-DIV", "bank_statement"
    ]
    assert items[0].priority == ChecklistPriority.HIGH
    assert items[0].requires_client_action
    assert all(item.template_name == "individual" for item in items)

    session = await session_service.get_session(db, "client-1")
    assert session.total_required == 4
    assert session.completed_count == 0
    assert session.progress_percentage == 0
    assert session.status == SessionStatus.NOT_STARTED


@pytest.mark.asyncio
async def test_establishing_a_template_twice_adds_nothing(db):
    await checklist_service.establish_checklist(db, "client-1", template="individual")
    items = await checklist_service.establish_checklist(db, "client-1", template="individual")

    assert len(items) == 6


@pytest.mark.asyncio
async def test_explicit_items_are_added(db):
    due = utcnow() + timedelta(days=3)
    items = await checklist_service.establish_checklist(db, "client-1", items=[
        {"document_type": "receipt", "priority": ChecklistPriority.LOW},
        {"document_type": "1099-NEC", "priority": ChecklistPriority.HIGH, "due_date": due},
    ])

    assert [item.document_type for item in items] == ["1099-NEC", "receipt"]
    assert items[0].due_date == due


@pytest.mark.asyncio
async def test_unknown_template(db):
    with pytest.raises(ValidationError, match="Unknown checklist template"):
        await checklist_service.establish_checklist(db, "client-1", template="nonexistent")


@pytest.mark.asyncio
async def test_items_are_ordered_by_priority_then_due_date(db):
    now = utcnow()
    await checklist_service.establish_checklist(db, "client-1", items=[
        {"document_type": "a", "priority": ChecklistPriority.MEDIUM, "due_date": now + timedelta(days=1)},
        {"document_type": "b", "priority": ChecklistPriority.HIGH},
        {"document_type": "c", "priority": ChecklistPriority.HIGH, "due_date": now + timedelta(days=9)},
        {"document_type": "d", "priority": ChecklistPriority.HIGH, "due_date": now + timedelta(days=2)},
        {"document_type": "e", "priority": ChecklistPriority.LOW, "due_date": now},
    ])

    items = await checklist_service.get_checklist(db, "client-1")

    assert [item.document_type for item in items] == ["d", "c", "b", "a", "e"]


@pytest.mark.asyncio
async def test_completion_drives_session_progress(db):
    await checklist_service.establish_checklist(db, "client-1", items=[
        {"document_type": "W-2"}, {"document_type": "1099-INT"}, {"document_type": "id"},
        {"document_type": "bank_statement", "is_required": False},
    ])
    items = await _items_by_type(db)

    item, session = await checklist_service.update_item(db, items["W-2"].id, True)
    assert item.is_completed and item.completed_at is not None
    assert session.status == SessionStatus.IN_PROGRESS
    assert session.progress_percentage == 33

    await checklist_service.update_item(db, items["1099-INT"].id, True)
    _, session = await checklist_service.update_item(db, items["id"].id, True)
    assert session.status == SessionStatus.COMPLETED
    assert session.progress_percentage == 100
    assert session.completed_count == 3

    item, session = await checklist_service.update_item(db, items["id"].id, False)
    assert not item.is_completed
    assert item.completed_at is None
    assert item.reopen_count == 1
    assert session.status == SessionStatus.IN_PROGRESS
    assert session.progress_percentage == 67


@pytest.mark.asyncio
async def test_optional_items_do_not_count(db):
    items = await checklist_service.establish_checklist(db, "client-1", items=[
        {"document_type": "bank_statement", "is_required": False},
    ])

    session = await session_service.get_session(db, "client-1")
    assert session.total_required == 0
    assert session.progress_percentage == 100
    assert session.status == SessionStatus.COMPLETED

    _, session = await checklist_service.update_item(db, items[0].id, True)
    assert session.progress_percentage == 100


@pytest.mark.asyncio
async def test_repeated_update_is_a_no_op(db):
    items = await checklist_service.establish_checklist(db, "client-1", items=[{"document_type": "W-2"}])
    item, _ = await checklist_service.update_item(db, items[0].id, True)
    completed_at = item.completed_at

    item, session = await checklist_service.update_item(db, items[0].id, True)
    assert item.completed_at == completed_at
    assert session.completed_count == 1

    await checklist_service.update_item(db, items[0].id, False)
    item, _ = await checklist_service.update_item(db, items[0].id, False)
    assert item.reopen_count == 1


@pytest.mark.asyncio
async def test_link_requires_processed_document_of_same_client(db):
    items = await checklist_service.establish_checklist(db, "client-1", items=[{"document_type": "W-2"}])
    item_id = items[0].id

    pending = await _document(db, status=ProcessingStatus.PENDING)
    with pytest.raises(ConsistencyError):
        await checklist_service.update_item(db, item_id, True, pending.id)

    foreign = await _document(db, client_id="client-2")
    with pytest.raises(ValidationError):
        await checklist_service.update_item(db, item_id, True, foreign.id)

    with pytest.raises(NotFoundError):
        await checklist_service.update_item(db, item_id, True, "missing-document")

    processed = await _document(db)
    item, session = await checklist_service.update_item(db, item_id, True, processed.id)
    assert item.document_id == processed.id
    assert session.progress_percentage == 100


@pytest.mark.asyncio
async def test_unknown_item(db):
    with pytest.raises(NotFoundError):
        await checklist_service.update_item(db, "missing-item", True)


@pytest.mark.asyncio
async def test_delete_item_recomputes_session(db):
    await checklist_service.establish_checklist(db, "client-1", items=[
        {"document_type": "W-2"}, {"document_type": "id"},
    ])
    items = await _items_by_type(db)
    await checklist_service.update_item(db, items["W-2"].id, True)

    session = await checklist_service.delete_item(db, items["id"].id)

    assert session.total_required == 1
    assert session.progress_percentage == 100
    assert session.status == SessionStatus.COMPLETED
    assert len(await checklist_service.get_checklist(db, "client-1")) == 1


@pytest.mark.asyncio
async def test_auto_complete_matches_document_type(db):
    await checklist_service.establish_checklist(db, "client-1", items=[{"document_type": "w-2"}])
    document = await _document(db)

    item = await checklist_service.auto_complete_for_document(db, document.id)

    assert item is not None and item.document_id == document.id
    # Already linked: nothing more to do
    assert await checklist_service.auto_complete_for_document(db, document.id) is None


@pytest.mark.asyncio
async def test_send_reminder_only_for_items_due_soon(db):
    now = utcnow()
    await checklist_service.establish_checklist(db, "client-1", items=[
        {"document_type": "W-2", "due_date": now + timedelta(days=2)},
        {"document_type": "id", "due_date": now - timedelta(days=1)},
        {"document_type": "1099-INT", "due_date": now + timedelta(days=30)},
        {"document_type": "receipt"},
    ])

    count = await checklist_service.send_reminder(db, "client-1", horizon_days=7)

    assert count == 2
    items = await _items_by_type(db)
    assert items["W-2"].reminder_count == 1
    assert items["id"].last_reminder_at is not None
    assert items["1099-INT"].reminder_count == 0

    result = await db.execute(select(Alert).where(Alert.type == AlertType.CLIENT_ACTION_REQUIRED))
    alerts = list(result.scalars().all())
    assert {alert.subject_id for alert in alerts} == {items["W-2"].id, items["id"].id}


# ============================================================================
# SESSION TRACKER
# ============================================================================

@pytest.mark.parametrize("completed,total,expected", [
    (0, 0, 100), (0, 4, 0), (1, 3, 33), (2, 3, 67), (1, 2, 50), (1, 8, 13), (3, 3, 100),
])
def test_compute_progress(completed, total, expected):
    assert compute_progress(completed, total) == expected


@pytest.mark.parametrize("completed,total,expected", [
    (0, 0, SessionStatus.COMPLETED),
    (0, 2, SessionStatus.NOT_STARTED),
    (1, 2, SessionStatus.IN_PROGRESS),
    (2, 2, SessionStatus.COMPLETED),
])
def test_derive_status(completed, total, expected):
    assert derive_status(completed, total) == expected


@pytest.mark.asyncio
async def test_update_session_leaves_omitted_fields(db):
    deadline = utcnow() + timedelta(days=30)
    session = await session_service.update_session(db, "client-1", deadline=deadline, notes="Call on Monday")
    assert session.deadline == deadline

    session = await session_service.update_session(db, "client-1", notes=None)
    assert session.deadline == deadline
    assert session.notes is None


@pytest.mark.asyncio
async def test_progress_report(db):
    now = utcnow()
    await checklist_service.establish_checklist(db, "client-1", items=[
        {"document_type": "W-2", "category": "income", "priority": ChecklistPriority.HIGH,
         "due_date": now - timedelta(days=2)},
        {"document_type": "1099-INT", "category": "income", "due_date": now + timedelta(days=3)},
        {"document_type": "receipt", "category": "expenses", "due_date": now + timedelta(days=40)},
    ])
    items = await _items_by_type(db)
    await checklist_service.update_item(db, items["receipt"].id, True)

    report = await session_service.get_progress_report(db, "client-1", horizon_days=7)

    assert report["total_items"] == 3
    assert report["completed_items"] == 1
    assert report["by_category"] == {
        "income": {"total": 2, "completed": 0},
        "expenses": {"total": 1, "completed": 1},
    }
    assert report["by_priority"]["high"] == {"total": 1, "completed": 0}
    assert [entry["document_type"] for entry in report["overdue"]] == ["W-2"]
    assert [entry["document_type"] for entry in report["due_soon"]] == ["1099-INT"]
    assert report["session"].progress_percentage == 33
