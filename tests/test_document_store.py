"""Document store: versions, leases and deletion."""

from pathlib import Path

import pytest

from docintake.core.database import session_scope
from docintake.core.exceptions import AlreadyProcessingError, ConflictError, NotFoundError
from docintake.models import AnalysisStatus, ProcessingStatus
from docintake.services import autofill_service, document_store
from helpers import INT_TEXT, W2_TEXT


@pytest.mark.asyncio
async def test_versions_count_up_from_the_parent(store_document):
    parent = await store_document(text=W2_TEXT, name="w2.txt")
    second = await store_document(text=W2_TEXT + "\ncorrected", name="w2-v2.txt", parent_document_id=parent.id)
    third = await store_document(text=W2_TEXT + "\nfinal", name="w2-v3.txt", parent_document_id=parent.id)

    assert (parent.version, second.version, third.version) == (1, 2, 3)


@pytest.mark.asyncio
async def test_unknown_parent(store_document):
    with pytest.raises(NotFoundError):
        await store_document(parent_document_id="missing")


@pytest.mark.asyncio
async def test_lease_is_fenced_on_owner(store_document, session_factory):
    document = await store_document()

    async with session_scope(session_factory) as db:
        claimed = await document_store.claim(db, document.id, "run-a", ttl_seconds=60, stale_after_seconds=600)
        assert claimed.processing_status == ProcessingStatus.PROCESSING
        assert claimed.processing_attempts == 1
        assert claimed.lease_owner == "run-a"

    async with session_scope(session_factory) as db:
        with pytest.raises(AlreadyProcessingError):
            await document_store.claim(db, document.id, "run-b", ttl_seconds=60, stale_after_seconds=600)

    async with session_scope(session_factory) as db:
        assert not await document_store.renew_lease(db, document.id, "run-b", 60, ocr_text="stale")
        assert not await document_store.release(db, document.id, "run-b", ProcessingStatus.FAILED)
        assert await document_store.renew_lease(db, document.id, "run-a", 60, ocr_text="fresh")
        assert await document_store.release(db, document.id, "run-a", ProcessingStatus.COMPLETED)

    async with session_scope(session_factory) as db:
        stored = await document_store.get_document(db, document.id)
        assert stored.processing_status == ProcessingStatus.COMPLETED
        assert stored.ocr_text == "fresh"
        assert stored.lease_owner is None


@pytest.mark.asyncio
async def test_claim_resets_failed_analysis(store_document, session_factory):
    document = await store_document()
    async with session_scope(session_factory) as db:
        await document_store.claim(db, document.id, "run-a", 60, 600)
        await document_store.release(db, document.id, "run-a", ProcessingStatus.FAILED,
                                     analysis_status=AnalysisStatus.FAILED, error_message="bad")

    async with session_scope(session_factory) as db:
        claimed = await document_store.claim(db, document.id, "run-b", 60, 600, require_failed=True)

    assert claimed.analysis_status == AnalysisStatus.PENDING
    assert claimed.error_message is None
    assert claimed.processing_attempts == 2


@pytest.mark.asyncio
async def test_delete_removes_record_and_file(store_document, session_factory):
    document = await store_document()
    assert Path(document.storage_url).exists()

    async with session_scope(session_factory) as db:
        await document_store.delete_document(db, document.id)

    assert not Path(document.storage_url).exists()
    async with session_scope(session_factory) as db:
        with pytest.raises(NotFoundError):
            await document_store.get_document(db, document.id)


@pytest.mark.asyncio
async def test_delete_refused_while_processing_or_with_newer_versions(store_document, session_factory):
    parent = await store_document(text=W2_TEXT)
    await store_document(text=INT_TEXT, parent_document_id=parent.id)

    async with session_scope(session_factory) as db:
        with pytest.raises(ConflictError, match="newer versions"):
            await document_store.delete_document(db, parent.id)

    other = await store_document(client_id="client-2")
    async with session_scope(session_factory) as db:
        await document_store.claim(db, other.id, "run-a", 60, 600)
    async with session_scope(session_factory) as db:
        with pytest.raises(AlreadyProcessingError):
            await document_store.delete_document(db, other.id)


@pytest.mark.asyncio
async def test_delete_withdraws_tax_form_contributions(orchestrator, store_document, session_factory):
    document = await store_document(text=W2_TEXT)
    await orchestrator.process(document.id)

    async with session_scope(session_factory) as db:
        await document_store.delete_document(db, document.id)

    async with session_scope(session_factory) as db:
        form = (await autofill_service.list_forms(db, "client-1"))[0]
    assert form.fields == {}
    assert form.source_documents == []


@pytest.mark.asyncio
async def test_index_rejects_a_racing_duplicate_root_upload(store_document, monkeypatch):
    first = await store_document(text=W2_TEXT, name="w2.txt")
    version = await store_document(text=W2_TEXT, name="w2-again.txt", parent_document_id=first.id)
    assert version.version == 2

    async def nothing_found(db, client_id, sha256):
        return None

    # Both uploads passed the lookup before either committed
    monkeypatch.setattr(document_store, "find_duplicate", nothing_found)
    with pytest.raises(ConflictError, match="Duplicate file detected"):
        await store_document(text=W2_TEXT, name="w2-copy.txt")

    other_client = await store_document(client_id="client-2", text=W2_TEXT, name="w2.txt")
    assert other_client.version == 1
