"""
Document API endpoints: upload, processing, status and review
"""
from typing import List, Optional, Union

from fastapi import APIRouter, Depends, File, Form, Query, Response, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from docintake.api.deps import get_processing_orchestrator
from docintake.core.config import settings
from docintake.core.database import get_db
from docintake.schemas.document import DocumentResponse, ReviewRequest
from docintake.schemas.processing import (
    ProcessRequest,
    ProcessingResultRecordResponse,
    ProcessingResultResponse,
    ProcessingStatusResponse,
)
from docintake.services import document_store
from docintake.services.processing_orchestrator import ProcessingOptions, ProcessingOrchestrator
from docintake.utils.file_handling import calculate_sha256, read_upload, save_file, stored_path_for

router = APIRouter()


def _options(request: Optional[ProcessRequest]) -> ProcessingOptions:
    request = request or ProcessRequest()
    return ProcessingOptions(
        skip_ocr=request.skip_ocr,
        skip_analysis=request.skip_analysis,
        skip_autofill=request.skip_autofill,
        priority=request.priority,
        client_id=request.client_id,
    )


@router.post("/clients/{client_id}/documents", response_model=DocumentResponse, status_code=201)
async def upload_document(
    client_id: str,
    file: UploadFile = File(...),
    category: Optional[str] = Form(None),
    uploaded_by: Optional[str] = Form(None),
    is_sensitive: bool = Form(False),
    parent_document_id: Optional[str] = Form(None),
    db: AsyncSession = Depends(get_db)
):
    """
    Upload a document for a client.

    Features:
    - SHA256 hash calculation for duplicate detection
    - File type and size validation
    - Duplicate rejection within the same client, unless uploading a new version
    - File storage in {BUCKET_DIR}/{client_id}/

    Raises:
        HTTPException 400: If file type not allowed
        HTTPException 404: If parent_document_id is unknown
        HTTPException 409: If the same file was already uploaded for this client
        HTTPException 413: If file size exceeds limit
    """
    file_content, mime_type, file_size = await read_upload(
        file=file,
        allowed_extensions=settings.ALLOWED_EXTENSIONS,
        max_file_size=settings.MAX_FILE_SIZE
    )
    sha256_hash = calculate_sha256(file_content)
    stored_path = stored_path_for(settings.BUCKET_DIR, client_id, file.filename, sha256_hash)

    # Duplicate and parent checks run before any bytes reach the bucket
    document = await document_store.create_document(
        db,
        client_id=client_id,
        name=file.filename,
        mime_type=mime_type,
        size_bytes=file_size,
        storage_url=str(stored_path),
        sha256=sha256_hash,
        category=category,
        uploaded_by=uploaded_by,
        is_sensitive=is_sensitive,
        parent_document_id=parent_document_id,
    )
    save_file(stored_path, file_content)
    # Processing opens its own sessions, so the record must be visible before we answer
    await db.commit()
    return document


@router.get("/clients/{client_id}/documents", response_model=List[DocumentResponse])
async def list_client_documents(client_id: str, db: AsyncSession = Depends(get_db)):
    return await document_store.list_documents(db, client_id)


@router.get("/documents/{document_id}", response_model=DocumentResponse)
async def get_document(document_id: str, db: AsyncSession = Depends(get_db)):
    return await document_store.get_document(db, document_id)


@router.post(
    "/documents/{document_id}/process",
    response_model=Union[ProcessingResultResponse, ProcessingStatusResponse],
)
async def process_document(
    document_id: str,
    response: Response,
    request: Optional[ProcessRequest] = None,
    background: bool = Query(False, description="Claim now, run in the background and return 202"),
    orchestrator: ProcessingOrchestrator = Depends(get_processing_orchestrator),
):
    """
    Run OCR, analysis and auto-fill on a document.

    Returns the per-stage result, or with background=true a 202 with the live
    status to poll. A failed stage still returns 200 with status "failed".

    Raises:
        HTTPException 404: If document not found
        HTTPException 409: If a run already owns the document
    """
    options = _options(request)
    if background:
        await orchestrator.submit(document_id, options)
        response.status_code = 202
        return ProcessingStatusResponse.model_validate(await orchestrator.get_status(document_id))
    result = await orchestrator.process(document_id, options)
    return ProcessingResultResponse.model_validate(result)


@router.post(
    "/documents/{document_id}/reprocess",
    response_model=Union[ProcessingResultResponse, ProcessingStatusResponse],
)
async def reprocess_document(
    document_id: str,
    response: Response,
    request: Optional[ProcessRequest] = None,
    force: bool = Query(False, description="Also reprocess completed or stuck documents"),
    background: bool = Query(False),
    orchestrator: ProcessingOrchestrator = Depends(get_processing_orchestrator),
):
    """
    Re-run a failed document in place (no new version is created).

    Raises:
        HTTPException 404: If document not found
        HTTPException 409: If the document is not failed (without force) or a live run owns it
    """
    options = _options(request)
    if background:
        await orchestrator.submit(document_id, options, reprocess=True, force=force)
        response.status_code = 202
        return ProcessingStatusResponse.model_validate(await orchestrator.get_status(document_id))
    result = await orchestrator.reprocess(document_id, options, force=force)
    return ProcessingResultResponse.model_validate(result)


@router.get("/documents/{document_id}/status", response_model=ProcessingStatusResponse)
async def get_processing_status(
    document_id: str,
    orchestrator: ProcessingOrchestrator = Depends(get_processing_orchestrator),
):
    return ProcessingStatusResponse.model_validate(await orchestrator.get_status(document_id))


@router.get("/documents/{document_id}/results", response_model=List[ProcessingResultRecordResponse])
async def get_processing_results(
    document_id: str,
    orchestrator: ProcessingOrchestrator = Depends(get_processing_orchestrator),
):
    return await orchestrator.get_results(document_id)


@router.post("/documents/{document_id}/review", response_model=DocumentResponse)
async def review_document(document_id: str, review: ReviewRequest, db: AsyncSession = Depends(get_db)):
    """Record a reviewer sign-off. Resolves the document's open alerts."""
    return await document_store.review_document(db, document_id, review.reviewer)


@router.delete("/documents/{document_id}", status_code=204)
async def delete_document(
    document_id: str,
    unlink: bool = Query(False, description="Reopen linked checklist items instead of refusing"),
    db: AsyncSession = Depends(get_db),
):
    """
    Delete a document.

    Raises:
        HTTPException 409: If processing, if it has newer versions, or if linked
            to checklist items and unlink is false
    """
    await document_store.delete_document(db, document_id, unlink=unlink)
    return Response(status_code=204)
