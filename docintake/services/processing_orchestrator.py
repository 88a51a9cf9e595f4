"""
Processing orchestrator: OCR -> Analysis -> Auto-fill.

A run starts with a claim on the document (see document_store.claim) and owns
it until the terminal state is released. Provider calls happen outside any
database session; each stage boundary opens a short session that renews the
lease and appends the stage result, fenced on the run's owner token. Live
progress is kept in a JobRegistry for polling; the document row stays the
authoritative state.
"""
import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from pydantic import ValidationError as PayloadValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from docintake.core.config import settings
from docintake.core.database import AsyncSessionLocal, session_scope
from docintake.core.exceptions import (
    LeaseLostError,
    ProviderError,
    StageTimeoutError,
    ValidationError,
)
from docintake.models.enums import (
    AnalysisStatus,
    ProcessingPriority,
    ProcessingStage,
    ProcessingStatus,
    StageOutcome,
)
from docintake.models.processing_result import ProcessingResultRecord
from docintake.schemas.analysis import UNKNOWN_DOCUMENT_TYPE, validate_payload
from docintake.services import alert_service, autofill_service, checklist_service, document_store
from docintake.services.job_registry import JobRegistry, ProcessingJob
from docintake.services.providers.base import (
    AnalysisOutput,
    AnalysisProvider,
    AutoFillOutput,
    DocumentRef,
    OCRProvider,
)
from docintake.services.providers.factory import build_providers
from docintake.services.retry import RetryPolicy
from docintake.utils.clock import utcnow

logger = logging.getLogger(__name__)

AutoFill = Callable[[AsyncSession, DocumentRef, AnalysisOutput], Awaitable[AutoFillOutput]]

# Progress reported when each step starts
STAGE_PROGRESS = {
    ProcessingStage.OCR: 25,
    ProcessingStage.ANALYSIS: 50,
    ProcessingStage.AUTOFILL: 75,
}
SAVING_PROGRESS = 90

# Synthesized progress when no live job exists
PERSISTED_PROGRESS = {
    ProcessingStatus.PENDING: 0,
    ProcessingStatus.PROCESSING: 25,
    ProcessingStatus.COMPLETED: 100,
    ProcessingStatus.FAILED: 0,
}
STALE_NOTE = "No live progress on this instance; status reflects the last persisted state and may be stale"


@dataclass
class ProcessingOptions:
    skip_ocr: bool = False
    skip_analysis: bool = False
    skip_autofill: bool = False
    priority: ProcessingPriority = ProcessingPriority.NORMAL
    client_id: Optional[str] = None  # when given, must match the document's client


@dataclass
class StageResult:
    stage: ProcessingStage
    outcome: StageOutcome
    output: Optional[Dict[str, Any]] = None
    confidence: Optional[float] = None
    error: Optional[str] = None
    duration_ms: int = 0


@dataclass
class ProcessingResult:
    document_id: str
    status: ProcessingStatus
    attempt: int
    stages: List[StageResult] = field(default_factory=list)
    error: Optional[str] = None
    failed_stage: Optional[ProcessingStage] = None
    superseded: bool = False  # the lease was taken over; nothing from this run was kept

    def stage(self, stage: ProcessingStage) -> Optional[StageResult]:
        return next((result for result in self.stages if result.stage == stage), None)

    @property
    def succeeded(self) -> bool:
        return self.status == ProcessingStatus.COMPLETED


@dataclass
class StatusView:
    document_id: str
    status: ProcessingStatus
    stage: Optional[ProcessingStage]
    progress: int
    message: str
    started_at: Optional[datetime]
    completed_at: Optional[datetime]
    source: str  # "live" or "persisted"
    attempt: int = 0
    priority: Optional[ProcessingPriority] = None
    stale: Optional[str] = None
    stuck: bool = False


@dataclass
class _Run:
    """State one run carries from its claim to its terminal write."""

    job: ProcessingJob
    document: DocumentRef
    options: ProcessingOptions
    cached_text: Optional[str]
    cached_analysis: Optional[Dict[str, Any]]
    reopened_items: List[str] = field(default_factory=list)  # unmarked at claim, re-linked on completion

    @property
    def document_id(self) -> str:
        return self.document.id

    @property
    def owner(self) -> str:
        return self.job.owner


class _StageFailed(Exception):
    def __init__(self, stage: ProcessingStage, error: Exception, duration_ms: int):
        self.stage = stage
        self.error = error
        self.duration_ms = duration_ms
        super().__init__(str(error))


class ProcessingOrchestrator:
    """
    Drives documents through the pipeline with at most one run per document.

    Usage:
        orchestrator = ProcessingOrchestrator()
        result = await orchestrator.process(document_id, ProcessingOptions())
        status = await orchestrator.get_status(document_id)
    """

    def __init__(
        self,
        session_factory: async_sessionmaker = AsyncSessionLocal,
        ocr_provider: Optional[OCRProvider] = None,
        analysis_provider: Optional[AnalysisProvider] = None,
        autofill: Optional[AutoFill] = None,
        retry_policy: Optional[RetryPolicy] = None,
        registry: Optional[JobRegistry] = None,
        stage_timeout: Optional[float] = None,
        lease_ttl: Optional[int] = None,
        stale_after: Optional[int] = None,
        auto_complete_checklist: Optional[bool] = None,
        review_threshold: Optional[float] = None,
    ):
        if ocr_provider is None or analysis_provider is None:
            default_ocr, default_analysis = build_providers()
            ocr_provider = ocr_provider or default_ocr
            analysis_provider = analysis_provider or default_analysis
        self.session_factory = session_factory
        self.ocr_provider = ocr_provider
        self.analysis_provider = analysis_provider
        self.autofill = autofill or autofill_service.autofill_document
        self.retry_policy = retry_policy or RetryPolicy.from_settings()
        self.registry = registry or JobRegistry(settings.JOB_RETENTION_SECONDS)
        self.stage_timeout = stage_timeout if stage_timeout is not None else settings.STAGE_TIMEOUT_SECONDS
        self.lease_ttl = lease_ttl if lease_ttl is not None else settings.LEASE_TTL_SECONDS
        self.stale_after = stale_after if stale_after is not None else settings.PROCESSING_STALE_AFTER_SECONDS
        self.auto_complete_checklist = (
            settings.AUTO_COMPLETE_CHECKLIST if auto_complete_checklist is None else auto_complete_checklist
        )
        self.review_threshold = (
            settings.ALERT_REVIEW_CONFIDENCE_THRESHOLD if review_threshold is None else review_threshold
        )
        self._tasks: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def process(self, document_id: str, options: Optional[ProcessingOptions] = None) -> ProcessingResult:
        """
        Run the pipeline to a terminal state and return per-stage results.

        Raises:
            NotFoundError: unknown document
            AlreadyProcessingError: another run owns the document
        """
        options = options or ProcessingOptions()
        run = await self._claim(document_id, options)
        return await self._run(run)

    async def reprocess(
        self,
        document_id: str,
        options: Optional[ProcessingOptions] = None,
        force: bool = False,
    ) -> ProcessingResult:
        """
        Re-run a failed document in place. force also accepts completed
        documents and takes over a run that is stuck past its lease or the
        staleness window.

        Raises:
            ConflictError: document is not failed and force is False
            AlreadyProcessingError: a live run owns the document
        """
        options = options or ProcessingOptions()
        run = await self._claim(document_id, options, reprocess=True, force=force)
        return await self._run(run)

    async def submit(
        self,
        document_id: str,
        options: Optional[ProcessingOptions] = None,
        reprocess: bool = False,
        force: bool = False,
    ) -> ProcessingJob:
        """Claim now and run in a background task. Claim errors are raised to the caller."""
        options = options or ProcessingOptions()
        run = await self._claim(document_id, options, reprocess=reprocess, force=force)
        task = asyncio.create_task(self._run(run), name=f"process-{document_id}")
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return run.job

    async def drain(self) -> None:
        """Wait for background runs started by submit()."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def get_status(self, document_id: str) -> StatusView:
        """Live job when this instance runs (or just ran) the document, else the persisted state."""
        job = self.registry.get(document_id)
        if job is not None:
            return StatusView(
                document_id=document_id,
                status=job.status,
                stage=job.stage,
                progress=job.progress,
                message=job.message,
                started_at=job.started_at,
                completed_at=job.completed_at,
                source="live",
                attempt=job.attempt,
                priority=job.priority,
            )

        async with session_scope(self.session_factory) as db:
            document = await document_store.get_document(db, document_id)

        status = document.processing_status
        stuck = document.is_stuck(utcnow(), self.stale_after)
        if status == ProcessingStatus.FAILED:
            message = f"Processing failed: {document.error_message or 'unknown error'}"
        elif stuck:
            message = "Processing appears stuck; eligible for forced reprocess"
        else:
            message = {
                ProcessingStatus.PENDING: "Awaiting processing",
                ProcessingStatus.PROCESSING: "Processing",
                ProcessingStatus.COMPLETED: "Processing complete",
            }[status]
        return StatusView(
            document_id=document_id,
            status=status,
            stage=document.failed_stage if status == ProcessingStatus.FAILED else None,
            progress=PERSISTED_PROGRESS[status],
            message=message,
            started_at=document.processing_started_at,
            completed_at=document.processing_completed_at,
            source="persisted",
            attempt=document.processing_attempts,
            stale=STALE_NOTE,
            stuck=stuck,
        )

    async def get_results(self, document_id: str) -> List[ProcessingResultRecord]:
        """Stage result history for every run of a document, oldest first."""
        async with session_scope(self.session_factory) as db:
            await document_store.get_document(db, document_id)
            result = await db.execute(
                select(ProcessingResultRecord)
                .where(ProcessingResultRecord.document_id == document_id)
                .order_by(ProcessingResultRecord.attempt, ProcessingResultRecord.created_at)
            )
            return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Claim and run
    # ------------------------------------------------------------------

    async def _claim(self, document_id: str, options: ProcessingOptions,
                     reprocess: bool = False, force: bool = False) -> _Run:
        owner = uuid.uuid4().hex
        async with self.registry.lock_for(document_id):
            async with session_scope(self.session_factory) as db:
                if options.client_id is not None:
                    existing = await document_store.get_document(db, document_id)
                    if existing.client_id != options.client_id:
                        raise ValidationError(f"Document {document_id} does not belong to client {options.client_id}")
                document = await document_store.claim(
                    db, document_id, owner,
                    ttl_seconds=self.lease_ttl,
                    stale_after_seconds=self.stale_after,
                    require_failed=reprocess and not force,
                    takeover=force,
                )
                reopened = await document_store.unlink_checklist_items(db, document_id)
                run = _Run(
                    job=ProcessingJob(
                        document_id=document_id,
                        owner=owner,
                        attempt=document.processing_attempts,
                        priority=options.priority,
                        message="Claimed",
                    ),
                    document=document_store.to_ref(document),
                    options=options,
                    cached_text=document.ocr_text,
                    cached_analysis=document.analysis_result,
                    reopened_items=reopened,
                )
            self.registry.start(run.job)
        return run

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Background processing task %s failed", task.get_name(), exc_info=task.exception())

    async def _run(self, run: _Run) -> ProcessingResult:
        result = ProcessingResult(document_id=run.document_id, status=ProcessingStatus.PROCESSING,
                                  attempt=run.job.attempt)
        try:
            try:
                await self._pipeline(run, result)
            except _StageFailed as failure:
                await self._fail(run, result, failure)
            else:
                await self._complete(run, result)
        except LeaseLostError:
            logger.warning("Run %s lost its lease on document %s; discarding its results", run.owner, run.document_id)
            self.registry.discard(run.document_id, owner=run.owner)
            result.superseded = True
            return result
        except BaseException:
            self.registry.finish(run.document_id, ProcessingStatus.FAILED, "Processing aborted", owner=run.owner)
            raise

        await self._after_terminal(run, result.status)
        return result

    async def _pipeline(self, run: _Run, result: ProcessingResult) -> None:
        options = run.options

        # OCR
        if options.skip_ocr:
            text = run.cached_text
            result.stages.append(await self._skip(run, ProcessingStage.OCR, "OCR skipped"))
        else:
            ocr, duration = await self._execute(run, ProcessingStage.OCR, "Extracting text",
                                                self.ocr_provider.extract_text, run.document)
            text = ocr.text
            result.stages.append(await self._record(
                run, ProcessingStage.OCR, ocr.to_dict(), ocr.confidence, duration,
                ocr_text=ocr.text, ocr_confidence=ocr.confidence,
            ))

        # Analysis
        analysis: Optional[AnalysisOutput] = None
        if options.skip_analysis:
            if run.cached_analysis:
                analysis = _analysis_from_dict(run.cached_analysis)
            result.stages.append(await self._skip(run, ProcessingStage.ANALYSIS, "Analysis skipped"))
        else:
            await self._fence(run, analysis_status=AnalysisStatus.PROCESSING)
            analysis, duration = await self._execute(run, ProcessingStage.ANALYSIS, "Analyzing document",
                                                     self._analyze, run.document, text)
            result.stages.append(await self._record(
                run, ProcessingStage.ANALYSIS, analysis.to_dict(), analysis.confidence, duration,
                analysis_status=AnalysisStatus.COMPLETED,
                analysis_result=analysis.to_dict(),
                document_type=analysis.document_type,
            ))

        # Auto-fill
        if options.skip_autofill:
            result.stages.append(await self._skip(run, ProcessingStage.AUTOFILL, "Auto-fill skipped"))
        else:
            filled, duration = await self._execute(run, ProcessingStage.AUTOFILL, "Filling tax forms",
                                                   self._autofill, run, analysis)
            result.stages.append(await self._record(run, ProcessingStage.AUTOFILL, filled.to_dict(), None, duration))

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def _execute(self, run: _Run, stage: ProcessingStage, message: str, fn, *args):
        """Run one stage under the retry policy and the stage timeout. Returns (output, duration_ms)."""
        self.registry.update(run.document_id, stage, STAGE_PROGRESS[stage], message, owner=run.owner)
        logger.info("Document %s attempt %d: %s started", run.document_id, run.job.attempt, stage.value)
        started = time.monotonic()

        def on_retry(attempt: int, exc: BaseException) -> None:
            self.registry.update(run.document_id, stage, STAGE_PROGRESS[stage],
                                 f"{message} (retry {attempt} after: {exc})", owner=run.owner)

        try:
            output = await asyncio.wait_for(
                self.retry_policy.run(fn, *args, label=f"{stage.value} {run.document_id}", on_retry=on_retry),
                timeout=self.stage_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("Document %s: %s timed out after %gs", run.document_id, stage.value, self.stage_timeout)
            raise _StageFailed(stage, StageTimeoutError(stage.value, self.stage_timeout), _elapsed_ms(started))
        except LeaseLostError:
            raise
        except ProviderError as e:
            logger.warning("Document %s: %s failed: %s", run.document_id, stage.value, e)
            raise _StageFailed(stage, e, _elapsed_ms(started))
        except Exception as e:
            logger.exception("Document %s: %s raised unexpectedly", run.document_id, stage.value)
            raise _StageFailed(stage, e, _elapsed_ms(started))

        duration = _elapsed_ms(started)
        logger.info("Document %s: %s finished in %dms", run.document_id, stage.value, duration)
        return output, duration

    async def _analyze(self, document: DocumentRef, text: Optional[str]) -> AnalysisOutput:
        if not text or not text.strip():
            return AnalysisOutput(
                document_type=UNKNOWN_DOCUMENT_TYPE,
                confidence=0.0,
                quality_issues=["no_input_text"],
                provider=self.analysis_provider.name,
            )
        raw = await self.analysis_provider.analyze(document, text)
        try:
            doc_type, fields, missing = validate_payload(raw.document_type, raw.fields)
        except PayloadValidationError as e:
            raise ProviderError(f"Analysis payload for {raw.document_type} failed validation: {e.error_count()} error(s)")

        quality_issues = list(raw.quality_issues)
        if doc_type == UNKNOWN_DOCUMENT_TYPE and "unclassified_document" not in quality_issues:
            quality_issues.append("unclassified_document")
        return AnalysisOutput(
            document_type=doc_type,
            confidence=raw.confidence,
            fields=fields,
            missing_fields=sorted(set(raw.missing_fields) | set(missing)),
            quality_issues=quality_issues,
            provider=raw.provider or self.analysis_provider.name,
        )

    async def _autofill(self, run: _Run, analysis: Optional[AnalysisOutput]) -> AutoFillOutput:
        if analysis is None:
            return AutoFillOutput(warnings=["No analysis result available; nothing to fill"])
        async with session_scope(self.session_factory) as db:
            if not await document_store.renew_lease(db, run.document_id, run.owner, self.lease_ttl):
                raise LeaseLostError(run.document_id, run.owner)
            return await self.autofill(db, run.document, analysis)

    # ------------------------------------------------------------------
    # Fenced persistence
    # ------------------------------------------------------------------

    async def _fence(self, run: _Run, **values) -> None:
        async with session_scope(self.session_factory) as db:
            if not await document_store.renew_lease(db, run.document_id, run.owner, self.lease_ttl, **values):
                raise LeaseLostError(run.document_id, run.owner)

    def _result_row(self, run: _Run, stage_result: StageResult) -> ProcessingResultRecord:
        completed = utcnow()
        return ProcessingResultRecord(
            document_id=run.document_id,
            attempt=run.job.attempt,
            stage=stage_result.stage,
            outcome=stage_result.outcome,
            priority=run.options.priority,
            output=stage_result.output,
            confidence=stage_result.confidence,
            error_message=stage_result.error,
            duration_ms=stage_result.duration_ms,
            started_at=completed - timedelta(milliseconds=stage_result.duration_ms),
            completed_at=completed,
        )

    async def _record(self, run: _Run, stage: ProcessingStage, output: Dict[str, Any],
                      confidence: Optional[float], duration_ms: int, **document_values) -> StageResult:
        stage_result = StageResult(stage, StageOutcome.COMPLETED, output, confidence, None, duration_ms)
        async with session_scope(self.session_factory) as db:
            if not await document_store.renew_lease(db, run.document_id, run.owner, self.lease_ttl,
                                                    **document_values):
                raise LeaseLostError(run.document_id, run.owner)
            db.add(self._result_row(run, stage_result))
        return stage_result

    async def _skip(self, run: _Run, stage: ProcessingStage, message: str) -> StageResult:
        self.registry.update(run.document_id, stage, STAGE_PROGRESS[stage], message, owner=run.owner)
        logger.info("Document %s: %s skipped", run.document_id, stage.value)
        stage_result = StageResult(stage, StageOutcome.SKIPPED)
        async with session_scope(self.session_factory) as db:
            if not await document_store.renew_lease(db, run.document_id, run.owner, self.lease_ttl):
                raise LeaseLostError(run.document_id, run.owner)
            db.add(self._result_row(run, stage_result))
        return stage_result

    async def _complete(self, run: _Run, result: ProcessingResult) -> None:
        self.registry.update(run.document_id, None, SAVING_PROGRESS, "Saving results", owner=run.owner)
        async with session_scope(self.session_factory) as db:
            if not await document_store.release(db, run.document_id, run.owner, ProcessingStatus.COMPLETED):
                raise LeaseLostError(run.document_id, run.owner)
        result.status = ProcessingStatus.COMPLETED
        self.registry.finish(run.document_id, ProcessingStatus.COMPLETED, "Processing complete", owner=run.owner)
        logger.info("Document %s completed (attempt %d)", run.document_id, run.job.attempt)

    async def _fail(self, run: _Run, result: ProcessingResult, failure: _StageFailed) -> None:
        error = str(failure.error) or type(failure.error).__name__
        stage_result = StageResult(failure.stage, StageOutcome.FAILED, None, None, error, failure.duration_ms)
        result.stages.append(stage_result)

        values = {"error_message": error, "failed_stage": failure.stage}
        if failure.stage == ProcessingStage.ANALYSIS:
            values["analysis_status"] = AnalysisStatus.FAILED
        async with session_scope(self.session_factory) as db:
            if not await document_store.release(db, run.document_id, run.owner, ProcessingStatus.FAILED, **values):
                raise LeaseLostError(run.document_id, run.owner)
            db.add(self._result_row(run, stage_result))

        result.status = ProcessingStatus.FAILED
        result.error = error
        result.failed_stage = failure.stage
        self.registry.finish(run.document_id, ProcessingStatus.FAILED,
                             f"{failure.stage.value} failed: {error}", owner=run.owner)
        logger.warning("Document %s failed at %s (attempt %d): %s",
                       run.document_id, failure.stage.value, run.job.attempt, error)

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------

    async def _after_terminal(self, run: _Run, status: ProcessingStatus) -> None:
        """Checklist auto-link and alert pass. Runs only after the terminal state is committed."""
        if status == ProcessingStatus.COMPLETED and run.reopened_items:
            try:
                async with session_scope(self.session_factory) as db:
                    await checklist_service.relink_items(db, run.reopened_items, run.document_id)
            except Exception:
                logger.exception("Re-linking checklist items failed for document %s", run.document_id)
        if status == ProcessingStatus.COMPLETED and self.auto_complete_checklist:
            try:
                async with session_scope(self.session_factory) as db:
                    await checklist_service.auto_complete_for_document(db, run.document_id)
            except Exception:
                logger.exception("Checklist auto-complete failed for document %s", run.document_id)
        try:
            async with session_scope(self.session_factory) as db:
                await alert_service.evaluate_document(db, run.document_id, review_threshold=self.review_threshold)
        except Exception:
            logger.exception("Alert evaluation failed for document %s", run.document_id)


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


def _analysis_from_dict(data: Dict[str, Any]) -> AnalysisOutput:
    return AnalysisOutput(
        document_type=data.get("document_type") or UNKNOWN_DOCUMENT_TYPE,
        confidence=data.get("confidence") or 0.0,
        fields=data.get("fields") or {},
        missing_fields=data.get("missing_fields") or [],
        quality_issues=data.get("quality_issues") or [],
        provider=data.get("provider"),
    )


_orchestrator: Optional[ProcessingOrchestrator] = None


def get_orchestrator() -> ProcessingOrchestrator:
    """Process-wide orchestrator; the FastAPI dependency overrides this in tests."""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = ProcessingOrchestrator()
    return _orchestrator
