"""In-memory registry of live processing jobs."""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from docintake.models.enums import ProcessingStage, ProcessingStatus, ProcessingPriority
from docintake.utils.clock import utcnow


@dataclass
class ProcessingJob:
    """Best-effort live view of one processing run. Never authoritative."""

    document_id: str
    owner: str
    attempt: int
    priority: ProcessingPriority = ProcessingPriority.NORMAL
    status: ProcessingStatus = ProcessingStatus.PROCESSING
    stage: Optional[ProcessingStage] = None
    progress: int = 0
    message: str = "Queued"
    started_at: datetime = field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    @property
    def finished(self) -> bool:
        return self.status in (ProcessingStatus.COMPLETED, ProcessingStatus.FAILED)


class JobRegistry:
    """
    Jobs keyed by document id, with one asyncio.Lock per key.

    The lock only serialises claim attempts for a document inside this process;
    durable ownership lives in the document lease. Finished jobs are kept for
    `retention` so pollers can still see the final progress, then evicted.
    """

    def __init__(self, retention_seconds: int = 300):
        self.retention = timedelta(seconds=retention_seconds)
        self._jobs: Dict[str, ProcessingJob] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def lock_for(self, document_id: str) -> asyncio.Lock:
        lock = self._locks.get(document_id)
        if lock is None:
            lock = self._locks[document_id] = asyncio.Lock()
        return lock

    def start(self, job: ProcessingJob) -> ProcessingJob:
        self._jobs[job.document_id] = job
        return job

    def _owned(self, document_id: str, owner: Optional[str]) -> Optional[ProcessingJob]:
        job = self._jobs.get(document_id)
        if job is None or (owner is not None and job.owner != owner):
            return None
        return job

    def update(self, document_id: str, stage: Optional[ProcessingStage], progress: int, message: str,
               owner: Optional[str] = None) -> None:
        job = self._owned(document_id, owner)
        if job is None or job.finished:
            return
        # Progress never moves backwards within a run
        job.stage = stage if stage is not None else job.stage
        job.progress = max(job.progress, progress)
        job.message = message

    def finish(self, document_id: str, status: ProcessingStatus, message: str, owner: Optional[str] = None) -> None:
        job = self._owned(document_id, owner)
        if job is None:
            return
        job.status = status
        job.progress = 100 if status == ProcessingStatus.COMPLETED else 0
        job.message = message
        job.completed_at = utcnow()
        lock = self._locks.get(document_id)
        if lock is not None and not lock.locked():
            del self._locks[document_id]

    def discard(self, document_id: str, owner: Optional[str] = None) -> None:
        if self._owned(document_id, owner) is not None:
            del self._jobs[document_id]

    def get(self, document_id: str) -> Optional[ProcessingJob]:
        self._evict()
        return self._jobs.get(document_id)

    def active(self) -> List[ProcessingJob]:
        self._evict()
        return [job for job in self._jobs.values() if not job.finished]

    def _evict(self) -> None:
        cutoff = utcnow() - self.retention
        expired = [doc_id for doc_id, job in self._jobs.items()
                   if job.finished and job.completed_at is not None and job.completed_at < cutoff]
        for doc_id in expired:
            del self._jobs[doc_id]
