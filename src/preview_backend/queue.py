"""
Background thumbnail queue.

Documents are queued by id and generated later on a small thread pool:

- Jobs are picked by priority (high, normal, low) and then by age
- At most ``max_concurrent_jobs`` run at once
- A failed job is retried with exponential backoff, up to ``max_retries``
- Jobs older than ``max_job_age_seconds`` are dropped by :meth:`ThumbnailQueue.cleanup`

The queue only knows document ids; the bytes and MIME type come from a
:class:`DocumentSource` supplied by the host application.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Protocol, Set, Tuple

from .models import JobPriority, JobState, JobStatus, QueueStatus
from .service import ThumbnailService

logger = logging.getLogger(__name__)

PRIORITY_ORDER = {JobPriority.HIGH: 0, JobPriority.NORMAL: 1, JobPriority.LOW: 2}

SECONDS_PER_JOB_ESTIMATE = 30


class DocumentSource(Protocol):
    def load(self, document_id: str) -> Optional[Tuple[bytes, str]]:
        """Return ``(bytes, mime_type)`` for a document, or None if it is gone."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class QueuedJob:
    """
    Internal state of one queued document.

    Attributes:
        document_id: Document to generate a thumbnail for
        priority: Scheduling priority
        created_at: When the job was first queued
        scheduled_at: Earliest time the job may run (delay or retry backoff)
        retry_count: Failed attempts so far
        last_error: Message of the most recent failure
    """

    document_id: str
    priority: JobPriority
    created_at: datetime
    scheduled_at: datetime
    retry_count: int = 0
    last_error: Optional[str] = None

    def sort_key(self) -> Tuple[int, datetime]:
        return PRIORITY_ORDER[self.priority], self.created_at


class ThumbnailQueue:
    """
    Thread-safe queue of pending thumbnail jobs.

    All access to the job registry goes through ``self._lock``; generation
    itself runs outside the lock on the worker pool.
    """

    def __init__(
        self,
        service: ThumbnailService,
        source: DocumentSource,
        max_concurrent_jobs: int = 3,
        max_retries: int = 3,
        retry_base_seconds: float = 60.0,
        max_job_age_seconds: float = 24 * 60 * 60,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.service = service
        self.source = source
        self.max_concurrent_jobs = max_concurrent_jobs
        self.max_retries = max_retries
        self.retry_base_seconds = retry_base_seconds
        self.max_job_age_seconds = max_job_age_seconds
        self._clock = clock
        self._jobs: Dict[str, QueuedJob] = {}
        self._processing: Set[str] = set()
        self._lock = threading.Lock()
        self._executor = ThreadPoolExecutor(max_workers=max_concurrent_jobs, thread_name_prefix="thumbnail-queue")
        self._stop = threading.Event()
        self._poller: Optional[threading.Thread] = None

    def add(self, document_id: str, priority: JobPriority | str = JobPriority.NORMAL, delay: float = 0) -> bool:
        """
        Queue a document.

        Returns:
            False when the document already has a thumbnail or is already queued
        """
        priority = JobPriority(priority)
        if self.service.store.exists(self.service.thumbnail_key(document_id)):
            logger.debug(f"[{document_id}] thumbnail already exists, not queued")
            return False

        now = self._clock()
        with self._lock:
            if document_id in self._jobs:
                return False
            self._jobs[document_id] = QueuedJob(
                document_id=document_id,
                priority=priority,
                created_at=now,
                scheduled_at=now + timedelta(seconds=delay),
            )
        logger.info(f"[{document_id}] queued with {priority.value} priority")
        return True

    def remove(self, document_id: str) -> bool:
        with self._lock:
            if document_id in self._processing:
                return False
            return self._jobs.pop(document_id, None) is not None

    def _pending(self) -> List[QueuedJob]:
        """Jobs not currently running, in pick order. Caller holds the lock."""
        jobs = [job for job in self._jobs.values() if job.document_id not in self._processing]
        return sorted(jobs, key=QueuedJob.sort_key)

    def process_pending(self) -> List[Future]:
        """
        Start due jobs up to the free worker slots.

        Returns:
            Futures of the jobs started by this call
        """
        now = self._clock()
        with self._lock:
            free = self.max_concurrent_jobs - len(self._processing)
            due = [job for job in self._pending() if job.scheduled_at <= now][: max(0, free)]
            for job in due:
                self._processing.add(job.document_id)

        return [self._executor.submit(self._run_job, job) for job in due]

    def _run_job(self, job: QueuedJob) -> None:
        document_id = job.document_id
        try:
            loaded = self.source.load(document_id)
            if loaded is None:
                logger.warning(f"[{document_id}] document not found, dropping job")
                self._finish(document_id)
                return
            data, mime_type = loaded
            outcome = asyncio.run(self.service.generate_thumbnail(data, mime_type, document_id))
        except Exception as exc:
            self._retry(job, exc)
            return

        if outcome is None:
            logger.info(f"[{document_id}] no preview available, dropping job")
        self._finish(document_id)

    def _finish(self, document_id: str) -> None:
        with self._lock:
            self._jobs.pop(document_id, None)
            self._processing.discard(document_id)

    def _retry(self, job: QueuedJob, exc: Exception) -> None:
        with self._lock:
            self._processing.discard(job.document_id)
            job.retry_count += 1
            job.last_error = str(exc)
            if job.retry_count >= self.max_retries:
                self._jobs.pop(job.document_id, None)
                logger.error(f"[{job.document_id}] giving up after {job.retry_count} attempts: {exc}")
                return
            backoff = self.retry_base_seconds * 2 ** job.retry_count
            job.scheduled_at = self._clock() + timedelta(seconds=backoff)
        logger.warning(f"[{job.document_id}] attempt {job.retry_count} failed, retrying in {backoff:.0f}s: {exc}")

    def status(self) -> QueueStatus:
        with self._lock:
            pending = self._pending()
            by_priority = {priority.value: 0 for priority in JobPriority}
            for job in pending:
                by_priority[job.priority.value] += 1
            oldest = min((job.created_at for job in self._jobs.values()), default=None)
            return QueueStatus(
                queue_size=len(pending),
                processing=len(self._processing),
                by_priority=by_priority,
                oldest_job=oldest,
            )

    def job_status(self, document_id: str) -> JobStatus:
        with self._lock:
            if document_id in self._processing:
                return JobStatus(status=JobState.PROCESSING)
            pending = self._pending()
            for index, job in enumerate(pending):
                if job.document_id == document_id:
                    position = index + 1
                    return JobStatus(
                        status=JobState.QUEUED,
                        position=position,
                        estimated_seconds=position * SECONDS_PER_JOB_ESTIMATE,
                        retry_count=job.retry_count,
                        last_error=job.last_error,
                    )

        if self.service.store.exists(self.service.thumbnail_key(document_id)):
            return JobStatus(status=JobState.COMPLETED)
        return JobStatus(status=JobState.NOT_QUEUED)

    def cleanup(self) -> int:
        """Drop waiting jobs older than ``max_job_age_seconds``; returns how many."""
        cutoff = self._clock() - timedelta(seconds=self.max_job_age_seconds)
        with self._lock:
            stale = [job.document_id for job in self._pending() if job.created_at < cutoff]
            for document_id in stale:
                del self._jobs[document_id]
        if stale:
            logger.info(f"Dropped {len(stale)} stale thumbnail jobs")
        return len(stale)

    def _poll(self, interval: float) -> None:
        while not self._stop.wait(interval):
            try:
                self.process_pending()
                self.cleanup()
            except Exception as exc:
                logger.error(f"Thumbnail queue poll failed: {exc}")

    def start(self, interval: float = 5.0) -> None:
        """Poll for due jobs every ``interval`` seconds on a daemon thread."""
        if self._poller is not None and self._poller.is_alive():
            return
        self._stop.clear()
        self._poller = threading.Thread(target=self._poll, args=(interval,), name="thumbnail-queue-poller", daemon=True)
        self._poller.start()
        logger.info(f"Thumbnail queue polling every {interval}s")

    def stop(self) -> None:
        self._stop.set()
        if self._poller is not None:
            self._poller.join()
            self._poller = None

    def shutdown(self) -> None:
        """Stop polling and wait for running jobs."""
        self.stop()
        self._executor.shutdown(wait=True)
