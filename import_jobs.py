"""
In-process registry and runner for background attendance imports.

The registry lives in one process: a job started on one instance is invisible
to status requests routed to another. Run a single application process (with
threads) when polling matters.
"""
import logging
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from datetime import datetime

from batch_import import run_import, split_batches, progress_percent

logger = logging.getLogger(__name__)

QUEUED = 'queued'
PROCESSING = 'processing'
COMPLETED = 'completed'
FAILED = 'failed'
TERMINAL_STATES = (COMPLETED, FAILED)


@dataclass(frozen=True)
class ImportJob:
    id: str
    school_id: int
    payload: object
    status: str = QUEUED
    progress: int = 0
    total_batches: int = 0
    completed_batches: int = 0
    result: dict = None
    error: str = None
    cancel_requested: bool = False
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)
    created_tick: float = 0.0

    def to_status(self):
        return {
            'jobId': self.id,
            'status': self.status,
            'progress': self.progress,
            'createdAt': self.created_at.isoformat() + 'Z',
            'updatedAt': self.updated_at.isoformat() + 'Z',
            'result': self.result,
            'error': self.error,
        }


class ImportJobStore:
    """
    Keyed registry of import jobs with TTL expiry.

    Every job is replaced whole on each change, so readers never see a half
    updated job. The runner and cancel requests both write, always through
    ``_modify``. Entries older than ``ttl_seconds`` are swept on every access
    whatever their state.
    """

    def __init__(self, ttl_seconds=30 * 60, clock=time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._jobs = {}
        self._lock = threading.Lock()

    def __len__(self):
        self.sweep()
        return len(self._jobs)

    def sweep(self):
        cutoff = self._clock() - self.ttl_seconds
        with self._lock:
            expired = [job_id for job_id, job in self._jobs.items() if job.created_tick <= cutoff]
            for job_id in expired:
                del self._jobs[job_id]
        if expired:
            logger.info("Expired %d import job(s)", len(expired))
        return len(expired)

    def create(self, payload, school_id):
        job = ImportJob(
            id=str(uuid.uuid4()),
            school_id=school_id,
            payload=payload,
            created_tick=self._clock(),
        )
        self.sweep()
        with self._lock:
            self._jobs[job.id] = job
        return job

    def get(self, job_id):
        self.sweep()
        return self._jobs.get(job_id)

    def _modify(self, job_id, changes_for):
        """
        Apply ``changes_for(current_job)`` under the lock.

        The runner and request threads both write; reads and writes of one
        job never interleave.
        ``changes_for`` returning None leaves the job as it is.
        """
        self.sweep()
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return None
            changes = changes_for(job)
            if changes is None:
                return job
            job = replace(job, updated_at=datetime.utcnow(), **changes)
            self._jobs[job_id] = job
            return job

    def update(self, job_id, **changes):
        return self._modify(job_id, lambda job: changes)

    def mark_processing(self, job_id, total_batches):
        return self.update(job_id, status=PROCESSING, total_batches=total_batches)

    def record_batch(self, job_id, completed_batches, total_batches):
        return self._modify(job_id, lambda job: {
            'completed_batches': completed_batches,
            'total_batches': total_batches,
            'progress': max(job.progress, progress_percent(completed_batches, total_batches)),
        })

    def complete(self, job_id, result, partial=False):
        if partial:
            # Cancelled runs keep the progress of the batches that did commit
            return self.update(job_id, status=COMPLETED, result=result)
        return self.update(job_id, status=COMPLETED, progress=100, result=result)

    def fail(self, job_id, error):
        return self.update(job_id, status=FAILED, error=error)

    def request_cancel(self, job_id):
        return self._modify(
            job_id,
            lambda job: None if job.status in TERMINAL_STATES else {'cancel_requested': True},
        )

    def is_cancel_requested(self, job_id):
        job = self.get(job_id)
        # A job swept mid-run has nobody left to report to
        return job is None or job.cancel_requested

    def report(self, job_id):
        job = self.get(job_id)
        return job.to_status() if job is not None else None


class ImportJobRunner:
    """
    Starts imports on a worker pool and publishes their progress to a store.

    ``start`` returns as soon as the job is queued. The executor's completion
    callback moves the job to ``completed`` or ``failed``.
    """

    def __init__(self, app, store, executor=None, batch_size=None):
        self.app = app
        self.store = store
        self.batch_size = batch_size or app.config.get('IMPORT_BATCH_SIZE', 25)
        self.executor = executor or ThreadPoolExecutor(
            max_workers=app.config.get('IMPORT_WORKERS', 2),
            thread_name_prefix='attendance-import',
        )

    def start(self, rows, school_id, payload=None):
        job = self.store.create(payload if payload is not None else rows, school_id)
        logger.info("Queued import job %s for school %s (%d records)", job.id, school_id, len(rows))
        future = self.executor.submit(self._run, job.id, rows, school_id)
        future.add_done_callback(lambda f, job_id=job.id: self._finish(job_id, f))
        return job

    def _run(self, job_id, rows, school_id):
        total_batches = len(split_batches(rows, self.batch_size))
        self.store.mark_processing(job_id, total_batches)
        logger.info("Import job %s processing %d batches", job_id, total_batches)

        def on_batch(completed, total, summary):
            self.store.record_batch(job_id, completed, total)

        with self.app.app_context():
            summary = run_import(
                rows,
                school_id,
                batch_size=self.batch_size,
                on_batch=on_batch,
                should_cancel=lambda: self.store.is_cancel_requested(job_id),
            )
        return summary

    def _finish(self, job_id, future):
        error = future.exception()
        if error is not None:
            logger.error("Import job %s failed: %s", job_id, error)
            self.store.fail(job_id, str(error))
            return

        summary = future.result()
        result = {
            'success': True,
            'message': 'Import cancelled' if summary.cancelled else 'Data imported successfully',
            'summary': summary.to_dict(),
        }
        self.store.complete(job_id, result, partial=summary.cancelled)
        logger.info("Import job %s finished: %d batches, %d errors",
                    job_id, summary.batches_processed, len(summary.errors))

    def shutdown(self, wait=True):
        self.executor.shutdown(wait=wait)
