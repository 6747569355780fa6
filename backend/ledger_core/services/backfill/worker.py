# backend/ledger_core/services/backfill/worker.py
"""
Background execution for backfill jobs.

Jobs are submitted to a bounded ThreadPoolExecutor. Each run opens its own
session from the session factory, so request sessions are never shared
with worker threads.

    submit(job_id) → BackfillTask (queued)
        → worker: BackfillService.run_job(...) → task finished
        → completion callbacks(task)

Cancellation sets the task's event; the job stops before its next fetch
and ends as failed with the "cancelled" message.

Usage:
    pool = BackfillWorkerPool(SessionLocal, BackfillService())
    task = pool.submit(job.id)
    pool.wait(job.id, timeout=30)
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable

from sqlalchemy.orm import Session

from ledger_core.config import settings
from ledger_core.models import PopulationStatus
from ledger_core.services.backfill.service import BackfillService
from ledger_core.utils.context import clear_correlation_id, set_correlation_id

logger = logging.getLogger(__name__)

# Finished tasks kept for status/wait lookups; older ones are dropped.
FINISHED_TASK_HISTORY = 100


@dataclass
class BackfillTask:
    """In-process view of a submitted job."""

    job_id: int
    resume: bool = False
    state: str = "queued"  # queued | running | finished | error
    status: PopulationStatus | None = None
    error: str | None = None
    cancel_event: threading.Event = field(default_factory=threading.Event, repr=False)
    future: Future | None = field(default=None, repr=False)

    @property
    def done(self) -> bool:
        return self.state in ("finished", "error")


class BackfillWorkerPool:
    """Bounded pool running BackfillService.run_job off the request thread."""

    def __init__(
            self,
            session_factory: Callable[[], Session],
            service: BackfillService | None = None,
            max_workers: int | None = None,
            finished_history: int = FINISHED_TASK_HISTORY,
    ) -> None:
        self._session_factory = session_factory
        self._service = service or BackfillService()
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers or settings.backfill_max_workers,
            thread_name_prefix="backfill",
        )
        self._tasks: dict[int, BackfillTask] = {}
        self._callbacks: list[Callable[[BackfillTask], None]] = []
        self._lock = threading.Lock()
        self._closed = False
        self._finished_history = finished_history

    def add_done_callback(self, callback: Callable[[BackfillTask], None]) -> None:
        with self._lock:
            self._callbacks.append(callback)

    def submit(self, job_id: int, resume: bool = False) -> BackfillTask:
        """
        Queue a job. Submitting a job that is already queued or running
        returns the existing task.
        """
        with self._lock:
            if self._closed:
                raise RuntimeError("Backfill worker pool is shut down")
            existing = self._tasks.get(job_id)
            if existing is not None and not existing.done:
                return existing

            task = BackfillTask(job_id=job_id, resume=resume)
            self._tasks.pop(job_id, None)
            self._tasks[job_id] = task
            task.future = self._executor.submit(self._run, task)

        logger.info(f"Backfill job {job_id} submitted (resume={resume})")
        return task

    def status(self, job_id: int) -> BackfillTask | None:
        with self._lock:
            return self._tasks.get(job_id)

    def active_jobs(self) -> list[int]:
        with self._lock:
            return [job_id for job_id, task in self._tasks.items() if not task.done]

    @property
    def closed(self) -> bool:
        return self._closed

    def cancel(self, job_id: int) -> bool:
        """
        Request cancellation. Returns False when the job is unknown to this
        pool or already done.
        """
        task = self.status(job_id)
        if task is None or task.done:
            return False
        task.cancel_event.set()
        logger.info(f"Cancellation requested for backfill job {job_id}")
        return True

    def wait(self, job_id: int, timeout: float | None = None) -> BackfillTask | None:
        task = self.status(job_id)
        if task is None or task.future is None:
            return task
        task.future.result(timeout=timeout)
        return task

    def shutdown(self, wait: bool = True, cancel_running: bool = False) -> None:
        with self._lock:
            self._closed = True
            tasks = list(self._tasks.values())
        if cancel_running:
            for task in tasks:
                task.cancel_event.set()
        self._executor.shutdown(wait=wait)
        logger.info("Backfill worker pool shut down")

    # =========================================================================
    # WORKER
    # =========================================================================

    def _run(self, task: BackfillTask) -> None:
        set_correlation_id(f"backfill-job-{task.job_id}")
        task.state = "running"
        db = self._session_factory()
        try:
            job = self._service.run_job(db, task.job_id, cancel_event=task.cancel_event, resume=task.resume)
            task.status = job.status
            task.error = job.error_message
            task.state = "finished"
        except Exception as e:
            logger.error(f"Backfill job {task.job_id} raised: {e}")
            task.error = str(e)
            task.state = "error"
        finally:
            db.close()
            self._notify(task)
            self._prune_finished()
            clear_correlation_id()

    def _notify(self, task: BackfillTask) -> None:
        with self._lock:
            callbacks = list(self._callbacks)
        for callback in callbacks:
            try:
                callback(task)
            except Exception as e:
                logger.warning(f"Backfill callback failed for job {task.job_id}: {e}")

    def _prune_finished(self) -> None:
        """Drop the oldest finished tasks beyond the history size."""
        with self._lock:
            finished = [job_id for job_id, task in self._tasks.items() if task.done]
            for job_id in finished[:max(len(finished) - self._finished_history, 0)]:
                del self._tasks[job_id]
