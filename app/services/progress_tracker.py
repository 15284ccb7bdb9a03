import time
import asyncio
import logging
from typing import Callable, Dict, List, Optional, Any
from datetime import datetime
from threading import Lock

from app.core.exceptions import PipelineCancelled
from app.models.scheme import ProgressEvent, ProgressLevel

logger = logging.getLogger(__name__)


# Percentage reached once a stage starts reporting
STAGE_PROGRESS = {
    "start": 5,
    "fetch": 15,
    "extract": 40,
    "compare": 70,
    "score": 85,
    "persist": 95,
    "complete": 100,
}

ProgressListener = Callable[[ProgressEvent], None]


class PipelineContext:
    """
    Per-run state threaded through every pipeline stage.

    Carries the cancellation flag and the ProgressEvent stream. Once a run
    is cancelled, events from late-arriving work are discarded.
    """

    def __init__(self, job_id: str, comparison_id: Optional[str] = None):
        self.job_id = job_id
        self.comparison_id = comparison_id
        self.events: List[ProgressEvent] = []
        self._listeners: List[ProgressListener] = []
        self._cancel_event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def cancel(self) -> None:
        if self.cancelled:
            return
        self._cancel_event.set()
        self._publish(ProgressEvent(stage="cancelled", message="Comparison stopped by user", level=ProgressLevel.WARNING))
        logger.warning(f"🛑 Job cancelled: {self.job_id}")

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise PipelineCancelled(f"Job {self.job_id} was cancelled")

    def add_listener(self, listener: ProgressListener) -> None:
        self._listeners.append(listener)

    def emit(
        self,
        stage: str,
        message: str,
        level: ProgressLevel = ProgressLevel.INFO,
        document_id: Optional[str] = None,
    ) -> Optional[ProgressEvent]:
        """Record a progress event; returns None when the run is already cancelled."""
        if self.cancelled:
            return None
        event = ProgressEvent(stage=stage, message=message, level=level, document_id=document_id)
        self._publish(event)
        return event

    def _publish(self, event: ProgressEvent) -> None:
        self.events.append(event)
        for listener in self._listeners:
            try:
                listener(event)
            except Exception as e:
                logger.error(f"❌ Progress listener failed: {e}")


class ProgressTracker:
    """
    Singleton registry of running jobs.

    Thread-safe in-memory storage of job status and pipeline contexts,
    with automatic cleanup.
    """

    _instance = None
    _lock = Lock()

    def __new__(cls):
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super(ProgressTracker, cls).__new__(cls)
                    cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if self._initialized:
            return

        self._store: Dict[str, Dict[str, Any]] = {}
        self._contexts: Dict[str, PipelineContext] = {}
        self._store_lock = Lock()
        self._initialized = True

        logger.info("✅ Progress Tracker initialized")

    def initialize_progress(
        self,
        job_id: str,
        total_files: int,
        comparison_id: Optional[str] = None
    ) -> PipelineContext:
        """
        Start tracking a new job.

        Args:
            job_id: Unique job identifier
            total_files: Total number of documents in the request
            comparison_id: Comparison ID the job will produce

        Returns:
            The PipelineContext to thread through the pipeline
        """
        context = PipelineContext(job_id, comparison_id)
        context.add_listener(lambda event: self._on_event(job_id, event))

        with self._store_lock:
            current_time = time.time()
            self._store[job_id] = {
                "job_id": job_id,
                "comparison_id": comparison_id,
                "status": "processing",
                "percentage": 0,
                "current_step": "Initializing",
                "step_details": f"Preparing to process {total_files} document(s)",
                "total_files": total_files,
                "created_at": current_time,
                "last_update": current_time,
                "error_code": None,
                "error_message": None,
            }
            self._contexts[job_id] = context

        logger.info(f"📊 Progress initialized for job: {job_id} ({total_files} documents)")
        return context

    def _on_event(self, job_id: str, event: ProgressEvent) -> None:
        with self._store_lock:
            progress = self._store.get(job_id)
            if progress is None:
                return
            floor = STAGE_PROGRESS.get(event.stage, progress["percentage"])
            progress["percentage"] = min(100, max(progress["percentage"], floor))
            progress["current_step"] = event.stage
            progress["step_details"] = event.message
            progress["last_update"] = time.time()

    def get_context(self, job_id: str) -> Optional[PipelineContext]:
        with self._store_lock:
            return self._contexts.get(job_id)

    def cancel(self, job_id: str) -> bool:
        """
        Request cancellation of a running job.

        Returns:
            False if the job is unknown or already finished
        """
        with self._store_lock:
            progress = self._store.get(job_id)
            context = self._contexts.get(job_id)
            if progress is None or context is None or progress["status"] != "processing":
                return False
            progress["status"] = "cancelled"
            progress["last_update"] = time.time()
        context.cancel()
        return True

    def mark_completed(self, job_id: str, comparison_id: str) -> None:
        """
        Mark a job as completed.

        The report itself lives in the comparison store under comparison_id.
        """
        with self._store_lock:
            if job_id not in self._store:
                logger.warning(f"⚠️  Attempted to complete non-existent job: {job_id}")
                return

            progress = self._store[job_id]
            if progress["status"] == "cancelled":
                return
            progress["status"] = "completed"
            progress["percentage"] = 100
            progress["current_step"] = "complete"
            progress["comparison_id"] = comparison_id
            progress["last_update"] = time.time()

        logger.info(f"✅ Job completed: {job_id} → comparison_id: {comparison_id}")

    def mark_error(
        self,
        job_id: str,
        error_message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Mark a job as failed.

        Args:
            job_id: Job identifier
            error_message: User-facing error message
            error_code: Stable error code
            details: Extra data for the client, e.g. failed documents
        """
        with self._store_lock:
            if job_id not in self._store:
                return

            progress = self._store[job_id]
            if progress["status"] == "cancelled":
                return
            progress["status"] = "error"
            progress["current_step"] = "error"
            progress["step_details"] = error_message
            progress["error_message"] = error_message
            progress["error_code"] = error_code
            progress["error_details"] = details or {}
            progress["last_update"] = time.time()

        logger.error(f"❌ Job failed: {job_id} - {error_message}")

    def get_progress(self, job_id: str) -> Optional[Dict[str, Any]]:
        """
        Get current progress for a job, including its event stream.

        Returns:
            Progress data dict or None if not found
        """
        with self._store_lock:
            if job_id not in self._store:
                return None

            progress = self._store[job_id].copy()
            context = self._contexts.get(job_id)
            progress["events"] = [
                event.model_dump(mode="json") for event in (context.events if context else [])
            ]

        progress["timestamp"] = datetime.fromtimestamp(progress["last_update"]).isoformat()
        return progress

    def cleanup(self, job_id: str) -> None:
        with self._store_lock:
            self._store.pop(job_id, None)
            self._contexts.pop(job_id, None)

        logger.debug(f"🧹 Cleaned up job: {job_id}")

    def cleanup_old_entries(self, max_age_seconds: int = 3600) -> int:
        """
        Remove old/stale progress entries.

        Args:
            max_age_seconds: Maximum age in seconds before cleanup (default: 1 hour)

        Returns:
            Number of entries cleaned up
        """
        current_time = time.time()
        expired_jobs = []

        with self._store_lock:
            for job_id, data in self._store.items():
                age = current_time - data["last_update"]

                if age > max_age_seconds:
                    expired_jobs.append(job_id)
                elif data["status"] in ("completed", "cancelled") and age > 300:  # 5 minutes
                    expired_jobs.append(job_id)
                elif data["status"] == "error" and age > 1800:  # 30 minutes
                    expired_jobs.append(job_id)

            for job_id in expired_jobs:
                self._store.pop(job_id, None)
                self._contexts.pop(job_id, None)

        if expired_jobs:
            logger.info(f"🧹 Cleaned up {len(expired_jobs)} old progress entries")

        return len(expired_jobs)

    def get_stats(self) -> Dict[str, Any]:
        with self._store_lock:
            status_counts = {"processing": 0, "completed": 0, "error": 0, "cancelled": 0}
            for data in self._store.values():
                status = data.get("status", "unknown")
                if status in status_counts:
                    status_counts[status] += 1

            return {
                "total_jobs": len(self._store),
                "status_breakdown": status_counts
            }


# Global singleton instance
progress_tracker = ProgressTracker()


async def start_cleanup_task(interval_seconds: int = 300):
    """
    Start background cleanup task.

    Args:
        interval_seconds: How often to run cleanup (default: 5 minutes)
    """
    logger.info(f"🔄 Starting progress cleanup task (interval: {interval_seconds}s)")

    while True:
        try:
            await asyncio.sleep(interval_seconds)
            cleaned = progress_tracker.cleanup_old_entries()
            if cleaned > 0:
                logger.info(f"🧹 Cleanup task: Removed {cleaned} old entries")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"❌ Cleanup task error: {e}")
