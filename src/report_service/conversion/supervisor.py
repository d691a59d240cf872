import asyncio
import logging
import threading
from pathlib import Path

from .errors import INTERRUPTED_MESSAGE, TIMEOUT_MESSAGE, FailureCategory, ResourceCleanupFailure, TimeoutExceeded
from .models import JobStatus
from .store import JobStore
from .strategies import artifact_glob

logger = logging.getLogger(__name__)


class JobSupervisor:
    """Deadline timers per job, plus cleanup of whatever a dead job left behind.

    The timer and the pipeline both finish jobs through ``JobStore.transition``;
    whichever gets there first wins and the other becomes a no-op. Cleanup
    only runs for the side that won with a failure.
    """

    def __init__(self, store: JobStore, output_dir: Path, *, max_job_duration: float) -> None:
        self._store = store
        self._output_dir = Path(output_dir)
        self._max_job_duration = max_job_duration
        self._timers: dict[str, asyncio.TimerHandle] = {}
        self._deadlines: dict[str, float] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        self._lock = threading.Lock()

    @property
    def max_job_duration(self) -> float:
        return self._max_job_duration

    def arm(self, job_id: str) -> float:
        """Start the job's clock and return its deadline in loop time."""
        loop = asyncio.get_running_loop()
        with self._lock:
            previous = self._timers.pop(job_id, None)
            if previous is not None:
                previous.cancel()
            self._timers[job_id] = loop.call_later(self._max_job_duration, self._expire, job_id)
            deadline = loop.time() + self._max_job_duration
            self._deadlines[job_id] = deadline
        logger.info("job %s: timeout armed (%gs)", job_id, self._max_job_duration)
        return deadline

    def deadline(self, job_id: str) -> float | None:
        with self._lock:
            return self._deadlines.get(job_id)

    def attach(self, job_id: str, task: asyncio.Task) -> None:
        """Register the task running the job so expiry can cancel it."""
        with self._lock:
            self._tasks[job_id] = task

    def is_armed(self, job_id: str) -> bool:
        with self._lock:
            return job_id in self._timers

    def disarm(self, job_id: str) -> None:
        with self._lock:
            timer = self._timers.pop(job_id, None)
            self._deadlines.pop(job_id, None)
            self._tasks.pop(job_id, None)
        if timer is not None:
            timer.cancel()
            logger.info("job %s: timeout cleared", job_id)

    def _expire(self, job_id: str) -> None:
        with self._lock:
            self._timers.pop(job_id, None)
            self._deadlines.pop(job_id, None)
            task = self._tasks.pop(job_id, None)
        try:
            won = self._store.transition(
                job_id, JobStatus.FAILED, error=TIMEOUT_MESSAGE, error_category=FailureCategory.TIMEOUT,
            )
        except FileNotFoundError:
            logger.warning("job %s timed out but its record is gone", job_id)
            won = False
        if not won:
            return

        logger.error("%s", TimeoutExceeded(job_id, self._max_job_duration))
        if task is not None and not task.done():
            task.cancel()
        self.cleanup(job_id)

    def cleanup(self, job_id: str) -> int:
        """Delete the job's files from the output directory. Never raises."""
        removed = 0
        if not self._output_dir.exists():
            return removed
        for path in self._output_dir.glob(artifact_glob(job_id)):
            try:
                path.unlink()
                removed += 1
                logger.info("job %s: removed %s", job_id, path.name)
            except OSError as e:
                logger.warning("%s", ResourceCleanupFailure(str(path), e))
        return removed

    def sweep_orphans(self) -> list[str]:
        """Fail jobs a previous process left unfinished. Run once at start-up."""
        swept: list[str] = []
        for job in self._store.list_unfinished():
            if self.is_armed(job.id):
                continue
            if self._store.transition(
                job.id, JobStatus.FAILED, error=INTERRUPTED_MESSAGE, error_category=FailureCategory.INTERRUPTED,
            ):
                self.cleanup(job.id)
                swept.append(job.id)
        if swept:
            logger.warning("marked %d interrupted job(s) as failed", len(swept))
        return swept
