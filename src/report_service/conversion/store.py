import logging
import threading
import uuid

from .interfaces import StorageGateway
from .models import ConversionJob, JobStatus, RenderConfig, can_transition, utcnow

logger = logging.getLogger(__name__)


class JobStore:
    """Owns job records and the only way to change their status.

    A single lock serialises every read-modify-write, so when the timeout and
    the pipeline race to finish a job exactly one terminal status is stored.
    """

    def __init__(self, storage: StorageGateway) -> None:
        self._storage = storage
        self._lock = threading.RLock()

    def create(self, filename: str, document: str, config: RenderConfig) -> ConversionJob:
        job = ConversionJob(
            id=uuid.uuid4().hex,
            filename=filename,
            document=document,
            config=config,
        )
        with self._lock:
            self._storage.save_job(job.to_dict())
        logger.info("job %s created for %s (%d bytes)", job.id, filename, len(document.encode("utf-8")))
        return job

    def get(self, job_id: str) -> ConversionJob:
        """Raise FileNotFoundError when the job does not exist."""
        with self._lock:
            return ConversionJob.from_dict(self._storage.load_job(job_id))

    def transition(
        self,
        job_id: str,
        status: str,
        artifact: str | None = None,
        error: str | None = None,
        *,
        error_category: str | None = None,
        strategy: str | None = None,
        warnings: list[str] | None = None,
    ) -> bool:
        """Move a job forward. Returns False when the job was already terminal.

        Raises ValueError for moves that make no sense (backwards, artifact
        on a non-completed job, completed without artifact).
        """
        if status not in JobStatus.ALL:
            raise ValueError(f"unknown status {status!r}")
        if artifact is not None and status != JobStatus.COMPLETED:
            raise ValueError("an artifact can only be recorded on a completed job")
        if status == JobStatus.COMPLETED and not artifact:
            raise ValueError("a completed job needs an artifact")

        with self._lock:
            job = ConversionJob.from_dict(self._storage.load_job(job_id))
            if job.is_terminal:
                logger.info("job %s already %s; ignoring transition to %s", job_id, job.status, status)
                return False
            if not can_transition(job.status, status):
                raise ValueError(f"cannot move job {job_id} from {job.status} to {status}")

            now = utcnow()
            changes: dict[str, object] = {"status": status, "updated_at": now}
            if status in JobStatus.TERMINAL:
                changes["completed_at"] = now
            if artifact is not None:
                changes["artifact_path"] = artifact
            if error is not None:
                changes["error"] = error
                changes["error_category"] = error_category
            if strategy is not None:
                changes["strategy"] = strategy
            if warnings is not None:
                changes["warnings"] = tuple(warnings)
            self._storage.save_job(job.evolve(**changes).to_dict())
        logger.info("job %s: %s -> %s", job_id, job.status, status)
        return True

    def list_recent(self, limit: int = 10) -> list[ConversionJob]:
        with self._lock:
            records = self._storage.list_jobs()
        jobs = [ConversionJob.from_dict(r) for r in records]
        jobs.sort(key=lambda j: j.created_at, reverse=True)
        return jobs[:limit]

    def list_unfinished(self) -> list[ConversionJob]:
        with self._lock:
            records = self._storage.list_jobs()
        return [j for j in (ConversionJob.from_dict(r) for r in records) if not j.is_terminal]
