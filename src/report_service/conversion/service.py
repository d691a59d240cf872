import asyncio
import logging
from pathlib import Path

from .adapters import LAUNCH_PROFILES, LocalStorage, PlaywrightDriver, SystemBrowserLocator
from .chain import RenderChain
from .compose import compose
from .errors import ChainExhausted, FailureCategory, user_message
from .interfaces import BrowserDriver, BrowserLocator, StorageGateway
from .isolation import run_isolated
from .layout import compute_directives
from .models import ConversionJob, JobStatus, RenderConfig
from .preprocess import DEFAULT_LARGE_DOCUMENT_BYTES, prepare
from .settings import Settings
from .store import JobStore
from .strategies import BrowserStrategy, LibraryStrategy, PlainTextStrategy, RenderRequest, StructuralStrategy
from .supervisor import JobSupervisor

logger = logging.getLogger(__name__)


def build_request(job: ConversionJob, output_dir: Path, large_document_bytes: int) -> tuple[RenderRequest, list[str]]:
    """Preprocess, lay out and compose one job's document.

    CPU-bound on large reports; the service runs it in a worker process.
    """
    clean, warnings = prepare(job.document, large_document_bytes=large_document_bytes)
    directives = compute_directives(clean, job.config)
    request = RenderRequest(
        job_id=job.id,
        filename=job.filename,
        document=clean,
        print_html=compose(clean, directives),
        directives=directives,
        config=job.config,
        output_dir=output_dir,
    )
    return request, [w.message for w in warnings]


class ConversionService:
    """Core domain service orchestrating conversion jobs.

    This service is framework-agnostic. It exposes async methods for
    submitting jobs and running worker loops; each job goes through
    preprocessing, layout and the render chain while the supervisor holds
    its deadline.
    """

    def __init__(
        self,
        store: JobStore,
        supervisor: JobSupervisor,
        chain: RenderChain,
        *,
        output_dir: Path,
        large_document_bytes: int = DEFAULT_LARGE_DOCUMENT_BYTES,
        workers: int = 2,
    ) -> None:
        self._store = store
        self._supervisor = supervisor
        self._chain = chain
        self._output_dir = Path(output_dir)
        self._large_document_bytes = large_document_bytes
        self._workers = workers
        self._queue: asyncio.Queue[str] = asyncio.Queue()
        self._tasks: list[asyncio.Task] = []

    @property
    def queue(self) -> asyncio.Queue[str]:
        return self._queue

    @property
    def store(self) -> JobStore:
        return self._store

    async def start(self) -> None:
        self._output_dir.mkdir(parents=True, exist_ok=True)
        self._supervisor.sweep_orphans()
        for i in range(self._workers):
            task = asyncio.create_task(self._worker_loop(f"worker-{i+1}"))
            self._tasks.append(task)

    async def stop(self) -> None:
        for t in self._tasks:
            t.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

    async def submit(self, filename: str, content: str, config: RenderConfig) -> ConversionJob:
        """Create the job, start its clock and queue it for a worker."""
        job = self._store.create(filename, content, config)
        self._supervisor.arm(job.id)
        await self._queue.put(job.id)
        return job

    def load_job(self, job_id: str) -> ConversionJob:
        return self._store.get(job_id)

    def recent_jobs(self, limit: int = 5) -> list[ConversionJob]:
        return self._store.list_recent(limit)

    async def process(self, job_id: str) -> ConversionJob:
        """Run one job to a terminal state (or until its deadline cancels it)."""
        task = asyncio.create_task(self._run_pipeline(job_id), name=f"job-{job_id}")
        self._supervisor.attach(job_id, task)
        try:
            await asyncio.wait({task})
        except asyncio.CancelledError:
            task.cancel()
            raise
        if not task.cancelled():
            task.result()
        return self._store.get(job_id)

    async def _run_pipeline(self, job_id: str) -> None:
        try:
            job = self._store.get(job_id)
            if job.is_terminal:
                logger.info("job %s already %s; skipping", job_id, job.status)
                return
            if not self._supervisor.is_armed(job_id):
                self._supervisor.arm(job_id)
            deadline = self._supervisor.deadline(job_id)
            if not self._store.transition(job_id, JobStatus.PROCESSING):
                return

            request, notes = await run_isolated(
                build_request, job, self._output_dir, self._large_document_bytes,
            )
            for note in notes:
                logger.info("job %s: %s", job_id, note)
            self._output_dir.mkdir(parents=True, exist_ok=True)

            try:
                attempt = await self._chain.render_with_fallback(request, deadline=deadline)
            except ChainExhausted as e:
                self._store.transition(
                    job_id, JobStatus.FAILED,
                    error=e.user_message(), error_category=e.category, warnings=notes,
                )
                return

            if not self._store.transition(
                job_id, JobStatus.COMPLETED,
                artifact=attempt.artifact_path, strategy=attempt.strategy, warnings=notes,
            ):
                # Lost the race against the deadline; the artifact belongs to no one.
                self._discard(attempt.artifact_path)
        except asyncio.CancelledError:
            logger.warning("job %s: pipeline cancelled", job_id)
            raise
        except Exception:
            logger.exception("job %s: unexpected pipeline error", job_id)
            self._store.transition(
                job_id, JobStatus.FAILED,
                error=user_message(FailureCategory.RENDER_ERROR),
                error_category=FailureCategory.RENDER_ERROR,
            )
        finally:
            self._supervisor.disarm(job_id)

    @staticmethod
    def _discard(path: str | None) -> None:
        if not path:
            return
        try:
            Path(path).unlink(missing_ok=True)
        except OSError as e:
            logger.warning("could not remove orphaned artifact %s: %s", path, e)

    async def _worker_loop(self, name: str) -> None:
        while True:
            job_id = await self._queue.get()
            try:
                job = await self.process(job_id)
                logger.info("%s: job %s finished as %s", name, job_id, job.status)
            except Exception:
                logger.exception("%s: job %s crashed the worker step", name, job_id)
            finally:
                self._queue.task_done()


def build_chain(
    settings: Settings,
    *,
    locator: BrowserLocator | None = None,
    driver: BrowserDriver | None = None,
) -> RenderChain:
    available = {
        "browser": lambda: BrowserStrategy(
            locator or SystemBrowserLocator(settings.browser_executable),
            driver or PlaywrightDriver(),
            LAUNCH_PROFILES,
        ),
        "library": LibraryStrategy,
        "structural": StructuralStrategy,
        "plaintext": PlainTextStrategy,
    }
    return RenderChain([available[name]() for name in settings.strategies], settings.timeouts)


def build_service(
    settings: Settings,
    *,
    storage: StorageGateway | None = None,
    locator: BrowserLocator | None = None,
    driver: BrowserDriver | None = None,
) -> ConversionService:
    store = JobStore(storage or LocalStorage(str(settings.data_dir)))
    supervisor = JobSupervisor(store, settings.output_dir, max_job_duration=settings.max_job_duration)
    return ConversionService(
        store,
        supervisor,
        build_chain(settings, locator=locator, driver=driver),
        output_dir=settings.output_dir,
        large_document_bytes=settings.large_document_bytes,
        workers=settings.workers,
    )
