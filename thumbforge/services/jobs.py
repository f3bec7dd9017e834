from __future__ import annotations

import logging
import mimetypes
import os
import queue
import threading
import time
from pathlib import Path
from typing import Callable, Dict, List, Tuple

from thumbforge.api.v1.schemas import JobStatus
from thumbforge.models.jobs import GenerationRequest, Job, Variant
from thumbforge.services.errors import AllPipelineVersionsFailed
from thumbforge.services.pipeline import PipelineFallbackChain, PipelineRunner, build_default_chain

logger = logging.getLogger(__name__)

_EXTENSIONS = {"image/png": ".png", "image/jpeg": ".jpg", "image/webp": ".webp"}


class JobStorageError(RuntimeError):
    """Raised when a storage operation fails in a non-recoverable way."""


def _extension(media_type: str) -> str:
    return _EXTENSIONS.get(media_type) or mimetypes.guess_extension(media_type) or ".bin"


class JobStore:
    """
    Simple in-memory job store with filesystem-backed image storage.

    Reference faces and finished variants are written under
    `<base_dir>/<job_id>/`. This is a minimal abstraction that can later be
    replaced by a database and object storage without changing the API.
    """

    def __init__(self, base_dir: Path) -> None:
        self._base_dir = base_dir
        self._jobs: Dict[str, Job] = {}
        self._lock = threading.Lock()
        self._base_dir.mkdir(parents=True, exist_ok=True)

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    def job_dir(self, job_id: str) -> Path:
        return self._base_dir / job_id

    async def create_job(self, job_id: str, request: GenerationRequest) -> Job:
        """Register a new pending job and persist its reference faces."""
        job_dir = self.job_dir(job_id)
        try:
            job_dir.mkdir(parents=True, exist_ok=True)
            for index, face in enumerate(request.reference_faces):
                (job_dir / f"face_{index}{_extension(face.mime_type)}").write_bytes(face.data)
        except OSError as exc:
            raise JobStorageError("Failed to persist job files to disk.") from exc

        job = Job(id=job_id, request=request, status=JobStatus.PENDING)
        with self._lock:
            self._jobs[job.id] = job
        return job

    async def get_job(self, job_id: str) -> Job | None:
        """Retrieve a job by its identifier, if it exists."""
        with self._lock:
            return self._jobs.get(job_id)

    async def list_jobs(self) -> List[Job]:
        """Return all known jobs. Intended for debugging and admin tooling."""
        with self._lock:
            return list(self._jobs.values())

    def lookup(self, job_id: str) -> Job | None:
        """Synchronous lookup for the worker thread."""
        with self._lock:
            return self._jobs.get(job_id)

    def save_variants(self, job: Job, variants: List[Variant]) -> Dict[str, str]:
        """Write each variant's image to disk and return the paths keyed by label."""
        job_dir = self.job_dir(job.id)
        paths: Dict[str, str] = {}
        try:
            job_dir.mkdir(parents=True, exist_ok=True)
            for variant in variants:
                path = job_dir / f"variant_{variant.label}{_extension(variant.media_type)}"
                path.write_bytes(variant.image)
                paths[variant.label] = str(path)
        except OSError as exc:
            raise JobStorageError(f"Failed to persist variants for job {job.id}.") from exc
        return paths

    def read_variant(self, job: Job, label: str) -> Tuple[bytes, str] | None:
        """Image bytes and media type of a delivered variant, if it exists."""
        for variant in job.variants:
            if variant.label == label:
                return variant.image, variant.media_type
        path = job.variant_paths.get(label)
        if path is None:
            return None
        try:
            data = Path(path).read_bytes()
        except OSError as exc:
            raise JobStorageError(f"Failed to read variant {label} of job {job.id}.") from exc
        return data, mimetypes.guess_type(path)[0] or "application/octet-stream"


class JobQueue:
    """
    Runs jobs one at a time on a single worker thread.

    A job whose every pipeline version failed is retried up to `max_attempts`
    times with exponentially growing delays before it is marked failed.
    """

    def __init__(
        self,
        store: JobStore,
        chain: PipelineFallbackChain | PipelineRunner | None = None,
        max_attempts: int = 3,
        retry_delay: float = 5.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.store = store
        self._chain = chain
        self.max_attempts = max(1, max_attempts)
        self.retry_delay = retry_delay
        self._sleep = sleep
        self._queue: "queue.Queue[str | None]" = queue.Queue()
        self._thread: threading.Thread | None = None

    @property
    def chain(self) -> PipelineFallbackChain | PipelineRunner:
        if self._chain is None:
            self._chain = build_default_chain()
        return self._chain

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._thread = threading.Thread(target=self._worker, name="thumbforge-worker", daemon=True)
        self._thread.start()
        logger.info("Job worker started")

    def stop(self, timeout: float | None = None) -> None:
        if self._thread is None:
            return
        self._queue.put(None)
        self._thread.join(timeout)
        self._thread = None

    def submit(self, job_id: str) -> None:
        self._queue.put(job_id)

    def _worker(self) -> None:
        while True:
            job_id = self._queue.get()
            try:
                if job_id is None:
                    return
                job = self.store.lookup(job_id)
                if job is None:
                    logger.warning("Job %s vanished before it could run", job_id)
                    continue
                try:
                    self.process(job)
                except Exception as exc:  # noqa: BLE001
                    logger.exception("Job %s crashed", job_id)
                    job.status = JobStatus.FAILED
                    job.error = f"Internal error: {exc}"
                    job.touch()
            finally:
                self._queue.task_done()

    def retry_delay_for(self, attempt: int) -> float:
        return self.retry_delay * (2 ** (attempt - 1))

    def process(self, job: Job) -> Job:
        """Run a job to a terminal state (completed or failed)."""
        for attempt in range(1, self.max_attempts + 1):
            job.attempts = attempt
            job.status = JobStatus.GENERATING if attempt == 1 else JobStatus.RETRYING
            job.touch()
            logger.info(f"Job {job.id}: attempt {attempt}/{self.max_attempts}")

            try:
                result = self.chain.run(job.request)
            except AllPipelineVersionsFailed as exc:
                job.fallback_errors = dict(exc.errors)
                job.error = str(exc)
                if attempt < self.max_attempts:
                    delay = self.retry_delay_for(attempt)
                    logger.warning(f"Job {job.id}: every pipeline version failed ({exc}); retrying in {delay:.0f}s")
                    self._sleep(delay)
                    continue
                logger.error(f"Job {job.id} failed after {attempt} attempt(s): {exc}")
                job.status = JobStatus.FAILED
                job.touch()
                return job

            try:
                job.variant_paths = self.store.save_variants(job, result.variants)
            except JobStorageError as exc:
                logger.error("Job %s: %s", job.id, exc)
                job.status = JobStatus.FAILED
                job.error = str(exc)
                job.touch()
                return job

            job.variants = list(result.variants)
            job.pipeline_version = result.pipeline_version
            job.fallback_errors = dict(result.fallback_errors)
            job.warnings = list(result.warnings)
            job.error = None
            job.status = JobStatus.COMPLETED
            job.touch()
            logger.info(
                f"Job {job.id} completed with {len(job.variants)} variant(s) via {result.pipeline_version.value}"
            )
            return job
        return job


_default_store = JobStore(base_dir=Path(os.getenv("THUMBFORGE_STORAGE_DIR", "storage/jobs")))
_default_queue: JobQueue | None = None
_queue_lock = threading.Lock()


def get_job_store() -> JobStore:
    """
    Return the process-wide job store instance.

    Abstracted behind a function to make it easy to later swap out the
    implementation or inject different stores in tests.
    """
    return _default_store


def get_job_queue() -> JobQueue:
    """Return the process-wide job queue, starting its worker on first use."""
    global _default_queue
    if _default_queue is None:
        with _queue_lock:
            if _default_queue is None:
                _default_queue = JobQueue(
                    get_job_store(),
                    max_attempts=int(os.getenv("THUMBFORGE_MAX_ATTEMPTS", "3")),
                    retry_delay=float(os.getenv("THUMBFORGE_RETRY_DELAY", "5")),
                )
                _default_queue.start()
    return _default_queue
