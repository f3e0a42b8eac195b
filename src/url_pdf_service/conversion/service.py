import asyncio
import logging
import re
import shutil
from datetime import datetime
from pathlib import Path
from typing import Mapping, Optional, Sequence

from ..delivery.interfaces import DeliveryMethod, DeliveryStrategy
from ..errors import InvalidJobTransition, SubmissionRejected
from .models import BatchStarted, ItemFailed, ItemSucceeded, ProgressEvent, WorkItem
from .registry import Job, JobRegistry, JobStatus
from .scheduler import BatchScheduler

log = logging.getLogger(__name__)

# share of the progress bar covered by conversion; delivery takes the rest
CONVERSION_PROGRESS_SPAN = 90

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

_PHASE = {
    DeliveryMethod.EMAIL: (JobStatus.SENDING, "Creating ZIP and sending email..."),
    DeliveryMethod.DRIVE: (JobStatus.UPLOADING, "Uploading to Google Drive..."),
}


def default_folder_name(now: Optional[datetime] = None) -> str:
    return f"PDFs_{(now or datetime.now()):%Y-%m-%d_%H-%M}"


class ConversionService:
    """Core domain service orchestrating URL-to-PDF jobs.

    Framework-agnostic: the HTTP layer submits parsed work items and polls job
    snapshots, while the scheduler, registry and delivery strategies are
    injected. A fixed pool of worker tasks drains the job queue, which bounds
    how many jobs run at once across the process.
    """

    def __init__(
        self,
        registry: JobRegistry,
        scheduler: BatchScheduler,
        strategies: Mapping[DeliveryMethod, DeliveryStrategy],
        staging_dir: Path,
        *,
        workers: int = 4,
        keep_artifacts: bool = False,
    ) -> None:
        self._registry = registry
        self._scheduler = scheduler
        self._strategies = dict(strategies)
        self._staging_dir = Path(staging_dir)
        self._workers = workers
        self._keep_artifacts = keep_artifacts
        self._queue: asyncio.Queue[tuple[str, Sequence[WorkItem]]] = asyncio.Queue()
        self._tasks: list[asyncio.Task] = []

    @property
    def queue(self) -> asyncio.Queue:
        return self._queue

    async def start(self) -> None:
        self._staging_dir.mkdir(parents=True, exist_ok=True)
        for i in range(self._workers):
            task = asyncio.create_task(self._worker_loop(f"worker-{i+1}"))
            self._tasks.append(task)

    async def stop(self) -> None:
        for t in self._tasks:
            t.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

    async def submit(
        self,
        items: Sequence[WorkItem],
        recipient_email: str,
        method: str,
        folder_name: Optional[str] = None,
    ) -> Job:
        """Validate a request, register a queued job and enqueue it."""
        if not items:
            raise SubmissionRejected("No valid URLs found")
        recipient = (recipient_email or "").strip()
        if not recipient:
            raise SubmissionRejected("Recipient email is required")
        if not _EMAIL_RE.match(recipient):
            raise SubmissionRejected(f"Invalid recipient email: {recipient}")
        try:
            delivery = DeliveryMethod.parse(method)
        except ValueError as e:
            raise SubmissionRejected(str(e)) from e
        if delivery not in self._strategies:
            raise SubmissionRejected(f"Delivery method not available: {delivery.value}")

        job = self._registry.create(
            recipient_email=recipient,
            delivery_method=delivery.value,
            folder_name=(folder_name or "").strip() or default_folder_name(),
            total_urls=len(items),
        )
        self._registry.append_log(job.id, f"Job created with {len(items)} URLs")
        log.info("job %s queued: %s URLs via %s", job.id, len(items), delivery.value)
        await self._queue.put((job.id, list(items)))
        return self._registry.get(job.id)

    def get_job(self, job_id: str) -> Job:
        return self._registry.get(job_id)

    async def _worker_loop(self, name: str) -> None:
        while True:
            job_id, items = await self._queue.get()
            try:
                log.debug("%s picked up job %s", name, job_id)
                await self.run_job(job_id, items)
            finally:
                self._queue.task_done()

    async def run_job(self, job_id: str, items: Sequence[WorkItem]) -> None:
        """Convert, deliver and finalize one job; never raises."""
        job_dir = self._staging_dir / job_id
        try:
            self._registry.set_status(job_id, JobStatus.PROCESSING)
            self._registry.append_log(job_id, f"Starting conversion of {len(items)} URLs")

            result = await self._scheduler.run(
                items, job_dir / "pdfs", self._progress_sink(job_id, len(items))
            )
            self._registry.set_counts(job_id, len(result.success), len(result.failed))
            self._registry.set_progress(job_id, CONVERSION_PROGRESS_SPAN)
            self._registry.append_log(
                job_id,
                f"Conversion complete: {len(result.success)} succeeded, {len(result.failed)} failed",
            )
            if not result.success:
                self._fail(job_id, "All URL conversions failed")
                return

            job = self._registry.get(job_id)
            method = DeliveryMethod(job.delivery_method)
            status, message = _PHASE[method]
            self._registry.set_status(job_id, status)
            self._registry.append_log(job_id, message)

            delivery = await self._strategies[method].deliver(result, job)
            if not delivery.success:
                self._fail(job_id, delivery.error or "Delivery failed")
                return

            self._registry.set_delivery_result(job_id, delivery.to_dict())
            self._registry.set_progress(job_id, 100)
            self._registry.append_log(job_id, _completion_message(method, delivery.to_dict(), job))
            self._registry.set_status(job_id, JobStatus.COMPLETED)
            log.info("job %s completed", job_id)
        except Exception as e:
            log.exception("job %s crashed", job_id)
            self._fail(job_id, str(e) or e.__class__.__name__)
        finally:
            if not self._keep_artifacts:
                await asyncio.to_thread(shutil.rmtree, job_dir, True)

    def _progress_sink(self, job_id: str, total: int):
        tally = {"success": 0, "failed": 0}

        def sink(event: ProgressEvent) -> None:
            if isinstance(event, BatchStarted):
                self._registry.append_log(
                    job_id, f"Processing batch {event.batch}/{event.total_batches}"
                )
                return
            if isinstance(event, ItemSucceeded):
                tally["success"] += 1
                self._registry.append_log(job_id, f"Converted: {event.file_name}")
            elif isinstance(event, ItemFailed):
                tally["failed"] += 1
                self._registry.append_log(job_id, f"Failed: {event.url} - {event.error}")
            self._registry.set_counts(job_id, tally["success"], tally["failed"])
            done = tally["success"] + tally["failed"]
            self._registry.set_progress(job_id, done * CONVERSION_PROGRESS_SPAN // max(total, 1))

        return sink

    def _fail(self, job_id: str, error: str) -> None:
        try:
            job = self._registry.get(job_id)
            if job.is_terminal:
                return
            unresolved = job.total_urls - job.success_count - job.failed_count
            if unresolved > 0:
                self._registry.set_counts(job_id, job.success_count, job.failed_count + unresolved)
            self._registry.append_log(job_id, f"Error: {error}")
            self._registry.set_error(job_id, error)
        except InvalidJobTransition:
            log.exception("job %s could not be marked failed", job_id)
        log.warning("job %s failed: %s", job_id, error)


def _completion_message(method: DeliveryMethod, result: dict, job: Job) -> str:
    if method is DeliveryMethod.DRIVE:
        return f"Shared Google Drive folder with {job.recipient_email}: {result.get('shareLink')}"
    return f"Email sent to {job.recipient_email}"
