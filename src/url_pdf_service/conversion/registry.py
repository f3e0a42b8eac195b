"""In-memory job table read by the status endpoint.

Each record is written only by its own job task, so a single lock guarding
field updates is enough. Terminal jobs are kept for ``job_ttl_sec`` and the
table is capped at ``max_jobs``; only terminal jobs are ever evicted.
"""

from __future__ import annotations

import copy
import threading
import time
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from ..errors import InvalidJobTransition, JobNotFound


def utcnow() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class JobStatus:
    QUEUED = "queued"
    PROCESSING = "processing"
    UPLOADING = "uploading"
    SENDING = "sending"
    COMPLETED = "completed"
    FAILED = "failed"

    TERMINAL = frozenset({COMPLETED, FAILED})
    # failed is reachable from every non-terminal state
    NEXT = {
        QUEUED: frozenset({PROCESSING}),
        PROCESSING: frozenset({UPLOADING, SENDING}),
        UPLOADING: frozenset({COMPLETED}),
        SENDING: frozenset({COMPLETED}),
        COMPLETED: frozenset(),
        FAILED: frozenset(),
    }


@dataclass
class Job:
    id: str
    recipient_email: str
    delivery_method: str
    folder_name: str
    total_urls: int = 0
    status: str = JobStatus.QUEUED
    progress: int = 0
    success_count: int = 0
    failed_count: int = 0
    logs: list[dict[str, str]] = field(default_factory=list)
    delivery_result: Optional[dict[str, Any]] = None
    error: Optional[str] = None
    created_at: str = field(default_factory=utcnow)
    updated_at: str = field(default_factory=utcnow)
    completed_at: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in JobStatus.TERMINAL

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "status": self.status,
            "progress": self.progress,
            "totalUrls": self.total_urls,
            "successCount": self.success_count,
            "failedCount": self.failed_count,
            "logs": [dict(entry) for entry in self.logs],
            "recipientEmail": self.recipient_email,
            "deliveryMethod": self.delivery_method,
            "folderName": self.folder_name,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "completedAt": self.completed_at,
        }
        if self.delivery_result is not None:
            data["deliveryResult"] = copy.deepcopy(self.delivery_result)
        if self.error is not None:
            data["error"] = self.error
        return data


class JobRegistry:
    def __init__(
        self,
        *,
        max_jobs: int = 1000,
        job_ttl_sec: float = 24 * 60 * 60,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._jobs: OrderedDict[str, Job] = OrderedDict()
        self._finished_at: dict[str, float] = {}
        self._lock = threading.Lock()
        self._max_jobs = max_jobs
        self._job_ttl_sec = job_ttl_sec
        self._clock = clock

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)

    def create(
        self,
        recipient_email: str,
        delivery_method: str,
        folder_name: str,
        total_urls: int,
    ) -> Job:
        job = Job(
            id=str(uuid.uuid4()),
            recipient_email=recipient_email,
            delivery_method=delivery_method,
            folder_name=folder_name,
            total_urls=total_urls,
        )
        with self._lock:
            self._jobs[job.id] = job
            self._evict()
            return copy.deepcopy(job)

    def get(self, job_id: str) -> Job:
        """Return a consistent snapshot of the job record."""
        with self._lock:
            self._evict()
            return copy.deepcopy(self._require(job_id))

    def append_log(self, job_id: str, message: str) -> None:
        with self._lock:
            job = self._mutable(job_id)
            job.logs.append({"time": utcnow(), "message": message})
            job.updated_at = utcnow()

    def set_progress(self, job_id: str, progress: int) -> None:
        with self._lock:
            job = self._mutable(job_id)
            job.progress = max(job.progress, min(100, max(0, int(progress))))
            job.updated_at = utcnow()

    def set_counts(self, job_id: str, success_count: int, failed_count: int) -> None:
        with self._lock:
            job = self._mutable(job_id)
            if success_count + failed_count > job.total_urls:
                raise ValueError(
                    f"counts {success_count}+{failed_count} exceed total {job.total_urls}"
                )
            job.success_count = success_count
            job.failed_count = failed_count
            job.updated_at = utcnow()

    def set_status(self, job_id: str, status: str) -> None:
        with self._lock:
            self._transition(self._mutable(job_id), status)

    def set_delivery_result(self, job_id: str, result: dict[str, Any]) -> None:
        with self._lock:
            job = self._mutable(job_id)
            if job.delivery_result is not None:
                raise InvalidJobTransition(f"job {job_id} already has a delivery result")
            job.delivery_result = copy.deepcopy(result)
            job.updated_at = utcnow()

    def set_error(self, job_id: str, error: str) -> None:
        """Record a terminal failure."""
        with self._lock:
            job = self._mutable(job_id)
            job.error = error
            self._transition(job, JobStatus.FAILED)

    # -- internals (lock held) ---------------------------------------------

    def _require(self, job_id: str) -> Job:
        try:
            return self._jobs[job_id]
        except KeyError:
            raise JobNotFound(job_id) from None

    def _mutable(self, job_id: str) -> Job:
        job = self._require(job_id)
        if job.is_terminal:
            raise InvalidJobTransition(f"job {job_id} is {job.status} and can no longer change")
        return job

    def _transition(self, job: Job, status: str) -> None:
        if status not in JobStatus.NEXT:
            raise InvalidJobTransition(f"unknown status: {status}")
        if status == job.status:
            return
        if status != JobStatus.FAILED and status not in JobStatus.NEXT[job.status]:
            raise InvalidJobTransition(f"job {job.id}: {job.status} -> {status}")
        now = utcnow()
        job.status = status
        job.updated_at = now
        if status in JobStatus.TERMINAL:
            job.completed_at = now
            self._finished_at[job.id] = self._clock()

    def _evict(self) -> None:
        now = self._clock()
        for job_id, finished in list(self._finished_at.items()):
            if now - finished > self._job_ttl_sec:
                self._drop(job_id)
        if len(self._jobs) <= self._max_jobs:
            return
        for job_id in sorted(self._finished_at, key=self._finished_at.__getitem__):
            if len(self._jobs) <= self._max_jobs:
                break
            self._drop(job_id)

    def _drop(self, job_id: str) -> None:
        self._jobs.pop(job_id, None)
        self._finished_at.pop(job_id, None)
