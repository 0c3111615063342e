"""
Batch status tracking with a per-task TTL cache.

The remote service is only queried when a task's cached status is
older than the configured interval (or missing). Each refresh writes
the remote status and its timestamp together and projects the status
onto the task's submissions.
"""

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from ..config.models import BatchSettings
from ..storage.models import SubmissionStatus
from ..storage.repository import BatchStatusCacheRepository, SubmissionRepository
from ..utils.logging import get_logger
from .client import BatchService, BatchServiceError

logger = get_logger(__name__)

REMOTE_STATUS_MAP: dict[str, SubmissionStatus] = {
    "completed": SubmissionStatus.COMPLETED,
    "failed": SubmissionStatus.FAILED,
    "expired": SubmissionStatus.FAILED,
    "cancelled": SubmissionStatus.FAILED,
    "in_progress": SubmissionStatus.PROCESSING,
    "finalizing": SubmissionStatus.PROCESSING,
}

TERMINAL_STATUSES = frozenset({SubmissionStatus.COMPLETED, SubmissionStatus.FAILED})

# Set by retrieval and packaging; never overwritten by a status refresh
POST_RETRIEVAL_STATUSES = (SubmissionStatus.DOWNLOADED.value, SubmissionStatus.PACKAGED.value)


def map_remote_status(remote_status: str | None) -> SubmissionStatus:
    """Map a remote batch status onto a local submission status (unknown -> pending)."""
    return REMOTE_STATUS_MAP.get(remote_status or "", SubmissionStatus.PENDING)


@dataclass
class StatusCheck:
    """Result of a status lookup for one task."""

    task_id: int
    batch_id: str
    remote_status: str
    checked_at: int
    refreshed: bool
    output_file_id: str | None = None

    @property
    def local_status(self) -> SubmissionStatus:
        return map_remote_status(self.remote_status)

    @property
    def is_terminal(self) -> bool:
        return self.local_status in TERMINAL_STATUSES


class BatchLifecycleTracker:
    """Decides when to poll the remote service and caches what it reports."""

    def __init__(
        self,
        service: BatchService,
        status_cache: BatchStatusCacheRepository,
        submissions: SubmissionRepository,
        settings: BatchSettings | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.service = service
        self.status_cache = status_cache
        self.submissions = submissions
        self.settings = settings or BatchSettings()
        self.clock = clock
        self._locks: dict[int, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _now(self) -> int:
        return int(self.clock())

    def _lock_for(self, task_id: int) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(task_id, threading.Lock())

    def should_refresh(self, task_id: int, now: int | None = None) -> bool:
        """
        Check whether the cached status of a task has expired.

        True when no check was ever recorded or when at least
        `status_check_interval` seconds have passed since the last one.
        """
        now = self._now() if now is None else now
        cache = self.status_cache.get(task_id)
        last_check = cache.last_check_timestamp if cache else None
        if not last_check:
            return True
        return now - last_check >= self.settings.status_check_interval

    def batch_id_for(self, task_id: int) -> str | None:
        """Job handle recorded on the task's submissions, if any."""
        for submission in self.submissions.list_for_task(task_id):
            if submission.batch_id:
                return submission.batch_id
        return None

    def refresh(self, task_id: int, batch_id: str) -> StatusCheck:
        """
        Query the remote status and record it.

        Raises:
            BatchServiceError: If the remote query fails
        """
        job = self.service.status(batch_id)
        now = self._now()

        self.status_cache.save(task_id, now, job.status, job.output_file_id)
        local_status = map_remote_status(job.status)
        updated = self.submissions.set_status_for_batch(
            task_id, batch_id, local_status.value, keep_statuses=POST_RETRIEVAL_STATUSES
        )

        logger.info(
            f"Batch {batch_id} of task {task_id}: {job.status} -> {local_status.value} "
            f"({updated} submissions updated)"
        )
        return StatusCheck(
            task_id=task_id,
            batch_id=batch_id,
            remote_status=job.status,
            checked_at=now,
            refreshed=True,
            output_file_id=job.output_file_id,
        )

    def current_status(self, task_id: int) -> StatusCheck | None:
        """
        Status of a task's batch, from the cache while it is fresh.

        A fresh cache without a status is inconsistent and forces a
        refresh. A transient failure while refreshing a stale entry
        falls back to the cached status.

        Returns:
            StatusCheck, or None if the task was never enqueued

        Raises:
            BatchServiceError: If a refresh with no usable cache fails
        """
        batch_id = self.batch_id_for(task_id)
        if batch_id is None:
            logger.info(f"Task {task_id} has no enqueued batch")
            return None

        with self._lock_for(task_id):
            cache = self.status_cache.get(task_id)

            if not self.should_refresh(task_id):
                if cache is not None and cache.cached_status:
                    logger.debug(f"Using cached status for task {task_id}: {cache.cached_status}")
                    return StatusCheck(
                        task_id=task_id,
                        batch_id=batch_id,
                        remote_status=cache.cached_status,
                        checked_at=cache.last_check_timestamp or 0,
                        refreshed=False,
                        output_file_id=cache.output_file_id,
                    )
                logger.warning(f"Status cache of task {task_id} is empty, forcing refresh")
                return self.refresh(task_id, batch_id)

            try:
                return self.refresh(task_id, batch_id)
            except BatchServiceError as e:
                if e.transient and cache is not None and cache.cached_status:
                    logger.warning(
                        f"Status refresh for task {task_id} failed ({e}), "
                        f"using stale cached status {cache.cached_status}"
                    )
                    return StatusCheck(
                        task_id=task_id,
                        batch_id=batch_id,
                        remote_status=cache.cached_status,
                        checked_at=cache.last_check_timestamp or 0,
                        refreshed=False,
                        output_file_id=cache.output_file_id,
                    )
                raise
