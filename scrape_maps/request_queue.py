"""
Maps Listing Scraper - Request Queue

In-memory FIFO of crawl tasks with URL de-duplication. A URL that has been
added once (fragment ignored) is never queued again during the run, which
also guarantees that a listing is emitted at most once.
"""

from collections import deque
from typing import Deque, Optional, Set
from urllib.parse import urldefrag

from runner.logging_setup import get_logger
from scrape_maps.maps_tasks import Task


logger = get_logger("request_queue")


def unique_key(url: str) -> str:
    """Queue de-duplication key for a URL."""
    return urldefrag(url.strip())[0]


class RequestQueue:
    """FIFO task queue with retry bookkeeping."""

    def __init__(self):
        self._pending: Deque[Task] = deque()
        self._seen: Set[str] = set()
        self._in_progress: Set[str] = set()
        self.handled_count = 0

    def add_task(self, task: Task) -> bool:
        """
        Enqueue a task unless its URL was already added.

        Returns:
            True if the task was queued, False if it was a duplicate
        """
        key = unique_key(task.url)
        if key in self._seen:
            logger.debug(f"Duplicate task ignored: {task.url}")
            return False
        self._seen.add(key)
        self._pending.append(task)
        return True

    def fetch_next(self) -> Optional[Task]:
        """Pop the next pending task, or None if the queue is empty."""
        if not self._pending:
            return None
        task = self._pending.popleft()
        self._in_progress.add(unique_key(task.url))
        return task

    def reclaim(self, task: Task):
        """Return a failed task to the tail of the queue with its retry count bumped."""
        self._in_progress.discard(unique_key(task.url))
        task.retry_count += 1
        self._pending.append(task)

    def mark_handled(self, task: Task):
        """Record that a task finished (successfully or terminally failed)."""
        self._in_progress.discard(unique_key(task.url))
        self.handled_count += 1

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def total_count(self) -> int:
        return len(self._seen)

    def is_finished(self) -> bool:
        return not self._pending and not self._in_progress
