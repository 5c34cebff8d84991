"""Concurrent commit refresh across every stored repository."""

import logging
import queue
import threading
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Tuple

from git_ingest.domain.repository import Repository

logger = logging.getLogger(__name__)

# Marks the end of the work queue, one per worker
_CLOSED = object()


@dataclass
class CampaignResult:
    """Outcome of one fleet refresh run."""

    total_pages: int = 0
    pages_fetched: int = 0
    processed: int = 0
    failed: int = 0
    skipped: int = 0
    cancelled: bool = False


class FleetRefreshCampaign:
    """Page through stored repositories and refresh each on a worker pool.

    A single driver thread fetches pages of repositories into a bounded work
    queue, which blocks it when the workers fall behind. Workers ask for the
    next page through a one-slot signal queue whenever they find the work
    queue empty. Simultaneous requests collapse into the one pending signal,
    so a worker never blocks on asking; the driver only decides whether more
    pages exist when it consumes a signal.

    The page count is computed once from the first page as
    total // page_size with truncating division. The driver stops when the
    next page index is beyond it, so any remainder page is never visited
    (23 repositories at page size 10 refresh only the first 20).
    """

    PAGE_SIZE = 10
    QUEUE_CAPACITY = 10
    WORKER_COUNT = 3

    def __init__(
        self,
        database_repository: Any,
        refresh: Callable[[str, str], Any],
        page_size: int = PAGE_SIZE,
        queue_capacity: int = QUEUE_CAPACITY,
        worker_count: int = WORKER_COUNT,
        cancel_event: Optional[threading.Event] = None,
        poll_interval: float = 0.1,
    ):
        """
        Initialize fleet refresh campaign.

        Args:
            database_repository: Store providing list_repositories(page_size, page)
            refresh: Called with (owner, name) for each repository
            page_size: Repositories per page
            queue_capacity: Maximum repositories waiting for a worker
            worker_count: Number of worker threads
            cancel_event: When set, stops page production and skips queued work
            poll_interval: Seconds between cancellation checks while idle
        """
        self.database_repository = database_repository
        self.refresh = refresh
        self.page_size = page_size
        self.worker_count = worker_count
        self.poll_interval = poll_interval
        self.cancel_event = cancel_event or threading.Event()

        self.work_queue: "queue.Queue[Any]" = queue.Queue(maxsize=queue_capacity)
        self.closed = False
        self._need_more: "queue.Queue[None]" = queue.Queue(maxsize=1)
        self._terminate = threading.Event()
        self._lock = threading.Lock()
        self._total_pages: Optional[int] = None
        self._result = CampaignResult()

    @property
    def total_pages(self) -> Optional[int]:
        """Page count computed from the first page, None until it is fetched."""
        with self._lock:
            return self._total_pages

    def run(self) -> CampaignResult:
        """
        Run the campaign and block until every worker has exited.

        Returns:
            Counters describing the run
        """
        logger.info(
            f"Starting fleet refresh (page_size={self.page_size}, workers={self.worker_count})"
        )
        threads = [
            threading.Thread(target=self._work, name=f"fleet-refresh-worker-{i}", daemon=True)
            for i in range(self.worker_count)
        ]
        threads.append(threading.Thread(target=self._drive, name="fleet-refresh-driver", daemon=True))
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        with self._lock:
            self._result.total_pages = self._total_pages or 0
            self._result.cancelled = self.cancel_event.is_set()
            result = self._result

        logger.info(
            f"Fleet refresh finished: {result.processed} refreshed, {result.failed} failed, "
            f"{result.skipped} skipped across {result.pages_fetched}/{result.total_pages} pages"
        )
        return result

    def _drive(self):
        try:
            self._produce_pages()
        finally:
            self._close_queue()

    def _produce_pages(self):
        if not self._send_page(1):
            return

        page = 2
        while not self._terminate.is_set():
            if self.cancel_event.is_set():
                logger.info("Fleet refresh cancelled, no further pages will be fetched")
                return
            try:
                self._need_more.get(timeout=self.poll_interval)
            except queue.Empty:
                continue

            if page > self.total_pages:
                logger.info(f"All {self.total_pages} pages dispatched")
                self._terminate.set()
                return
            if not self._send_page(page):
                return
            page += 1

    def _send_page(self, page: int) -> bool:
        repositories, total = self._fetch_page(page)
        if repositories is None:
            return False

        if page == 1:
            with self._lock:
                self._total_pages = total // self.page_size
        with self._lock:
            self._result.pages_fetched += 1

        if not repositories:
            logger.info(f"Page {page} is empty, stopping")
            self._terminate.set()
            return False

        logger.info(f"Dispatching {len(repositories)} repositories from page {page}")
        for repository in repositories:
            if self.cancel_event.is_set():
                return False
            # Blocks while the queue is full
            self.work_queue.put(repository)
        return True

    def _fetch_page(self, page: int) -> Tuple[Optional[List[Repository]], int]:
        try:
            return self.database_repository.list_repositories(self.page_size, page)
        except Exception as e:
            logger.error(f"Error fetching repositories page {page}: {e}")
            self._terminate.set()
            return None, 0

    def _close_queue(self):
        for _ in range(self.worker_count):
            self.work_queue.put(_CLOSED)
        self.closed = True

    def _work(self):
        while True:
            repository = self.work_queue.get()
            if repository is _CLOSED:
                return

            if self.cancel_event.is_set():
                self._count("skipped")
                continue

            try:
                self.refresh(repository.owner, repository.name)
                self._count("processed")
            except Exception as e:
                logger.error(
                    f"Error refreshing commits for {repository.owner}/{repository.name}: {e}"
                )
                self._count("failed")

            if self.work_queue.empty():
                self._request_more_work()

    def _request_more_work(self):
        try:
            self._need_more.put_nowait(None)
        except queue.Full:
            # A request is already pending
            pass

    def _count(self, field: str):
        with self._lock:
            setattr(self._result, field, getattr(self._result, field) + 1)
