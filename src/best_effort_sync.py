"""
Best-effort background sync of pick statuses.

Marking an item packed or skipped must never hold up the picker. Remote
status updates are queued here and executed on a daemon thread while the
player has already moved on.

Contract:
- Tasks run one at a time, in submission order
- No retry and no backoff: a failed task is logged, recorded in
  failures and dropped
- Local completion state is never rolled back on failure, so local and
  remote views can diverge until the next session load re-seeds from the
  backend
"""

import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Deque, List, Optional, Tuple

from logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class SyncFailure:
    """A sync task that raised; kept so the gap is visible to callers and tests."""
    description: str
    error: Exception
    failed_at: datetime


class BestEffortSync:
    """
    FIFO background executor for fire-and-forget remote calls.

    Behaviour:
    - submit(description, fn, *args): non-blocking, appends a task
    - flush(): blocking, waits until every submitted task has run
    - shutdown(): flush then stop daemon thread

    sync_mode=True skips the background thread and runs tasks inline;
    useful for unit tests that assert on calls right after a transition.
    """

    def __init__(self, sync_mode: bool = False) -> None:
        self._sync_mode = sync_mode
        self._failures: List[SyncFailure] = []
        self._failures_lock = threading.Lock()

        if sync_mode:
            return  # No thread needed

        self._condition = threading.Condition()
        self._queue: Deque[Tuple[str, Callable[..., Any], tuple]] = deque()
        self._is_running_task = False
        self._stop = False
        self._thread = threading.Thread(
            target=self._run, daemon=True, name="pick-status-sync"
        )
        self._thread.start()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def submit(self, description: str, fn: Callable[..., Any], *args: Any) -> None:
        """Queue fn(*args); failures are logged and recorded, never raised."""
        if self._sync_mode:
            self._execute(description, fn, args)
            return

        with self._condition:
            if self._stop:
                logger.warning(f"Sync already shut down, dropping task: {description}")
                return
            self._queue.append((description, fn, args))
            self._condition.notify()

    def flush(self, timeout: Optional[float] = None) -> bool:
        """
        Wait until the queue is empty and no task is running.

        Returns:
            False if the timeout expired first
        """
        if self._sync_mode:
            return True

        with self._condition:
            return self._condition.wait_for(
                lambda: not self._queue and not self._is_running_task,
                timeout=timeout,
            )

    def shutdown(self) -> None:
        """
        Flush pending tasks then stop the background thread.

        Safe to call multiple times; subsequent calls are no-ops.
        """
        if self._sync_mode:
            return

        self.flush()
        with self._condition:
            self._stop = True
            self._condition.notify()
        self._thread.join(timeout=10)

    @property
    def failures(self) -> List[SyncFailure]:
        with self._failures_lock:
            return list(self._failures)

    # ------------------------------------------------------------------
    # Background thread
    # ------------------------------------------------------------------

    def _execute(self, description: str, fn: Callable[..., Any], args: tuple) -> None:
        try:
            fn(*args)
            logger.debug(f"Sync task succeeded: {description}")
        except Exception as e:
            logger.error(f"Sync task failed (not retried): {description}: {e}")
            with self._failures_lock:
                self._failures.append(SyncFailure(description, e, datetime.now()))

    def _run(self) -> None:
        while True:
            with self._condition:
                while not self._queue and not self._stop:
                    self._condition.wait()

                if self._stop and not self._queue:
                    break

                description, fn, args = self._queue.popleft()
                self._is_running_task = True

            # Run outside the lock so submit() is never blocked by the network
            try:
                self._execute(description, fn, args)
            finally:
                with self._condition:
                    self._is_running_task = False
                    self._condition.notify_all()
