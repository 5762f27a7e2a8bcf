import asyncio
import logging
from collections import deque
from typing import Any, Callable, Deque, Tuple

logger = logging.getLogger(__name__)


class DeferredTaskQueue:
    """Zero-delay follow-up tasks that run after the current update completes.

    A handler that needs a second state change (e.g. mark a channel read right
    after appending to it) schedules it here instead of calling it inline.
    The queue is drained at every event boundary by the desk, and also via
    ``loop.call_soon`` when an event loop is running.
    """

    def __init__(self) -> None:
        self._tasks: Deque[Tuple[Callable[..., Any], tuple]] = deque()
        self._draining = False
        self._drain_scheduled = False

    def __len__(self) -> int:
        return len(self._tasks)

    def schedule(self, fn: Callable[..., Any], *args: Any) -> None:
        self._tasks.append((fn, args))
        if self._drain_scheduled:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._drain_scheduled = True
        loop.call_soon(self._drain_soon)

    def _drain_soon(self) -> None:
        self._drain_scheduled = False
        self.run_pending()

    def run_pending(self) -> int:
        """Run queued tasks in FIFO order, including ones queued while draining."""
        if self._draining:
            return 0
        self._draining = True
        ran = 0
        try:
            while self._tasks:
                fn, args = self._tasks.popleft()
                try:
                    fn(*args)
                except Exception:
                    logger.exception("deferred task failed fn=%s", getattr(fn, "__name__", fn))
                ran += 1
        finally:
            self._draining = False
        return ran
