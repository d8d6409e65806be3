"""Background task handles with cooperative cancellation."""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable

from .errors import TaskCancelled

logger = logging.getLogger(__name__)


class CancellationToken:
    """Flag a long-running pass checks between iterations."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise TaskCancelled()


class TaskHandle:
    """A submitted background pass: its future plus its cancellation token."""

    def __init__(self, name: str, future: Future, token: CancellationToken):
        self.name = name
        self.future = future
        self.token = token

    def cancel(self) -> None:
        self.token.cancel()
        self.future.cancel()

    @property
    def cancelled(self) -> bool:
        return self.token.cancelled

    def done(self) -> bool:
        return self.future.done()

    def result(self, timeout: float | None = None) -> Any:
        """Wait for the pass. A cancelled pass yields ``None``."""
        if self.future.cancelled():
            return None
        return self.future.result(timeout=timeout)


class BackgroundRunner:
    """Bounded worker pool for embedding, graph and clustering passes.

    ``fn`` receives the task's :class:`CancellationToken` as its first
    argument. A pass that raises :class:`TaskCancelled` completes with
    ``None``.
    """

    def __init__(self, max_workers: int = 2):
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="pvl-bg")
        self._lock = threading.Lock()
        self._exclusive: dict[str, TaskHandle] = {}

    def submit(self, name: str, fn: Callable[..., Any], *args, **kwargs) -> TaskHandle:
        token = CancellationToken()

        def _run():
            try:
                return fn(token, *args, **kwargs)
            except TaskCancelled:
                logger.info(f"Task {name} cancelled")
                return None

        return TaskHandle(name, self._pool.submit(_run), token)

    def submit_exclusive(self, key: str, fn: Callable[..., Any], *args, **kwargs) -> TaskHandle:
        """Submit ``fn`` and cancel any earlier task still running under ``key``."""
        with self._lock:
            previous = self._exclusive.get(key)
            if previous is not None and not previous.done():
                logger.info(f"Superseding running task {previous.name}")
                previous.cancel()
            handle = self.submit(key, fn, *args, **kwargs)
            self._exclusive[key] = handle
            return handle

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            for handle in self._exclusive.values():
                handle.cancel()
            self._exclusive.clear()
        self._pool.shutdown(wait=wait)
