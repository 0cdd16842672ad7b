"""
Execution contexts for the BFF components.

Network calls run on a small I/O thread pool. Anything that touches component
state (caches, cached collections, demo payment state) runs on a single
coordination thread, and every future handed back to callers is resolved
from that thread.
"""

from __future__ import annotations

import concurrent.futures
import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class Dispatcher:
    """Owns the coordination executor and the I/O pool."""

    def __init__(self, io_workers: int = 4):
        self._coordinator = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="mydorm-coord"
        )
        self._io = ThreadPoolExecutor(
            max_workers=io_workers, thread_name_prefix="mydorm-io"
        )

    def call_soon(self, fn: Callable[..., Any], *args: Any) -> Future:
        """Schedules `fn` on the coordination thread."""
        return self._coordinator.submit(fn, *args)

    def run_io(
        self,
        io_fn: Callable[[], Any],
        then: Optional[Callable[[Any], Any]] = None,
    ) -> Future:
        """
        Runs `io_fn` on the I/O pool, then `then(result)` on the coordination
        thread. The returned future carries the final value or the first
        exception raised by either step.
        """
        result: Future = Future()

        def _complete(io_future: Future) -> None:
            try:
                value = io_future.result()
                if then is not None:
                    value = then(value)
            except Exception as exc:
                result.set_exception(exc)
                return
            result.set_result(value)

        def _deliver(io_future: Future) -> None:
            try:
                self._coordinator.submit(_complete, io_future)
            except RuntimeError as exc:
                # Coordinator already shut down.
                result.set_exception(exc)

        self._io.submit(io_fn).add_done_callback(_deliver)
        return result

    def failed(self, exc: BaseException) -> Future:
        """Returns a future failed with `exc`, resolved on the coordination thread."""
        result: Future = Future()
        self.call_soon(result.set_exception, exc)
        return result

    def drain(self, timeout: float | None = 5.0) -> None:
        """Blocks until every task queued so far on the coordination thread has run."""
        try:
            self._coordinator.submit(lambda: None).result(timeout=timeout)
        except concurrent.futures.TimeoutError:
            logger.warning("Coordination queue did not drain within %ss", timeout)
            raise

    def shutdown(self) -> None:
        self._io.shutdown(wait=True, cancel_futures=True)
        self._coordinator.shutdown(wait=True)
