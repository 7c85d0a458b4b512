"""Background event loop shared by the indexer and search paths.

Game event handlers run on threads that must never block, so all indexing
and search work is posted to an asyncio loop owned by a daemon thread.
Blocking calls made through `asyncio.to_thread` use a bounded worker pool.
"""

import asyncio
import concurrent.futures
import threading
from typing import Any, Callable, Coroutine, TypeVar

from loguru import logger

T = TypeVar("T")


class BackgroundLoop:
    """An asyncio event loop running on its own daemon thread."""

    def __init__(self, worker_threads: int = 2, name: str = "container-index"):
        """Start the loop thread.

        Args:
            worker_threads: Size of the executor used for blocking calls
            name: Thread name prefix
        """
        if worker_threads < 1:
            raise ValueError(f"worker_threads must be positive, got {worker_threads}")
        self.name = name
        self.loop = asyncio.new_event_loop()
        self._executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=worker_threads, thread_name_prefix=f"{name}-worker"
        )
        self.loop.set_default_executor(self._executor)
        self._started = threading.Event()
        self._stopped = False
        self._thread = threading.Thread(target=self._run, name=f"{name}-loop", daemon=True)
        self._thread.start()
        self._started.wait()

    def _run(self) -> None:
        asyncio.set_event_loop(self.loop)
        self.loop.call_soon(self._started.set)
        try:
            self.loop.run_forever()
        finally:
            self.loop.close()

    @property
    def is_running(self) -> bool:
        return not self._stopped and self._thread.is_alive()

    def in_loop_thread(self) -> bool:
        return threading.current_thread() is self._thread

    def submit(self, coro: Coroutine[Any, Any, T]) -> "concurrent.futures.Future[T]":
        """Schedule a coroutine on the loop from any thread."""
        if self._stopped:
            coro.close()
            raise RuntimeError(f"Background loop {self.name!r} is stopped")
        return asyncio.run_coroutine_threadsafe(coro, self.loop)

    def call_soon(self, callback: Callable[..., Any], *args: Any) -> None:
        """Run a plain callback on the loop thread from any thread."""
        if self._stopped:
            raise RuntimeError(f"Background loop {self.name!r} is stopped")
        self.loop.call_soon_threadsafe(callback, *args)

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the loop and join its thread. Safe to call more than once."""
        if self._stopped:
            return
        self._stopped = True
        self.loop.call_soon_threadsafe(self.loop.stop)
        if not self.in_loop_thread():
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                logger.warning(f"Background loop {self.name!r} did not stop within {timeout}s")
        self._executor.shutdown(wait=False, cancel_futures=True)
