"""Background event loop that lets synchronous Flask views drive the service."""

import asyncio
import concurrent.futures
import logging
import threading
from collections.abc import Coroutine
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 60.0


class LoopRunner:
    """Runs coroutines on one long-lived loop thread.

    Every request shares the loop, so the service's caches, single-flight
    fetches and HTTP connection pool all live on the same loop.
    """

    def __init__(self, timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS) -> None:
        self._timeout_seconds = timeout_seconds
        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()

    def _ensure_loop(self) -> asyncio.AbstractEventLoop:
        with self._lock:
            if self._loop and self._thread and self._thread.is_alive():
                return self._loop

            loop = asyncio.new_event_loop()

            def _run_loop() -> None:
                asyncio.set_event_loop(loop)
                loop.run_forever()

            thread = threading.Thread(target=_run_loop, daemon=True, name="backlog-sync-loop")
            thread.start()

            self._loop = loop
            self._thread = thread
            return loop

    def run(self, coro: Coroutine[Any, Any, Any]) -> Any:
        loop = self._ensure_loop()
        future = asyncio.run_coroutine_threadsafe(coro, loop)
        try:
            return future.result(timeout=self._timeout_seconds)
        except concurrent.futures.TimeoutError:
            future.cancel()
            raise

    def close(self) -> None:
        with self._lock:
            loop = self._loop
            thread = self._thread
            if loop:
                loop.call_soon_threadsafe(loop.stop)
            if thread and thread.is_alive():
                thread.join(timeout=1.0)
            if loop and (thread is None or not thread.is_alive()):
                loop.close()
            elif thread and thread.is_alive():
                logger.warning("Loop thread did not stop within timeout")
            self._loop = None
            self._thread = None
