"""Fire-and-forget execution of collaborator callbacks on a worker thread."""

from __future__ import annotations

import logging
import queue
import threading
from typing import Any, Callable, Optional, Tuple

logger = logging.getLogger(__name__)

_Job = Optional[Tuple[Callable[..., Any], Tuple[Any, ...]]]


class BackgroundDispatcher:
    """Brief: Run submitted callables in order on a single daemon thread.

    Inputs (constructor):
      - name: Thread name, useful in logs and thread dumps.

    Outputs:
      - BackgroundDispatcher instance; the worker thread starts lazily on the
        first submit().

    Notes:
      - submit() never blocks on the callable. Exceptions raised by a job are
        logged and do not stop the worker.
      - join() waits until every job submitted so far has run, which tests use
        to make asynchronous delivery observable.
    """

    def __init__(self, name: str = "beacon-dispatch") -> None:
        self.name = name
        self._queue: "queue.Queue[_Job]" = queue.Queue()
        self._worker: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    def _ensure_worker(self) -> None:
        with self._lock:
            if self._worker is not None and self._worker.is_alive():
                return
            worker = threading.Thread(target=self._worker_loop, name=self.name, daemon=True)
            self._worker = worker
            worker.start()

    def _worker_loop(self) -> None:
        while True:
            job = self._queue.get()
            try:
                if job is None:
                    break
                func, args = job
                func(*args)
            except Exception:
                logger.exception("%s: job %r failed", self.name, job)
            finally:
                self._queue.task_done()

    def submit(self, func: Callable[..., Any], *args: Any) -> None:
        """Queue func(*args) for execution and return immediately."""
        self._ensure_worker()
        self._queue.put((func, args))

    def join(self) -> None:
        """Block until all queued jobs have been executed."""
        self._queue.join()

    def close(self) -> None:
        """Brief: Drain outstanding jobs and stop the worker thread.

        Inputs:
          - None.

        Outputs:
          - None; safe to call more than once.
        """

        worker = self._worker
        if worker is None or not worker.is_alive():
            return
        self._queue.put(None)
        worker.join()
        self._worker = None
