"""Owning process layer: runs the discovery engine and restarts it on failure."""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from typing import Callable, Deque

from .engine import DiscoveryEngine
from .errors import DiscoveryError, SocketUnavailable

logger = logging.getLogger(__name__)


def backoff_delay(fail_count: int, base: float, maximum: float) -> float:
    """Brief: Restart delay for the given consecutive failure count.

    Inputs:
      - fail_count: Number of failures so far (1 for the first failure).
      - base: Delay for the first failure, in seconds.
      - maximum: Upper bound for the delay, in seconds.

    Outputs:
      - float: Delay growing Fibonacci-style (1, 1, 2, 3, 5, ... times base).

    Example:
      >>> [backoff_delay(n, 1.0, 4.0) for n in range(1, 6)]
      [1.0, 1.0, 2.0, 3.0, 4.0]
    """

    a, b = 1, 1
    for _ in range(max(0, fail_count - 1)):
        a, b = b, a + b
    return min(base * float(a), maximum)


class DiscoveryService:
    """Brief: Supervise a DiscoveryEngine with a bounded restart policy.

    Inputs (constructor):
      - engine_factory: Zero-argument callable building a fresh engine. A new
        engine (and socket) is built for every (re)start.
      - max_restarts: Restarts tolerated within restart_window_seconds before
        run() gives up.
      - restart_window_seconds: Sliding window for max_restarts.
      - backoff_base_seconds / backoff_max_seconds: Restart delay bounds.
      - clock: Monotonic clock, injectable for tests.

    Outputs:
      - DiscoveryService instance; call run() from the main thread and stop()
        from signal handlers.
    """

    def __init__(
        self,
        engine_factory: Callable[[], DiscoveryEngine],
        *,
        max_restarts: int = 5,
        restart_window_seconds: float = 60.0,
        backoff_base_seconds: float = 0.5,
        backoff_max_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.engine_factory = engine_factory
        self.max_restarts = max(0, int(max_restarts))
        self.restart_window_seconds = float(restart_window_seconds)
        self.backoff_base_seconds = float(backoff_base_seconds)
        self.backoff_max_seconds = float(backoff_max_seconds)
        self._clock = clock
        self._stop = threading.Event()
        self.restarts: Deque[float] = deque()

    def stop(self) -> None:
        self._stop.set()

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    def _record_restart(self) -> bool:
        """Record a restart; return False when the restart intensity is exceeded."""
        now = self._clock()
        self.restarts.append(now)
        while self.restarts and now - self.restarts[0] > self.restart_window_seconds:
            self.restarts.popleft()
        return len(self.restarts) <= self.max_restarts

    def run(self) -> int:
        """Brief: Run engines until stop() or an unrecoverable failure.

        Inputs:
          - None.

        Outputs:
          - int exit code: 0 after stop(), 1 when the socket cannot be opened,
            the engine failed more than max_restarts times within the restart
            window, or a collaborator raised something that is not a
            DiscoveryError.
        """

        while not self._stop.is_set():
            engine = self.engine_factory()
            try:
                with engine:
                    engine.serve_forever(self._stop)
            except SocketUnavailable as exc:
                logger.error("Cannot start discovery engine: %s", exc)
                return 1
            except DiscoveryError as exc:
                if not self._record_restart():
                    logger.error(
                        "Discovery engine failed %d times within %.0fs, giving up: %s",
                        len(self.restarts),
                        self.restart_window_seconds,
                        exc,
                    )
                    return 1
                delay = backoff_delay(
                    len(self.restarts),
                    self.backoff_base_seconds,
                    self.backoff_max_seconds,
                )
                logger.error(
                    "Discovery engine failed (%s: %s); restarting in %.1fs",
                    type(exc).__name__,
                    exc,
                    delay,
                )
                if self._stop.wait(delay):
                    break
            except Exception:
                logger.exception("Discovery engine crashed with an unexpected error")
                return 1
        logger.info("Discovery service stopped")
        return 0
