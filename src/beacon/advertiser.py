"""Advertiser collaborators: receivers of the zero-argument multicast() trigger.

Brief:
  Building and sending the announcement packet belongs to the advertiser
  implementation, not to the engine. The engine only ever calls multicast().
"""

from __future__ import annotations

import importlib
import logging
from typing import Any, Callable, Optional

from .dispatch import BackgroundDispatcher

logger = logging.getLogger(__name__)


class BaseAdvertiser:
    """Interface for announcement triggers; multicast() must not block."""

    def multicast(self) -> None:  # pragma: no cover - interface only
        raise NotImplementedError("multicast() must be implemented by a subclass")

    def close(self) -> None:
        """Release any resources held by the advertiser."""
        return None


class LoggingAdvertiser(BaseAdvertiser):
    """Brief: Advertiser that only records and logs announcement requests.

    Inputs:
      - None.

    Outputs:
      - LoggingAdvertiser instance; ``requests`` counts multicast() calls.

    Used when no announcement callable is configured, so a node can still
    observe its peers.
    """

    def __init__(self) -> None:
        self.requests = 0

    def multicast(self) -> None:
        self.requests += 1
        logger.info("Announcement requested (no advertiser configured)")


class CallbackAdvertiser(BaseAdvertiser):
    """Brief: Run a user-supplied announcement callable off the engine thread.

    Inputs (constructor):
      - callback: Zero-argument callable that sends the announcement.
      - dispatcher: Optional BackgroundDispatcher; a private one is created
        when omitted.

    Outputs:
      - CallbackAdvertiser instance.
    """

    def __init__(
        self,
        callback: Callable[[], Any],
        dispatcher: Optional[BackgroundDispatcher] = None,
    ) -> None:
        if not callable(callback):
            raise TypeError(f"advertiser callback {callback!r} is not callable")
        self.callback = callback
        self._owns_dispatcher = dispatcher is None
        self._dispatcher = dispatcher or BackgroundDispatcher("beacon-advertiser")

    def multicast(self) -> None:
        self._dispatcher.submit(self.callback)

    def flush(self) -> None:
        self._dispatcher.join()

    def close(self) -> None:
        if self._owns_dispatcher:
            self._dispatcher.close()


def resolve_callable(identifier: str) -> Callable[..., Any]:
    """Brief: Import ``package.module.attribute`` and return the attribute.

    Inputs:
      - identifier: Dotted path (``pkg.mod.func`` or ``pkg.mod:func``).

    Outputs:
      - The resolved callable.

    Raises:
      - ValueError: for malformed identifiers.
      - ImportError / AttributeError: when the target cannot be found.
      - TypeError: when the target is not callable.
    """

    ident = str(identifier).strip().replace(":", ".")
    modname, _, attr = ident.rpartition(".")
    if not modname or not attr:
        raise ValueError(f"Invalid callable path '{identifier}'")
    module = importlib.import_module(modname)
    target = getattr(module, attr)
    if not callable(target):
        raise TypeError(f"{identifier} is not callable")
    return target


def load_advertiser(
    module: Optional[str],
    dispatcher: Optional[BackgroundDispatcher] = None,
) -> BaseAdvertiser:
    """Brief: Build the advertiser described by the ``advertiser.module`` setting.

    Inputs:
      - module: Dotted path to a zero-argument callable, or None.
      - dispatcher: Optional shared BackgroundDispatcher.

    Outputs:
      - BaseAdvertiser: CallbackAdvertiser when module is set, otherwise
        LoggingAdvertiser.
    """

    if not module:
        return LoggingAdvertiser()
    callback = resolve_callable(module)
    logger.info("Using announcement callable %s", module)
    return CallbackAdvertiser(callback, dispatcher)
