"""Logging setup for beacon: bracketed level tags on stderr, file and syslog."""

from __future__ import annotations

import logging
import logging.handlers
import os
import sys
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple, Union

DEFAULT_FORMAT = "%(asctime)s %(level_tag)s %(name)s: %(message)s"
DEFAULT_SYSLOG_ADDRESS = "/dev/log"
DEFAULT_SYSLOG_TAG = "beacon"

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "crit": logging.CRITICAL,
    "critical": logging.CRITICAL,
}

_TAGS = {
    logging.DEBUG: "[debug]",
    logging.INFO: "[info]",
    logging.WARNING: "[warn]",
    logging.ERROR: "[error]",
    logging.CRITICAL: "[crit]",
}


def level_tag(levelno: int) -> str:
    """Return the bracketed lowercase tag for a numeric level, e.g. ``[warn]``."""
    return _TAGS.get(levelno, f"[lvl{levelno}]")


def parse_level(value: Any) -> int:
    """Brief: Map a configured level name to a logging constant.

    Inputs:
      - value: Level name such as ``info`` or ``WARN``; None means info.

    Outputs:
      - int: logging level; unknown names fall back to INFO.
    """

    return _LEVELS.get(str(value or "info").lower(), logging.INFO)


class SyslogFormatter(logging.Formatter):
    """Syslog lines carry no timestamp; syslogd stamps them on arrival."""

    def __init__(self, tag: str = DEFAULT_SYSLOG_TAG) -> None:
        super().__init__()
        self.tag = tag

    def format(self, record):
        record.level_tag = level_tag(record.levelno)
        line = f"{record.level_tag} {record.name}: {record.getMessage()}"
        return f"{self.tag}: {line}" if self.tag else line


class BracketLevelFormatter(logging.Formatter):
    """Formatter exposing ``%(level_tag)s`` and stamping records in UTC."""

    def formatTime(self, record, datefmt=None):
        stamp = datetime.fromtimestamp(record.created, timezone.utc)
        return stamp.strftime(datefmt or "%Y-%m-%dT%H:%M:%SZ")

    def format(self, record):
        record.level_tag = level_tag(record.levelno)
        return super().format(record)


def _file_handler(file_path: Any, formatter: logging.Formatter) -> Optional[logging.Handler]:
    if not isinstance(file_path, str) or not file_path.strip():
        return None
    path = os.path.abspath(os.path.expanduser(file_path.strip()))
    os.makedirs(os.path.dirname(path), exist_ok=True)
    handler = logging.FileHandler(path, mode="a", encoding="utf-8")
    handler.setFormatter(formatter)
    return handler


def _syslog_options(
    syslog_cfg: Union[bool, Dict[str, Any]],
) -> Tuple[Union[str, Tuple[str, int]], int, str]:
    """Brief: Resolve syslog address, facility and tag from the ``syslog`` key.

    Inputs:
      - syslog_cfg: True for defaults, or a mapping with optional address
        (socket path or [host, port]), facility (e.g. ``local0``) and tag.

    Outputs:
      - (address, facility, tag) tuple ready for SysLogHandler.
    """

    handler_cls = logging.handlers.SysLogHandler
    opts = syslog_cfg if isinstance(syslog_cfg, dict) else {}
    address = opts.get("address", DEFAULT_SYSLOG_ADDRESS)
    if isinstance(address, list):
        address = tuple(address)
    facility_name = "LOG_" + str(opts.get("facility", "USER")).upper()
    facility = getattr(handler_cls, facility_name, handler_cls.LOG_USER)
    return address, facility, str(opts.get("tag", DEFAULT_SYSLOG_TAG))


def init_logging(cfg: Optional[Dict[str, Any]]) -> None:
    """
    Brief: Configure the root logger from the ``logging`` config section.

    Inputs:
      - cfg: Mapping with optional keys:
          - level: debug, info, warn, error, crit (default: info)
          - stderr: log to stderr (default: True)
          - file: path of an append-mode log file; parent dirs are created
          - syslog: True, or {address, facility, tag}

    Outputs:
      - None. Existing root handlers are replaced and ``warnings`` are routed
        through logging. A syslog endpoint that cannot be reached is reported
        as a warning and skipped.

    Example:
      >>> init_logging({"level": "debug", "syslog": {"tag": "beacon-a"}})
    """

    cfg = cfg or {}
    formatter = BracketLevelFormatter(fmt=DEFAULT_FORMAT)

    root = logging.getLogger()
    root.setLevel(parse_level(cfg.get("level")))
    for h in list(root.handlers):
        root.removeHandler(h)

    handlers: List[logging.Handler] = []
    if cfg.get("stderr", True):
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(formatter)
        handlers.append(stderr_handler)

    file_handler = _file_handler(cfg.get("file"), formatter)
    if file_handler is not None:
        handlers.append(file_handler)

    for handler in handlers:
        root.addHandler(handler)

    syslog_cfg = cfg.get("syslog")
    if syslog_cfg:
        try:
            address, facility, tag = _syslog_options(syslog_cfg)
            syslog_handler = logging.handlers.SysLogHandler(
                address=address, facility=facility
            )
            syslog_handler.setFormatter(SyslogFormatter(tag))
            root.addHandler(syslog_handler)
        except (OSError, ValueError) as e:
            root.warning(f"Failed to configure syslog: {e}")

    logging.captureWarnings(True)
