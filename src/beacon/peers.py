"""Local peer directory and host identity collaborators."""

from __future__ import annotations

import logging
import os
import socket
from typing import Iterable, List, Optional

import yaml

from .errors import PeerDirectoryError

logger = logging.getLogger(__name__)


def get_hostname() -> str:
    """Brief: Short hostname of this machine.

    Inputs:
      - None.

    Outputs:
      - str: socket.gethostname() truncated at the first dot.

    Example:
      - ``worker7.lan`` -> ``worker7``
    """

    return socket.gethostname().split(".", 1)[0]


class HostIdentity:
    """Host identity with an optional configured override."""

    def __init__(self, hostname: Optional[str] = None) -> None:
        self.override = hostname.strip() if hostname and hostname.strip() else None

    def get_hostname(self) -> str:
        return self.override or get_hostname()


class StaticPeerDirectory:
    """Brief: Local peer directory backed by a fixed list of names.

    Inputs (constructor):
      - names: Peer names running on this host.

    Outputs:
      - StaticPeerDirectory instance.
    """

    def __init__(self, names: Iterable[str] = ()) -> None:
        self.names = [str(n) for n in names if str(n).strip()]

    def list_local_peer_names(self) -> List[str]:
        return list(self.names)


class FilePeerDirectory:
    """Brief: Local peer directory read from a YAML file on every lookup.

    Inputs (constructor):
      - path: File holding a YAML list of peer names (or a mapping with a
        ``peers`` list). Local processes rewrite it as they start and stop.
      - extra: Names that are always reported in addition to the file.

    Outputs:
      - FilePeerDirectory instance.

    Notes:
      - A missing file means no file-registered peers. An unreadable file, a
        YAML syntax error (for example a half-written file) or a file that is
        not a list of names raises PeerDirectoryError.
    """

    def __init__(self, path: str, extra: Iterable[str] = ()) -> None:
        self.path = os.path.abspath(os.path.expanduser(path))
        self.extra = [str(n) for n in extra if str(n).strip()]

    def _read(self) -> List[str]:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except FileNotFoundError:
            logger.debug("Peer registry %s does not exist", self.path)
            return []
        except (OSError, yaml.YAMLError) as exc:
            raise PeerDirectoryError(
                f"cannot read peer registry {self.path}: {exc}"
            ) from exc
        if data is None:
            return []
        if isinstance(data, dict):
            data = data.get("peers") or []
        if not isinstance(data, list):
            raise PeerDirectoryError(
                f"peer registry {self.path} must contain a list of names"
            )
        return [str(n) for n in data if n is not None and str(n).strip()]

    def list_local_peer_names(self) -> List[str]:
        names = list(self.extra)
        for name in self._read():
            if name not in names:
                names.append(name)
        return names
