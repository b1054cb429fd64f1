"""Node identity extraction from TXT-style advertisement data."""

from __future__ import annotations

from typing import Iterable, Optional, Sequence

from dnslib import QTYPE

from .errors import MissingIdentityField
from .message import ResourceRecord

NODE_KEY = "node"
HOSTNAME_KEY = "hostname"


def txt_value(entries: Sequence[str], key: str) -> Optional[str]:
    """Brief: Return the value of the first ``key=value`` entry for key.

    Inputs:
      - entries: TXT strings in record order.
      - key: Key to look up (compared exactly).

    Outputs:
      - str value (possibly empty) or None when no entry carries the key.

    Example:
      >>> txt_value(["hostname=h1", "node=a", "node=b"], "node")
      'a'
    """

    prefix = key + "="
    for entry in entries:
        if entry.startswith(prefix):
            return entry[len(prefix) :]
    return None


def txt_entries(records: Iterable[ResourceRecord]) -> Optional[Sequence[str]]:
    """Return the strings of the first TXT record in records, or None."""
    for rr in records:
        if rr.rtype == QTYPE.TXT and isinstance(rr.data, tuple):
            return rr.data
    return None


def extract_node_identity(
    records: Iterable[ResourceRecord], domain: Optional[str] = None
) -> str:
    """Brief: Build ``"<node>@<hostname>"`` from an instance's additional records.

    Inputs:
      - records: Additional records whose owner name equals the advertised
        instance name.
      - domain: Optional instance name, used only in error messages.

    Outputs:
      - str: Node identity.

    Raises:
      - MissingIdentityField: when there is no TXT record, or its strings lack
        a ``node=`` or ``hostname=`` entry. Neither value is ever defaulted.

    Notes:
      - Only the first TXT record is consulted; within it the first entry for
        each key wins and entry order is otherwise irrelevant.
    """

    entries = txt_entries(records)
    if entries is None:
        raise MissingIdentityField(NODE_KEY, domain)
    node = txt_value(entries, NODE_KEY)
    if node is None:
        raise MissingIdentityField(NODE_KEY, domain)
    hostname = txt_value(entries, HOSTNAME_KEY)
    if hostname is None:
        raise MissingIdentityField(HOSTNAME_KEY, domain)
    return f"{node}@{hostname}"
