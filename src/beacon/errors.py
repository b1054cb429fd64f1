"""Exception types raised by the discovery engine and its socket provider.

Brief:
  Every fatal condition the engine can hit derives from DiscoveryError so the
  owning service can decide on a restart with a single except clause.
"""

from __future__ import annotations

from typing import Optional


class DiscoveryError(Exception):
    """Base class for fatal discovery-engine conditions."""


class DecodeError(DiscoveryError):
    """
    Brief: Raw datagram is not a well-formed DNS message.

    Inputs:
    - message: description (usually the underlying dnslib error text)

    Outputs:
    - Exception instance
    """

    pass


class MissingIdentityField(DiscoveryError):
    """Brief: Advertisement TXT data lacks a required identity key.

    Inputs:
      - key: Missing TXT key ("node" or "hostname").
      - domain: Optional instance name whose additional records were scanned.

    Outputs:
      - Exception instance exposing .key and .domain.
    """

    def __init__(self, key: str, domain: Optional[str] = None) -> None:
        self.key = key
        self.domain = domain
        where = f" for {domain}" if domain else ""
        super().__init__(f"advertisement{where} has no {key}= TXT entry")


class SocketUnavailable(DiscoveryError):
    """
    Brief: Multicast socket could not be bound or the group could not be joined.

    Inputs:
    - message: description including the underlying OSError

    Outputs:
    - Exception instance
    """

    pass


class ReceiveError(DiscoveryError):
    """Reading from an open multicast socket failed with something other than a timeout."""


class PeerDirectoryError(DiscoveryError, ValueError):
    """
    Brief: Local peer registry file could not be read or parsed.

    Inputs:
    - message: description naming the registry path and the cause

    Outputs:
    - Exception instance (also a ValueError, like other malformed-data errors)
    """
