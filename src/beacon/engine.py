"""mDNS packet classification and advertisement reconciliation.

Brief:
  DiscoveryEngine owns the multicast socket and the service domain string.
  Every datagram is decoded, matched against a short, ordered list of packet
  shapes, and turned into exactly one reaction:

    1. PTR query for the service domain, no known answers -> multicast()
    2. same query with one known answer -> multicast() only when the answer
       names one of our local instances
    3. response carrying answers -> reconcile each PTR answer against the
       additional records (notify about peers, re-announce on new peers)
    4. anything else -> ignored

  Shapes that match nothing are valid no-ops; only decode failures and
  advertisements missing identity fields raise.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Optional, Sequence

from dnslib import OPCODE, QTYPE

from .errors import DiscoveryError
from .identity import extract_node_identity
from .message import (
    Message,
    Question,
    ResourceRecord,
    decode_message,
    is_in_class,
    normalize_name,
    same_name,
)
from .notify import ADVERTISEMENT
from .transports.multicast import MulticastSocket

logger = logging.getLogger(__name__)


class Reaction(str, Enum):
    """Reaction returned by DiscoveryEngine.handle_packet() and classify()."""

    IGNORE = "ignore"
    ANNOUNCE = "announce"
    SUPPRESS = "suppress"
    RECONCILE = "reconcile"


IGNORE = Reaction.IGNORE
ANNOUNCE = Reaction.ANNOUNCE
SUPPRESS = Reaction.SUPPRESS
RECONCILE = Reaction.RECONCILE


def make_service_domain(service: str, domain: str) -> str:
    """Brief: Join a service name and a domain suffix into the service domain.

    Inputs:
      - service: Service name such as ``_beacon._tcp``.
      - domain: Domain suffix such as ``.local`` or ``local.``.

    Outputs:
      - str: e.g. ``_beacon._tcp.local`` (no trailing dot).

    Example:
      >>> make_service_domain("_beacon._tcp", "local.")
      '_beacon._tcp.local'
    """

    svc = str(service).strip().strip(".")
    dom = str(domain or "").strip().strip(".")
    if not svc:
        raise ValueError("service name must not be empty")
    return f"{svc}.{dom}" if dom else svc


@dataclass(frozen=True)
class DiscoveryState:
    service_domain: str
    socket: MulticastSocket


class DiscoveryEngine:
    """Brief: Receive mDNS datagrams and react to peer-discovery traffic.

    Inputs (constructor):
      - service: Service name (``_beacon._tcp``).
      - domain: Domain suffix (``.local``).
      - node: Own node identity. A bare name is qualified with the host
        identity's hostname (``name@host``); a value already containing ``@``
        is used as-is.
      - advertiser: Object with a zero-argument multicast() method.
      - bus: Object with notify(topic, payload).
      - peers: Local peer directory exposing list_local_peer_names().
      - host: Host identity exposing get_hostname().
      - socket: MulticastSocket to open in start(); only needed when the
        engine reads from the network itself.

    Outputs:
      - DiscoveryEngine instance. handle_packet() works without start(), which
        is how tests drive it.
    """

    def __init__(
        self,
        service: str,
        domain: str,
        node: str,
        *,
        advertiser: Any,
        bus: Any,
        peers: Any,
        host: Any,
        socket: Optional[MulticastSocket] = None,
    ) -> None:
        self.service_domain = make_service_domain(service, domain)
        self.advertiser = advertiser
        self.bus = bus
        self.peers = peers
        self.host = host
        self.node = node if "@" in node else f"{node}@{host.get_hostname()}"
        self._socket = socket
        self.state: Optional[DiscoveryState] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(self) -> DiscoveryState:
        """Brief: Open the multicast socket and build the discovery state.

        Inputs:
          - None.

        Outputs:
          - DiscoveryState.

        Raises:
          - SocketUnavailable: propagated from the socket provider.
        """

        if self.state is not None:
            return self.state
        if self._socket is None:
            raise ValueError("DiscoveryEngine.start() requires a socket provider")
        self._socket.open()
        self.state = DiscoveryState(self.service_domain, self._socket)
        logger.info(
            "Discovery engine for %s started as %s", self.service_domain, self.node
        )
        return self.state

    def close(self) -> None:
        state, self.state = self.state, None
        if state is not None:
            state.socket.close()

    def __enter__(self) -> "DiscoveryEngine":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def serve_forever(self, stop_event: threading.Event) -> None:
        """Brief: Process datagrams one at a time until stop_event is set.

        Inputs:
          - stop_event: threading.Event checked between datagrams and after
            every socket poll timeout.

        Outputs:
          - None.

        Raises:
          - DecodeError / MissingIdentityField: from handle_packet(); the
            caller decides whether to restart.
        """

        state = self.start()
        while not stop_event.is_set():
            datagram = state.socket.receive()
            if datagram is None:
                continue
            packet, address = datagram
            try:
                self.handle_packet(packet, address)
            except DiscoveryError as exc:
                logger.warning("Fatal datagram from %s: %s", address, exc)
                raise

    # ------------------------------------------------------------------
    # Classification
    # ------------------------------------------------------------------
    def handle_packet(self, packet: bytes, address: Any = None) -> Reaction:
        """Brief: Decode one datagram and apply the matching reaction.

        Inputs:
          - packet: Raw datagram payload.
          - address: Optional sender address, used for logging.

        Outputs:
          - Reaction: IGNORE, ANNOUNCE, SUPPRESS or RECONCILE.

        Raises:
          - DecodeError: when the datagram is not a DNS message.
          - MissingIdentityField: when an advertisement lacks node/hostname.
        """

        message = decode_message(packet)
        reaction = self.classify(message)
        logger.debug("Packet from %s: %s", address, reaction.value)
        return reaction

    def _is_service_ptr_question(self, questions: Sequence[Question]) -> bool:
        if len(questions) != 1:
            return False
        q = questions[0]
        return (
            q.qtype == QTYPE.PTR
            and is_in_class(q.qclass)
            and same_name(q.domain, self.service_domain)
        )

    def _is_service_ptr_answer(self, rr: ResourceRecord) -> bool:
        return (
            rr.rtype == QTYPE.PTR
            and is_in_class(rr.rclass)
            and same_name(rr.domain, self.service_domain)
        )

    def classify(self, message: Message) -> Reaction:
        """Brief: Match message against the known shapes, first match wins.

        Inputs:
          - message: Projected DNS message.

        Outputs:
          - Reaction member.
        """

        header = message.header
        if header.opcode != OPCODE.QUERY:
            return IGNORE

        if not header.qr:
            if (
                not self._is_service_ptr_question(message.questions)
                or message.authorities
                or message.resources
            ):
                return IGNORE
            if not message.answers:
                self.advertiser.multicast()
                return ANNOUNCE
            if len(message.answers) == 1:
                known = message.answers[0].data
                if isinstance(known, str) and normalize_name(known) in {
                    normalize_name(i) for i in self.local_instances()
                }:
                    self.advertiser.multicast()
                    return ANNOUNCE
                return SUPPRESS
            return IGNORE

        if not message.questions and message.answers and not message.authorities:
            self.reconcile(message.answers, message.resources)
            return RECONCILE
        return IGNORE

    # ------------------------------------------------------------------
    # Local instances and advertisements
    # ------------------------------------------------------------------
    def instance_name(self, peer: str, hostname: str) -> str:
        return f"{peer}@{hostname}.{self.service_domain}"

    def local_instances(self) -> List[str]:
        """Brief: Instance names of every peer process running on this host.

        Inputs:
          - None.

        Outputs:
          - list[str]: ``<peer>@<hostname>.<service domain>`` per local peer,
            rebuilt from the peer directory on every call.
        """

        hostname = self.host.get_hostname()
        return [
            self.instance_name(peer, hostname)
            for peer in self.peers.list_local_peer_names()
        ]

    def reconcile(
        self,
        answers: Sequence[ResourceRecord],
        resources: Sequence[ResourceRecord],
    ) -> int:
        """Brief: Turn PTR answers of an advertisement into peer notifications.

        Inputs:
          - answers: Answer section, in order.
          - resources: Additional section of the same message.

        Outputs:
          - int: Number of advertisement notifications emitted.

        Notes:
          - ttl == 0 (goodbye) notifies and never re-announces.
          - ttl > 0 for a node other than our own notifies and then calls
            multicast() so the new peer learns about us too. Echoes of our own
            announcements are ignored.
        """

        notified = 0
        for answer in answers:
            if not self._is_service_ptr_answer(answer) or not isinstance(
                answer.data, str
            ):
                continue
            instance = answer.data
            records = [rr for rr in resources if same_name(rr.domain, instance)]
            node = extract_node_identity(records, instance)

            if answer.ttl == 0:
                logger.info("Goodbye from %s (%s)", node, instance)
                self.bus.notify(ADVERTISEMENT, {"node": node, "ttl": 0})
                notified += 1
            elif node != self.node:
                logger.info("Advertisement from %s (ttl=%d)", node, answer.ttl)
                self.bus.notify(ADVERTISEMENT, {"node": node, "ttl": answer.ttl})
                self.advertiser.multicast()
                notified += 1
        return notified
