"""IPv4 mDNS multicast socket provider."""

from __future__ import annotations

import logging
import socket
from typing import Any, Callable, Optional, Tuple

from ..errors import ReceiveError, SocketUnavailable

logger = logging.getLogger(__name__)

MDNS_GROUP = "224.0.0.251"
MDNS_PORT = 5353

Datagram = Tuple[bytes, Any]


class MulticastSocket:
    """Brief: UDP socket bound to the mDNS port and joined to the multicast group.

    Inputs (constructor):
      - group: IPv4 multicast group (default 224.0.0.251).
      - port: UDP port (default 5353).
      - interface: Local interface address used for the membership
        (default 0.0.0.0, i.e. INADDR_ANY).
      - loopback: Whether our own multicast traffic is looped back to us.
      - recv_buffer: Maximum datagram size read per receive().
      - poll_interval: Socket timeout in seconds; receive() returns None when
        it elapses so callers can check for a stop request.
      - socket_factory: Callable returning a new socket (tests inject fakes).

    Outputs:
      - MulticastSocket instance; call open() (or use as a context manager)
        before receive().

    Example:
      >>> with MulticastSocket(port=5353) as msock:  # doctest: +SKIP
      ...     datagram = msock.receive()
    """

    def __init__(
        self,
        group: str = MDNS_GROUP,
        port: int = MDNS_PORT,
        interface: str = "0.0.0.0",
        *,
        loopback: bool = True,
        recv_buffer: int = 9000,
        poll_interval: float = 0.5,
        socket_factory: Callable[..., Any] = socket.socket,
    ) -> None:
        self.group = group
        self.port = int(port)
        self.interface = interface
        self.loopback = bool(loopback)
        self.recv_buffer = int(recv_buffer)
        self.poll_interval = float(poll_interval)
        self._socket_factory = socket_factory
        self.sock: Optional[Any] = None

    def _membership(self) -> bytes:
        return socket.inet_aton(self.group) + socket.inet_aton(self.interface)

    def open(self) -> "MulticastSocket":
        """Brief: Bind the socket and join the multicast group.

        Inputs:
          - None.

        Outputs:
          - self, for chaining.

        Raises:
          - SocketUnavailable: when any bind/setsockopt step fails; the
            partially configured socket is closed first.
        """

        if self.sock is not None:
            return self
        sock = None
        try:
            sock = self._socket_factory(
                socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP
            )
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            if hasattr(socket, "SO_REUSEPORT"):
                try:
                    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)
                except OSError:
                    logger.debug("SO_REUSEPORT not supported; continuing without it")
            sock.bind(("", self.port))
            sock.setsockopt(
                socket.IPPROTO_IP, socket.IP_ADD_MEMBERSHIP, self._membership()
            )
            sock.setsockopt(
                socket.IPPROTO_IP, socket.IP_MULTICAST_LOOP, 1 if self.loopback else 0
            )
            sock.settimeout(self.poll_interval)
        except OSError as exc:
            if sock is not None:
                sock.close()
            raise SocketUnavailable(
                f"cannot join {self.group}:{self.port} on {self.interface}: {exc}"
            ) from exc
        self.sock = sock
        logger.info(
            "Listening for mDNS on %s:%d (interface %s)",
            self.group,
            self.port,
            self.interface,
        )
        return self

    def receive(self) -> Optional[Datagram]:
        """Brief: Read exactly one pending datagram.

        Inputs:
          - None.

        Outputs:
          - (payload, address) tuple, or None when poll_interval elapsed
            without traffic.

        Raises:
          - SocketUnavailable: when the socket is not open.
          - ReceiveError: for any other socket failure.
        """

        if self.sock is None:
            raise SocketUnavailable("multicast socket is not open")
        try:
            return self.sock.recvfrom(self.recv_buffer)
        except socket.timeout:
            return None
        except OSError as exc:
            raise ReceiveError(
                f"receive on {self.group}:{self.port} failed: {exc}"
            ) from exc

    def close(self) -> None:
        sock, self.sock = self.sock, None
        if sock is None:
            return
        try:
            sock.setsockopt(
                socket.IPPROTO_IP, socket.IP_DROP_MEMBERSHIP, self._membership()
            )
        except OSError as exc:
            logger.debug("Dropping multicast membership failed: %s", exc)
        sock.close()
        logger.debug("Closed mDNS socket %s:%d", self.group, self.port)

    def __enter__(self) -> "MulticastSocket":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
