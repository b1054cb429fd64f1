"""Projection of decoded DNS messages into the fields the engine classifies on.

Brief:
  dnslib does the wire decoding. This module flattens a DNSRecord into small
  frozen dataclasses (Header, Question, ResourceRecord, Message) whose names
  are plain strings without a trailing dot, so classification never has to
  deal with DNSLabel escaping rules.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Tuple, Union

from dnslib import CLASS, QTYPE, DNSError, DNSRecord

from .errors import DecodeError

logger = logging.getLogger(__name__)

# mDNS reuses the top bit of the class field: unicast-response on questions,
# cache-flush on resource records.
MDNS_CLASS_MASK = 0x7FFF

RecordData = Union[str, Tuple[str, ...]]

_NAME_RTYPES = frozenset((QTYPE.PTR, QTYPE.CNAME, QTYPE.NS))


def label_to_name(label: object) -> str:
    """Brief: Render a dnslib DNSLabel as a dotted name without escaping.

    Inputs:
      - label: DNSLabel (or anything with a sensible str()).

    Outputs:
      - str: Labels joined with '.', no trailing dot.

    Notes:
      - str(DNSLabel) escapes bytes outside letters/digits/hyphen, which would
        turn an instance such as ``a@h1._beacon._tcp.local`` into ``a\\064h1...``.
        Decoding the raw labels keeps names comparable with locally built ones.
    """

    parts = getattr(label, "label", None)
    if parts is None:
        return str(label).rstrip(".")
    return ".".join(bytes(p).decode("utf-8", "replace") for p in parts)


def normalize_name(name: str) -> str:
    """Brief: Canonical form used for every domain comparison.

    Inputs:
      - name: Domain or instance name.

    Outputs:
      - str: Lowercased name without a trailing dot.

    Example:
      >>> normalize_name("_Beacon._tcp.local.")
      '_beacon._tcp.local'
    """

    return str(name).rstrip(".").lower()


def same_name(a: str, b: str) -> bool:
    return normalize_name(a) == normalize_name(b)


def is_in_class(value: int) -> bool:
    """Return True when a question/record class is IN, ignoring the mDNS top bit."""
    return (int(value) & MDNS_CLASS_MASK) == CLASS.IN


@dataclass(frozen=True)
class Header:
    """Header fields relevant to classification (qr False == query)."""

    qr: bool
    opcode: int


@dataclass(frozen=True)
class Question:
    domain: str
    qtype: int
    qclass: int


@dataclass(frozen=True)
class ResourceRecord:
    """Brief: One answer, authority or additional record.

    Inputs:
      - domain: Owner name without trailing dot.
      - rtype: Numeric record type.
      - rclass: Numeric class as received (mDNS cache-flush bit included).
      - ttl: TTL in seconds; 0 marks a goodbye record.
      - data: Target name for PTR/CNAME/NS, tuple of strings for TXT, and the
        textual rdata otherwise.
    """

    domain: str
    rtype: int
    rclass: int
    ttl: int
    data: RecordData


@dataclass(frozen=True)
class Message:
    header: Header
    questions: Tuple[Question, ...]
    answers: Tuple[ResourceRecord, ...]
    authorities: Tuple[ResourceRecord, ...]
    resources: Tuple[ResourceRecord, ...]

    @classmethod
    def from_record(cls, record: DNSRecord) -> "Message":
        """Brief: Project a parsed dnslib DNSRecord.

        Inputs:
          - record: dnslib DNSRecord.

        Outputs:
          - Message: Flattened, immutable view of the record.
        """

        header = Header(qr=bool(record.header.qr), opcode=int(record.header.opcode))
        questions = tuple(
            Question(
                domain=label_to_name(q.qname),
                qtype=int(q.qtype),
                qclass=int(q.qclass),
            )
            for q in record.questions
        )
        return cls(
            header=header,
            questions=questions,
            answers=_project_rrs(record.rr),
            authorities=_project_rrs(record.auth),
            resources=_project_rrs(record.ar),
        )


def _record_data(rtype: int, rdata: object) -> RecordData:
    if rtype == QTYPE.TXT:
        return tuple(
            bytes(s).decode("utf-8", "replace") for s in getattr(rdata, "data", [])
        )
    if rtype in _NAME_RTYPES and hasattr(rdata, "label"):
        return label_to_name(getattr(rdata, "label"))
    return str(rdata)


def _project_rrs(rrs) -> Tuple[ResourceRecord, ...]:
    return tuple(
        ResourceRecord(
            domain=label_to_name(rr.rname),
            rtype=int(rr.rtype),
            rclass=int(rr.rclass),
            ttl=int(rr.ttl),
            data=_record_data(int(rr.rtype), rr.rdata),
        )
        for rr in rrs
    )


def decode_message(packet: bytes) -> Message:
    """Brief: Decode a raw datagram into a Message.

    Inputs:
      - packet: DNS wire-format bytes.

    Outputs:
      - Message.

    Raises:
      - DecodeError: when dnslib cannot parse the datagram.
    """

    try:
        record = DNSRecord.parse(packet)
    except DNSError as exc:
        raise DecodeError(str(exc)) from exc
    return Message.from_record(record)
