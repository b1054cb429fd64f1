"""
Brief: Classification and reconciliation tests for beacon.engine.DiscoveryEngine.

Inputs:
  - None

Outputs:
  - None
"""

import itertools
import logging

import pytest
from dnslib import CLASS, OPCODE, PTR, QTYPE, RR, TXT, A, DNSHeader, DNSQuestion, DNSRecord

from beacon.engine import (
    ANNOUNCE,
    IGNORE,
    RECONCILE,
    SUPPRESS,
    Reaction,
    make_service_domain,
)
from beacon.errors import DecodeError, MissingIdentityField

SERVICE = "_svc._tcp.local"


def _ptr_question(name=SERVICE, qclass=CLASS.IN):
    return DNSQuestion(name, QTYPE.PTR, qclass)


def _ptr_answer(target, ttl=120, name=SERVICE, rclass=CLASS.IN):
    return RR(name, QTYPE.PTR, rclass, ttl, PTR(target))


def _txt(name, entries, ttl=120):
    return RR(name, QTYPE.TXT, CLASS.IN, ttl, TXT(list(entries)))


def _packet(questions=(), answers=(), auth=(), ar=(), qr=0, opcode=OPCODE.QUERY):
    """Brief: Build mDNS wire bytes with explicit sections.

    Inputs:
      - questions/answers/auth/ar: dnslib objects per section.
      - qr: 0 for queries, 1 for responses.
      - opcode: header opcode.

    Outputs:
      - bytes: packed DNS message.
    """

    record = DNSRecord(
        DNSHeader(id=0, qr=qr, opcode=opcode),
        questions=list(questions),
        rr=list(answers),
        auth=list(auth),
        ar=list(ar),
    )
    return record.pack()


def _advertisement(target="inst1._svc._tcp.local", ttl=120, entries=("node=a", "hostname=h1")):
    return _packet(
        answers=[_ptr_answer(target, ttl)],
        ar=[_txt(target, entries)],
        qr=1,
    )


def test_make_service_domain_normalizes_dots():
    assert make_service_domain("_svc._tcp", ".local") == SERVICE
    assert make_service_domain("_svc._tcp.", "local.") == SERVICE
    with pytest.raises(ValueError):
        make_service_domain("", ".local")


def test_own_node_is_qualified_with_hostname(make_engine):
    assert make_engine(node="me", hostname="h0").node == "me@h0"
    assert make_engine(node="me@elsewhere", hostname="h0").node == "me@elsewhere"


def test_plain_ptr_query_triggers_multicast_once(make_engine, calls):
    """
    Brief: A PTR query for the service domain without known answers announces.

    Inputs:
      - query with one PTR/IN question

    Outputs:
      - None: Asserts one multicast() call
    """
    engine = make_engine()
    reaction = engine.handle_packet(_packet(questions=[_ptr_question()]))
    assert reaction is Reaction.ANNOUNCE
    assert reaction == "announce"
    assert calls == [("multicast",)]


def test_ptr_query_matches_unicast_response_bit_and_case(make_engine, calls):
    engine = make_engine()
    pkt = _packet(questions=[_ptr_question("_SVC._tcp.LOCAL.", CLASS.IN | 0x8000)])
    assert engine.handle_packet(pkt) == ANNOUNCE
    assert calls == [("multicast",)]


def test_known_answer_naming_local_instance_triggers_multicast(make_engine, calls):
    engine = make_engine(peers=("me", "other"), hostname="h0")
    pkt = _packet(
        questions=[_ptr_question()],
        answers=[_ptr_answer("other@h0._svc._tcp.local")],
    )
    assert engine.handle_packet(pkt) == ANNOUNCE
    assert calls == [("multicast",)]


def test_known_answer_for_foreign_instance_is_suppressed(make_engine, calls):
    engine = make_engine(peers=("me",), hostname="h0")
    pkt = _packet(
        questions=[_ptr_question()],
        answers=[_ptr_answer("someone@h9._svc._tcp.local")],
    )
    assert engine.handle_packet(pkt) == SUPPRESS
    assert calls == []


def test_known_answer_comparison_ignores_case(make_engine, calls):
    engine = make_engine(peers=("me",), hostname="h0")
    pkt = _packet(
        questions=[_ptr_question()],
        answers=[_ptr_answer("ME@H0._svc._tcp.local")],
    )
    assert engine.handle_packet(pkt) == ANNOUNCE
    assert calls == [("multicast",)]


def test_local_instances_are_recomputed_on_every_query(make_engine, calls):
    engine = make_engine(peers=(), hostname="h0")
    pkt = _packet(
        questions=[_ptr_question()],
        answers=[_ptr_answer("late@h0._svc._tcp.local")],
    )
    assert engine.handle_packet(pkt) == SUPPRESS
    engine.peers.names.append("late")
    assert engine.handle_packet(pkt) == ANNOUNCE
    assert calls == [("multicast",)]


def test_local_instances_format(make_engine):
    engine = make_engine(peers=("a", "b"), hostname="box")
    assert engine.local_instances() == [
        "a@box._svc._tcp.local",
        "b@box._svc._tcp.local",
    ]


@pytest.mark.parametrize(
    "kwargs",
    [
        # Different service domain
        {"questions": [_ptr_question("_other._tcp.local")]},
        # Wrong type
        {"questions": [DNSQuestion(SERVICE, QTYPE.SRV, CLASS.IN)]},
        # Wrong class
        {"questions": [_ptr_question(qclass=CLASS.CH)]},
        # Two questions
        {"questions": [_ptr_question(), _ptr_question()]},
        # Authority section present
        {
            "questions": [_ptr_question()],
            "auth": [RR("x.local", QTYPE.A, CLASS.IN, 120, A("192.0.2.1"))],
        },
        # Additional section present
        {
            "questions": [_ptr_question()],
            "ar": [RR("x.local", QTYPE.A, CLASS.IN, 120, A("192.0.2.1"))],
        },
        # More than one known answer
        {
            "questions": [_ptr_question()],
            "answers": [
                _ptr_answer("me@h0._svc._tcp.local"),
                _ptr_answer("x@h1._svc._tcp.local"),
            ],
        },
        # No questions at all
        {},
    ],
)
def test_other_query_shapes_are_ignored(make_engine, calls, kwargs):
    engine = make_engine()
    assert engine.handle_packet(_packet(**kwargs)) == IGNORE
    assert calls == []


def test_non_query_opcode_is_ignored(make_engine, calls):
    engine = make_engine()
    pkt = _packet(questions=[_ptr_question()], opcode=OPCODE.UPDATE)
    assert engine.handle_packet(pkt) == IGNORE
    assert calls == []


def test_response_with_questions_is_ignored(make_engine, calls):
    engine = make_engine()
    pkt = _packet(
        questions=[_ptr_question()],
        answers=[_ptr_answer("inst1._svc._tcp.local")],
        ar=[_txt("inst1._svc._tcp.local", ["node=a", "hostname=h1"])],
        qr=1,
    )
    assert engine.handle_packet(pkt) == IGNORE
    assert calls == []


def test_advertisement_from_new_peer_notifies_then_multicasts(make_engine, calls):
    """
    Brief: ttl>0 advertisement for a foreign node notifies then re-announces.

    Inputs:
      - PTR answer ttl=120 and TXT additional with node=a, hostname=h1

    Outputs:
      - None: Asserts notify before multicast, each exactly once
    """
    engine = make_engine(node="me", hostname="h0")
    assert engine.handle_packet(_advertisement(ttl=120)) == RECONCILE
    assert calls == [
        ("notify", "advertisement", {"node": "a@h1", "ttl": 120}),
        ("multicast",),
    ]


def test_goodbye_advertisement_notifies_without_multicast(make_engine, calls):
    engine = make_engine(node="me", hostname="h0")
    engine.handle_packet(_advertisement(ttl=0))
    assert calls == [("notify", "advertisement", {"node": "a@h1", "ttl": 0})]


def test_goodbye_for_own_node_still_notifies(make_engine, calls):
    engine = make_engine(node="a", hostname="h1")
    engine.handle_packet(_advertisement(ttl=0))
    assert calls == [("notify", "advertisement", {"node": "a@h1", "ttl": 0})]


def test_echo_of_own_advertisement_is_ignored(make_engine, calls):
    engine = make_engine(node="a", hostname="h1")
    assert engine.handle_packet(_advertisement(ttl=120)) == RECONCILE
    assert calls == []


def test_advertisement_cache_flush_bit_still_matches(make_engine, calls):
    engine = make_engine()
    target = "inst1._svc._tcp.local"
    pkt = _packet(
        answers=[_ptr_answer(target, rclass=CLASS.IN | 0x8000)],
        ar=[_txt(target, ["node=a", "hostname=h1"])],
        qr=1,
    )
    engine.handle_packet(pkt)
    assert calls[0] == ("notify", "advertisement", {"node": "a@h1", "ttl": 120})


def test_advertisement_processes_every_matching_answer_in_order(make_engine, calls):
    engine = make_engine(node="me", hostname="h0")
    pkt = _packet(
        answers=[
            _ptr_answer("i1._svc._tcp.local", ttl=120),
            RR("x.local", QTYPE.A, CLASS.IN, 120, A("192.0.2.1")),
            _ptr_answer("i2._other._tcp.local", ttl=120, name="_other._tcp.local"),
            _ptr_answer("i3._svc._tcp.local", ttl=0),
            _ptr_answer("i4._svc._tcp.local", ttl=60),
        ],
        ar=[
            _txt("i1._svc._tcp.local", ["node=one", "hostname=h1"]),
            _txt("i3._svc._tcp.local", ["hostname=h3", "node=three"]),
            _txt("i4._svc._tcp.local", ["node=me", "hostname=h0"]),
        ],
        qr=1,
    )
    engine.handle_packet(pkt)
    assert calls == [
        ("notify", "advertisement", {"node": "one@h1", "ttl": 120}),
        ("multicast",),
        ("notify", "advertisement", {"node": "three@h3", "ttl": 0}),
    ]


def test_advertisement_only_uses_records_of_referenced_instance(make_engine, calls):
    engine = make_engine()
    pkt = _packet(
        answers=[_ptr_answer("i1._svc._tcp.local")],
        ar=[
            _txt("i2._svc._tcp.local", ["node=wrong", "hostname=wrong"]),
            RR("i1._svc._tcp.local", QTYPE.A, CLASS.IN, 120, A("192.0.2.1")),
            _txt("i1._svc._tcp.local", ["node=right", "hostname=h1"]),
        ],
        qr=1,
    )
    engine.handle_packet(pkt)
    assert calls[0] == ("notify", "advertisement", {"node": "right@h1", "ttl": 120})


def test_advertisement_without_matching_answers_is_noop(make_engine, calls):
    engine = make_engine()
    pkt = _packet(
        answers=[RR("x.local", QTYPE.A, CLASS.IN, 120, A("192.0.2.1"))],
        qr=1,
    )
    assert engine.handle_packet(pkt) == RECONCILE
    assert calls == []


def test_response_with_authority_section_is_ignored(make_engine, calls):
    engine = make_engine()
    target = "inst1._svc._tcp.local"
    pkt = _packet(
        answers=[_ptr_answer(target)],
        auth=[RR("x.local", QTYPE.A, CLASS.IN, 120, A("192.0.2.1"))],
        ar=[_txt(target, ["node=a", "hostname=h1"])],
        qr=1,
    )
    assert engine.handle_packet(pkt) == IGNORE
    assert calls == []


@pytest.mark.parametrize(
    "entries,missing",
    [
        (("hostname=h1",), "node"),
        (("node=a",), "hostname"),
        (("path=/",), "node"),
    ],
)
def test_advertisement_missing_identity_field_raises(make_engine, calls, entries, missing):
    engine = make_engine()
    with pytest.raises(MissingIdentityField) as ei:
        engine.handle_packet(_advertisement(entries=entries))
    assert ei.value.key == missing
    assert calls == []


def test_advertisement_without_txt_record_raises(make_engine):
    engine = make_engine()
    pkt = _packet(answers=[_ptr_answer("inst1._svc._tcp.local")], qr=1)
    with pytest.raises(MissingIdentityField):
        engine.handle_packet(pkt)


def test_identity_is_independent_of_txt_entry_order(make_engine, calls):
    entries = ["path=/", "node=a", "hostname=h1", "version=2"]
    for perm in itertools.permutations(entries):
        calls.clear()
        make_engine().handle_packet(_advertisement(entries=perm))
        assert calls[0] == ("notify", "advertisement", {"node": "a@h1", "ttl": 120})


def test_garbage_datagram_raises_decode_error(make_engine, calls):
    engine = make_engine()
    with pytest.raises(DecodeError):
        engine.handle_packet(b"\x00\x01")
    assert calls == []


def test_peer_advertisements_are_logged_at_info(make_engine, caplog):
    engine = make_engine(node="me", hostname="h0")
    with caplog.at_level(logging.INFO, logger="beacon.engine"):
        engine.handle_packet(_advertisement(ttl=120))
        engine.handle_packet(_advertisement(ttl=0))
    messages = [r.getMessage() for r in caplog.records if r.levelno == logging.INFO]
    assert "Advertisement from a@h1 (ttl=120)" in messages
    assert "Goodbye from a@h1 (inst1._svc._tcp.local)" in messages
