"""
Brief: Global pytest configuration: src/ on sys.path, per-test 10s timeout and
recording collaborators for the discovery engine.

Inputs:
  - None

Outputs:
  - None
"""

import os
import signal
import sys

import pytest

# Ensure 'src' is on sys.path so 'beacon' package is importable in tests
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
SRC_DIR = os.path.join(ROOT, "src")
if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)


def _alarm_handler(signum, frame):
    """
    Brief: Signal handler that raises TimeoutError when alarm triggers.

    Inputs:
      - signum: signal number (int)
      - frame: current frame (ignored)

    Outputs:
      - None: Raises TimeoutError to fail the test
    """
    raise TimeoutError("Test exceeded 10 seconds")


# Install handler if supported on this platform
if hasattr(signal, "SIGALRM"):
    signal.signal(signal.SIGALRM, _alarm_handler)


@pytest.fixture(autouse=True)
def enforce_test_timeout():
    """
    Brief: Enforce a hard 10-second timeout for each test.

    Inputs:
      - None

    Outputs:
      - None: Cancels alarm after test
    """
    if hasattr(signal, "SIGALRM"):
        signal.alarm(10)
        try:
            yield
        finally:
            signal.alarm(0)
    else:
        yield


class RecordingAdvertiser:
    def __init__(self, calls):
        self.calls = calls

    def multicast(self):
        self.calls.append(("multicast",))

    def close(self):
        pass


class RecordingBus:
    def __init__(self, calls):
        self.calls = calls

    def notify(self, topic, payload):
        self.calls.append(("notify", topic, dict(payload)))


@pytest.fixture
def calls():
    """Ordered log of collaborator calls made by an engine under test."""
    return []


@pytest.fixture
def make_engine(calls):
    """
    Brief: Factory building a DiscoveryEngine wired to recording collaborators.

    Inputs:
      - calls: shared call log fixture

    Outputs:
      - callable(**overrides) -> DiscoveryEngine
    """
    from beacon.engine import DiscoveryEngine
    from beacon.peers import HostIdentity, StaticPeerDirectory

    def _make(
        node="me",
        hostname="h0",
        peers=("me",),
        service="_svc._tcp",
        domain=".local",
        socket=None,
    ):
        return DiscoveryEngine(
            service,
            domain,
            node,
            advertiser=RecordingAdvertiser(calls),
            bus=RecordingBus(calls),
            peers=StaticPeerDirectory(peers),
            host=HostIdentity(hostname),
            socket=socket,
        )

    return _make
