"""
Brief: Global pytest configuration and shared fakes for nsguard tests.

Inputs:
  - None

Outputs:
  - None
"""

import os
import signal
import sys
import threading
from typing import Any, Dict, List, Optional

import pytest
import requests

# Ensure 'src' is on sys.path so 'nsguard' package is importable in tests
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
SRC_DIR = os.path.join(ROOT, "src")
if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)

from nsguard.doh_client import NSLookupResult  # noqa: E402


def _alarm_handler(signum, frame):
    raise TimeoutError("Test exceeded 10 seconds")


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


class FakeResponse:
    """Minimal stand-in for requests.Response."""

    def __init__(self, status_code: int = 200, body: Any = None, reason: str = "OK"):
        self.status_code = status_code
        self.reason = reason
        self._body = body

    def json(self) -> Any:
        if isinstance(self._body, Exception):
            raise self._body
        return self._body


class FakeSession:
    """Brief: requests.Session double returning canned bodies per queried name.

    Inputs:
      - bodies: mapping of name -> JSON body dict, FakeResponse or Exception.

    Outputs:
      - FakeSession recording every call in ``calls``.
    """

    def __init__(self, bodies: Optional[Dict[str, Any]] = None) -> None:
        self.bodies = dict(bodies or {})
        self.calls: List[Dict[str, Any]] = []
        self.closed = False

    def get(self, url, params=None, headers=None, timeout=None, verify=True):
        self.calls.append(
            {
                "url": url,
                "params": dict(params or {}),
                "headers": dict(headers or {}),
                "timeout": timeout,
                "verify": verify,
            }
        )
        body = self.bodies.get((params or {}).get("name"), {"Status": 0})
        if isinstance(body, Exception):
            raise body
        if isinstance(body, FakeResponse):
            return body
        return FakeResponse(200, body)

    def close(self) -> None:
        self.closed = True


class ManualClock:
    """Callable clock advanced explicitly by tests."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class StaticAnswers:
    """Brief: AnswerCache double returning fixed NSLookupResults per name.

    Inputs:
      - results: mapping of name -> NSLookupResult (missing names are empty).

    Outputs:
      - StaticAnswers recording resolved names in ``resolved``.
    """

    def __init__(self, results: Dict[str, NSLookupResult]) -> None:
        self.results = results
        self.resolved: List[str] = []
        self._lock = threading.Lock()

    def resolve(self, name: str) -> NSLookupResult:
        with self._lock:
            self.resolved.append(name)
        return self.results.get(name, NSLookupResult.empty())


def ns(*servers: str, authority: Optional[str] = None) -> NSLookupResult:
    return NSLookupResult(servers=frozenset(servers), authority=authority)


def answer_body(*servers: str) -> Dict[str, Any]:
    return {
        "Status": 0,
        "Answer": [{"name": "x.", "type": 2, "TTL": 300, "data": s} for s in servers],
    }


@pytest.fixture
def fake_session():
    return FakeSession()


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def network_error():
    return requests.ConnectionError("connection refused")
