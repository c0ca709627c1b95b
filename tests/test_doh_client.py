"""
Brief: Tests for the DNS-over-HTTPS NS lookup client in nsguard.doh_client.

Inputs:
  - None

Outputs:
  - None
"""

import logging

import pytest
import requests

from conftest import FakeResponse, FakeSession, answer_body
from nsguard.doh_client import (
    DoHClient,
    DoHError,
    NSLookupResult,
    doh_json_query,
    parse_ns_response,
)


def _client(bodies):
    session = FakeSession(bodies)
    return DoHClient("https://dns.example/resolve", timeout_ms=750, session=session), session


def test_lookup_ns_request_shape():
    """
    Brief: lookup_ns issues GET <url>?name=<name>&type=NS with JSON accept header.

    Inputs:
      - FakeSession capturing the call

    Outputs:
      - None: Asserts URL, params, headers and timeout
    """
    client, session = _client({"example.com": answer_body("ns1.reg.com.")})
    client.lookup_ns("example.com")
    assert len(session.calls) == 1
    call = session.calls[0]
    assert call["url"] == "https://dns.example/resolve"
    assert call["params"] == {"name": "example.com", "type": "NS"}
    assert call["headers"]["Accept"] == "application/dns-json"
    assert call["headers"]["User-Agent"].startswith("nsguard v")
    assert call["timeout"] == pytest.approx(0.75)


def test_lookup_ns_keeps_caller_user_agent():
    session = FakeSession({})
    client = DoHClient(headers={"user-agent": "custom/1"}, session=session)
    client.lookup_ns("example.com")
    headers = session.calls[0]["headers"]
    assert headers["user-agent"] == "custom/1"
    assert "User-Agent" not in headers


def test_lookup_ns_answer_section_lowercased_and_short_circuits():
    """
    Brief: Answer-section NS records win and carry no authority.

    Inputs:
      - body with NS answers and an SOA in Authority

    Outputs:
      - None: Asserts servers from Answer only and authority None
    """
    body = answer_body("NS1.Reg.com.", "ns2.reg.com.")
    body["Authority"] = [{"name": "other.net.", "type": 6, "data": "soa data"}]
    client, _ = _client({"example.com": body})
    result = client.lookup_ns("example.com")
    assert result == NSLookupResult(servers=frozenset({"ns1.reg.com", "ns2.reg.com"}))
    assert result.authority is None


def test_lookup_ns_answer_without_ns_falls_through_to_authority():
    """
    Brief: Answer section without NS (e.g. CNAME) defers to Authority section.

    Inputs:
      - Answer with a CNAME record and Authority with SOA + NS

    Outputs:
      - None: Asserts servers and authority taken from Authority
    """
    body = {
        "Status": 0,
        "Answer": [{"name": "t.example.com.", "type": 5, "data": "edge.cdn.net."}],
        "Authority": [
            {"name": "CDN.net.", "type": 6, "data": "ns.cdn.net. admin.cdn.net. 1 2 3 4 5"},
            {"name": "cdn.net.", "type": 2, "data": "NS.CDN.NET."},
        ],
    }
    client, _ = _client({"t.example.com": body})
    result = client.lookup_ns("t.example.com")
    assert result.servers == frozenset({"ns.cdn.net"})
    assert result.authority == "cdn.net"


def test_lookup_ns_authority_soa_only():
    body = {
        "Status": 0,
        "Authority": [{"name": "thirdparty.net.", "type": 6, "data": "a b 1 2 3 4 5"}],
    }
    client, _ = _client({"evil.a.com": body})
    assert client.lookup_ns("evil.a.com") == NSLookupResult(authority="thirdparty.net")


def test_lookup_ns_empty_sections():
    client, _ = _client({"x.a.com": {"Status": 0, "Answer": [], "Authority": []}})
    result = client.lookup_ns("x.a.com")
    assert result == NSLookupResult.empty()
    assert result.is_empty


@pytest.mark.parametrize("status", [2, 3, 5])
def test_lookup_ns_dns_error_status_is_empty(status):
    """
    Brief: Non-zero DNS Status (SERVFAIL, NXDOMAIN, REFUSED) yields empty result.

    Inputs:
      - status: DNS RCODE in the JSON body

    Outputs:
      - None: Asserts empty result even with records present
    """
    body = answer_body("ns1.reg.com.")
    body["Status"] = status
    client, _ = _client({"example.com": body})
    assert client.lookup_ns("example.com") == NSLookupResult.empty()


def test_lookup_ns_http_error_is_empty(caplog):
    caplog.set_level(logging.WARNING)
    client, _ = _client({"example.com": FakeResponse(503, None, "Service Unavailable")})
    assert client.lookup_ns("example.com") == NSLookupResult.empty()
    assert "HTTP 503" in caplog.text


@pytest.mark.parametrize(
    "exc",
    [
        requests.ConnectionError("refused"),
        requests.Timeout("timed out"),
        requests.exceptions.SSLError("bad cert"),
    ],
)
def test_lookup_ns_transport_errors_are_empty(exc):
    """
    Brief: Transport failures and timeouts never propagate.

    Inputs:
      - exc: requests exception raised by the session

    Outputs:
      - None: Asserts empty result
    """
    client, _ = _client({"example.com": exc})
    assert client.lookup_ns("example.com") == NSLookupResult.empty()


def test_lookup_ns_invalid_json_is_empty():
    client, _ = _client({"example.com": FakeResponse(200, ValueError("not json"))})
    assert client.lookup_ns("example.com") == NSLookupResult.empty()


def test_doh_json_query_rejects_non_object_body():
    session = FakeSession({"example.com": FakeResponse(200, ["not", "a", "dict"])})
    with pytest.raises(DoHError):
        doh_json_query(session, "https://dns.example/resolve", "example.com")


def test_parse_ns_response_ignores_malformed_records():
    """
    Brief: Records that are not dicts or lack string data are skipped.

    Inputs:
      - Answer list with junk entries

    Outputs:
      - None: Asserts only the well-formed NS survives
    """
    body = {
        "Status": 0,
        "Answer": [
            "junk",
            {"type": 2},
            {"type": 2, "data": 42},
            {"type": 2, "data": "."},
            {"type": 2, "data": "ns1.ok.com."},
        ],
    }
    assert parse_ns_response(body).servers == frozenset({"ns1.ok.com"})


def test_client_host_and_close():
    client, session = _client({})
    assert client.host == "dns.example"
    client.close()
    assert session.closed
