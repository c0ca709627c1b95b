from __future__ import annotations

import importlib.metadata
import logging
import urllib.parse
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, List, Optional

import requests
from dnslib import QTYPE

from .domain_utils import normalize_hostname

try:
    NSGUARD_VERSION = importlib.metadata.version("nsguard")
except Exception:  # pragma: no cover
    NSGUARD_VERSION = "unknown"

logger = logging.getLogger(__name__)

DEFAULT_DOH_URL = "https://dns.google/resolve"
DEFAULT_TIMEOUT_MS = 1500


class DoHError(Exception):
    """
    Brief: DNS-over-HTTPS JSON API error (transport, HTTP status or body).

    Inputs:
    - message: Description of the error

    Outputs:
    - Exception instance
    """

    pass


@dataclass(frozen=True)
class NSLookupResult:
    """
    Brief: Normalized outcome of an NS lookup.

    Inputs (constructor fields):
      - servers: frozenset of lowercase nameserver hostnames.
      - authority: lowercase SOA zone name, or None.

    Outputs:
      - Immutable NSLookupResult instance.

    Example:
      >>> NSLookupResult.empty().servers
      frozenset()
    """

    servers: FrozenSet[str] = field(default_factory=frozenset)
    authority: Optional[str] = None

    @classmethod
    def empty(cls) -> "NSLookupResult":
        return _EMPTY

    @property
    def is_empty(self) -> bool:
        return not self.servers and self.authority is None

    def to_dict(self) -> Dict[str, Any]:
        return {"servers": sorted(self.servers), "authority": self.authority}


_EMPTY = NSLookupResult()


def _records_of_type(records: Iterable[Any], rtype: int) -> List[Dict[str, Any]]:
    """Return mapping records whose integer 'type' equals rtype."""
    out: List[Dict[str, Any]] = []
    for rec in records or ():
        if isinstance(rec, dict) and rec.get("type") == rtype:
            out.append(rec)
    return out


def _ns_targets(records: Iterable[Any]) -> FrozenSet[str]:
    return frozenset(
        normalize_hostname(rec["data"])
        for rec in _records_of_type(records, QTYPE.NS)
        if isinstance(rec.get("data"), str) and rec["data"].strip(".").strip()
    )


def parse_ns_response(data: Dict[str, Any]) -> NSLookupResult:
    """
    Brief: Convert a DNS JSON API body into an NSLookupResult.

    Inputs:
    - data: decoded JSON object with Status, Answer and Authority keys

    Outputs:
    - NSLookupResult

    Notes:
    - Answer-section NS records win outright and carry no authority.
    - Otherwise the Authority section supplies the first SOA owner name as
      authority, together with any NS records found there.

    Example:
        >>> parse_ns_response({"Status": 0, "Answer": [{"type": 2, "data": "NS1.X.com."}]})
        NSLookupResult(servers=frozenset({'ns1.x.com'}), authority=None)
    """
    if not isinstance(data, dict) or data.get("Status") != 0:
        return NSLookupResult.empty()

    answer = data.get("Answer")
    if isinstance(answer, list):
        servers = _ns_targets(answer)
        if servers:
            return NSLookupResult(servers=servers)

    section = data.get("Authority")
    if isinstance(section, list):
        authority: Optional[str] = None
        soa = _records_of_type(section, QTYPE.SOA)
        if soa and isinstance(soa[0].get("name"), str):
            authority = normalize_hostname(soa[0]["name"]) or None
        servers = _ns_targets(section)
        if servers:
            return NSLookupResult(servers=servers, authority=authority)
        if authority:
            return NSLookupResult(authority=authority)

    return NSLookupResult.empty()


def doh_json_query(
    session: requests.Session,
    url: str,
    name: str,
    qtype: str = "NS",
    *,
    headers: Optional[Dict[str, str]] = None,
    timeout_ms: int = DEFAULT_TIMEOUT_MS,
    verify: bool = True,
) -> Dict[str, Any]:
    """
    Brief: Perform a DNS-over-HTTPS JSON API query.

    Inputs:
    - session: requests.Session used for the GET request
    - url: DoH JSON endpoint, e.g. https://dns.google/resolve
    - name: owner name to query
    - qtype: record type mnemonic
    - headers: Optional extra headers to include
    - timeout_ms: Total timeout per request
    - verify: Verify TLS certificates

    Outputs:
    - dict: decoded JSON body

    Notes:
    - Raises DoHError for non-2xx responses, network/TLS errors and bodies that
      are not a JSON object.
    """
    hdrs = {"Accept": "application/dns-json", **(headers or {})}
    if not any(k.lower() == "user-agent" for k in hdrs):
        hdrs["User-Agent"] = f"nsguard v{NSGUARD_VERSION}"

    try:
        resp = session.get(
            url,
            params={"name": name, "type": qtype},
            headers=hdrs,
            timeout=timeout_ms / 1000.0,
            verify=verify,
        )
    except requests.RequestException as e:
        raise DoHError(f"Network error: {e}") from e

    if not 200 <= resp.status_code < 300:
        raise DoHError(f"HTTP {resp.status_code}: {resp.reason}")
    try:
        body = resp.json()
    except ValueError as e:
        raise DoHError(f"Invalid JSON body: {e}") from e
    if not isinstance(body, dict):
        raise DoHError("DoH response body is not a JSON object")
    return body


class DoHClient:
    """
    Brief: NS lookups against a DNS-over-HTTPS JSON endpoint.

    Inputs (constructor):
      - url: DoH endpoint (default https://dns.google/resolve).
      - timeout_ms: Per-request timeout in milliseconds.
      - headers: Optional extra HTTP headers.
      - verify: Verify TLS certificates.
      - session: Optional requests.Session (one is created when omitted).

    Outputs:
      - DoHClient instance.

    Example use:
        >>> client = DoHClient(timeout_ms=500)
        >>> client.host
        'dns.google'
    """

    def __init__(
        self,
        url: str = DEFAULT_DOH_URL,
        *,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        headers: Optional[Dict[str, str]] = None,
        verify: bool = True,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.url = url
        self.timeout_ms = int(timeout_ms)
        self.headers = dict(headers or {})
        self.verify = bool(verify)
        self._session = session or requests.Session()

    @property
    def host(self) -> str:
        """Hostname of the DoH endpoint, used to avoid gating our own lookups."""
        return normalize_hostname(urllib.parse.urlsplit(self.url).hostname or "")

    def lookup_ns(self, name: str) -> NSLookupResult:
        """
        Brief: Look up NS records for name, degrading every failure to empty.

        Inputs:
          - name: hostname to query.

        Outputs:
          - NSLookupResult; NSLookupResult.empty() on network, HTTP or DNS
            errors and when nothing usable was returned.
        """
        logger.debug("Fetching NS records for %s via %s", name, self.url)
        try:
            data = doh_json_query(
                self._session,
                self.url,
                name,
                "NS",
                headers=self.headers,
                timeout_ms=self.timeout_ms,
                verify=self.verify,
            )
        except DoHError as e:
            logger.warning("NS lookup for %s failed: %s", name, e)
            return NSLookupResult.empty()

        status = data.get("Status")
        if status != 0:
            logger.info("DNS query for %s returned status %s", name, status)
            return NSLookupResult.empty()

        result = parse_ns_response(data)
        logger.debug(
            "NS lookup for %s: servers=%s authority=%s",
            name,
            sorted(result.servers),
            result.authority,
        )
        return result

    def close(self) -> None:
        self._session.close()
