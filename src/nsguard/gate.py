from __future__ import annotations

import logging
from concurrent.futures import Future
from typing import AbstractSet, Iterable, Optional, Tuple

from .domain_utils import InvalidURL, extract_hostname, normalize_hostname, root_domain
from .verdicts import VerdictCache

logger = logging.getLogger(__name__)

DEFAULT_SKIP_HOSTS = ("dns.google",)
DEFAULT_RESOURCE_TYPES = (
    "xmlhttprequest",
    "script",
    "image",
    "media",
    "websocket",
    "other",
)


def _resolved(value: bool) -> "Future[bool]":
    fut: "Future[bool]" = Future()
    fut.set_result(value)
    return fut


class RequestGate:
    """Brief: Per-request block/allow entrypoint for a host environment.

    Inputs:
      - verdicts: VerdictCache used for hostnames that pass the scope filter.
      - skip_hosts: Hostnames never checked (the DoH provider itself).
      - resource_types: Request types subject to checks; None checks all.

    Outputs:
      - RequestGate instance.

    Notes:
      - Every path that does not reach the verdict cache allows the request.
      - Unparseable URLs are allowed, never raised.

    Example use:
        >>> class Verdicts:
        ...     def submit(self, hostname):
        ...         return _resolved(True)
        >>> gate = RequestGate(Verdicts())
        >>> gate.should_block("https://t.example.com/p.gif", {"example.com"})
        True
        >>> gate.should_block("https://t.other.org/p.gif", {"example.com"})
        False
    """

    def __init__(
        self,
        verdicts: VerdictCache,
        *,
        skip_hosts: Iterable[str] = DEFAULT_SKIP_HOSTS,
        resource_types: Optional[Iterable[str]] = DEFAULT_RESOURCE_TYPES,
    ) -> None:
        self._verdicts = verdicts
        self.skip_hosts = frozenset(normalize_hostname(h) for h in skip_hosts)
        self.resource_types = (
            frozenset(str(t).lower() for t in resource_types)
            if resource_types is not None
            else None
        )

    def _scope(
        self,
        url: str,
        active_root_domains: AbstractSet[str],
        resource_type: Optional[str],
    ) -> Tuple[Optional[str], Optional[str]]:
        """Return (hostname, rule); rule is None when hostname needs a verdict."""
        try:
            hostname = extract_hostname(url)
        except InvalidURL as e:
            logger.debug("Could not extract hostname: %s", e)
            return None, "invalid_url"

        if hostname in self.skip_hosts:
            logger.debug("Skipping resolver host %s", hostname)
            return hostname, "skip_host"

        if (
            resource_type is not None
            and self.resource_types is not None
            and str(resource_type).lower() not in self.resource_types
        ):
            return hostname, "resource_type"

        root = root_domain(hostname)
        if root not in active_root_domains:
            logger.debug("Skipping %s - not related to active pages", hostname)
            return hostname, "out_of_scope"
        if hostname == root:
            return hostname, "root_domain"
        return hostname, None

    def scope_rule(
        self,
        url: str,
        active_root_domains: AbstractSet[str],
        resource_type: Optional[str] = None,
    ) -> Optional[str]:
        """
        Brief: Name the scope rule that allows url without a lookup.

        Inputs:
          - url: requested URL.
          - active_root_domains: snapshot of root domains of open pages.
          - resource_type: optional request type.

        Outputs:
          - One of "invalid_url", "skip_host", "resource_type", "out_of_scope"
            or "root_domain"; None when url's hostname goes to the verdict cache.
        """
        return self._scope(url, active_root_domains, resource_type)[1]

    def check(
        self,
        url: str,
        active_root_domains: AbstractSet[str],
        resource_type: Optional[str] = None,
    ) -> "Future[bool]":
        """
        Brief: Return a Future with the block verdict for url.

        Inputs:
          - url: requested URL.
          - active_root_domains: snapshot of root domains of open pages.
          - resource_type: optional request type (script, image, ...).

        Outputs:
          - Future[bool]; completed immediately when no lookup is needed.
        """
        hostname, rule = self._scope(url, active_root_domains, resource_type)
        if rule is not None:
            return _resolved(False)
        return self._verdicts.submit(hostname)

    def should_block(
        self,
        url: str,
        active_root_domains: AbstractSet[str],
        resource_type: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> bool:
        """Blocking form of check(); allows the request on any failure or timeout."""
        try:
            verdict = self.check(url, active_root_domains, resource_type).result(
                timeout=timeout
            )
        except Exception as e:
            logger.warning("Verdict for %s unavailable, allowing: %s", url, e)
            return False
        logger.debug("Final decision for %s: %s", url, "BLOCK" if verdict else "ALLOW")
        return verdict

    def should_block_cached(self, url: str) -> bool:
        """Return True only when a block verdict for url's host is already cached."""
        try:
            hostname = extract_hostname(url)
        except InvalidURL:
            return False
        return self._verdicts.peek(hostname) is True
