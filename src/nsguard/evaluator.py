from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from .doh_client import NSLookupResult
from .domain_utils import is_same_or_subzone, normalize_hostname, root_domain

logger = logging.getLogger(__name__)

BRANCH_ROOT_DOMAIN = "root_domain"
BRANCH_ROOT_MISSING_NS = "root_missing_ns"
BRANCH_FOREIGN_AUTHORITY = "foreign_authority"
BRANCH_DISJOINT_NAMESERVERS = "disjoint_nameservers"
BRANCH_SHARED_NAMESERVER = "shared_nameserver"
BRANCH_NO_RECORDS = "no_records"


@dataclass(frozen=True)
class DelegationDecision:
    """
    Brief: Diagnostic record describing how a delegation verdict was reached.

    Inputs (constructor fields):
      - hostname: evaluated hostname.
      - root: root domain derived from hostname.
      - delegated: final verdict (True means block).
      - branch: name of the decision branch taken.
      - domain_result: NS lookup for hostname (None for root domains).
      - root_result: NS lookup for root (None for root domains).
      - matched_nameserver: a nameserver shared with the root, when found.

    Outputs:
      - DelegationDecision instance.
    """

    hostname: str
    root: str
    delegated: bool
    branch: str
    domain_result: Optional[NSLookupResult] = None
    root_result: Optional[NSLookupResult] = None
    matched_nameserver: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hostname": self.hostname,
            "root": self.root,
            "delegated": self.delegated,
            "branch": self.branch,
            "domain": self.domain_result.to_dict() if self.domain_result else None,
            "root_ns": self.root_result.to_dict() if self.root_result else None,
            "matched_nameserver": self.matched_nameserver,
        }


class DelegationEvaluator:
    """Brief: Decide whether a hostname is delegated away from its root domain.

    Inputs:
      - answers: AnswerCache-like object exposing resolve(name) -> NSLookupResult.
      - observer: Optional callable receiving every DelegationDecision.

    Outputs:
      - DelegationEvaluator instance.

    Example use:
        >>> from nsguard.doh_client import NSLookupResult
        >>> class Answers:
        ...     def resolve(self, name):
        ...         return NSLookupResult(servers=frozenset({"ns1.reg.com"}))
        >>> DelegationEvaluator(Answers()).evaluate("sub.a.com")
        False
    """

    def __init__(
        self,
        answers: Any,
        *,
        observer: Optional[Callable[[DelegationDecision], None]] = None,
    ) -> None:
        self._answers = answers
        self._observer = observer

    def evaluate(self, hostname: str) -> bool:
        """Return True when hostname should be blocked as delegated."""
        return self.explain(hostname).delegated

    def explain(self, hostname: str) -> DelegationDecision:
        """
        Brief: Evaluate hostname and return the full decision record.

        Inputs:
          - hostname: hostname to evaluate (normalized here).

        Outputs:
          - DelegationDecision whose ``delegated`` field is the verdict.

        Notes:
          - A root with no NS records never yields a block.
          - An SOA authority outside the root zone blocks regardless of NS.
          - A subdomain with neither NS records nor authority blocks when the
            root does have NS records.
        """
        hostname = normalize_hostname(hostname)
        root = root_domain(hostname)
        if hostname == root:
            return self._emit(
                DelegationDecision(hostname, root, False, BRANCH_ROOT_DOMAIN)
            )

        domain_result = self._answers.resolve(hostname)
        root_result = self._answers.resolve(root)

        def decision(
            delegated: bool, branch: str, matched: Optional[str] = None
        ) -> DelegationDecision:
            return DelegationDecision(
                hostname,
                root,
                delegated,
                branch,
                domain_result=domain_result,
                root_result=root_result,
                matched_nameserver=matched,
            )

        if not root_result.servers:
            return self._emit(decision(False, BRANCH_ROOT_MISSING_NS))

        authority = domain_result.authority
        if authority and not is_same_or_subzone(authority, root):
            return self._emit(decision(True, BRANCH_FOREIGN_AUTHORITY))

        if domain_result.servers:
            shared = sorted(domain_result.servers & root_result.servers)
            if not shared:
                return self._emit(decision(True, BRANCH_DISJOINT_NAMESERVERS))
            return self._emit(decision(False, BRANCH_SHARED_NAMESERVER, shared[0]))

        return self._emit(decision(True, BRANCH_NO_RECORDS))

    def _emit(self, decision: DelegationDecision) -> DelegationDecision:
        level = logging.INFO if decision.delegated else logging.DEBUG
        logger.log(
            level,
            "%s %s (branch=%s root=%s domain_ns=%s authority=%s root_ns=%s)",
            "Blocking" if decision.delegated else "Allowing",
            decision.hostname,
            decision.branch,
            decision.root,
            sorted(decision.domain_result.servers) if decision.domain_result else [],
            decision.domain_result.authority if decision.domain_result else None,
            sorted(decision.root_result.servers) if decision.root_result else [],
            extra={
                "hostname": decision.hostname,
                "root": decision.root,
                "branch": decision.branch,
                "delegated": decision.delegated,
            },
        )
        if self._observer is not None:
            try:
                self._observer(decision)
            except Exception:  # pragma: no cover
                logger.exception("Delegation observer failed for %s", decision.hostname)
        return decision
