from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, Field

from .cache import DEFAULT_ANSWER_TTL_SECONDS, AnswerCache
from .doh_client import DEFAULT_DOH_URL, DEFAULT_TIMEOUT_MS, DoHClient
from .evaluator import DelegationDecision, DelegationEvaluator
from .gate import DEFAULT_RESOURCE_TYPES, DEFAULT_SKIP_HOSTS, RequestGate
from .tabs import TabTracker
from .verdicts import DEFAULT_MAX_WORKERS, VerdictCache

logger = logging.getLogger(__name__)


class ResolverConfig(BaseModel):
    """Brief: Typed configuration for the DoH resolver client.

    Inputs:
      - url: DoH JSON endpoint.
      - timeout_ms: Per-request timeout in milliseconds.
      - verify: Verify TLS certificates.
      - headers: Extra HTTP headers sent with every query.

    Outputs:
      - ResolverConfig instance with normalized field types.
    """

    url: str = Field(default=DEFAULT_DOH_URL)
    timeout_ms: int = Field(default=DEFAULT_TIMEOUT_MS, ge=1)
    verify: bool = True
    headers: Dict[str, str] = Field(default_factory=dict)


class CacheConfig(BaseModel):
    ttl_seconds: float = Field(default=DEFAULT_ANSWER_TTL_SECONDS, ge=0)


class VerdictConfig(BaseModel):
    max_workers: int = Field(default=DEFAULT_MAX_WORKERS, ge=1)


class GateConfig(BaseModel):
    """Brief: Typed configuration for the request gate.

    Inputs:
      - skip_hosts: Hostnames never checked. The resolver host is always added.
      - resource_types: Request types subject to checks; null checks every type.

    Outputs:
      - GateConfig instance.
    """

    skip_hosts: List[str] = Field(default_factory=lambda: list(DEFAULT_SKIP_HOSTS))
    resource_types: Optional[List[str]] = Field(
        default_factory=lambda: list(DEFAULT_RESOURCE_TYPES)
    )


class GuardConfig(BaseModel):
    """Brief: Engine configuration assembled from the YAML config sections."""

    resolver: ResolverConfig = Field(default_factory=ResolverConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    verdicts: VerdictConfig = Field(default_factory=VerdictConfig)
    gate: GateConfig = Field(default_factory=GateConfig)

    class Config:
        extra = "ignore"


class DelegationGuard:
    """Brief: Owns the whole delegation-detection stack for one process.

    Inputs:
      - client: DoH client (or any object exposing lookup_ns()).
      - config: Optional GuardConfig; defaults are used when omitted.
      - observer: Optional callable receiving every DelegationDecision.

    Outputs:
      - DelegationGuard exposing answers, evaluator, verdicts, gate and tabs.

    Example use:
        >>> guard = DelegationGuard.from_config({"resolver": {"timeout_ms": 800}})
        >>> guard.should_block("not a url")
        False
        >>> guard.close()
    """

    def __init__(
        self,
        client: Any,
        config: Optional[GuardConfig] = None,
        *,
        observer: Optional[Callable[[DelegationDecision], None]] = None,
    ) -> None:
        self.config = config or GuardConfig()
        self.client = client
        self.answers = AnswerCache(client, self.config.cache.ttl_seconds)
        self.evaluator = DelegationEvaluator(self.answers, observer=observer)
        self.verdicts = VerdictCache(
            self.evaluator, max_workers=self.config.verdicts.max_workers
        )
        skip_hosts = list(self.config.gate.skip_hosts)
        resolver_host = getattr(client, "host", None)
        if resolver_host:
            skip_hosts.append(resolver_host)
        self.gate = RequestGate(
            self.verdicts,
            skip_hosts=skip_hosts,
            resource_types=self.config.gate.resource_types,
        )
        self.tabs = TabTracker()

    @classmethod
    def from_config(
        cls,
        cfg: Optional[Dict[str, Any]] = None,
        *,
        observer: Optional[Callable[[DelegationDecision], None]] = None,
    ) -> "DelegationGuard":
        """Build a guard from a parsed configuration mapping."""
        model = GuardConfig(**(cfg or {}))
        client = DoHClient(
            model.resolver.url,
            timeout_ms=model.resolver.timeout_ms,
            headers=model.resolver.headers,
            verify=model.resolver.verify,
        )
        logger.debug("Using DoH resolver %s", model.resolver.url)
        return cls(client, model, observer=observer)

    def should_block(
        self,
        url: str,
        resource_type: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> bool:
        """Check url against the roots of the currently tracked tabs."""
        return self.gate.should_block(
            url, self.tabs.active_root_domains(), resource_type, timeout
        )

    def close(self) -> None:
        self.verdicts.shutdown(wait=False)
        close = getattr(self.client, "close", None)
        if callable(close):
            close()
