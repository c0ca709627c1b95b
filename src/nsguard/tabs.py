from __future__ import annotations

import logging
import threading
from typing import Dict, FrozenSet, Hashable, Mapping

from .domain_utils import InvalidURL, extract_hostname, root_domain

logger = logging.getLogger(__name__)


class TabTracker:
    """Brief: Track root domains of pages currently open in the host environment.

    Inputs:
      - None

    Outputs:
      - TabTracker instance.

    Notes:
      - Each tab maps to the root domain of its latest URL; the active set is
        recomputed from the remaining tabs whenever a tab goes away.

    Example use:
        >>> tabs = TabTracker()
        >>> tabs.update(1, "https://www.example.com/")
        >>> sorted(tabs.active_root_domains())
        ['example.com']
        >>> tabs.remove(1)
        >>> tabs.active_root_domains()
        frozenset()
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._tabs: Dict[Hashable, str] = {}

    @staticmethod
    def _root_for(url: str) -> str | None:
        try:
            return root_domain(extract_hostname(url))
        except InvalidURL:
            return None

    def update(self, tab_id: Hashable, url: str) -> None:
        """Record a navigation of tab_id to url; unparseable URLs are ignored."""
        root = self._root_for(url)
        if root is None:
            logger.debug("Ignoring tab %s navigation to unparseable URL", tab_id)
            return
        with self._lock:
            self._tabs[tab_id] = root
        logger.debug("Added root domain to watch list: %s", root)

    def remove(self, tab_id: Hashable) -> None:
        with self._lock:
            self._tabs.pop(tab_id, None)
            remaining = sorted(set(self._tabs.values()))
        logger.debug("Updated root domains after tab removal: %s", remaining)

    def reset(self, tabs: Mapping[Hashable, str]) -> None:
        """Replace all state from a {tab_id: url} mapping of every open tab."""
        fresh: Dict[Hashable, str] = {}
        for tab_id, url in tabs.items():
            root = self._root_for(url)
            if root is not None:
                fresh[tab_id] = root
        with self._lock:
            self._tabs = fresh
        logger.info("Initialized root domains: %s", sorted(set(fresh.values())))

    def active_root_domains(self) -> FrozenSet[str]:
        with self._lock:
            return frozenset(self._tabs.values())
