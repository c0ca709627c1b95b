from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Dict, Optional

from .domain_utils import normalize_hostname

logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 8


class VerdictCache:
    """Brief: Process-lifetime verdict cache with in-flight deduplication.

    Inputs:
      - evaluator: Object exposing evaluate(hostname) -> bool.
      - max_workers: Size of the worker pool running evaluations.

    Outputs:
      - VerdictCache instance.

    Notes:
      - At most one evaluation per hostname runs at a time; concurrent callers
        share the same Future.
      - Verdicts (True or False) are stored before the shared Future completes,
        so any caller arriving afterwards hits the cache.
      - An evaluator exception resolves all waiters with False and stores
        nothing; the in-flight marker is always removed.
      - Callers that stop waiting (e.g. a result() timeout) never cancel the
        evaluation; it keeps running for the remaining waiters.

    Example use:
        >>> class Always:
        ...     def evaluate(self, hostname):
        ...         return True
        >>> verdicts = VerdictCache(Always())
        >>> verdicts.get_verdict("tracker.example.com")
        True
        >>> verdicts.peek("tracker.example.com")
        True
        >>> verdicts.shutdown()
    """

    def __init__(self, evaluator: Any, *, max_workers: int = DEFAULT_MAX_WORKERS) -> None:
        self._evaluator = evaluator
        self._lock = threading.Lock()
        self._verdicts: Dict[str, bool] = {}
        self._inflight: Dict[str, "Future[bool]"] = {}
        self._executor = ThreadPoolExecutor(
            max_workers=max(1, int(max_workers)), thread_name_prefix="nsguard-verdict"
        )

    def peek(self, hostname: str) -> Optional[bool]:
        """Return the cached verdict for hostname, or None when not yet decided."""
        with self._lock:
            return self._verdicts.get(normalize_hostname(hostname))

    def submit(self, hostname: str) -> "Future[bool]":
        """
        Brief: Return a Future resolving to the verdict for hostname.

        Inputs:
          - hostname: hostname to evaluate.

        Outputs:
          - Future[bool]: already completed for cached verdicts; the shared
            in-flight Future when an evaluation is running; otherwise a new
            Future fed by a worker thread.
        """
        key = normalize_hostname(hostname)
        with self._lock:
            if key in self._verdicts:
                done: "Future[bool]" = Future()
                done.set_result(self._verdicts[key])
                return done
            pending = self._inflight.get(key)
            if pending is not None:
                logger.debug("Joining in-flight evaluation for %s", key)
                return pending
            fut: "Future[bool]" = Future()
            # RUNNING futures cannot be cancelled by an impatient waiter.
            fut.set_running_or_notify_cancel()
            self._inflight[key] = fut

        try:
            self._executor.submit(self._run, key, fut)
        except RuntimeError as e:
            # Executor already shut down; never leave waiters hanging.
            logger.warning("Cannot evaluate %s: %s", key, e)
            self._finish(key, fut, False, store=False)
        return fut

    def get_verdict(self, hostname: str, timeout: Optional[float] = None) -> bool:
        """Block until the verdict for hostname is known and return it."""
        return self.submit(hostname).result(timeout=timeout)

    def _run(self, key: str, fut: "Future[bool]") -> None:
        try:
            verdict = bool(self._evaluator.evaluate(key))
        except Exception:
            logger.exception("Delegation evaluation failed for %s; allowing", key)
            self._finish(key, fut, False, store=False)
            return
        self._finish(key, fut, verdict, store=True)

    def _finish(self, key: str, fut: "Future[bool]", verdict: bool, *, store: bool) -> None:
        with self._lock:
            if store:
                self._verdicts[key] = verdict
            self._inflight.pop(key, None)
        fut.set_result(verdict)

    def snapshot(self) -> Dict[str, bool]:
        with self._lock:
            return dict(self._verdicts)

    def inflight_count(self) -> int:
        with self._lock:
            return len(self._inflight)

    def clear(self) -> None:
        with self._lock:
            self._verdicts.clear()

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
