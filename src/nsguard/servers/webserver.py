"""HTTP adapter for nsguard (request checks, tab tracking, health).

A browser extension or proxy posts each intercepted request to
``/api/v1/check`` and cancels it when the reply says ``block: true``; tab
navigation events feed ``/api/v1/tabs``. Every route is served from one
in-process DelegationGuard, and uvicorn runs the app on a daemon thread.
"""

from __future__ import annotations

import logging
import threading
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import Body, FastAPI, HTTPException
from pydantic import BaseModel

from ..config.config_parser import get_http_listener
from ..domain_utils import InvalidURL, extract_hostname, normalize_hostname
from ..service import DelegationGuard

logger = logging.getLogger(__name__)

DEFAULT_CHECK_TIMEOUT_SECONDS = 10.0


class _Suppress2xxAccessFilter(logging.Filter):
    """Logging filter that drops uvicorn access records for HTTP 2xx responses.

    Inputs:
      - record: logging.LogRecord instance from uvicorn.access or other loggers.

    Outputs:
      - bool: False for records that clearly correspond to HTTP 2xx status codes,
        True otherwise (including when no status code can be determined).
    """

    def filter(self, record: logging.LogRecord) -> bool:
        status = getattr(record, "status_code", None)
        if status is None:
            args = getattr(record, "args", None)
            if isinstance(args, dict):
                status = args.get("status_code") or args.get("status")
            elif isinstance(args, (tuple, list)) and args:
                # uvicorn passes the status code as the last positional arg
                status = args[-1]

        try:
            code = int(status)
        except (TypeError, ValueError):
            return True
        return not (200 <= code <= 299)


def install_uvicorn_2xx_suppression() -> None:
    """Attach _Suppress2xxAccessFilter to the uvicorn.access logger if not present."""

    access_logger = logging.getLogger("uvicorn.access")
    if not any(isinstance(f, _Suppress2xxAccessFilter) for f in access_logger.filters):
        access_logger.addFilter(_Suppress2xxAccessFilter())


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class CheckRequest(BaseModel):
    """Brief: Body of POST /api/v1/check.

    Inputs:
      - url: URL of the intercepted request.
      - type: Optional request type (script, image, xmlhttprequest, ...).
      - active_roots: Optional explicit root-domain set; the tab tracker
        snapshot is used when omitted.
    """

    url: str
    type: Optional[str] = None
    active_roots: Optional[List[str]] = None


class TabUpdate(BaseModel):
    url: str


def create_app(
    guard: DelegationGuard,
    config: Optional[Dict[str, Any]] = None,
    *,
    check_timeout: float = DEFAULT_CHECK_TIMEOUT_SECONDS,
) -> FastAPI:
    """Create and configure the FastAPI app exposing nsguard endpoints.

    Inputs:
      - guard: DelegationGuard owning caches, gate and tab tracker.
      - config: Current configuration dictionary loaded from YAML.
      - check_timeout: Seconds a /check call waits before allowing.

    Outputs:
      - Configured FastAPI application instance.

    Example:
      >>> guard = DelegationGuard.from_config({})
      >>> app = create_app(guard, {})
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        install_uvicorn_2xx_suppression()
        yield

    app = FastAPI(title="nsguard HTTP API", lifespan=lifespan)
    app.state.guard = guard
    app.state.config = config or {}

    @app.get("/api/v1/health")
    @app.get("/health")
    async def health() -> Dict[str, Any]:
        """Return simple liveness information."""

        return {"status": "ok", "server_time": _utc_now_iso()}

    # Sync handler: runs on the threadpool while waiting on a verdict.
    @app.post("/api/v1/check")
    def check(body: CheckRequest) -> Dict[str, Any]:
        """Brief: Return the block verdict for one intercepted request.

        Inputs:
          - body: CheckRequest.

        Outputs:
          - dict with url, hostname (null when unparseable) and block.
        """

        if body.active_roots is not None:
            roots = frozenset(normalize_hostname(r) for r in body.active_roots)
        else:
            roots = guard.tabs.active_root_domains()
        block = guard.gate.should_block(
            body.url, roots, resource_type=body.type, timeout=check_timeout
        )
        try:
            hostname: Optional[str] = extract_hostname(body.url)
        except InvalidURL:
            hostname = None
        return {"url": body.url, "hostname": hostname, "block": block}

    @app.post("/api/v1/check_cached")
    async def check_cached(body: CheckRequest) -> Dict[str, Any]:
        """Report a block only when the verdict is already cached (headers phase)."""

        return {"url": body.url, "block": guard.gate.should_block_cached(body.url)}

    @app.put("/api/v1/tabs")
    async def reset_tabs(tabs: Dict[str, str] = Body(...)) -> Dict[str, Any]:
        """Replace tracker state from a {tab_id: url} listing of every open tab."""

        guard.tabs.reset(tabs)
        return {"roots": sorted(guard.tabs.active_root_domains())}

    @app.post("/api/v1/tabs/{tab_id}")
    async def update_tab(tab_id: str, body: TabUpdate) -> Dict[str, Any]:
        guard.tabs.update(tab_id, body.url)
        return {"roots": sorted(guard.tabs.active_root_domains())}

    @app.delete("/api/v1/tabs/{tab_id}")
    async def remove_tab(tab_id: str) -> Dict[str, Any]:
        guard.tabs.remove(tab_id)
        return {"roots": sorted(guard.tabs.active_root_domains())}

    @app.get("/api/v1/roots")
    async def roots() -> Dict[str, Any]:
        return {"roots": sorted(guard.tabs.active_root_domains())}

    @app.get("/api/v1/verdicts")
    async def verdicts() -> Dict[str, Any]:
        return {
            "verdicts": guard.verdicts.snapshot(),
            "inflight": guard.verdicts.inflight_count(),
            "answers": guard.answers.stats(),
        }

    @app.get("/api/v1/explain/{hostname}")
    def explain(hostname: str) -> Dict[str, Any]:
        """Brief: Re-run the evaluator for hostname and describe the branch taken.

        Inputs:
          - hostname: hostname to evaluate (bypasses the verdict cache).

        Outputs:
          - DelegationDecision as a dict.
        """

        name = normalize_hostname(hostname)
        if not name:
            raise HTTPException(status_code=400, detail="hostname must not be empty")
        return guard.evaluator.explain(name).to_dict()

    return app


class WebServerHandle:
    """Handle for a background webserver thread.

    Inputs (constructor):
      - thread: Thread object running the uvicorn server loop.
      - server: Optional uvicorn.Server instance.

    Outputs:
      - WebServerHandle instance with stop() and is_running().
    """

    def __init__(self, thread: threading.Thread, server: Any | None = None) -> None:
        self._thread = thread
        self._server = server

    def is_running(self) -> bool:
        return self._thread.is_alive()

    def stop(self, timeout: float = 5.0) -> None:
        """Ask uvicorn to exit and wait for the thread."""

        if self._server is not None:
            self._server.should_exit = True
        self._thread.join(timeout=timeout)


def start_webserver(
    guard: DelegationGuard,
    config: Dict[str, Any],
) -> Optional[WebServerHandle]:
    """Start the HTTP adapter on a daemon thread using uvicorn.

    Inputs:
      - guard: DelegationGuard shared with the rest of the process.
      - config: Full configuration dict loaded from YAML.

    Outputs:
      - WebServerHandle when the ``server.http`` block enables the listener;
        otherwise None.
    """

    listener = get_http_listener(config)
    if listener is None:
        return None

    import uvicorn

    host = listener["host"]
    port = listener["port"]
    if host in ("0.0.0.0", "::"):
        logger.warning(
            "nsguard HTTP API is bound to %s without authentication; consider restricting host",
            host,
        )

    app = create_app(guard, config)
    server = uvicorn.Server(uvicorn.Config(app, host=host, port=port, log_level="info"))

    def _runner() -> None:
        try:
            server.run()
        except Exception:  # pragma: no cover - thread top-level guard
            logger.exception("Unhandled exception in webserver thread")

    thread = threading.Thread(target=_runner, name="nsguard-webserver", daemon=True)
    thread.start()
    logger.info("Started nsguard webserver on %s:%d", host, port)
    return WebServerHandle(thread, server)
