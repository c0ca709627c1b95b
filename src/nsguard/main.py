from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
from typing import Any, Dict, List

from .config.config_parser import (
    get_http_listener,
    parse_config_file,
    parse_config_variables,
)
from .config.config_schema import validate_config
from .config.logging_config import init_logging
from .domain_utils import InvalidURL, extract_hostname, normalize_hostname, root_domain
from .servers.webserver import start_webserver
from .service import DelegationGuard


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="nsguard",
        description="Block requests to subdomains delegated away from their root domain",
    )
    parser.add_argument("-c", "--config", default=None, help="Path to YAML config")
    parser.add_argument(
        "-v",
        "--var",
        action="append",
        default=[],
        metavar="KEY=YAML",
        help="Override a config variable (may be repeated)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    check = sub.add_parser("check", help="Print BLOCK or ALLOW for each URL")
    check.add_argument("urls", nargs="+", help="URLs to check")
    check.add_argument(
        "--root",
        action="append",
        default=None,
        help="Active root domain (repeatable); defaults to each URL's own root",
    )
    check.add_argument(
        "--explain",
        action="store_true",
        help="Also print the scope rule or decision branch",
    )

    sub.add_parser("serve", help="Run the HTTP API until interrupted")
    return parser


def _load_config(args: argparse.Namespace) -> Dict[str, Any]:
    if args.config:
        return parse_config_file(args.config, cli_vars=args.var)
    cfg: Dict[str, Any] = {}
    if args.var:
        parse_config_variables(cfg, cli_vars=args.var)
    validate_config(cfg, config_path=None)
    return cfg


def _run_check(guard: DelegationGuard, args: argparse.Namespace) -> int:
    roots = {normalize_hostname(r) for r in args.root or []}
    if not roots:
        for url in args.urls:
            try:
                roots.add(root_domain(extract_hostname(url)))
            except InvalidURL:
                continue

    active = frozenset(roots)
    for url in args.urls:
        block = guard.gate.should_block(url, active)
        line = f"{'BLOCK' if block else 'ALLOW'} {url}"
        if args.explain:
            rule = guard.gate.scope_rule(url, active)
            if rule is None:
                rule = guard.evaluator.explain(extract_hostname(url)).branch
            line += f" ({rule})"
        print(line)
    return 0


def _run_serve(guard: DelegationGuard, cfg: Dict[str, Any]) -> int:
    logger = logging.getLogger("nsguard.main")
    if get_http_listener(cfg) is None:
        cfg.setdefault("server", {})["http"] = {"enabled": True}
    handle = start_webserver(guard, cfg)
    if handle is None:  # pragma: no cover - listener forced on above
        logger.error("HTTP listener is disabled; nothing to serve")
        return 1

    shutdown_event = threading.Event()

    def _request_shutdown(signum, frame) -> None:
        logger.info("Received signal %s, shutting down", signum)
        shutdown_event.set()

    def _reset_caches(signum, frame) -> None:
        logger.info("Received SIGUSR1, clearing answer and verdict caches")
        guard.answers.clear()
        guard.verdicts.clear()

    signal.signal(signal.SIGINT, _request_shutdown)
    signal.signal(signal.SIGTERM, _request_shutdown)
    if hasattr(signal, "SIGUSR1"):
        signal.signal(signal.SIGUSR1, _reset_caches)

    while not shutdown_event.wait(1.0):
        if not handle.is_running():
            logger.error("Webserver thread exited unexpectedly")
            return 1
    handle.stop()
    return 0


def main(argv: List[str] | None = None) -> int:
    """
    Main entry point for the nsguard CLI.
    Parses arguments, loads configuration, builds the guard and runs a command.

    Args:
        argv: Command-line arguments.

    Returns:
        An exit code.

    Example use:
        CLI:
            nsguard check https://tracker.example.com/pixel.gif
            nsguard --config config.yaml serve
    """
    args = _build_parser().parse_args(argv)

    try:
        cfg = _load_config(args)
    except (OSError, ValueError) as exc:
        print(str(exc), file=sys.stderr)
        return 1

    init_logging(cfg.get("logging"))
    logger = logging.getLogger("nsguard.main")
    if args.config:
        logger.info("Loaded config from %s", args.config)

    guard = DelegationGuard.from_config(cfg)
    try:
        if args.command == "check":
            return _run_check(guard, args)
        return _run_serve(guard, cfg)
    finally:
        guard.close()


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
