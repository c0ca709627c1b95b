"""Logging setup for nsguard: bracketed level tags, UTC timestamps, optional
file and syslog sinks, and per-logger level overrides from the ``logging``
config section."""

from __future__ import annotations

import logging
import logging.handlers
import os
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

LOG_FORMAT = "%(asctime)s %(level_tag)s %(name)s: %(message)s"
DEFAULT_SYSLOG_ADDRESS = "/dev/log"
DEFAULT_SYSLOG_TAG = "nsguard"

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "crit": logging.CRITICAL,
    "critical": logging.CRITICAL,
}

_TAGS = {
    logging.DEBUG: "[debug]",
    logging.INFO: "[info]",
    logging.WARNING: "[warn]",
    logging.ERROR: "[error]",
    logging.CRITICAL: "[crit]",
}


def _level_tag(levelno: int) -> str:
    return _TAGS.get(levelno, f"[lvl{levelno}]")


def parse_level(value: Any, default: int = logging.INFO) -> int:
    """Map a config level name (debug, info, warn, error, crit) to a logging constant."""
    return _LEVELS.get(str(value).strip().lower(), default)


class SyslogFormatter(logging.Formatter):
    """Formatter for syslog output; syslog supplies its own timestamp."""

    def __init__(self, tag: str = DEFAULT_SYSLOG_TAG) -> None:
        super().__init__()
        self.tag = tag

    def format(self, record):
        record.level_tag = _level_tag(record.levelno)
        return f"{self.tag}: {record.level_tag} {record.name}: {record.getMessage()}"


class BracketLevelFormatter(logging.Formatter):
    """Formatter with lowercase bracketed level tags and UTC ISO-8601 timestamps."""

    def formatTime(self, record, datefmt=None):
        stamp = datetime.fromtimestamp(record.created, timezone.utc)
        return stamp.strftime(datefmt or "%Y-%m-%dT%H:%M:%SZ")

    def format(self, record):
        record.level_tag = _level_tag(record.levelno)
        return super().format(record)


def _file_handler(file_path: str, formatter: logging.Formatter) -> logging.Handler:
    path = os.path.abspath(os.path.expanduser(file_path))
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)
    handler = logging.FileHandler(path, mode="a", encoding="utf-8")
    handler.setFormatter(formatter)
    return handler


def _syslog_handler(syslog_cfg: Any) -> logging.Handler:
    """
    Brief: Build a SysLogHandler from ``True`` or an address/facility/tag mapping.

    Inputs:
      - syslog_cfg: True for defaults, or a dict with optional address,
        facility (e.g. "daemon") and tag.

    Outputs:
      - Configured logging.handlers.SysLogHandler.
    """
    handler_cls = logging.handlers.SysLogHandler
    opts: Mapping[str, Any] = syslog_cfg if isinstance(syslog_cfg, dict) else {}
    facility_name = f"LOG_{str(opts.get('facility', 'USER')).upper()}"
    handler = handler_cls(
        address=opts.get("address", DEFAULT_SYSLOG_ADDRESS),
        facility=getattr(handler_cls, facility_name, handler_cls.LOG_USER),
    )
    handler.setFormatter(SyslogFormatter(tag=str(opts.get("tag", DEFAULT_SYSLOG_TAG))))
    return handler


def init_logging(cfg: Optional[Dict[str, Any]]) -> None:
    """
    Configure the root logger from the ``logging`` config section.

    Args:
        cfg: Mapping with optional keys:
            - level: debug, info, warn, error, crit (default: info)
            - stderr: log to stderr (default: True)
            - file: path of a log file to append to
            - syslog: True, or {address, facility, tag}
            - loggers: {logger name: level} overrides, e.g.
              {"nsguard.evaluator": "debug", "urllib3": "warn"}

    Any handlers already on the root logger are replaced, so calling this
    twice does not duplicate output.
    """
    cfg = cfg or {}
    formatter = BracketLevelFormatter(fmt=LOG_FORMAT)

    root = logging.getLogger()
    root.setLevel(parse_level(cfg.get("level", "info")))
    for h in list(root.handlers):
        root.removeHandler(h)

    if cfg.get("stderr", True):
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(formatter)
        root.addHandler(stderr_handler)

    file_path = cfg.get("file")
    if isinstance(file_path, str) and file_path.strip():
        root.addHandler(_file_handler(file_path.strip(), formatter))

    syslog_cfg = cfg.get("syslog")
    if syslog_cfg:
        try:
            root.addHandler(_syslog_handler(syslog_cfg))
        except (OSError, ValueError) as e:  # pragma: no cover - needs a syslog socket
            root.warning("Failed to configure syslog: %s", e)

    for name, level in (cfg.get("loggers") or {}).items():
        logging.getLogger(str(name)).setLevel(parse_level(level))

    logging.captureWarnings(True)
