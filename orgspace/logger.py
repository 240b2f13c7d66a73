"""
orgspace/logger.py

Operational logging (structlog) and the append-only security log.

The operational log is configured once at startup via setup_logging().
The security log receives a plain text line per request and per response
for security-sensitive endpoints; lines are appended whole under a lock so
concurrent requests never interleave partial lines.
"""

from __future__ import annotations

import logging
import sys
import threading
from pathlib import Path
from typing import Optional, Union

import structlog

from orgspace.config import IS_DEV, Settings
from orgspace.context import RequestContext

# "verbose" has no stdlib level; it is treated as debug
LOG_LEVELS = {
    "error": logging.ERROR,
    "warn": logging.WARNING,
    "info": logging.INFO,
    "verbose": logging.DEBUG,
    "debug": logging.DEBUG,
}


def setup_logging(settings: Settings) -> None:
    """Configure structlog for the process."""
    level = LOG_LEVELS[settings.log.level]

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    if IS_DEV:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))
    else:
        processors.extend([structlog.processors.dict_tracebacks, structlog.processors.JSONRenderer()])

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: Optional[str] = None):
    return structlog.get_logger(name)


logger = get_logger(__name__)


# ============================================================================
# Security Log
# ============================================================================

class SecurityLog:
    """
    Append-only audit file.

    One process-wide lock serialises writers; each write opens the file in
    append mode and emits exactly one newline-terminated line.
    """

    _lock = threading.Lock()

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def write(self, line: str) -> None:
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as f:
                f.write(f"{line}\n")


def _append_security(security_log: SecurityLog, line: str) -> None:
    # A broken audit file must not cost the caller their response.
    try:
        security_log.write(line)
    except OSError as e:
        logger.error("Security log write failed", path=str(security_log.path), error=str(e))


# ============================================================================
# Request / Response Lines
# ============================================================================

def route_line(ctx: RequestContext) -> str:
    return f'{ctx.method} "{ctx.path}" requested by {ctx.acting_identity.display}'


def response_line(ctx: RequestContext) -> str:
    response = ctx.response
    return (
        f'{ctx.method} "{ctx.path}" {response.status_code} '
        f"{ctx.acting_identity.display} {len(response.body)} {ctx.elapsed_ms:.0f}ms"
    )


def normalize_ip(ip: Optional[str]) -> str:
    """Map IPv6 loopback and IPv4-mapped addresses to plain IPv4 form."""
    if not ip:
        return "unknown"
    if ip == "::1":
        return "127.0.0.1"
    if ip.startswith("::ffff:"):
        return ip.replace("::ffff:", "", 1)
    return ip


def log_route(ctx: RequestContext) -> None:
    logger.info(route_line(ctx))


def log_security_route(ctx: RequestContext, security_log: SecurityLog) -> None:
    _append_security(security_log, route_line(ctx))


def log_ip(ctx: RequestContext) -> None:
    logger.debug(f'{ctx.method} "{ctx.path}" requested from {normalize_ip(ctx.ip)}')


def log_response(ctx: RequestContext) -> None:
    logger.info(response_line(ctx))


def log_security_response(ctx: RequestContext, security_log: SecurityLog) -> None:
    _append_security(security_log, response_line(ctx))
