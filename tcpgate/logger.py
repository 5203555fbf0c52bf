"""
tcpgate.logger
~~~~~~~~~~~~~~
Human-readable console logs *and* JSON lines with daily rotation.

Every record carries a dict message; ``GateLogger`` is the facade the
server and validator emit their events through.
"""

from __future__ import annotations

import json
import logging
import logging.handlers
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict

LOGGER_NAME = "tcpgate"
_ISO = "%Y-%m-%dT%H:%M:%SZ"
_REDACTED = "Authorization: [redacted]"


def _now() -> str:  # RFC-3339 without microseconds
    return datetime.now(tz=timezone.utc).strftime(_ISO)


def redact(text: str) -> str:
    """Mask every ``Authorization`` line in *text*."""
    lines = text.split("\n")
    for i, ln in enumerate(lines):
        if ln.lstrip().lower().startswith("authorization:"):
            lines[i] = _REDACTED
    return "\n".join(lines)


class _PlainFormatter(logging.Formatter):
    """ e.g. 2026-10-19T15:07:02Z WARNING auth_fail ip=127.0.0.1 reason=decode_failure """

    def format(self, record):  # type: ignore[override]
        if not isinstance(record.msg, dict):
            return super().format(record)

        d: Dict[str, Any] = dict(record.msg)
        parts = [d.pop("ts", _now()), record.levelname, d.pop("event", "-")]
        parts.extend(f"{k}={v}" for k, v in d.items())
        line = " ".join(parts)
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class _JSONFormatter(logging.Formatter):
    def format(self, record):  # type: ignore[override]
        d = record.msg if isinstance(record.msg, dict) else {"event": "message", "msg": record.getMessage()}
        return json.dumps({"level": record.levelname.lower(), **d}, separators=(",", ":"), default=str)


def setup_logging(level: str | int = "INFO", log_path: str | Path | None = None) -> logging.Logger:
    """Configure the process-wide ``tcpgate`` sink.  Safe to call twice."""
    root = logging.getLogger(LOGGER_NAME)
    root.setLevel(level.upper() if isinstance(level, str) else level)
    root.propagate = False  # don't spam the root logger

    for h in list(root.handlers):
        root.removeHandler(h)
        h.close()

    console = logging.StreamHandler()
    console.setFormatter(_PlainFormatter())
    root.addHandler(console)

    if log_path:
        jsonl_file = Path(log_path).with_suffix(".jsonl")
        h = logging.handlers.TimedRotatingFileHandler(
            jsonl_file, when="midnight", backupCount=7, encoding="utf-8"
        )
        h.setFormatter(_JSONFormatter())
        root.addHandler(h)

    return root


class GateLogger:
    def __init__(self, name: str = LOGGER_NAME):
        self.log = logging.getLogger(name)

    def _emit(self, level: int, event: str, **fields: Any) -> None:
        if self.log.isEnabledFor(level):
            self.log.log(level, {"event": event, "ts": _now(), **fields})

    # ------------------------------------------------------------------ #
    # lifecycle
    # ------------------------------------------------------------------ #

    def config(self, cfg: Any) -> None:
        self._emit(logging.INFO, "config", config=repr(cfg))

    def listening(self, address: str, timeout: float, auth: bool) -> None:
        self._emit(logging.INFO, "listening", address=address, timeout=timeout, auth=auth)

    def startup_failed(self, error: BaseException) -> None:
        self._emit(logging.ERROR, "startup_failed", error=str(error))

    def server_error(self, message: str, error: BaseException | None = None) -> None:
        self._emit(logging.ERROR, "server_error", message=message, error=str(error) if error else "-")

    # ------------------------------------------------------------------ #
    # sessions
    # ------------------------------------------------------------------ #

    def accepted(self, ip: str) -> None:
        self._emit(logging.INFO, "accepted", ip=ip)

    def capacity(self, ip: str, limit: int) -> None:
        self._emit(logging.WARNING, "capacity", ip=ip, limit=limit)

    def closed(self, ip: str, reason: str) -> None:
        self._emit(logging.INFO, "closed", ip=ip, reason=reason)

    def received(self, ip: str, text: str, authorized: bool) -> None:
        self._emit(logging.INFO, "received", ip=ip, authorized=authorized, data=redact(text.strip()))

    def non_text(self, ip: str, size: int) -> None:
        self._emit(logging.WARNING, "non_text", ip=ip, bytes=size)

    def awaiting_auth(self, ip: str, text: str) -> None:
        self._emit(logging.INFO, "awaiting_auth", ip=ip, data=redact(text.strip()))

    def timeout(self, ip: str, seconds: float) -> None:
        self._emit(logging.INFO, "timeout", ip=ip, seconds=seconds)

    def io_error(self, ip: str, op: str, error: BaseException) -> None:
        self._emit(logging.ERROR, "io_error", ip=ip, op=op, error=str(error))

    # ------------------------------------------------------------------ #
    # auth
    # ------------------------------------------------------------------ #

    def auth_attempt(self, ip: str, user: str) -> None:
        self._emit(logging.INFO, "auth_attempt", ip=ip, user=user)

    def auth_fail(self, ip: str, reason: str, supplied_user: str | None = None) -> None:
        self._emit(logging.WARNING, "auth_fail", ip=ip, reason=reason, user=supplied_user or "-")

    def unauthorized(self, ip: str) -> None:
        self._emit(logging.WARNING, "unauthorized", ip=ip)
