"""Structured logging for QR Studio: audit events, warnings and call tracing.

Every record carries an ``event`` tag plus a ``ctx`` dict. Request-scoped
fields (owner, route) are bound once per request with :func:`bind_context`
and merged into each event emitted while the binding is active.
"""

import contextvars
import functools
import json
import logging
import sys
import time
import traceback
from datetime import datetime, timezone

# Custom AUDIT level (between WARNING=30 and ERROR=40)
AUDIT = 35
logging.addLevelName(AUDIT, "AUDIT")

ROOT_LOGGER = "qrstudio"

_bound: contextvars.ContextVar[dict] = contextvars.ContextVar("qrstudio_log_ctx", default={})


def _truncate(value: object, max_len: int = 80) -> str:
    s = str(value)
    return s if len(s) <= max_len else s[:max_len] + "..."


def _summarize(value: object) -> str:
    """Short description of a value; image and PDF bytes are reduced to their length."""
    if isinstance(value, (bytes, bytearray)):
        return f"<bytes[{len(value)}]>"
    if value is None or isinstance(value, (str, int, float, bool)):
        return _truncate(repr(value))
    if isinstance(value, (list, tuple, set, frozenset)):
        return f"{type(value).__name__}[{len(value)}]"
    if isinstance(value, dict):
        return f"dict[{len(value)} keys]"
    ident = getattr(value, "id", None)
    if isinstance(ident, str):
        return f"<{type(value).__name__} {ident}>"
    return type(value).__name__


# ---------------------------------------------------------------------------
# Request-scoped context
# ---------------------------------------------------------------------------

def bind_context(**fields) -> contextvars.Token:
    """Merge *fields* into the context attached to every event; returns a reset token."""
    return _bound.set({**_bound.get(), **fields})


def reset_context(token: contextvars.Token) -> None:
    _bound.reset(token)


# ---------------------------------------------------------------------------
# Formatters
# ---------------------------------------------------------------------------

def _record_fields(record: logging.LogRecord) -> dict:
    fields = {"event": getattr(record, "event", None), "ctx": getattr(record, "ctx", None) or {}}
    if hasattr(record, "duration_ms"):
        fields["duration_ms"] = record.duration_ms
    if fields["event"] is None:
        fields["msg"] = record.getMessage()
    if record.exc_info and record.exc_info[1]:
        fields["traceback"] = traceback.format_exception(*record.exc_info)
    return fields


class JsonFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record):
        stamp = datetime.fromtimestamp(record.created, tz=timezone.utc)
        fields = _record_fields(record)
        entry = {
            "ts": stamp.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "src": record.name,
        }
        if "duration_ms" in fields:
            fields["duration_ms"] = round(fields["duration_ms"], 2)
        entry.update({k: v for k, v in fields.items() if v not in (None, {}, "")})
        return json.dumps(entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """Coloured single-line output for terminals."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "AUDIT": "\033[35m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
    }
    RESET = "\033[0m"

    def format(self, record):
        fields = _record_fields(record)
        stamp = datetime.fromtimestamp(record.created, tz=timezone.utc).strftime("%H:%M:%S.%f")[:-3]
        line = [stamp, f"{self.COLORS.get(record.levelname, '')}{record.levelname:7s}{self.RESET}",
                f"[{record.name}]"]
        if fields["event"]:
            line.append(fields["event"])
        if "duration_ms" in fields:
            line.append(f"({fields['duration_ms']:.1f}ms)")
        if fields["ctx"]:
            line.extend(f"{k}={_truncate(v)}" for k, v in fields["ctx"].items())
        elif fields.get("msg"):
            line.append(fields["msg"])
        text = " ".join(line)
        if "traceback" in fields:
            text += "\n" + "".join(fields["traceback"])
        return text


def setup_logging(level: str = "INFO", log_file: str | None = None, json_format: bool = False):
    """Configure the ``qrstudio`` logger tree.

    Args:
        level: DEBUG, INFO, AUDIT, WARNING or ERROR. Unknown names fall back to INFO.
        log_file: Optional path; the file always receives JSON lines.
        json_format: Emit JSON on the console as well.
    """
    root = logging.getLogger(ROOT_LOGGER)
    resolved = logging.getLevelName(level.upper())
    root.setLevel(resolved if isinstance(resolved, int) else logging.INFO)
    root.handlers.clear()
    root.propagate = False

    handlers = [(logging.StreamHandler(), JsonFormatter() if json_format else ConsoleFormatter())]
    if log_file:
        handlers.append((logging.FileHandler(log_file), JsonFormatter()))
    for handler, formatter in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)


def get_logger(module_name: str) -> logging.Logger:
    return logging.getLogger(f"{ROOT_LOGGER}.{module_name}")


# ---------------------------------------------------------------------------
# Emitters
# ---------------------------------------------------------------------------

def _emit(log: logging.Logger, level: int, event: str, ctx: dict,
          duration_ms: float | None = None, exc_info=None) -> None:
    if not log.isEnabledFor(level):
        return
    record = log.makeRecord(log.name, level, fn="", lno=0, msg="", args=(), exc_info=exc_info)
    record.event = event
    record.ctx = {**_bound.get(), **ctx}
    if duration_ms is not None:
        record.duration_ms = duration_ms
    log.handle(record)


def audit(event: str, logger: logging.Logger | None = None, **context):
    """Emit an AUDIT-level event such as ``project.created`` or ``printpack.cache_hit``."""
    _emit(logger or logging.getLogger(ROOT_LOGGER), AUDIT, event, context)


def warn(event: str, logger: logging.Logger | None = None, **context):
    """Emit a WARNING-level event for a degraded path that still succeeds."""
    _emit(logger or logging.getLogger(ROOT_LOGGER), logging.WARNING, event, context)


def trace(func=None, *, logger_name: str | None = None):
    """Decorator logging entry (DEBUG), exit with timing (INFO) and failures (ERROR)."""
    def decorator(fn):
        log = get_logger(logger_name or fn.__module__.removeprefix(f"{ROOT_LOGGER}."))
        name = fn.__name__

        @functools.wraps(fn)
        def wrapper(*args, **kwargs):
            if log.isEnabledFor(logging.DEBUG):
                _emit(log, logging.DEBUG, f"{name}.enter", {
                    "args": [_summarize(a) for a in args],
                    "kwargs": {k: _summarize(v) for k, v in kwargs.items()},
                })
            start = time.perf_counter()
            try:
                result = fn(*args, **kwargs)
            except Exception:
                _emit(log, logging.ERROR, f"{name}.error", {"function": name},
                      duration_ms=(time.perf_counter() - start) * 1000, exc_info=sys.exc_info())
                raise
            _emit(log, logging.INFO, f"{name}.done", {"result": _summarize(result)},
                  duration_ms=(time.perf_counter() - start) * 1000)
            return result

        return wrapper

    return decorator(func) if func is not None else decorator
