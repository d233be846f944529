"""Unified logging configuration for entrypoints.

Library modules only call logging.getLogger(__name__); handlers are installed
once by whichever entrypoint runs (scripts/run_copy_task.py, tests):
    - Console handler and optional file handler with size/time rotation
    - JSON line mode for machine ingestion
    - Contextual fields (app, run, step) attached to every record
    - Python warnings routed to logging

Public API:
    setup_logging(log_level="INFO", log_file=None, context={"app": "copy_task"})
    get_logger(name)
    push_context(step=120)
    pop_context(keys=["step"])
    install_excepthook()
    shutdown()

Format examples:
    Human: 2026-10-17T13:45:12.345Z | INFO     | app=copy_task seed=7 | Saved actor
    JSON:  {"t":"2026-10-17T13:45:12.345+00:00","lvl":"INFO","seed":7,"msg":"Saved actor"}

Context uses contextvars so concurrent runs in one process stay separate.
Idempotent: repeated setup_logging() calls replace, not duplicate, handlers.
"""

import contextvars
import json
import logging
import logging.handlers
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

_context_var = contextvars.ContextVar('csdr_logging_context', default={})

_configured = False

_COLORS = {
    'DEBUG': '\033[36m',
    'INFO': '\033[32m',
    'WARNING': '\033[33m',
    'ERROR': '\033[31m',
    'CRITICAL': '\033[35m',
}
_RESET = '\033[0m'


class ContextFormatter(logging.Formatter):
    """Formatter emitting human-readable or JSON lines with contextual fields."""

    def __init__(self, fmt_mode: str = "human", use_color: bool = True, tz: str = "UTC"):
        super().__init__()
        self.fmt_mode = fmt_mode
        self.use_color = use_color and sys.stderr.isatty()
        self.tz = tz

    def format(self, record: logging.LogRecord) -> str:
        context = _context_var.get({})
        if self.tz == "UTC":
            ts = datetime.fromtimestamp(record.created, tz=timezone.utc)
        else:
            ts = datetime.fromtimestamp(record.created)

        if self.fmt_mode == "json":
            payload = {
                't': ts.isoformat(),
                'lvl': record.levelname,
                'name': record.name,
                'pid': os.getpid(),
                'msg': record.getMessage(),
            }
            payload.update(context)
            if record.exc_info:
                payload['exc'] = self.formatException(record.exc_info)
            return json.dumps(payload, default=str)

        level = f"{record.levelname:8s}"
        if self.use_color:
            level = f"{_COLORS.get(record.levelname, '')}{level}{_RESET}"

        parts = [ts.strftime('%Y-%m-%dT%H:%M:%S.%f')[:-3] + 'Z', '|', level, '|']
        if context:
            parts.append(' '.join(f"{k}={v}" for k, v in context.items()) + ' |')
        parts.append(record.getMessage())
        line = ' '.join(parts)

        if record.exc_info:
            line += '\n' + self.formatException(record.exc_info)
        return line


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    *,
    json: bool = False,
    color: bool = True,
    to_stderr: bool = True,
    rotate: Optional[Dict[str, Any]] = None,
    tz: str = "UTC",
    capture_warnings: bool = True,
    context: Optional[Dict[str, Any]] = None
) -> List[logging.Handler]:
    """Configure root logger (idempotent).

    Parameters
    ----------
    log_level : str
        "DEBUG", "INFO", "WARNING", "ERROR" or "CRITICAL"
    log_file : str, optional
        Log file path; None disables file logging
    json : bool
        JSON line format for the file handler, default False
    color : bool
        ANSI colors on the console (only when attached to a TTY)
    to_stderr : bool
        Install a console handler, default True
    rotate : dict, optional
        {"mode": "size", "max_bytes": ..., "backup_count": ...} or
        {"mode": "time", "when": "D", "interval": 1, "backup_count": ...}
    tz : str
        "UTC" (default) or "local"
    capture_warnings : bool
        Route Python warnings into logging
    context : dict, optional
        Initial contextual fields (e.g. {"app": "copy_task"})

    Returns
    -------
    List[logging.Handler]
        Handlers installed on the root logger
    """
    global _configured

    root = logging.getLogger()
    if _configured:
        root.handlers.clear()

    root.setLevel(getattr(logging, log_level.upper()))

    handlers = []
    if to_stderr:
        console = logging.StreamHandler(sys.stderr)
        console.setFormatter(ContextFormatter("human", color, tz))
        handlers.append(console)
    if log_file:
        handlers.append(_create_file_handler(log_file, rotate, json, tz))
    for handler in handlers:
        root.addHandler(handler)

    if context:
        push_context(**context)

    if capture_warnings:
        logging.captureWarnings(True)

    _configured = True
    return handlers


def _create_file_handler(
    log_file: str,
    rotate: Optional[Dict[str, Any]],
    json_format: bool,
    tz: str
) -> logging.Handler:
    Path(log_file).parent.mkdir(parents=True, exist_ok=True)

    if rotate:
        mode = rotate.get('mode', 'size')
        if mode == 'size':
            handler = logging.handlers.RotatingFileHandler(
                log_file,
                maxBytes=rotate.get('max_bytes', 50_000_000),
                backupCount=rotate.get('backup_count', 5)
            )
        elif mode == 'time':
            handler = logging.handlers.TimedRotatingFileHandler(
                log_file,
                when=rotate.get('when', 'D'),
                interval=rotate.get('interval', 1),
                backupCount=rotate.get('backup_count', 7)
            )
        else:
            raise ValueError(f"Unknown rotation mode: {mode}. Use 'size' or 'time'.")
    else:
        handler = logging.FileHandler(log_file)

    handler.setFormatter(ContextFormatter("json" if json_format else "human", use_color=False, tz=tz))
    return handler


def get_logger(name: str) -> logging.Logger:
    """Get logger by name (typically __name__)."""
    return logging.getLogger(name)


def set_level(level: str) -> None:
    """Update root logger level at runtime."""
    logging.getLogger().setLevel(getattr(logging, level.upper()))


def push_context(**kwargs) -> None:
    """Add contextual fields to all subsequent log records in this context."""
    _context_var.set({**_context_var.get({}), **kwargs})


def pop_context(keys: Optional[List[str]] = None) -> None:
    """Remove the given contextual fields, or all of them if keys is None."""
    if keys is None:
        _context_var.set({})
        return
    current = dict(_context_var.get({}))
    for key in keys:
        current.pop(key, None)
    _context_var.set(current)


def get_context() -> Dict[str, Any]:
    """Current contextual fields (copy)."""
    return dict(_context_var.get({}))


def install_excepthook() -> None:
    """Log uncaught exceptions (except KeyboardInterrupt) before the process exits."""
    def log_exception(exc_type, exc_value, exc_traceback):
        if issubclass(exc_type, KeyboardInterrupt):
            sys.__excepthook__(exc_type, exc_value, exc_traceback)
            return
        logging.getLogger(__name__).critical(
            "Uncaught exception",
            exc_info=(exc_type, exc_value, exc_traceback)
        )

    sys.excepthook = log_exception


def shutdown() -> None:
    """Flush and close all handlers."""
    logging.shutdown()
