"""
Logging setup for the installation estimator.

Every module logs through ``logging.getLogger("elinstall-<area>")``.  Stage
context travels as LogRecord extras (``estimate_name``, ``stage``,
``duration_ms``); both formatters below render them.

Environment:
  ESTIMATOR_LOG_LEVEL   DEBUG | INFO | WARNING ... (default INFO)
  ESTIMATOR_LOG_JSON    "0"/"false" switches to the plain line format
"""
import os
import sys
import json
import logging
from datetime import datetime, timezone
from typing import Any, MutableMapping, Optional, Tuple

LOGGER_PREFIX = "elinstall-"
EXTRA_FIELDS: Tuple[str, ...] = ("estimate_name", "stage", "duration_ms")

# Third-party loggers that are only useful at WARNING and above
_QUIET_LOGGERS = ("sqlalchemy.engine", "sqlalchemy.pool", "asyncpg")


def _record_extras(record: logging.LogRecord) -> dict:
    return {name: getattr(record, name) for name in EXTRA_FIELDS if hasattr(record, name)}


class JSONFormatter(logging.Formatter):
    """One JSON object per line; extras are top-level keys."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        entry.update(_record_extras(record))
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str, ensure_ascii=False)


class PlainFormatter(logging.Formatter):
    """Human-readable lines for local runs: ``... message [stage=pricing 1.2ms]``."""

    def __init__(self):
        super().__init__("%(asctime)s [%(name)s] %(levelname)s: %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        extras = _record_extras(record)
        if not extras:
            return line
        parts = []
        if "estimate_name" in extras:
            parts.append(f"estimate={extras['estimate_name']!r}")
        if "stage" in extras:
            parts.append(f"stage={extras['stage']}")
        if "duration_ms" in extras:
            parts.append(f"{extras['duration_ms']}ms")
        head, sep, tail = line.partition("\n")
        return f"{head} [{' '.join(parts)}]{sep}{tail}"


class EstimateLogAdapter(logging.LoggerAdapter):
    """Binds an estimate name to every record; call-site extras win."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]):
        kwargs["extra"] = {**self.extra, **(kwargs.get("extra") or {})}
        return msg, kwargs


def estimate_logger(logger: logging.Logger, estimate_name: str) -> EstimateLogAdapter:
    return EstimateLogAdapter(logger, {"estimate_name": estimate_name})


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() not in ("0", "false", "no", "off")


def setup_logging(level: Optional[str] = None, json_output: Optional[bool] = None) -> logging.Handler:
    """Install a single stdout handler on the root logger and return it."""
    level = level or os.getenv("ESTIMATOR_LOG_LEVEL", "INFO")
    if json_output is None:
        json_output = _env_flag("ESTIMATOR_LOG_JSON", True)

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if json_output else PlainFormatter())
    root.handlers = [handler]

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    return handler
