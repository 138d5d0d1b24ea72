from __future__ import annotations

"""Logging setup shared by the tool server, the chat backend and the CLI.

Every record carries the chat ``turn_id``, the tool ``call_id`` and a hashed
``client_id`` taken from context variables, so a single turn can be followed
across the orchestrator, the MCP client and the Genius calls it triggers.
"""

from typing import Any, Dict, Iterable, Optional
from pathlib import Path
import contextvars
import hashlib
import json
import logging
import logging.config
import os
from datetime import datetime, timezone


CONTEXT_FIELDS = ("turn_id", "call_id", "client_id")
UNSET = "-"

DEFAULT_LOG_FORMAT = (
    "%(asctime)s %(levelname)s %(name)s %(filename)s:%(lineno)d:%(funcName)s "
    + " ".join(f"{name}=%({name})s" for name in CONTEXT_FIELDS)
    + " %(message)s"
)

_CONFIG_DIR = Path(__file__).resolve().parents[2] / "config"
_DEV_ENVS = {"dev", "development", "local", "test"}
_PROD_ENVS = {"prod", "production"}

_context: Dict[str, contextvars.ContextVar[str]] = {
    name: contextvars.ContextVar(f"lyrifind_{name}", default=UNSET) for name in CONTEXT_FIELDS
}

_RESERVED_RECORD_KEYS = frozenset(logging.makeLogRecord({}).__dict__) | set(CONTEXT_FIELDS)


def summarize_payload(value: Any, *, max_list: int = 20, max_str: int = 200, depth: int = 3) -> Any:
    """Shrink a tool argument or envelope to something safe to put in a log line."""
    if depth <= 0:
        return f"<{type(value).__name__}>"

    def _inner(item: Any) -> Any:
        return summarize_payload(item, max_list=max_list, max_str=max_str, depth=depth - 1)

    if isinstance(value, str):
        return value if len(value) <= max_str else f"{value[:max_str]}...(truncated)"
    if isinstance(value, bytes):
        return {"__bytes__": len(value)}
    if isinstance(value, dict):
        keys = list(value)
        summary = {str(key): _inner(value[key]) for key in keys[:max_list]}
        if len(keys) > max_list:
            summary.update({"__truncated__": True, "__len__": len(keys)})
        return summary
    if isinstance(value, (list, tuple)):
        if len(value) <= max_list:
            return [_inner(item) for item in value]
        return {"__len__": len(value), "sample": [_inner(item) for item in value[:5]]}
    return value


def _hash_client_id(value: str) -> str:
    # Client addresses are never logged in the clear.
    return hashlib.sha256(value.encode("utf-8")).hexdigest()[:12]


def set_log_context(
    *, turn_id: Optional[str] = None, call_id: Optional[str] = None, client_id: Optional[str] = None
) -> None:
    """Bind identifiers for the current task; ``None`` leaves a field unchanged."""
    if turn_id is not None:
        _context["turn_id"].set(turn_id)
    if call_id is not None:
        _context["call_id"].set(call_id)
    if client_id is not None:
        _context["client_id"].set(_hash_client_id(client_id))


def clear_log_context() -> None:
    for var in _context.values():
        var.set(UNSET)


class LoggingContextFilter(logging.Filter):
    """Copy the bound turn/call/client identifiers onto each record."""
    def filter(self, record: logging.LogRecord) -> bool:
        for name, var in _context.items():
            setattr(record, name, var.get())
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line, with ``severity`` for Cloud Logging."""
    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(
                timespec="milliseconds"
            ),
            "severity": record.levelname,
            "logger": record.name,
            "source": f"{record.filename}:{record.lineno}:{record.funcName}",
            "message": record.getMessage(),
        }
        for name in CONTEXT_FIELDS:
            payload[name] = getattr(record, name, UNSET)
        payload.update(
            (key, value) for key, value in record.__dict__.items() if key not in _RESERVED_RECORD_KEYS
        )
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=True, default=str)


def _use_json_logs() -> bool:
    if os.getenv("LOG_FORMAT", "").lower() == "json":
        return True
    return os.getenv("LOG_JSON", "").lower() in {"1", "true", "yes"}


def _app_env() -> str:
    return (os.getenv("APP_ENV") or os.getenv("ENV") or "dev").lower()


def is_dev_env() -> bool:
    return _app_env() in _DEV_ENVS


def build_formatter() -> logging.Formatter:
    return JsonFormatter() if _use_json_logs() else logging.Formatter(DEFAULT_LOG_FORMAT)


def attach_context_filter(handler: logging.Handler) -> None:
    if not any(isinstance(existing, LoggingContextFilter) for existing in handler.filters):
        handler.addFilter(LoggingContextFilter())


def ensure_timestamped_handlers(logger_names: Iterable[str] | None = None) -> None:
    """Give root and uvicorn handlers our formatter and context filter."""
    formatter = build_formatter()
    for name in logger_names or ("", "uvicorn", "uvicorn.error", "uvicorn.access"):
        for handler in logging.getLogger(name).handlers:
            handler.setFormatter(formatter)
            attach_context_filter(handler)


def _config_path() -> Path:
    override = os.getenv("LOG_CONFIG")
    if override:
        path = Path(override)
        return path if path.is_absolute() else _CONFIG_DIR.parent / path
    name = "logging.prod.json" if _app_env() in _PROD_ENVS else "logging.dev.json"
    return _CONFIG_DIR / name


def configure_logging() -> None:
    """Apply the dictConfig file for the current env, then env overrides."""
    path = _config_path()
    if path.exists():
        config = json.loads(path.read_text(encoding="utf-8"))
        if _use_json_logs() and "json" in config.get("formatters", {}):
            for handler in config.get("handlers", {}).values():
                handler["formatter"] = "json"
        logging.config.dictConfig(config)
    else:
        logging.basicConfig(level=logging.INFO)
    level = os.getenv("BACKEND_LOG_LEVEL")
    if level:
        logging.getLogger().setLevel(level.upper())
    ensure_timestamped_handlers()


def get_logger(module_name: str) -> logging.Logger:
    """Return a module logger; in dev it also writes to ``$LOG_DIR/<module>.log``."""
    logger = logging.getLogger(module_name)
    logger.propagate = True
    if not is_dev_env() or getattr(logger, "_lyrifind_file_handler", False):
        return logger
    log_dir = Path(os.getenv("LOG_DIR", "logs"))
    log_dir.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(log_dir / f"{module_name.replace('.', '_')}.log", encoding="utf-8")
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(build_formatter())
    attach_context_filter(handler)
    logger.addHandler(handler)
    setattr(logger, "_lyrifind_file_handler", True)
    return logger
