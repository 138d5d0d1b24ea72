import logging
import uuid

from lyrifind.mcp.logging_utils import (
    JsonFormatter,
    LoggingContextFilter,
    build_formatter,
    clear_log_context,
    configure_logging,
    get_logger,
    set_log_context,
    summarize_payload,
)


def _has_file_handler(logger: logging.Logger) -> bool:
    return any(isinstance(handler, logging.FileHandler) for handler in logger.handlers)


def _record() -> logging.LogRecord:
    return logging.LogRecord(
        name="test",
        level=logging.INFO,
        pathname="test_path.py",
        lineno=12,
        msg="hello",
        args=(),
        exc_info=None,
        func="test_func",
    )


def test_get_logger_in_prod_has_no_file_handler(monkeypatch):
    monkeypatch.setenv("APP_ENV", "prod")
    logger = get_logger(f"test_logger_prod_{uuid.uuid4().hex}")
    assert not _has_file_handler(logger)
    assert logger.propagate is True


def test_get_logger_in_dev_has_file_handler(monkeypatch, tmp_path):
    monkeypatch.setenv("APP_ENV", "dev")
    monkeypatch.setenv("LOG_DIR", str(tmp_path))
    name = f"test_logger_dev_{uuid.uuid4().hex}"
    logger = get_logger(name)
    assert _has_file_handler(logger)
    assert (tmp_path / f"{name}.log").exists()


def test_log_format_includes_context_fields():
    formatter = build_formatter()
    record = _record()
    set_log_context(turn_id="turn_1", call_id="call_1", client_id="127.0.0.1")
    LoggingContextFilter().filter(record)
    formatted = formatter.format(record)
    clear_log_context()
    assert "turn_id=turn_1" in formatted
    assert "call_id=call_1" in formatted
    assert "client_id=" in formatted
    assert "127.0.0.1" not in formatted


def test_json_format_includes_context_fields(monkeypatch):
    monkeypatch.setenv("LOG_FORMAT", "json")
    formatter = build_formatter()
    assert isinstance(formatter, JsonFormatter)
    record = _record()
    set_log_context(turn_id="turn_2", call_id="call_2", client_id="10.0.0.1")
    LoggingContextFilter().filter(record)
    formatted = formatter.format(record)
    clear_log_context()
    assert '"turn_id": "turn_2"' in formatted
    assert '"call_id": "call_2"' in formatted
    assert '"client_id"' in formatted


def test_cleared_context_uses_placeholders():
    clear_log_context()
    record = _record()
    LoggingContextFilter().filter(record)
    assert (record.turn_id, record.call_id, record.client_id) == ("-", "-", "-")


def test_summarize_payload_truncates():
    summary = summarize_payload({"lyrics": "x" * 500, "items": list(range(50)), "raw": b"abc"})
    assert summary["lyrics"].endswith("...(truncated)")
    assert summary["items"]["__len__"] == 50
    assert summary["raw"] == {"__bytes__": 3}


def test_configure_logging_applies_level_override(monkeypatch):
    monkeypatch.setenv("BACKEND_LOG_LEVEL", "warning")
    configure_logging()
    assert logging.getLogger().level == logging.WARNING
    monkeypatch.setenv("BACKEND_LOG_LEVEL", "info")
    configure_logging()
    assert logging.getLogger().level == logging.INFO
