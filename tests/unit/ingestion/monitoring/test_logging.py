"""Tests for structured logging setup and context injection."""

import json
import logging

import pytest

from src.ingestion.monitoring.logging import (
    JsonFormatter,
    TextFormatter,
    setup_logging,
    with_context,
)


@pytest.fixture
def src_logger():
    """Restore the `src` logger after a test reconfigures it."""
    logger = logging.getLogger("src")
    handlers = list(logger.handlers)
    level, propagate = logger.level, logger.propagate
    yield logger
    for h in list(logger.handlers):
        if h not in handlers:
            h.close()
            logger.removeHandler(h)
    logger.setLevel(level)
    logger.propagate = propagate


def _record(msg="Run finished", **extra):
    record = logging.LogRecord("src.ingestion", logging.INFO, __file__, 1, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestSetupLogging:
    def test_file_handler_json(self, src_logger, tmp_path):
        log_file = tmp_path / "logs" / "ingestion.log"
        setup_logging("debug", json_logs=True, log_file=log_file, console=False)

        logging.getLogger("src.ingestion.orchestrator").debug("Fetched page")
        for h in src_logger.handlers:
            h.flush()

        line = log_file.read_text(encoding="utf-8").strip().splitlines()[-1]
        payload = json.loads(line)
        assert payload["msg"] == "Fetched page"
        assert payload["level"] == "DEBUG"
        assert src_logger.level == logging.DEBUG

    def test_rerun_replaces_handlers(self, src_logger):
        setup_logging()
        setup_logging()

        installed = [h for h in src_logger.handlers if getattr(h, "_ingestion_handler", False)]
        assert len(installed) == 1
        assert isinstance(installed[0].formatter, TextFormatter)


class TestFormatters:
    def test_json_context_fields(self):
        record = _record(run_id="r1", source_id="42", stage="extract", payload={"events": 3})
        payload = json.loads(JsonFormatter().format(record))

        assert payload["run_id"] == "r1"
        assert payload["source_id"] == "42"
        assert payload["stage"] == "extract"
        assert payload["payload"] == {"events": 3}
        assert payload["logger"] == "src.ingestion"

    def test_text_context_prefix(self):
        text = TextFormatter().format(_record(run_id="r1", source_id="42"))
        assert "[run=r1 source=42]" in text
        assert text.endswith("Run finished")


class TestWithContext:
    def test_adapter_injects_fields(self):
        adapter = with_context(logging.getLogger("src.test"), run_id="r1", source_id="42")
        _, kwargs = adapter.process("msg", {"extra": {"stage": "persist"}})

        assert kwargs["extra"] == {"run_id": "r1", "source_id": "42", "stage": "persist"}

    def test_nested_adapters_merge(self):
        base = with_context(logging.getLogger("src.test"), run_id="r1")
        nested = with_context(base, stage="dedup")

        assert nested.extra == {"run_id": "r1", "stage": "dedup"}
        assert nested.logger is logging.getLogger("src.test")
