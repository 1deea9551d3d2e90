"""
Logging for ingestion runs.

setup_logging() installs one console handler (and optionally a file
handler) on the `src` logger tree, using either the text or the JSON
formatter. with_context() tags records with the run, source and stage they
belong to; both formatters render those tags.
"""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import Any

RUN_CONTEXT = ("run_id", "source_id", "stage")
_HANDLER_MARK = "_ingestion_handler"


def _run_context(record: logging.LogRecord) -> dict[str, Any]:
    return {key: getattr(record, key) for key in RUN_CONTEXT if getattr(record, key, None)}


class JsonFormatter(logging.Formatter):
    """One JSON object per record; run context and `payload` extras included."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": record.created,
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            **_run_context(record),
        }
        payload = getattr(record, "payload", None)
        if isinstance(payload, dict):
            entry["payload"] = payload
        if record.exc_info:
            entry["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class TextFormatter(logging.Formatter):
    """`time LEVEL logger [run=.. source=.. stage=..] message`"""

    _LABELS = {"run_id": "run", "source_id": "source", "stage": "stage"}

    def __init__(self) -> None:
        super().__init__(datefmt="%Y-%m-%d %H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        line = f"{self.formatTime(record, self.datefmt)} {record.levelname} {record.name}"
        context = _run_context(record)
        if context:
            tags = " ".join(f"{self._LABELS[k]}={v}" for k, v in context.items())
            line += f" [{tags}]"
        line += f" {record.getMessage()}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging(
    level: str = "INFO",
    *,
    json_logs: bool = False,
    log_file: Path | None = None,
    console: bool = True,
) -> logging.Logger:
    """
    Configure the `src` logger tree.

    Calling it again replaces the handlers a previous call installed and
    leaves any other handlers alone.
    """
    root = logging.getLogger("src")
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.propagate = False
    for handler in [h for h in root.handlers if getattr(h, _HANDLER_MARK, False)]:
        root.removeHandler(handler)
        handler.close()

    handlers: list[logging.Handler] = []
    if console:
        handlers.append(logging.StreamHandler(sys.stderr))
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    formatter = JsonFormatter() if json_logs else TextFormatter()
    for handler in handlers:
        handler.setFormatter(formatter)
        setattr(handler, _HANDLER_MARK, True)
        root.addHandler(handler)
    return root


class ContextAdapter(logging.LoggerAdapter):
    """Adds the adapter's run context to every record; per-call extras win."""

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs


def with_context(
    logger: logging.Logger | logging.LoggerAdapter,
    *,
    run_id: str | None = None,
    source_id: str | None = None,
    stage: str | None = None,
) -> ContextAdapter:
    """Wrap a logger (or another adapter) with run, source and stage tags."""
    context: dict[str, Any] = {}
    if isinstance(logger, logging.LoggerAdapter):
        context.update(logger.extra or {})
        logger = logger.logger
    given = {"run_id": run_id, "source_id": source_id, "stage": stage}
    context.update({k: v for k, v in given.items() if v})
    return ContextAdapter(logger, context)
