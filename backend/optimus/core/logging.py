"""
Centralized logging system with structured JSON output.
"""
from __future__ import annotations

import json
import logging
import logging.handlers
import queue
import sys
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional


class StructuredFormatter(logging.Formatter):
    """
    Custom formatter that outputs structured JSON logs with correlation IDs.
    """

    CONTEXT_FIELDS = ("wallet", "strategy", "source", "request_id")

    SENSITIVE_PATTERNS = (
        "key", "secret", "token", "password", "passphrase",
        "private", "mnemonic", "seed", "jwt",
    )

    def format(self, record: logging.LogRecord) -> str:
        """
        Format log record as structured JSON.

        Args:
            record: Log record to format

        Returns:
            JSON formatted log string
        """
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        trace_id = getattr(record, "trace_id", None)
        if trace_id is not None:
            log_data["trace_id"] = trace_id

        for field in self.CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_data[field] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        extra_data = getattr(record, "extra_data", None)
        if isinstance(extra_data, dict):
            log_data.update(
                {k: self._redact_sensitive(k, v) for k, v in extra_data.items()}
            )

        return json.dumps(log_data, default=str, separators=(",", ":"))

    def _redact_sensitive(self, key: str, value: Any) -> Any:
        """Redact values whose key looks like a credential."""
        lowered = key.lower()
        if any(pattern in lowered for pattern in self.SENSITIVE_PATTERNS):
            return "[REDACTED]"
        return value


_queue_listener: Optional[logging.handlers.QueueListener] = None


def setup_logging(
    log_level: str = "INFO",
    debug: bool = False,
    log_dir: Optional[Path] = None,
) -> None:
    """
    Set up centralized logging with structured JSON output.

    Records go through a queue so request handlers never block on I/O.
    JSON lines are written to stdout, and additionally to
    ``<log_dir>/optimus.jsonl`` (daily rotation) when a directory is given.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        debug: Also emit human-readable console lines
        log_dir: Optional directory for rotating JSON log files
    """
    global _queue_listener

    cleanup_logging()

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    formatter = StructuredFormatter()

    handlers: list[logging.Handler] = []

    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setFormatter(formatter)
    handlers.append(stream_handler)

    if log_dir is not None:
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.TimedRotatingFileHandler(
            filename=str(log_dir / "optimus.jsonl"),
            when="midnight",
            backupCount=30,
            encoding="utf-8",
            utc=True,
        )
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    log_queue: queue.Queue = queue.Queue(-1)
    root_logger.addHandler(logging.handlers.QueueHandler(log_queue))

    _queue_listener = logging.handlers.QueueListener(
        log_queue, *handlers, respect_handler_level=True
    )
    _queue_listener.start()

    if debug:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )
        root_logger.addHandler(console_handler)

    logging.getLogger(__name__).info(
        "Logging system initialized",
        extra={"extra_data": {"log_level": log_level, "debug": debug}},
    )


def cleanup_logging() -> None:
    """Stop the queue listener on shutdown."""
    global _queue_listener

    if _queue_listener is not None:
        _queue_listener.stop()
        _queue_listener = None


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger with the specified name.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)


def new_trace_id() -> str:
    """Generate a trace ID for request correlation."""
    return str(uuid.uuid4())
