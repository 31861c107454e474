# -*- coding: utf-8 -*-
"""
Logging for activation runs.

Routes logs by severity:
- DEBUG, INFO, WARNING → STDOUT
- ERROR, CRITICAL → STDERR

Every record is stamped with the current run id and scrubbed of product keys
and bearer tokens before it is queued. Both filters sit on the QueueHandler,
so they run in the activation's own context; the listener thread only writes.
"""

import atexit
import logging
import queue
import re
import sys
from logging.handlers import QueueHandler, QueueListener

from activator.utils.logging_helpers import get_correlation_id

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(run_id)s] %(message)s"

# Chatty transport libraries; request lines would carry keys in URLs
QUIET_LOGGERS = ("httpx", "httpcore")

PRODUCT_KEY_PATTERN = re.compile(r"\b[A-Z0-9]{5}(?:-[A-Z0-9]{5}){4}\b")
BEARER_PATTERN = re.compile(r'(Bearer\s+|WLID1\.0=")[^\s"]+', re.IGNORECASE)


def redact(text: str) -> str:
    """Keep the first group of a product key and drop bearer token values."""
    text = PRODUCT_KEY_PATTERN.sub(lambda m: f"{m.group(0)[:5]}-*****", text)
    return BEARER_PATTERN.sub(lambda m: f"{m.group(1)}***", text)


class MaxLevelFilter(logging.Filter):
    """Passes records up to max_level (inclusive); keeps errors out of stdout."""

    def __init__(self, max_level):
        super().__init__()
        self.max_level = max_level

    def filter(self, record):
        return record.levelno <= self.max_level


class RunContextFilter(logging.Filter):
    """Adds `run_id` from the activation's correlation id ("-" outside a run)."""

    def filter(self, record):
        record.run_id = get_correlation_id() or "-"
        return True


class RedactionFilter(logging.Filter):
    def filter(self, record):
        message = record.getMessage()
        scrubbed = redact(message)
        if scrubbed != message:
            record.msg = scrubbed
            record.args = None
        return True


_log_listener: QueueListener | None = None


def setup_logging(level="INFO"):
    """
    Route the root logger through a queue drained by a listener thread.

    Args:
        level: Root level name or number; unknown names fall back to INFO

    Calling it again replaces the running listener.
    """
    global _log_listener

    if _log_listener is not None:
        _stop_log_listener()

    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    formatter = logging.Formatter(LOG_FORMAT)

    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setLevel(logging.DEBUG)
    stdout_handler.addFilter(MaxLevelFilter(logging.WARNING))
    stdout_handler.setFormatter(formatter)

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setLevel(logging.ERROR)
    stderr_handler.setFormatter(formatter)

    log_queue = queue.Queue()
    queue_handler = QueueHandler(log_queue)
    queue_handler.addFilter(RunContextFilter())
    queue_handler.addFilter(RedactionFilter())
    root_logger.addHandler(queue_handler)

    _log_listener = QueueListener(
        log_queue,
        stdout_handler,
        stderr_handler,
        respect_handler_level=True,
    )
    _log_listener.start()
    atexit.register(_stop_log_listener)
    return _log_listener


def _stop_log_listener():
    """Stop the queue listener (called at exit)."""
    global _log_listener
    if _log_listener is not None:
        _log_listener.stop()
        _log_listener = None
