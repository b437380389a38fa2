"""Utilities for logging.

Authors: Ayush Baid, John Lambert
"""

import logging
import socket
import sys
from datetime import datetime, timezone
from logging import LoggerAdapter
from typing import Optional

from dask import distributed

LOGGER_NAME = "rigpose"
LOG_FORMAT = "%(asctime)s [%(worker_id)s] [%(filename)s] %(levelname)s: %(message)s"

# Set once per process, estimation calls may run inside dask workers.
_WORKER_ID_CACHE: Optional[str] = None


def _detect_worker_id() -> str:
    """Returns "hostname(port)" inside a dask worker, or "hostname-main" for the main process."""
    hostname = socket.gethostname()
    try:
        worker = distributed.get_worker()
    except (ValueError, AttributeError):
        return f"{hostname}-main"
    port = worker.address.split(":")[-1]
    return f"{hostname}({port})"


def get_worker_id() -> str:
    """Get the cached worker ID for the current process."""
    global _WORKER_ID_CACHE

    if _WORKER_ID_CACHE is None:
        _WORKER_ID_CACHE = _detect_worker_id()
    return _WORKER_ID_CACHE


class WorkerAwareAdapter(LoggerAdapter):
    """LoggerAdapter that injects the worker ID into every LogRecord.

    Detection is lazy, because the dask worker context is not available at import time.
    """

    def __init__(self, logger: logging.Logger) -> None:
        super().__init__(logger, {})

    def process(self, msg, kwargs):
        extra = kwargs.setdefault("extra", {})
        extra["worker_id"] = get_worker_id()
        return msg, kwargs


class UTCFormatter(logging.Formatter):
    """Formatter with UTC timestamps."""

    def formatTime(self, record, datefmt=None):
        dt = datetime.fromtimestamp(record.created, tz=timezone.utc)
        if datefmt:
            return dt.strftime(datefmt)
        return dt.strftime("%Y-%m-%d %H:%M:%S")


def get_logger(level: int = logging.INFO) -> LoggerAdapter:
    """Get the package logger.

    Log format:
        "2025-10-28 00:00:45 [hornet-main] [ransac.py] INFO: message"

    Args:
        level: logging level applied to the underlying logger.

    Returns:
        LoggerAdapter wrapping the "rigpose" logger.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(UTCFormatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        logger.addHandler(handler)

    return WorkerAwareAdapter(logger)
