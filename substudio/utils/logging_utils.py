"""
Logging Utilities for the Subtitle Studio API

This module provides centralized logging configuration for the FastAPI
application and the CSRF client. It ensures consistent log formatting with
request ID tracing across all operations.
"""
import logging
from typing import Optional, Union

DEFAULT_LOGGER_NAME = "substudio"


def setup_logger(
    log_level: Union[int, str] = logging.INFO,
    logger_name: str = DEFAULT_LOGGER_NAME
) -> logging.Logger:
    """
    Configure the application logger.

    Args:
        log_level: Logging level constant or level name ("DEBUG", "INFO", ...).
                  Defaults to logging.INFO (20).
        logger_name: Name for the logger instance. Defaults to "substudio".

    Returns:
        Configured Logger instance ready for use with get_request_logger().

    Example:
        >>> logger = setup_logger(log_level="DEBUG")
        >>> request_logger = get_request_logger("req-123")
        >>> request_logger.info("CSRF token generated")
        2026-10-17 10:30:45 | INFO | [req-123] CSRF token generated
    """
    if isinstance(log_level, str):
        log_level = logging.getLevelName(log_level.upper())
        if not isinstance(log_level, int):
            log_level = logging.INFO

    log_format = logging.Formatter(
        '%(asctime)s | %(levelname)s | [%(request_id)s] %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    logger = logging.getLogger(logger_name)
    logger.setLevel(log_level)

    # Prevent duplicate handlers if logger already configured
    if not logger.handlers:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(log_format)
        console_handler.addFilter(_RequestIdFilter())
        logger.addHandler(console_handler)

    return logger


class _RequestIdFilter(logging.Filter):
    """Default request_id for records logged outside a request adapter."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "request_id"):
            record.request_id = "-"
        return True


def get_request_logger(
    request_id: str,
    base_logger: Optional[logging.Logger] = None
) -> logging.LoggerAdapter:
    """
    Create a logger adapter with the request ID for tracing.

    The LoggerAdapter injects the request_id into all log messages, enabling
    end-to-end tracing of a single request through the CSRF layer.

    Args:
        request_id: Unique identifier for the request.
        base_logger: Optional base logger to wrap. If None, uses the default
                    logger with name "substudio".

    Returns:
        LoggerAdapter configured to inject request_id into all log messages.
    """
    if base_logger is None:
        base_logger = logging.getLogger(DEFAULT_LOGGER_NAME)

    return logging.LoggerAdapter(base_logger, {"request_id": request_id})
