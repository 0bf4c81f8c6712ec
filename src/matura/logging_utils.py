"""
Logging utilities for MATURA.

Every record under the "matura" hierarchy can carry the phase and request it
belongs to. step_logger() binds both, and the handler installed by
configure_logging() prints them (or "-" for records logged outside a step).

Usage:
    from matura.logging_utils import get_logger, step_logger

    logger = get_logger(__name__)
    logger.info("Catalog loaded")

    log = step_logger(logger, Phase.SKETCH_VIEW, request.request_id)
    log.warning("timed out after 45000ms")
    # 2026-01-01 12:00:00 [WARNING] matura.controller [SketchView 3f2a...]: timed out after 45000ms
"""

import logging
import sys
from typing import Any, Optional

DEFAULT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s [%(phase)s %(request_id)s]: %(message)s"
DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

ROOT_LOGGER_NAME = "matura"
NO_CONTEXT = "-"

# Track if root logger has been configured
_root_configured = False


class StepContextFilter(logging.Filter):
    """Give records logged outside a step placeholder phase/request fields."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "phase"):
            record.phase = NO_CONTEXT
        if not hasattr(record, "request_id"):
            record.request_id = NO_CONTEXT
        return True


def make_handler(
    stream: Optional[object] = None,
    level: int = logging.INFO,
    format_str: str = DEFAULT_FORMAT,
    date_format: str = DEFAULT_DATE_FORMAT,
) -> logging.Handler:
    """Stream handler that understands the step context fields."""
    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setLevel(level)
    handler.addFilter(StepContextFilter())
    handler.setFormatter(logging.Formatter(format_str, date_format))
    return handler


def configure_logging(level: int = logging.INFO, stream: Optional[object] = None) -> None:
    """
    Configure the root logger for MATURA.

    Only the first call installs a handler; later calls just adjust the level.

    Args:
        level: Logging level (default: INFO)
        stream: Output stream (default: sys.stderr)
    """
    global _root_configured
    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(level)
    if _root_configured:
        return

    root.addHandler(make_handler(stream, logging.DEBUG))
    _root_configured = True


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger for a module.

    Args:
        name: Module name (typically __name__)

    Returns:
        Logger instance configured under the matura hierarchy.
    """
    if not _root_configured:
        configure_logging()

    # Package modules already carry the prefix
    if name == ROOT_LOGGER_NAME or name.startswith(f"{ROOT_LOGGER_NAME}."):
        return logging.getLogger(name)

    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


class StepLoggerAdapter(logging.LoggerAdapter):
    """LoggerAdapter that stamps every record with a phase and request id."""

    def process(self, msg: str, kwargs: Any):
        extra = dict(kwargs.get("extra") or {})
        extra.update(self.extra)
        kwargs["extra"] = extra
        return msg, kwargs


def step_logger(logger: logging.Logger, phase: Any, request_id: Optional[str] = None) -> StepLoggerAdapter:
    """
    Bind a phase (Phase or label) and request id to a logger.

    Args:
        logger: Module logger.
        phase: Phase being generated.
        request_id: GenerationRequest id, if one has been issued.
    """
    label = getattr(phase, "label", None) or str(phase)
    return StepLoggerAdapter(logger, {"phase": label, "request_id": request_id or NO_CONTEXT})
