"""
Structured logging configuration with sync run ID and environment labels
"""
import logging
import sys
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional

# Context variable for the current sync run ID
run_id_var: ContextVar[Optional[str]] = ContextVar('sync_run_id', default=None)


def get_run_id() -> Optional[str]:
    """Get current sync run ID from context"""
    return run_id_var.get()


@contextmanager
def sync_run_context(run_id: Optional[str] = None) -> Iterator[str]:
    """
    Bind a sync run ID to every log record emitted inside the block

    Args:
        run_id: Run ID to use (generated if None)

    Yields:
        The bound run ID
    """
    run_id = run_id or uuid.uuid4().hex[:12]
    token = run_id_var.set(run_id)
    try:
        yield run_id
    finally:
        run_id_var.reset(token)


class StructuredFormatter(logging.Formatter):
    """Custom formatter that includes sync run ID and environment"""

    def __init__(self, env: str = "dev", fmt: str = None, datefmt: str = None):
        self.env = env
        if fmt is None:
            fmt = "%(asctime)s [%(env)s] [%(run_id)s] %(levelname)-8s %(name)s: %(message)s"
        if datefmt is None:
            datefmt = "%Y-%m-%d %H:%M:%S"
        super().__init__(fmt=fmt, datefmt=datefmt)

    def format(self, record: logging.LogRecord) -> str:
        record.run_id = get_run_id() or "-"
        record.env = self.env
        return super().format(record)


def setup_logging(env: str = "dev", log_level: str = "INFO"):
    """
    Set up structured logging with sync run ID and environment labels

    Args:
        env: Environment name (dev, staging, prod, test)
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    # Format: timestamp [ENV] [RUN_ID] level logger message
    formatter = StructuredFormatter(env=env)

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # Third-party loggers
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("stripe").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)

    return root_logger
