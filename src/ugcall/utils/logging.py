"""
Logging setup for ugcall.

Log records go to a rich handler on stderr, and optionally to a plain text
file. Stdout is never written to, so a VCF can be streamed there.
"""

import logging
import time
from contextlib import contextmanager

from rich.console import Console
from rich.logging import RichHandler

__all__ = [
    "setup_logging",
    "timed",
]

_console = Console(stderr=True)

FILE_LOG_FORMAT = "%(asctime)s %(threadName)s %(name)s %(levelname)s: %(message)s"


def setup_logging(verbose: bool = False, log_file: str | None = None) -> None:
    """
    Configure the root logger.

    Args:
        verbose: DEBUG level when set, INFO otherwise.
        log_file: Also append records to this file.
    """
    handlers: list[logging.Handler] = [
        RichHandler(console=_console, rich_tracebacks=True, markup=True, show_path=verbose)
    ]
    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(logging.Formatter(FILE_LOG_FORMAT))
        handlers.append(file_handler)

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=handlers,
        force=True,
    )


@contextmanager
def timed(operation: str, logger: logging.Logger | None = None):
    """Log how long the wrapped block took, at DEBUG level."""
    log = logger or logging.getLogger(__name__)
    start = time.perf_counter()
    log.debug("Starting: %s", operation)
    try:
        yield
    finally:
        log.debug("Finished: %s in %.3fs", operation, time.perf_counter() - start)
