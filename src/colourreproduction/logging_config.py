"""
Logging Configuration
=====================
Attaches console (and optionally file) handlers to a logger namespace.

Why is this file needed?
------------------------
1. Library hygiene: Modules only call `logging.getLogger(__name__)`; nothing
   is printed until an application opts in here.
2. Sessions: A matching session can run for many rounds on real hardware, so
   the demo and notebooks want timestamps on stdout and a log file per run.
"""
import logging
import sys
from typing import Optional, TextIO

PACKAGE_LOGGER = "colourreproduction"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%H:%M:%S"


def setup_logging(
    level: int = logging.INFO,
    log_file: Optional[str] = None,
    name: str = PACKAGE_LOGGER,
    stream: Optional[TextIO] = None,
) -> logging.Logger:
    """
    Configures the logger `name` and returns it.

    Handlers attached by an earlier call are closed and replaced, so calling
    this again (notebooks, test sessions) never duplicates output.

    Args:
        level: Logging level (e.g. logging.DEBUG, logging.INFO).
        log_file: Optional path; the file is truncated at the start of a session.
        name: Logger namespace to configure, the package logger by default.
        stream: Console stream, `sys.stdout` when omitted.
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    handlers: list[logging.Handler] = [logging.StreamHandler(stream or sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, mode="w", encoding="utf-8"))

    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    logger.debug(f"Logging to {len(handlers)} handler(s) at level {logging.getLevelName(level)}.")
    return logger
