"""
Logging configuration for the solver and its kernel backends.
"""
import logging
import sys
from typing import Optional

# Package namespaces whose module loggers share the configured handlers
LOGGER_NAMES = ("hh_batch", "cpu_backed", "gpu_backed")


def setup_logging(level: int = logging.INFO, log_file: Optional[str] = None) -> None:
    """
    Configure the 'hh_batch', 'cpu_backed' and 'gpu_backed' loggers.

    Args:
        level: Logging level (e.g. logging.DEBUG, logging.INFO)
        log_file: Optional path to save logs to a file.
    """
    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%H:%M:%S'
    )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)

    file_handler = None
    if log_file:
        file_handler = logging.FileHandler(log_file, mode='w', encoding='utf-8')
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)

    for name in LOGGER_NAMES:
        logger = logging.getLogger(name)
        logger.setLevel(level)

        # Avoid duplicate handlers when called more than once
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()

        logger.addHandler(console_handler)
        if file_handler is not None:
            logger.addHandler(file_handler)

    logging.getLogger("hh_batch").info("Logging initialized.")
