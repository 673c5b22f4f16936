"""
Logging setup: main log file, error log file and console toggles
"""
import logging
import sys
from typing import List

from mysql2pg.config import RunConfig

LOGGER_NAME = 'mysql2pg'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'
CONSOLE_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'

_handlers: List[logging.Handler] = []


def setup_logging(run: RunConfig) -> logging.Logger:
    """Attach file and console handlers according to the run section"""
    close_logging()
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.INFO)
    logger.propagate = False

    if run.enable_file_logging and run.log_file_path:
        main_handler = logging.FileHandler(run.log_file_path, mode='a', encoding='utf-8')
        main_handler.setLevel(logging.INFO)
        main_handler.setFormatter(logging.Formatter('[%(asctime)s] %(message)s', DATE_FORMAT))
        _handlers.append(main_handler)

    if run.error_log_path:
        error_handler = logging.FileHandler(run.error_log_path, mode='a', encoding='utf-8')
        error_handler.setLevel(logging.ERROR)
        error_handler.setFormatter(logging.Formatter('[%(asctime)s] ERROR: %(message)s', DATE_FORMAT))
        _handlers.append(error_handler)

    if run.show_log_in_console:
        console = logging.StreamHandler(sys.stdout)
        console.setLevel(logging.INFO)
        console.setFormatter(logging.Formatter(CONSOLE_FORMAT))
        _handlers.append(console)
    elif run.show_console_logs:
        errors = logging.StreamHandler(sys.stderr)
        errors.setLevel(logging.ERROR)
        errors.setFormatter(logging.Formatter('Error: %(message)s'))
        _handlers.append(errors)

    for handler in _handlers:
        logger.addHandler(handler)
    return logger


def close_logging() -> None:
    """Flush and detach every handler added by setup_logging"""
    logger = logging.getLogger(LOGGER_NAME)
    while _handlers:
        handler = _handlers.pop()
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = True
