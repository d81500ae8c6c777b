import logging
import os
import sys
from datetime import datetime


# Custom PRINT level between INFO and WARNING: the solver's user-facing output
PRINT_LEVEL = 25
logging.addLevelName(PRINT_LEVEL, 'PRINT')

FILE_FORMAT = '%(asctime)s | %(levelname)-8s | %(threadName)s | %(name)s | %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'
LEVEL_FILES = [('debug', logging.DEBUG), ('info', logging.INFO),
               ('warning', logging.WARNING), ('error', logging.ERROR)]


def print_log(self, message, *args, **kwargs):
    """
    Logger method for the PRINT level.
    Use: logger.print("message")
    """
    if self.isEnabledFor(PRINT_LEVEL):
        self._log(PRINT_LEVEL, message, args, **kwargs)


logging.Logger.print = print_log


class LevelFilter(logging.Filter):
    """Pass only records of exactly one level (per-level files, PRINT-only console)."""

    def __init__(self, level):
        super().__init__()
        self.level = level

    def filter(self, record):
        return record.levelno == self.level


def _handler(handler, level, formatter, only_level=False):
    handler.setLevel(level)
    handler.setFormatter(formatter)
    if only_level:
        handler.addFilter(LevelFilter(level))
    return handler


def _install(level, handlers):
    """Replace every root handler; returns the root logger."""
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for old in list(root_logger.handlers):
        root_logger.removeHandler(old)
        old.close()
    for handler in handlers:
        root_logger.addHandler(handler)
    return root_logger


def setup_multi_level_logging(base_log_dir=None, enable_console=True, print_all_logs=False):
    """
    Configure logging for the Branch-and-Bound solver.

    Console output:
    - print_all_logs=False: only PRINT records, message text only
    - print_all_logs=True: every level with level and logger name

    With base_log_dir, one file per level is written as
    <base_log_dir>/<level>/bnb_TIMESTAMP.log (debug, info, warning, error),
    each holding only records of that level.

    Args:
        base_log_dir: Directory for the per-level files (None = no files)
        enable_console: Attach the stdout handler
        print_all_logs: Console shows all levels instead of PRINT only

    Returns:
        root_logger: Configured root logger
    """
    handlers = []
    if enable_console:
        if print_all_logs:
            console_formatter = logging.Formatter('%(levelname)-8s | %(name)s | %(message)s')
            handlers.append(_handler(logging.StreamHandler(sys.stdout), logging.DEBUG, console_formatter))
        else:
            handlers.append(_handler(logging.StreamHandler(sys.stdout), PRINT_LEVEL,
                                     logging.Formatter('%(message)s'), only_level=True))

    if base_log_dir is not None:
        file_formatter = logging.Formatter(FILE_FORMAT, datefmt=DATE_FORMAT)
        timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
        for level_name, level in LEVEL_FILES:
            level_dir = os.path.join(base_log_dir, level_name)
            os.makedirs(level_dir, exist_ok=True)
            path = os.path.join(level_dir, f"bnb_{timestamp}.log")
            handlers.append(_handler(logging.FileHandler(path), level, file_formatter, only_level=True))

    # root at DEBUG, the handlers decide what is shown
    return _install(logging.DEBUG, handlers)


def setup_logging(log_level='INFO', log_file=None):
    """
    Single-stream logging: stdout (and optionally one file) at log_level and above.

    Args:
        log_level: 'DEBUG', 'INFO', 'PRINT', 'WARNING', 'ERROR', 'CRITICAL'
        log_file: Optional path of a log file receiving the same records
    """
    numeric_level = logging.getLevelName(log_level.upper())
    if not isinstance(numeric_level, int):
        raise ValueError(f'Invalid log level: {log_level}')

    formatter = logging.Formatter(FILE_FORMAT, datefmt=DATE_FORMAT)
    handlers = [_handler(logging.StreamHandler(sys.stdout), numeric_level, formatter)]
    if log_file is not None:
        directory = os.path.dirname(log_file)
        if directory:
            os.makedirs(directory, exist_ok=True)
        handlers.append(_handler(logging.FileHandler(log_file), numeric_level, formatter))
    return _install(numeric_level, handlers)


def get_logger(name):
    """Get a logger for a specific module."""
    return logging.getLogger(name)
