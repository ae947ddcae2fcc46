import os
import logging
import sys
from datetime import datetime


# Custom PRINT level (between INFO and WARNING) for user-facing summaries
PRINT_LEVEL = 25
logging.addLevelName(PRINT_LEVEL, 'PRINT')


def print_log(self, message, *args, **kwargs):
    """
    Custom logger method for PRINT level.
    Use: logger.print("message")
    """
    if self.isEnabledFor(PRINT_LEVEL):
        self._log(PRINT_LEVEL, message, args, **kwargs)


logging.Logger.print = print_log


class LevelFilter(logging.Filter):
    """Only lets records of exactly one level through."""

    def __init__(self, level):
        super().__init__()
        self.level = level

    def filter(self, record):
        return record.levelno == self.level


def setup_multi_level_logging(base_log_dir=None, enable_console=True, print_all_logs=False):
    """
    Configure the root logger.

    With base_log_dir set, one file per level is written:
    - <base_log_dir>/debug/routing_TIMESTAMP.log
    - <base_log_dir>/info/routing_TIMESTAMP.log
    - <base_log_dir>/warning/routing_TIMESTAMP.log
    - <base_log_dir>/error/routing_TIMESTAMP.log

    Console output:
    - print_all_logs=False: only PRINT level (logger.print("message"))
    - print_all_logs=True: every level

    Returns:
        root_logger: Configured root logger
    """
    file_formatter = logging.Formatter(
        fmt='%(asctime)s | %(levelname)-8s | %(name)s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    if print_all_logs:
        console_formatter = logging.Formatter(fmt='%(levelname)-8s | %(name)s | %(message)s')
    else:
        console_formatter = logging.Formatter(fmt='%(message)s')

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    if enable_console:
        console_handler = logging.StreamHandler(sys.stdout)
        if print_all_logs:
            console_handler.setLevel(logging.DEBUG)
        else:
            console_handler.setLevel(PRINT_LEVEL)
            console_handler.addFilter(LevelFilter(PRINT_LEVEL))
        console_handler.setFormatter(console_formatter)
        root_logger.addHandler(console_handler)

    if base_log_dir:
        timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
        for level in (logging.DEBUG, logging.INFO, logging.WARNING, logging.ERROR):
            level_name = logging.getLevelName(level).lower()
            level_dir = os.path.join(base_log_dir, level_name)
            os.makedirs(level_dir, exist_ok=True)
            file_handler = logging.FileHandler(os.path.join(level_dir, f'routing_{timestamp}.log'))
            file_handler.setLevel(level)
            file_handler.addFilter(LevelFilter(level))
            file_handler.setFormatter(file_formatter)
            root_logger.addHandler(file_handler)

    # Gurobi logs through its own logger; keep it out of the console
    logging.getLogger('gurobipy').setLevel(logging.WARNING)

    return root_logger


def get_logger(name):
    """Module logger; importing this module also installs Logger.print."""
    return logging.getLogger(name)
