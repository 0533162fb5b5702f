"""
Logging utilities for the OMR grading core.
"""
import logging
import sys
from datetime import datetime
from ..config import settings


def setup_logger(name: str, log_file: str = None, level=logging.INFO) -> logging.Logger:
    """
    Setup logger with file and console handlers

    Args:
        name: Logger name
        log_file: Optional log file name
        level: Logging level

    Returns:
        Configured logger
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Prevent duplicate handlers
    if logger.handlers:
        return logger

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        log_path = settings.LOGS_DIR / log_file
        file_handler = logging.FileHandler(log_path, encoding='utf-8')
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger


grading_logger = setup_logger(
    'grading',
    f'grading_{datetime.now().strftime("%Y%m%d")}.log'
)

detection_logger = setup_logger(
    'detection',
    f'detection_{datetime.now().strftime("%Y%m%d")}.log'
)

# Default logger for general use
logger = setup_logger(
    'omr',
    f'omr_{datetime.now().strftime("%Y%m%d")}.log'
)
