"""
Logging utilities for the model hub and recommendation service.

Example:
    >>> from modelhub.logging_utils import setup_service_logger
    >>> logger = setup_service_logger('modelhub')
    >>> logger.info("Model loaded | id=content-recommender-model")
"""

import logging
from pathlib import Path
from typing import Optional

# ============================================================================
# Constants
# ============================================================================

SERVICE_LOG_DIR = "logs/modelhub"

LOG_FORMAT = '%(asctime)s | %(levelname)s | %(name)s | %(message)s'
LOG_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def ensure_log_dirs(*dirs: str) -> None:
    """Create log directories if they don't exist."""
    for dir_path in dirs:
        Path(dir_path).mkdir(parents=True, exist_ok=True)


def setup_service_logger(
    name: str = 'modelhub',
    log_dir: Optional[str] = SERVICE_LOG_DIR,
    console: bool = True
) -> logging.Logger:
    """
    Setup logger for the service.

    Args:
        name: Logger name (top-level package to attach handlers to)
        log_dir: Directory for log files, None to skip file handlers
        console: Whether to also log to console

    Returns:
        Configured logger
    """
    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)

    # Clear existing handlers
    logger.handlers = []
    formatter = logging.Formatter(LOG_FORMAT, LOG_DATE_FORMAT)

    if log_dir:
        ensure_log_dirs(log_dir)

        fh = logging.FileHandler(Path(log_dir) / f'{name}.log', encoding='utf-8')
        fh.setLevel(logging.INFO)
        fh.setFormatter(formatter)
        logger.addHandler(fh)

        eh = logging.FileHandler(Path(log_dir) / 'error.log', encoding='utf-8')
        eh.setLevel(logging.ERROR)
        eh.setFormatter(formatter)
        logger.addHandler(eh)

    if console:
        ch = logging.StreamHandler()
        ch.setLevel(logging.INFO)
        ch.setFormatter(formatter)
        logger.addHandler(ch)

    return logger


# ============================================================================
# Formatting Helpers
# ============================================================================

def format_size(num_bytes: float) -> str:
    """Human readable byte count, e.g. ``format_size(1536) -> '1.5 KB'``."""
    size = float(num_bytes)
    for unit in ('B', 'KB', 'MB', 'GB'):
        if abs(size) < 1024 or unit == 'GB':
            return f"{size:.0f} {unit}" if unit == 'B' else f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} GB"

