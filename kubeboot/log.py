"""Logging configuration for the kubeboot package."""
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from kubeboot.config import Config

NOISY_LOGGERS = ('paramiko', 'urllib3', 'kubernetes')


def setup_logging(
    debug_mode: bool = False,
    log_file: Optional[str] = None,
    max_size_mb: int = 100,
    backup_count: int = 5
) -> logging.Logger:
    """Configure the ``kubeboot`` logger tree.

    Args:
        debug_mode: Log at DEBUG instead of the configured level
        log_file: Optional path for a rotating log file
        max_size_mb: Maximum log file size before rotation
        backup_count: Number of rotated files to keep

    Returns:
        The configured root ``kubeboot`` logger
    """
    level = logging.DEBUG if debug_mode else getattr(logging, Config.LOG_LEVEL, logging.INFO)
    logger = logging.getLogger("kubeboot")
    logger.setLevel(level)

    # Don't add handlers if they're already configured
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(Config.LOG_FORMAT, datefmt='%Y-%m-%d %H:%M:%S'))
        logger.addHandler(handler)

    log_file = log_file or Config.LOG_FILE
    if log_file and not any(isinstance(h, RotatingFileHandler) for h in logger.handlers):
        path = Path(log_file).expanduser().absolute()
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            filename=path,
            maxBytes=max_size_mb * 1024 * 1024,
            backupCount=backup_count
        )
        file_handler.setFormatter(logging.Formatter(Config.LOG_FORMAT))
        logger.addHandler(file_handler)
        logger.debug(f"Logging to file: {path}")

    # Disable debug logging for noisy libraries
    if not debug_mode:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    return logger


def redact(text: str) -> str:
    """Mask the value following a ``--token`` style flag in a command line."""
    words = text.split()
    masked = []
    hide_next = False
    for word in words:
        if hide_next:
            masked.append("***REDACTED***")
            hide_next = False
            continue
        flag = word.split('=', 1)[0].lstrip('-').lower()
        if word.startswith('--') and any(k in flag for k in Config.REDACT_KEYS):
            if '=' in word:
                masked.append(f"{word.split('=', 1)[0]}=***REDACTED***")
            else:
                masked.append(word)
                hide_next = True
            continue
        masked.append(word)
    return ' '.join(masked)
