"""
Custom logging handlers for EduStream Backend
"""

import os
import logging.handlers
from pathlib import Path


def _ensure_log_dir(filename):
    log_dir = Path(filename).parent
    if not log_dir.exists():
        log_dir.mkdir(parents=True, exist_ok=True)
        os.chmod(log_dir, 0o755)


class AutoCreateRotatingFileHandler(logging.handlers.RotatingFileHandler):
    """
    Rotating file handler that creates the log directory on first use,
    so a fresh checkout or container does not need a pre-made ``logs/``.
    """

    def __init__(self, filename, mode='a', maxBytes=10 * 1024 * 1024, backupCount=5,
                 encoding=None, delay=False, errors=None):
        _ensure_log_dir(filename)
        super().__init__(filename, mode, maxBytes, backupCount, encoding, delay, errors)

        if os.path.exists(filename):
            os.chmod(filename, 0o644)
