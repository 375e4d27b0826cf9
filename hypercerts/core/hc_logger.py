"""
Structured loggers for the hc client
Every message carries a short event code plus an optional context dict
"""

import logging
from typing import Dict, Any, Optional

from hypercerts.core.config import HypercertsConfig

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def _level_value(level: str) -> int:
    """Map a level name (WARN included) to its number, defaulting to WARNING"""
    value = logging.getLevelName(level.upper())
    return value if isinstance(value, int) else logging.WARNING


class HcLogger:
    """Thin wrapper over logging.Logger with coded messages"""

    def __init__(self, name: str, level: Optional[str] = None):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(_level_value(level or HypercertsConfig.LOG_LEVEL))

        # stderr only, stdout belongs to command output
        if not self.logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(logging.Formatter(LOG_FORMAT))
            self.logger.addHandler(handler)

    def _format(self, code: str, message: str, context: Optional[Dict[str, Any]]) -> str:
        if context:
            details = ", ".join(f"{k}={v}" for k, v in context.items())
            return f"{code}: {message} ({details})"
        return f"{code}: {message}"

    def log_debug(self, code: str, message: str, context: Dict[str, Any] = None):
        """Log a debug message with context"""
        self.logger.debug(self._format(code, message, context))

    def log_info(self, code: str, message: str, context: Dict[str, Any] = None):
        """Log an informational message with context"""
        self.logger.info(self._format(code, message, context))

    def log_warning(self, code: str, message: str, context: Dict[str, Any] = None):
        """Log a warning with context"""
        self.logger.warning(self._format(code, message, context))

    def log_error(self, code: str, message: str, context: Dict[str, Any] = None):
        """Log an error with context"""
        self.logger.error(self._format(code, message, context))


def set_log_level(level: str):
    """Apply a --log-level override to every hc logger"""
    value = _level_value(level)
    for hc in (repo_logger, index_logger, cascade_logger, context_logger, session_logger):
        hc.logger.setLevel(value)


repo_logger = HcLogger("hc_repo")
index_logger = HcLogger("hc_backlinks")
cascade_logger = HcLogger("hc_cascade")
context_logger = HcLogger("hc_context")
session_logger = HcLogger("hc_session")
