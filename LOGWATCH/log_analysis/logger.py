"""
Diagnostics logging for the engine itself.

Handles:
- The TRACE level used for walk timings
- The engine verbosity scale (trace < debug < info < warn < error)
- File handler setup for the LOGWATCH logger tree
- Re-applying the configured threshold after a configuration reload

The verbosity scale here is unrelated to the severity of the log lines being
watched; that one lives in log_viewer.log_parser.
"""
import logging
import os
import time
from enum import IntEnum
from typing import Dict, Optional, Union

TRACE = 5

logging.addLevelName(TRACE, "TRACE")

ROOT_LOGGER_NAME = "LOGWATCH"
DEFAULT_LOG_DIR = "app_log"
LOG_FILE_NAME = "logwatch.log"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class DiagnosticLevel(IntEnum):
    """Engine verbosity, least to most severe"""
    TRACE = 0
    DEBUG = 1
    INFO = 2
    WARN = 3
    ERROR = 4

    @property
    def logging_level(self) -> int:
        return _LOGGING_LEVELS[self]

    @classmethod
    def parse(cls, value: Union[str, "DiagnosticLevel", None],
              default: "DiagnosticLevel" = None) -> "DiagnosticLevel":
        if default is None:
            default = cls.ERROR
        if isinstance(value, DiagnosticLevel):
            return value
        if not value:
            return default
        try:
            return cls[str(value).strip().upper()]
        except KeyError:
            return default


_LOGGING_LEVELS: Dict[DiagnosticLevel, int] = {
    DiagnosticLevel.TRACE: TRACE,
    DiagnosticLevel.DEBUG: logging.DEBUG,
    DiagnosticLevel.INFO: logging.INFO,
    DiagnosticLevel.WARN: logging.WARNING,
    DiagnosticLevel.ERROR: logging.ERROR,
}


def apply_log_level(level: Union[str, DiagnosticLevel, None]) -> DiagnosticLevel:
    """Set the threshold of the LOGWATCH logger tree"""
    resolved = DiagnosticLevel.parse(level)
    logging.getLogger(ROOT_LOGGER_NAME).setLevel(resolved.logging_level)
    return resolved


def configure_logging(
    level: Union[str, DiagnosticLevel, None] = None,
    log_dir: Optional[str] = DEFAULT_LOG_DIR,
) -> logging.Logger:
    """
    Attach a file handler to the LOGWATCH logger

    Args:
        level: Engine verbosity name (trace, debug, info, warn, error)
        log_dir: Directory for logwatch.log, None to skip the file handler

    Returns:
        The configured LOGWATCH logger
    """
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    apply_log_level(level)

    if log_dir and not logger.handlers:
        if not os.path.exists(log_dir):
            os.makedirs(log_dir)
        file_handler = logging.FileHandler(os.path.join(log_dir, LOG_FILE_NAME))
        file_handler.setLevel(TRACE)
        formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger


class Stopwatch:
    """Logs elapsed time per label at TRACE level"""

    def __init__(self, logger: logging.Logger):
        self.logger = logger
        self._starts: Dict[str, float] = {}

    def start(self, label: str) -> None:
        if not self.logger.isEnabledFor(TRACE):
            return
        self._starts[label] = time.perf_counter()

    def stop(self, label: str) -> None:
        started = self._starts.pop(label, None)
        if started is None or not self.logger.isEnabledFor(TRACE):
            return
        elapsed_ms = (time.perf_counter() - started) * 1000
        self.logger.log(TRACE, f"{label} {elapsed_ms:.2f} ms")
