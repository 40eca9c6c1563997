"""
Error taxonomy for the log watch engine.

Only PatternError is raised across module boundaries. The other errors are
built where a failure happens and handed to a logger or an error callback,
since missing files and unreadable directories are normal conditions for a
log tailer.
"""
from typing import Optional


class LogWatchError(Exception):
    pass


class PatternError(LogWatchError):
    """A glob or variable pattern cannot be turned into a usable matcher"""

    def __init__(self, pattern: str, reason: str):
        super().__init__(f"Invalid pattern '{pattern}': {reason}")
        self.pattern = pattern
        self.reason = reason


class WalkIOError(LogWatchError):
    """A directory or entry could not be accessed during a walk"""

    def __init__(self, path: str, cause: OSError):
        super().__init__(f"Cannot access '{path}': {cause.strerror or cause}")
        self.path = path
        self.cause = cause


class FileIOError(LogWatchError):
    """The selected log file disappeared or became unreadable"""

    def __init__(self, path: str, cause: OSError):
        super().__init__(f"Cannot read '{path}': {cause.strerror or cause}")
        self.path = path
        self.cause = cause


class DecodeError(LogWatchError):
    """The requested text encoding is not available"""

    def __init__(self, encoding: str, cause: Optional[Exception] = None):
        super().__init__(f"Unsupported encoding '{encoding}'")
        self.encoding = encoding
        self.cause = cause
