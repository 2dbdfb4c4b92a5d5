"""Scheduling error taxonomy.

Parse errors are recovered at fragment granularity: a fragment that fails to
parse contributes no entries, other fragments are unaffected. Watch errors
stop the directory watcher but never the scheduling actor.
"""

from pathlib import Path


class ParseError(Exception):
    """A script fragment could not be turned into scheduled entries."""

    def __init__(self, message: str, line_number: int | None = None):
        super().__init__(message)
        self.line_number = line_number


class InvalidTimestampError(ParseError):
    """Timestamp token matched neither the absolute nor the relative grammar."""

    def __init__(self, token: str, line_number: int | None = None):
        where = f"line {line_number}: " if line_number is not None else ""
        super().__init__(
            f"{where}could not determine a timestamp from {token!r}", line_number
        )
        self.token = token


class MalformedLineError(ParseError):
    """Script line did not split into timestamp, topic and message."""

    def __init__(self, line_number: int, reason: str):
        super().__init__(f"line {line_number}: {reason}", line_number)
        self.reason = reason


class FragmentReadError(ParseError):
    """Fragment file could not be read or decoded."""

    def __init__(self, path: Path, cause: Exception):
        super().__init__(f"failed to read {path}: {cause}")
        self.path = path
        self.cause = cause


class WatchError(Exception):
    """Script directory cannot be observed."""

    def __init__(self, path: Path, message: str):
        super().__init__(f"cannot watch {path}: {message}")
        self.path = path
