"""Schedule types.

Public types:
- Timestamp: AbsoluteTimestamp | RelativeTimestamp parsed from a script token
- ScheduledEntry: One message to publish at a given time
- Fragment: One script file and its parsed entries
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from pathlib import Path

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class AbsoluteTimestamp:
    """A point in time given in RFC 2822 or RFC 3339 form."""

    at: datetime

    def resolve(self, cursor: datetime) -> datetime:
        return self.at


@dataclass(frozen=True)
class RelativeTimestamp:
    """A signed offset from the previous resolved entry."""

    offset: timedelta

    def resolve(self, cursor: datetime) -> datetime:
        return cursor + self.offset


Timestamp = AbsoluteTimestamp | RelativeTimestamp


@dataclass(frozen=True)
class ScheduledEntry:
    """A message due for publishing at a specific time."""

    due: datetime
    topic: str
    payload: str
    origin: Path
    sequence: int  # Position among accepted lines of the origin fragment

    @property
    def fingerprint(self) -> tuple[datetime, str, str]:
        """Identity used to recognise an already-fired entry after a re-parse."""
        return (self.due, self.topic, self.payload)

    def describe(self) -> str:
        preview = self.payload if len(self.payload) <= 40 else self.payload[:40] + "..."
        return f"{self.due.isoformat()} {self.topic} {preview!r}"


@dataclass
class Fragment:
    """One script file and the entries parsed from it."""

    path: Path
    load_time: datetime
    entries: list[ScheduledEntry] = field(default_factory=list)
    # Cursor after the last resolved entry; equals load_time when empty
    last_resolved: datetime | None = None
    digest: str | None = None

    def __post_init__(self) -> None:
        if self.last_resolved is None:
            self.last_resolved = self.load_time

    def __len__(self) -> int:
        return len(self.entries)
