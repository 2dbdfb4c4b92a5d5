"""Scheduling subsystem: script files to timed MQTT publishes.

Public API:
- SchedulingActor: Owns the schedule, fires due entries, absorbs reloads
- DirectoryWatcher: Debounced filesystem notifications for the script directory
- compile_directory: One-shot compile of every fragment in a directory
- parse_fragment / read_fragment: Script text to entries
- resolve_timestamp: Timestamp token + cursor to an absolute time

Types:
- ScheduledEntry: One message due at a given time
- Fragment: One script file and its parsed entries
- Schedule: Ordered pending entries across fragments
"""

from mqtt_actor.scheduling.actor import ActorState, ActorStats, SchedulingActor
from mqtt_actor.scheduling.compiler import (
    CompileResult,
    compile_directory,
    discover_fragments,
)
from mqtt_actor.scheduling.errors import (
    FragmentReadError,
    InvalidTimestampError,
    MalformedLineError,
    ParseError,
    WatchError,
)
from mqtt_actor.scheduling.parser import parse_fragment, read_fragment
from mqtt_actor.scheduling.schedule import Schedule
from mqtt_actor.scheduling.timestamps import parse_timestamp, resolve_timestamp
from mqtt_actor.scheduling.types import (
    AbsoluteTimestamp,
    Fragment,
    RelativeTimestamp,
    ScheduledEntry,
    Timestamp,
)
from mqtt_actor.scheduling.watcher import DirectoryWatcher

__all__ = [
    "AbsoluteTimestamp",
    "ActorState",
    "ActorStats",
    "CompileResult",
    "DirectoryWatcher",
    "Fragment",
    "FragmentReadError",
    "InvalidTimestampError",
    "MalformedLineError",
    "ParseError",
    "RelativeTimestamp",
    "Schedule",
    "ScheduledEntry",
    "SchedulingActor",
    "Timestamp",
    "WatchError",
    "compile_directory",
    "discover_fragments",
    "parse_fragment",
    "parse_timestamp",
    "read_fragment",
    "resolve_timestamp",
]
