"""Scheduling actor: owns the schedule and fires due entries.

The actor is the single writer of the Schedule. Timer expiry and reload
notifications are consumed as one serialized event stream: notifications
arrive through an unbounded queue, and each loop iteration races the next
queue item against the timer for the earliest pending entry.

States:
- IDLE: nothing pending, waiting for a notification
- WAITING: timer armed for the earliest pending entry
- DISPATCHING: publishing every entry that is due
- STOPPED: terminal, no further dispatches
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path

from mqtt_actor.bus import Publisher, PublishError
from mqtt_actor.scheduling.compiler import (
    DEFAULT_SUFFIX,
    compile_directory,
    discover_fragments,
    is_fragment_path,
)
from mqtt_actor.scheduling.errors import ParseError
from mqtt_actor.scheduling.parser import DEFAULT_DELIMITER, read_fragment
from mqtt_actor.scheduling.schedule import Schedule
from mqtt_actor.scheduling.types import Clock, Fragment, ScheduledEntry, utc_now

logger = logging.getLogger(__name__)

# Upper bound on a single timer wait; wall-clock adjustments are picked up after it
MAX_WAIT_SECONDS = 60.0


class ActorState(Enum):
    IDLE = "idle"
    WAITING = "waiting"
    DISPATCHING = "dispatching"
    STOPPED = "stopped"


@dataclass(frozen=True)
class FragmentsChanged:
    """Files in the script directory may have changed."""

    paths: frozenset[Path]
    received_at: datetime


@dataclass(frozen=True)
class RescanRequested:
    """Re-check every known and discoverable fragment."""

    received_at: datetime


ActorEvent = FragmentsChanged | RescanRequested


@dataclass
class ActorStats:
    dispatched: int = 0
    publish_failures: int = 0
    reloads: int = 0
    parse_errors: int = 0
    suppressed_refires: int = 0
    fired_by_topic: Counter[str] = field(default_factory=Counter)


class SchedulingActor:
    """Fires scheduled entries and absorbs live edits to script fragments.

    Example:
        actor = SchedulingActor(Path("./scripts"), publisher)
        await actor.start()
        actor.notify_changed([Path("./scripts/a.txt")])
        ...
        await actor.stop()
    """

    def __init__(
        self,
        source_dir: Path,
        publisher: Publisher,
        *,
        delimiter: str = DEFAULT_DELIMITER,
        suffix: str = DEFAULT_SUFFIX,
        recursive: bool = True,
        clock: Clock = utc_now,
    ):
        self._source_dir = source_dir.absolute()
        self._publisher = publisher
        self._delimiter = delimiter
        self._suffix = suffix
        self._recursive = recursive
        self._clock = clock

        self._schedule = Schedule()
        self._queue: asyncio.Queue[ActorEvent] = asyncio.Queue()
        self._errors: dict[Path, ParseError] = {}
        # Per origin: fingerprints of fired entries still present in the file.
        # Entries dropped from a file by an edit are forgotten on reload.
        self._fired: dict[Path, Counter] = {}

        self._state = ActorState.IDLE
        self._armed_for: datetime | None = None
        self._task: asyncio.Task | None = None
        self._next_event: asyncio.Task | None = None
        self.stats = ActorStats()

    @property
    def source_dir(self) -> Path:
        return self._source_dir

    @property
    def schedule(self) -> Schedule:
        return self._schedule

    @property
    def state(self) -> ActorState:
        return self._state

    @property
    def armed_for(self) -> datetime | None:
        """Due time the timer is currently armed for (WAITING only)."""
        return self._armed_for

    @property
    def errors(self) -> dict[Path, ParseError]:
        """Fragments currently invalidated by a parse error."""
        return dict(self._errors)

    # ------------------------------------------------------------------
    # Inbound notifications (never block)
    # ------------------------------------------------------------------

    def notify_changed(
        self, paths: Iterable[Path], received_at: datetime | None = None
    ) -> None:
        """Queue a reload of the given fragment paths."""
        event = FragmentsChanged(
            paths=frozenset(Path(p).absolute() for p in paths),
            received_at=received_at or self._clock(),
        )
        self._queue.put_nowait(event)

    def request_rescan(self) -> None:
        """Queue a reload of every known and discoverable fragment."""
        self._queue.put_nowait(RescanRequested(received_at=self._clock()))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def load(self) -> None:
        """Compile the whole source directory into the schedule."""
        result = await asyncio.to_thread(
            compile_directory,
            self._source_dir,
            load_time=self._clock(),
            delimiter=self._delimiter,
            suffix=self._suffix,
            recursive=self._recursive,
        )
        for path in result.paths:
            self._schedule.rank(path)
        for fragment in result.fragments.values():
            self._schedule.replace_fragment(fragment)
        self._errors = dict(result.errors)
        self.stats.parse_errors += len(result.errors)
        self._log_schedule("initial")

    async def start(self) -> None:
        if self._task is not None:
            return
        await self.load()
        self._task = asyncio.create_task(self._run())
        logger.info(
            "scheduling_actor_started", extra={"file.path": str(self._source_dir)}
        )

    async def stop(self) -> None:
        """Stop the actor; cancels the armed timer, no further dispatches."""
        self._state = ActorState.STOPPED
        self._armed_for = None
        for task in (self._task, self._next_event):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._task = None
        self._next_event = None
        logger.info(
            "scheduling_actor_stopped",
            extra={
                "actor.dispatched": self.stats.dispatched,
                "actor.publish_failures": self.stats.publish_failures,
                "actor.reloads": self.stats.reloads,
                "schedule.pending": len(self._schedule),
            },
        )

    async def join(self) -> None:
        """Wait until the actor loop exits."""
        if self._task is not None:
            await self._task

    # ------------------------------------------------------------------
    # Event loop
    # ------------------------------------------------------------------

    async def _run(self) -> None:
        while self._state is not ActorState.STOPPED:
            event = await self._wait_for_event()
            if self._state is ActorState.STOPPED:
                break
            try:
                if event is None:
                    await self._dispatch_due()
                else:
                    await self._handle(event)
            except Exception as e:
                logger.exception(
                    "scheduling_actor_error", extra={"error.message": str(e)}
                )

    async def _wait_for_event(self) -> ActorEvent | None:
        """Wait for the next notification or the armed timer.

        Returns None when the timer elapsed first. The pending queue read
        survives a timer expiry, so a notification racing the timer is
        delivered on the next iteration instead of being dropped.
        """
        if self._next_event is None:
            self._next_event = asyncio.create_task(self._queue.get())

        next_due = self._schedule.next_due()
        if next_due is None:
            self._transition(ActorState.IDLE, None)
            timeout = None
        else:
            self._transition(ActorState.WAITING, next_due)
            delay = (next_due - self._clock()).total_seconds()
            timeout = min(max(delay, 0.0), MAX_WAIT_SECONDS)

        done, _ = await asyncio.wait({self._next_event}, timeout=timeout)
        if not done:
            return None

        task, self._next_event = self._next_event, None
        return task.result()

    def _transition(self, state: ActorState, armed_for: datetime | None) -> None:
        if state is not self._state or armed_for != self._armed_for:
            logger.debug(
                f"Actor {self._state.value} -> {state.value}"
                + (f" (next due {armed_for.isoformat()})" if armed_for else "")
            )
        self._state = state
        self._armed_for = armed_for

    async def _handle(self, event: ActorEvent) -> None:
        if isinstance(event, RescanRequested):
            discovered = await asyncio.to_thread(
                discover_fragments,
                self._source_dir,
                suffix=self._suffix,
                recursive=self._recursive,
            )
            paths = set(discovered) | set(self._schedule.fragments) | set(self._errors)
        else:
            paths = set(event.paths)

        for path in sorted(paths):
            if not is_fragment_path(
                path, self._source_dir, suffix=self._suffix, recursive=self._recursive
            ):
                continue
            await self._reload_fragment(path, event.received_at)
        self.stats.reloads += 1
        self._log_schedule("reload")

    async def _reload_fragment(self, path: Path, load_time: datetime) -> None:
        """Re-parse one fragment and swap its entries in the schedule."""
        if not path.is_file():
            self._errors.pop(path, None)
            if path in self._schedule:
                removed = self._schedule.remove_fragment(path)
                logger.info(
                    "fragment_removed",
                    extra={"file.path": str(path), "schedule.discarded": removed},
                )
            return

        try:
            fragment = await asyncio.to_thread(
                read_fragment, path, load_time=load_time, delimiter=self._delimiter
            )
        except ParseError as e:
            self.stats.parse_errors += 1
            self._errors[path] = e
            removed = self._schedule.remove_fragment(path)
            logger.warning(
                "fragment_invalidated",
                extra={
                    "file.path": str(path),
                    "error.message": str(e),
                    "schedule.discarded": removed,
                },
            )
            return

        self._errors.pop(path, None)
        current = self._schedule.get_fragment(path)
        if current is not None and current.digest == fragment.digest:
            logger.debug(f"Fragment {path} unchanged, keeping schedule")
            return

        entries = self._unfired_entries(fragment)
        discarded = self._schedule.replace_fragment(fragment, entries)
        logger.info(
            "fragment_loaded",
            extra={
                "file.path": str(path),
                "fragment.entries": len(entries),
                "schedule.discarded": discarded,
            },
        )

    def _unfired_entries(self, fragment: Fragment) -> list[ScheduledEntry]:
        """Drop entries of a re-parsed fragment that were already fired.

        The ledger for the fragment is narrowed to the fingerprints still
        present in it, so it never holds more than the fragment's own entries.
        """
        ledger = self._fired.pop(fragment.path, None)
        if not ledger:
            return list(fragment.entries)

        remaining = Counter(ledger)
        matched: Counter = Counter()
        entries = []
        for entry in fragment.entries:
            if remaining[entry.fingerprint] > 0:
                remaining[entry.fingerprint] -= 1
                matched[entry.fingerprint] += 1
                self.stats.suppressed_refires += 1
                continue
            entries.append(entry)
        if matched:
            self._fired[fragment.path] = matched
        return entries

    async def _dispatch_due(self) -> None:
        due = self._schedule.pop_due(self._clock())
        if not due:
            return

        self._transition(ActorState.DISPATCHING, None)
        for entry in due:
            if self._state is ActorState.STOPPED:
                break
            # Recorded before publishing: an entry is never handed out twice
            self._fired.setdefault(entry.origin, Counter())[entry.fingerprint] += 1
            await self._publish(entry)

    async def _publish(self, entry: ScheduledEntry) -> None:
        lateness = (self._clock() - entry.due).total_seconds()
        try:
            await self._publisher.publish(entry.topic, entry.payload)
        except PublishError as e:
            self.stats.publish_failures += 1
            logger.error(
                "publish_failed",
                extra={
                    "messaging.topic": entry.topic,
                    "file.path": str(entry.origin),
                    "error.message": str(e),
                },
            )
            return
        except Exception as e:
            self.stats.publish_failures += 1
            logger.error(
                "publish_error",
                extra={"messaging.topic": entry.topic, "error.message": str(e)},
            )
            return

        self.stats.dispatched += 1
        self.stats.fired_by_topic[entry.topic] += 1
        logger.info(
            "entry_dispatched",
            extra={
                "messaging.topic": entry.topic,
                "schedule.due": entry.due.isoformat(),
                "schedule.lateness_seconds": round(lateness, 3),
                "file.path": str(entry.origin),
            },
        )

    def _log_schedule(self, reason: str) -> None:
        next_due = self._schedule.next_due()
        logger.info(
            "schedule_updated",
            extra={
                "schedule.reason": reason,
                "schedule.pending": len(self._schedule),
                "schedule.fragments": len(self._schedule.fragments),
                "schedule.errors": len(self._errors),
                "schedule.next_due": next_due.isoformat() if next_due else None,
            },
        )
        for entry in self._schedule:
            logger.debug(f"Pending: {entry.describe()}")
