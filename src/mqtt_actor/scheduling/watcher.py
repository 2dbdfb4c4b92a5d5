"""Directory watcher: turns filesystem events into reload notifications.

watchdog delivers events on its observer thread. They are handed to the
event loop with ``call_soon_threadsafe`` and collected over a fixed debounce
window, so one editor save (write + rename + chmod ...) produces a single
notification naming each affected fragment once.

The watcher never blocks on the consumer: callbacks only enqueue. When the
directory disappears or the observer dies the watcher logs the failure,
leaves the actor running on its current schedule and keeps trying to
re-attach; once it does, it asks for a full rescan.
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Callable, Iterable
from datetime import datetime
from pathlib import Path

from watchdog.events import (
    EVENT_TYPE_CLOSED,
    EVENT_TYPE_CREATED,
    EVENT_TYPE_DELETED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer
from watchdog.observers.api import BaseObserver

from mqtt_actor.scheduling.compiler import DEFAULT_SUFFIX, is_fragment_path
from mqtt_actor.scheduling.errors import WatchError
from mqtt_actor.scheduling.types import Clock, utc_now

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_SECONDS = 0.25
DEFAULT_HEALTH_INTERVAL_SECONDS = 5.0
OBSERVER_JOIN_TIMEOUT_SECONDS = 5.0

_FILE_EVENTS = {
    EVENT_TYPE_CREATED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_DELETED,
    EVENT_TYPE_MOVED,
    EVENT_TYPE_CLOSED,
}
_DIRECTORY_EVENTS = {EVENT_TYPE_CREATED, EVENT_TYPE_DELETED, EVENT_TYPE_MOVED}

ChangeCallback = Callable[[set[Path], datetime], None]
RescanCallback = Callable[[], None]


class _FragmentEventHandler(FileSystemEventHandler):
    """Filters raw watchdog events down to fragment paths."""

    def __init__(self, watcher: DirectoryWatcher):
        super().__init__()
        self._watcher = watcher

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            # Subtree moves are not reported per file
            if event.event_type in _DIRECTORY_EVENTS:
                self._watcher.submit((), rescan=True)
            return

        if event.event_type not in _FILE_EVENTS:
            return

        paths = [Path(os.fsdecode(event.src_path))]
        dest_path = getattr(event, "dest_path", "")
        if dest_path:
            paths.append(Path(os.fsdecode(dest_path)))
        self._watcher.submit(paths)


class DirectoryWatcher:
    """Watches a script directory and emits debounced change notifications.

    Example:
        watcher = DirectoryWatcher(
            Path("./scripts"),
            on_change=actor.notify_changed,
            on_rescan=actor.request_rescan,
        )
        await watcher.start()
    """

    def __init__(
        self,
        source_dir: Path,
        *,
        on_change: ChangeCallback,
        on_rescan: RescanCallback,
        suffix: str = DEFAULT_SUFFIX,
        recursive: bool = True,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        health_interval: float = DEFAULT_HEALTH_INTERVAL_SECONDS,
        observer_factory: Callable[[], BaseObserver] = Observer,
        clock: Clock = utc_now,
    ):
        self._source_dir = source_dir.absolute()
        self._on_change = on_change
        self._on_rescan = on_rescan
        self._suffix = suffix
        self._recursive = recursive
        self._debounce_seconds = debounce_seconds
        self._health_interval = health_interval
        self._observer_factory = observer_factory
        self._clock = clock

        self._loop: asyncio.AbstractEventLoop | None = None
        self._observer: BaseObserver | None = None
        self._supervisor: asyncio.Task | None = None
        self._running = False
        self._failed = False

        self._pending: set[Path] = set()
        self._pending_rescan = False
        self._flush_handle: asyncio.TimerHandle | None = None
        self.notifications = 0

    @property
    def is_healthy(self) -> bool:
        return self._running and not self._failed

    async def start(self) -> None:
        """Start observing the directory.

        A directory that cannot be watched yet still starts the supervisor,
        which keeps retrying and requests a rescan once the watch attaches.

        Raises:
            WatchError: If the directory cannot be watched right now.
        """
        if self._running:
            return
        self._loop = asyncio.get_running_loop()
        self._running = True
        self._failed = False
        try:
            self._start_observer()
        except WatchError:
            self._failed = True
            raise
        finally:
            self._supervisor = asyncio.create_task(self._supervise())
        logger.info("directory_watcher_started", extra={"file.path": str(self._source_dir)})

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        if self._supervisor:
            self._supervisor.cancel()
            try:
                await self._supervisor
            except asyncio.CancelledError:
                pass
            self._supervisor = None
        if self._flush_handle:
            self._flush_handle.cancel()
            self._flush_handle = None
        await self._stop_observer()

    # ------------------------------------------------------------------
    # Event intake
    # ------------------------------------------------------------------

    def submit(self, paths: Iterable[Path], *, rescan: bool = False) -> None:
        """Accept raw paths from any thread."""
        fragment_paths = [
            p
            for p in paths
            if is_fragment_path(
                p, self._source_dir, suffix=self._suffix, recursive=self._recursive
            )
        ]
        if not fragment_paths and not rescan:
            return
        if self._loop is None or self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(self._record, fragment_paths, rescan)

    def _record(self, paths: list[Path], rescan: bool) -> None:
        self._pending.update(paths)
        self._pending_rescan = self._pending_rescan or rescan
        # Fixed window from the first event of a burst
        if self._flush_handle is None and self._loop is not None:
            self._flush_handle = self._loop.call_later(
                self._debounce_seconds, self._flush
            )

    def _flush(self) -> None:
        self._flush_handle = None
        paths, self._pending = self._pending, set()
        rescan, self._pending_rescan = self._pending_rescan, False

        if rescan:
            logger.debug("Directory structure changed, requesting rescan")
            self.notifications += 1
            self._on_rescan()
        elif paths:
            logger.debug(
                "Got filesystem events for script files: "
                + ", ".join(str(p) for p in sorted(paths))
            )
            self.notifications += 1
            self._on_change(paths, self._clock())

    # ------------------------------------------------------------------
    # Observer lifecycle
    # ------------------------------------------------------------------

    def _start_observer(self) -> None:
        if not self._source_dir.is_dir():
            raise WatchError(self._source_dir, "not an accessible directory")
        try:
            observer = self._observer_factory()
            observer.schedule(
                _FragmentEventHandler(self),
                str(self._source_dir),
                recursive=self._recursive,
            )
            observer.start()
        except OSError as e:
            raise WatchError(self._source_dir, str(e)) from e
        self._observer = observer

    async def _stop_observer(self) -> None:
        observer, self._observer = self._observer, None
        if observer is None:
            return
        try:
            observer.stop()
            if observer.is_alive():
                await asyncio.to_thread(observer.join, OBSERVER_JOIN_TIMEOUT_SECONDS)
        except Exception as e:
            logger.warning("observer_stop_failed", extra={"error.message": str(e)})

    async def _supervise(self) -> None:
        while self._running:
            await asyncio.sleep(self._health_interval)
            if not self._failed:
                if self._check_health():
                    continue
                self._failed = True
                logger.error(
                    "directory_watch_failed",
                    extra={
                        "file.path": str(self._source_dir),
                        "error.message": "directory unavailable or observer stopped",
                    },
                )
                await self._stop_observer()

            try:
                self._start_observer()
            except WatchError as e:
                logger.debug(f"Watch still unavailable: {e}")
                continue

            self._failed = False
            logger.info(
                "directory_watch_recovered", extra={"file.path": str(self._source_dir)}
            )
            self.notifications += 1
            self._on_rescan()

    def _check_health(self) -> bool:
        observer = self._observer
        return (
            observer is not None
            and observer.is_alive()
            and self._source_dir.is_dir()
        )
