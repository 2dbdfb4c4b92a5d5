"""Ordered collection of pending entries across all live fragments."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from datetime import datetime
from pathlib import Path

from mqtt_actor.scheduling.types import Fragment, ScheduledEntry

logger = logging.getLogger(__name__)


class Schedule:
    """Pending entries ordered by due time, fragment rank and sequence.

    Fragment rank is the order in which fragments were first seen (initial
    directory scan in path order, then later arrivals). A fragment keeps its
    rank when it is reloaded, so ties between fragments stay stable across
    edits.

    Only the scheduling actor mutates a Schedule.
    """

    def __init__(self) -> None:
        self._entries: list[ScheduledEntry] = []
        self._fragments: dict[Path, Fragment] = {}
        self._ranks: dict[Path, int] = {}

    # ------------------------------------------------------------------
    # Read operations
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[ScheduledEntry]:
        return iter(list(self._entries))

    def __contains__(self, origin: object) -> bool:
        return origin in self._fragments

    @property
    def fragments(self) -> dict[Path, Fragment]:
        return dict(self._fragments)

    def get_fragment(self, origin: Path) -> Fragment | None:
        return self._fragments.get(origin)

    def pending_for(self, origin: Path) -> list[ScheduledEntry]:
        return [e for e in self._entries if e.origin == origin]

    def next_due(self) -> datetime | None:
        """Due time of the earliest pending entry, or None when empty."""
        return self._entries[0].due if self._entries else None

    def rank(self, origin: Path) -> int:
        """Discovery rank of a fragment, assigned on first use."""
        if origin not in self._ranks:
            self._ranks[origin] = len(self._ranks)
        return self._ranks[origin]

    def sort_key(self, entry: ScheduledEntry) -> tuple[datetime, int, int]:
        return (entry.due, self.rank(entry.origin), entry.sequence)

    # ------------------------------------------------------------------
    # Write operations
    # ------------------------------------------------------------------

    def replace_fragment(
        self,
        fragment: Fragment,
        entries: Iterable[ScheduledEntry] | None = None,
    ) -> int:
        """Replace every pending entry of a fragment.

        Args:
            fragment: The freshly parsed fragment.
            entries: Entries to schedule; defaults to all fragment entries.

        Returns:
            Number of previously pending entries that were discarded.
        """
        origin = fragment.path
        self.rank(origin)
        discarded = self._discard(origin)
        self._fragments[origin] = fragment
        self._entries.extend(fragment.entries if entries is None else entries)
        self._entries.sort(key=self.sort_key)
        return discarded

    def remove_fragment(self, origin: Path) -> int:
        """Drop a fragment and its pending entries.

        Returns:
            Number of pending entries removed.
        """
        self._fragments.pop(origin, None)
        return self._discard(origin)

    def pop_due(self, now: datetime) -> list[ScheduledEntry]:
        """Remove and return every entry with ``due <= now``, in order."""
        count = 0
        for entry in self._entries:
            if entry.due > now:
                break
            count += 1
        due, self._entries = self._entries[:count], self._entries[count:]
        return due

    def _discard(self, origin: Path) -> int:
        before = len(self._entries)
        self._entries = [e for e in self._entries if e.origin != origin]
        return before - len(self._entries)
