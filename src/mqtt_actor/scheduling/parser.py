"""Script fragment parser.

Turns the text of one script file into an ordered list of scheduled entries.
Parsing is atomic per file: the first bad line fails the whole fragment so a
typo never silently drops part of a script.
"""

import hashlib
import logging
from datetime import datetime
from pathlib import Path

from mqtt_actor.scheduling.errors import FragmentReadError, MalformedLineError
from mqtt_actor.scheduling.timestamps import resolve_timestamp
from mqtt_actor.scheduling.types import Fragment, ScheduledEntry

logger = logging.getLogger(__name__)

DEFAULT_DELIMITER = "|"
COMMENT_PREFIX = "#"


def content_digest(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def parse_fragment(
    text: str,
    *,
    origin: Path,
    load_time: datetime,
    delimiter: str = DEFAULT_DELIMITER,
) -> Fragment:
    """Parse script text into a fragment.

    Args:
        text: Full file content.
        origin: Path identifying the fragment.
        load_time: Anchor for the first relative timestamp.
        delimiter: Field separator.

    Returns:
        Fragment with entries in file order.

    Raises:
        InvalidTimestampError: A timestamp field matched no grammar.
        MalformedLineError: A line did not have exactly three fields.
    """
    cursor = load_time
    entries: list[ScheduledEntry] = []

    for line_number, line in enumerate(text.splitlines(), start=1):
        stripped = line.strip()
        if not stripped or stripped.startswith(COMMENT_PREFIX):
            continue

        fields = line.split(delimiter)
        if len(fields) != 3:
            raise MalformedLineError(
                line_number, f"expected 3 fields, found {len(fields)}"
            )

        timestamp_text, topic_text, payload = fields
        topic = topic_text.strip()
        if not topic:
            raise MalformedLineError(line_number, "empty topic")

        cursor = resolve_timestamp(timestamp_text, cursor, line_number)
        entries.append(
            ScheduledEntry(
                due=cursor,
                topic=topic,
                payload=payload,
                origin=origin,
                sequence=len(entries),
            )
        )

    return Fragment(
        path=origin,
        load_time=load_time,
        entries=entries,
        last_resolved=cursor,
    )


def read_fragment(
    path: Path,
    *,
    load_time: datetime,
    delimiter: str = DEFAULT_DELIMITER,
) -> Fragment:
    """Read and parse a fragment file.

    Raises:
        FragmentReadError: The file could not be read or is not UTF-8.
        ParseError: The content is invalid (see parse_fragment).
    """
    try:
        data = path.read_bytes()
        text = data.decode("utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise FragmentReadError(path, e) from e

    fragment = parse_fragment(
        text, origin=path, load_time=load_time, delimiter=delimiter
    )
    fragment.digest = content_digest(data)
    logger.debug(
        "fragment_parsed",
        extra={"file.path": str(path), "fragment.entries": len(fragment)},
    )
    return fragment
