"""Timestamp resolution for script lines.

A timestamp token is either absolute (RFC 2822 or RFC 3339) or a signed
relative offset. Relative offsets are resolved against a cursor, which the
caller advances to every resolved value so that consecutive relative lines
chain from one another.

Relative grammar:
- ``25`` / ``+25`` / ``-2.5``: seconds (bare number)
- ``+5m``, ``-1h30m``, ``2d``, ``1m30s``, ``500ms``: unit components
"""

import logging
import re
from datetime import UTC, datetime, timedelta
from email.utils import parsedate_to_datetime

from mqtt_actor.scheduling.errors import InvalidTimestampError
from mqtt_actor.scheduling.types import AbsoluteTimestamp, RelativeTimestamp, Timestamp

logger = logging.getLogger(__name__)

_RFC2822_RE = re.compile(
    r"^(?:[A-Za-z]{3},\s*)?\d{1,2}\s+[A-Za-z]{3}\s+\d{2,4}\s+"
    r"\d{1,2}:\d{2}(?::\d{2})?(?:\s+\S+)?$"
)
_RFC3339_RE = re.compile(
    r"^\d{4}-\d{2}-\d{2}[Tt ]\d{2}:\d{2}:\d{2}(?:\.\d+)?(?:[Zz]|[+-]\d{2}:\d{2})$"
)
_NUMBER = r"\d+(?:\.\d+)?"
_RELATIVE_RE = re.compile(
    rf"^(?P<sign>[+-])?(?:(?P<seconds>{_NUMBER})|(?P<units>(?:{_NUMBER}(?:ms|d|h|m|s))+))$"
)
_COMPONENT_RE = re.compile(rf"({_NUMBER})(ms|d|h|m|s)")

_UNIT_SECONDS = {
    "ms": 0.001,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
    "d": 86400.0,
}


def _parse_rfc2822(token: str) -> datetime | None:
    if not _RFC2822_RE.match(token):
        return None
    try:
        parsed = parsedate_to_datetime(token)
    except (TypeError, ValueError) as e:
        logger.debug(f"Failed to parse {token!r} as RFC2822 timestamp: {e}")
        return None
    # "-0000" and a missing zone both mean "no zone information"; read as UTC
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _parse_rfc3339(token: str) -> datetime | None:
    if not _RFC3339_RE.match(token):
        return None
    try:
        return datetime.fromisoformat(token.upper())
    except ValueError as e:
        logger.debug(f"Failed to parse {token!r} as RFC3339 timestamp: {e}")
        return None


def _parse_relative(token: str) -> timedelta | None:
    match = _RELATIVE_RE.match(token)
    if not match:
        return None

    if match.group("seconds") is not None:
        seconds = float(match.group("seconds"))
    else:
        seconds = sum(
            float(value) * _UNIT_SECONDS[unit]
            for value, unit in _COMPONENT_RE.findall(match.group("units"))
        )

    if match.group("sign") == "-":
        seconds = -seconds
    try:
        return timedelta(seconds=seconds)
    except OverflowError:
        return None


def parse_timestamp(token: str, line_number: int | None = None) -> Timestamp:
    """Classify a timestamp token as absolute or relative.

    Args:
        token: Timestamp text, surrounding whitespace is ignored.
        line_number: Script line the token came from, for error reporting.

    Raises:
        InvalidTimestampError: If the token matches no supported grammar.
    """
    text = token.strip()

    if (at := _parse_rfc2822(text)) is not None:
        return AbsoluteTimestamp(at)
    if (at := _parse_rfc3339(text)) is not None:
        return AbsoluteTimestamp(at)
    if (offset := _parse_relative(text)) is not None:
        return RelativeTimestamp(offset)

    raise InvalidTimestampError(text, line_number)


def resolve_timestamp(
    token: str, cursor: datetime, line_number: int | None = None
) -> datetime:
    """Resolve a timestamp token to an absolute point in time.

    Absolute tokens ignore the cursor; relative tokens are added to it.

    Raises:
        InvalidTimestampError: If the token is invalid or the result falls
            outside the representable date range.
    """
    timestamp = parse_timestamp(token, line_number)
    try:
        return timestamp.resolve(cursor)
    except OverflowError:
        raise InvalidTimestampError(token.strip(), line_number) from None
