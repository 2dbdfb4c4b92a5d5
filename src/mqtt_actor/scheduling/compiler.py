"""Schedule compiler: merges every fragment of a script directory.

Each file is parsed independently. A file that fails to parse is reported in
CompileResult.errors and contributes no entries; it never affects the other
files.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from mqtt_actor.scheduling.errors import ParseError
from mqtt_actor.scheduling.parser import DEFAULT_DELIMITER, read_fragment
from mqtt_actor.scheduling.types import Fragment, ScheduledEntry

logger = logging.getLogger(__name__)

DEFAULT_SUFFIX = ".txt"


def is_fragment_path(
    path: Path,
    source_dir: Path,
    *,
    suffix: str = DEFAULT_SUFFIX,
    recursive: bool = True,
) -> bool:
    """Check whether a path names a script fragment of the source directory.

    The file does not need to exist; deleted fragments must still match.
    """
    try:
        relative = path.relative_to(source_dir)
    except ValueError:
        return False
    if not relative.parts or relative.name.startswith("."):
        return False
    if not recursive and len(relative.parts) != 1:
        return False
    return relative.suffix == suffix


def discover_fragments(
    source_dir: Path,
    *,
    suffix: str = DEFAULT_SUFFIX,
    recursive: bool = True,
) -> list[Path]:
    """List fragment files in discovery order (sorted by path)."""
    pattern = f"*{suffix}"
    candidates = source_dir.rglob(pattern) if recursive else source_dir.glob(pattern)
    return sorted(
        path
        for path in candidates
        if path.is_file()
        and is_fragment_path(path, source_dir, suffix=suffix, recursive=recursive)
    )


@dataclass
class CompileResult:
    """Outcome of compiling a set of fragment files."""

    paths: list[Path] = field(default_factory=list)  # Discovery order
    fragments: dict[Path, Fragment] = field(default_factory=dict)
    errors: dict[Path, ParseError] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.errors

    def entries(self) -> list[ScheduledEntry]:
        """All entries merged by due time, discovery order and sequence."""
        ranks = {path: i for i, path in enumerate(self.fragments)}
        merged = [e for f in self.fragments.values() for e in f.entries]
        merged.sort(key=lambda e: (e.due, ranks[e.origin], e.sequence))
        return merged


def compile_fragments(
    paths: list[Path],
    *,
    load_time: datetime,
    delimiter: str = DEFAULT_DELIMITER,
) -> CompileResult:
    """Parse the given fragment files, collecting per-file errors."""
    result = CompileResult(paths=list(paths))
    for path in paths:
        try:
            result.fragments[path] = read_fragment(
                path, load_time=load_time, delimiter=delimiter
            )
        except ParseError as e:
            logger.warning(
                "fragment_parse_failed",
                extra={"file.path": str(path), "error.message": str(e)},
            )
            result.errors[path] = e
    return result


def compile_directory(
    source_dir: Path,
    *,
    load_time: datetime,
    delimiter: str = DEFAULT_DELIMITER,
    suffix: str = DEFAULT_SUFFIX,
    recursive: bool = True,
) -> CompileResult:
    """Compile every fragment file under a directory."""
    paths = discover_fragments(source_dir, suffix=suffix, recursive=recursive)
    logger.debug(f"Building schedule from {source_dir} ({len(paths)} fragments)")
    result = compile_fragments(paths, load_time=load_time, delimiter=delimiter)
    logger.info(
        "schedule_compiled",
        extra={
            "file.path": str(source_dir),
            "schedule.fragments": len(result.fragments),
            "schedule.entries": sum(len(f) for f in result.fragments.values()),
            "schedule.errors": len(result.errors),
        },
    )
    return result
