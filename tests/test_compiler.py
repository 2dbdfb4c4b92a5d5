"""Tests for directory discovery and schedule compilation."""

from datetime import UTC, datetime, timedelta
from pathlib import Path

from mqtt_actor.scheduling import compile_directory, discover_fragments
from mqtt_actor.scheduling.compiler import is_fragment_path

from tests.conftest import write_script


class TestIsFragmentPath:
    def test_matches_suffix_inside_directory(self, script_dir):
        assert is_fragment_path(script_dir / "a.txt", script_dir)
        assert is_fragment_path(script_dir / "sub" / "b.txt", script_dir)

    def test_rejects_other_files(self, script_dir, tmp_path):
        assert not is_fragment_path(script_dir / "a.txt.swp", script_dir)
        assert not is_fragment_path(script_dir / ".a.txt", script_dir)
        assert not is_fragment_path(script_dir / "notes.md", script_dir)
        assert not is_fragment_path(tmp_path / "outside.txt", script_dir)
        assert not is_fragment_path(script_dir, script_dir)

    def test_non_recursive_rejects_subdirectories(self, script_dir):
        path = script_dir / "sub" / "b.txt"
        assert not is_fragment_path(path, script_dir, recursive=False)

    def test_custom_suffix(self, script_dir):
        assert is_fragment_path(script_dir / "a.mqtt", script_dir, suffix=".mqtt")
        assert not is_fragment_path(script_dir / "a.txt", script_dir, suffix=".mqtt")


class TestDiscoverFragments:
    def test_sorted_and_filtered(self, script_dir):
        write_script(script_dir, "b.txt", "+1s|t|b")
        write_script(script_dir, "a.txt", "+1s|t|a")
        write_script(script_dir, "sub/c.txt", "+1s|t|c")
        write_script(script_dir, "readme.md", "hello")
        write_script(script_dir, ".hidden.txt", "+1s|t|h")

        assert discover_fragments(script_dir) == [
            script_dir / "a.txt",
            script_dir / "b.txt",
            script_dir / "sub" / "c.txt",
        ]

    def test_non_recursive(self, script_dir):
        write_script(script_dir, "a.txt", "+1s|t|a")
        write_script(script_dir, "sub/c.txt", "+1s|t|c")

        assert discover_fragments(script_dir, recursive=False) == [
            script_dir / "a.txt"
        ]

    def test_empty_directory(self, script_dir):
        assert discover_fragments(script_dir) == []


class TestCompileDirectory:
    """Whole-directory compilation with per-file error isolation."""

    def test_single_file(self, script_dir, load_time):
        write_script(
            script_dir,
            "a.txt",
            "2030-01-01T00:00:00Z|topic/a|hello",
            "+10s|topic/a|world",
        )

        result = compile_directory(script_dir, load_time=load_time)

        assert result.ok
        assert [(e.due, e.payload) for e in result.entries()] == [
            (datetime(2030, 1, 1, tzinfo=UTC), "hello"),
            (datetime(2030, 1, 1, 0, 0, 10, tzinfo=UTC), "world"),
        ]

    def test_bad_file_does_not_affect_others(self, script_dir, load_time):
        write_script(script_dir, "a.txt", "+1s|t|a")
        write_script(script_dir, "b.txt", "+1s|t|b", "nonsense")

        result = compile_directory(script_dir, load_time=load_time)

        assert not result.ok
        assert list(result.errors) == [script_dir / "b.txt"]
        assert [e.payload for e in result.entries()] == ["a"]
        assert result.paths == [script_dir / "a.txt", script_dir / "b.txt"]

    def test_out_of_range_offset_is_isolated(self, script_dir, load_time):
        write_script(script_dir, "a.txt", "+5000000d|t|a")
        write_script(script_dir, "b.txt", "+1s|t|b")

        result = compile_directory(script_dir, load_time=load_time)

        assert list(result.errors) == [script_dir / "a.txt"]
        assert [e.payload for e in result.entries()] == ["b"]

    def test_entries_merge_across_files(self, script_dir, load_time):
        write_script(script_dir, "a.txt", "+1s|t|a1", "+10s|t|a2")
        write_script(script_dir, "b.txt", "+5s|t|b1")

        result = compile_directory(script_dir, load_time=load_time)

        assert [e.payload for e in result.entries()] == ["a1", "b1", "a2"]

    def test_equal_due_times_follow_discovery_order(self, script_dir, load_time):
        write_script(script_dir, "b.txt", "+5s|t|b")
        write_script(script_dir, "a.txt", "+5s|t|a1", "+0s|t|a2")

        entries = compile_directory(script_dir, load_time=load_time).entries()

        assert [e.payload for e in entries] == ["a1", "a2", "b"]
        assert {e.due for e in entries} == {load_time + timedelta(seconds=5)}

    def test_each_file_anchors_on_load_time(self, script_dir, load_time):
        write_script(script_dir, "a.txt", "2030-06-01T00:00:00Z|t|a", "+1s|t|a2")
        write_script(script_dir, "b.txt", "+1s|t|b")

        entries = compile_directory(script_dir, load_time=load_time).entries()
        by_payload = {e.payload: e.due for e in entries}

        assert by_payload["b"] == load_time + timedelta(seconds=1)
        assert by_payload["a2"] == datetime(2030, 6, 1, 0, 0, 1, tzinfo=UTC)

    def test_origins_are_file_paths(self, script_dir, load_time):
        path = write_script(script_dir, "a.txt", "+1s|t|a")
        result = compile_directory(script_dir, load_time=load_time)
        assert result.entries()[0].origin == path
        assert isinstance(result.entries()[0].origin, Path)
