"""Tests for the debounced directory watcher."""

import asyncio

import pytest
from watchdog.events import (
    DirCreatedEvent,
    FileClosedEvent,
    FileModifiedEvent,
    FileMovedEvent,
    FileOpenedEvent,
)
from watchdog.observers.polling import PollingObserver

from mqtt_actor.scheduling import DirectoryWatcher, WatchError
from mqtt_actor.scheduling.watcher import _FragmentEventHandler

from tests.conftest import write_script


class Recorder:
    """Collects watcher callbacks."""

    def __init__(self):
        self.changes: list[set] = []
        self.rescans = 0

    def on_change(self, paths, received_at):
        self.changes.append(set(paths))

    def on_rescan(self):
        self.rescans += 1


def make_watcher(script_dir, recorder, **kwargs) -> DirectoryWatcher:
    kwargs.setdefault("debounce_seconds", 0.05)
    return DirectoryWatcher(
        script_dir,
        on_change=recorder.on_change,
        on_rescan=recorder.on_rescan,
        **kwargs,
    )


def polling_observer():
    return PollingObserver(timeout=0.05)


class FlakyObserverFactory:
    """Fails a fixed number of times before handing out polling observers."""

    def __init__(self, failures: int):
        self.failures = failures
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise OSError(28, "too many watches")
        return polling_observer()


async def eventually(predicate, timeout: float = 5.0) -> None:
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0.02)


class TestDebounce:
    """Event intake without a running observer."""

    @pytest.mark.asyncio
    async def test_burst_produces_one_notification(self, script_dir):
        recorder = Recorder()
        watcher = make_watcher(script_dir, recorder)
        watcher._loop = asyncio.get_running_loop()

        a = script_dir / "a.txt"
        b = script_dir / "b.txt"
        watcher.submit([a])
        watcher.submit([a, b])
        watcher.submit([a])
        await asyncio.sleep(0.2)

        assert recorder.changes == [{a, b}]
        assert watcher.notifications == 1

    @pytest.mark.asyncio
    async def test_separate_bursts(self, script_dir):
        recorder = Recorder()
        watcher = make_watcher(script_dir, recorder)
        watcher._loop = asyncio.get_running_loop()

        watcher.submit([script_dir / "a.txt"])
        await asyncio.sleep(0.15)
        watcher.submit([script_dir / "b.txt"])
        await asyncio.sleep(0.15)

        assert recorder.changes == [{script_dir / "a.txt"}, {script_dir / "b.txt"}]

    @pytest.mark.asyncio
    async def test_non_fragment_paths_are_dropped(self, script_dir, tmp_path):
        recorder = Recorder()
        watcher = make_watcher(script_dir, recorder)
        watcher._loop = asyncio.get_running_loop()

        watcher.submit([script_dir / "a.txt~", script_dir / ".a.txt.swp"])
        watcher.submit([tmp_path / "elsewhere.txt"])
        await asyncio.sleep(0.15)

        assert recorder.changes == []
        assert watcher.notifications == 0

    @pytest.mark.asyncio
    async def test_rescan_wins_over_paths(self, script_dir):
        recorder = Recorder()
        watcher = make_watcher(script_dir, recorder)
        watcher._loop = asyncio.get_running_loop()

        watcher.submit([script_dir / "a.txt"])
        watcher.submit((), rescan=True)
        await asyncio.sleep(0.15)

        assert recorder.rescans == 1
        assert recorder.changes == []

    @pytest.mark.asyncio
    async def test_submit_from_another_thread(self, script_dir):
        recorder = Recorder()
        watcher = make_watcher(script_dir, recorder)
        watcher._loop = asyncio.get_running_loop()

        await asyncio.to_thread(watcher.submit, [script_dir / "a.txt"])
        await eventually(lambda: recorder.changes)

        assert recorder.changes == [{script_dir / "a.txt"}]


class TestEventHandler:
    """Mapping of raw watchdog events."""

    @pytest.mark.asyncio
    async def test_file_events(self, script_dir):
        recorder = Recorder()
        watcher = make_watcher(script_dir, recorder)
        watcher._loop = asyncio.get_running_loop()
        handler = _FragmentEventHandler(watcher)

        handler.dispatch(FileModifiedEvent(str(script_dir / "a.txt")))
        handler.dispatch(FileClosedEvent(str(script_dir / "b.txt")))
        handler.dispatch(FileOpenedEvent(str(script_dir / "c.txt")))
        await asyncio.sleep(0.15)

        assert recorder.changes == [{script_dir / "a.txt", script_dir / "b.txt"}]

    @pytest.mark.asyncio
    async def test_move_reports_both_ends(self, script_dir):
        recorder = Recorder()
        watcher = make_watcher(script_dir, recorder)
        watcher._loop = asyncio.get_running_loop()
        handler = _FragmentEventHandler(watcher)

        handler.dispatch(
            FileMovedEvent(str(script_dir / "a.txt"), str(script_dir / "b.txt"))
        )
        await asyncio.sleep(0.15)

        assert recorder.changes == [{script_dir / "a.txt", script_dir / "b.txt"}]

    @pytest.mark.asyncio
    async def test_editor_temp_file_rename(self, script_dir):
        recorder = Recorder()
        watcher = make_watcher(script_dir, recorder)
        watcher._loop = asyncio.get_running_loop()
        handler = _FragmentEventHandler(watcher)

        handler.dispatch(
            FileMovedEvent(str(script_dir / ".a.txt.tmp"), str(script_dir / "a.txt"))
        )
        await asyncio.sleep(0.15)

        assert recorder.changes == [{script_dir / "a.txt"}]

    @pytest.mark.asyncio
    async def test_directory_creation_requests_rescan(self, script_dir):
        recorder = Recorder()
        watcher = make_watcher(script_dir, recorder)
        watcher._loop = asyncio.get_running_loop()
        handler = _FragmentEventHandler(watcher)

        handler.dispatch(DirCreatedEvent(str(script_dir / "sub")))
        await asyncio.sleep(0.15)

        assert recorder.rescans == 1


class TestObserver:
    """Watching a real directory with a polling observer."""

    @pytest.mark.asyncio
    async def test_missing_directory(self, tmp_path):
        watcher = make_watcher(tmp_path / "missing", Recorder())
        with pytest.raises(WatchError):
            await watcher.start()
        try:
            assert not watcher.is_healthy
        finally:
            await watcher.stop()

    @pytest.mark.asyncio
    async def test_keeps_retrying_after_failed_start(self, script_dir):
        recorder = Recorder()
        factory = FlakyObserverFactory(failures=2)
        watcher = make_watcher(
            script_dir, recorder, observer_factory=factory, health_interval=0.05
        )

        with pytest.raises(WatchError, match="too many watches"):
            await watcher.start()
        try:
            assert not watcher.is_healthy
            await eventually(lambda: watcher.is_healthy)

            assert factory.calls == 3
            assert recorder.rescans == 1
        finally:
            await watcher.stop()

    @pytest.mark.asyncio
    async def test_reports_file_changes(self, script_dir):
        recorder = Recorder()
        watcher = make_watcher(
            script_dir, recorder, observer_factory=polling_observer
        )
        await watcher.start()
        try:
            assert watcher.is_healthy
            write_script(script_dir, "a.txt", "+1s|t|a")
            await eventually(
                lambda: any(script_dir / "a.txt" in c for c in recorder.changes)
            )
        finally:
            await watcher.stop()

        assert not watcher.is_healthy

    @pytest.mark.asyncio
    async def test_recovers_after_directory_returns(self, script_dir):
        recorder = Recorder()
        watcher = make_watcher(
            script_dir,
            recorder,
            observer_factory=polling_observer,
            health_interval=0.05,
        )
        await watcher.start()
        try:
            script_dir.rmdir()
            await eventually(lambda: not watcher.is_healthy)

            rescans_before = recorder.rescans
            script_dir.mkdir()
            await eventually(lambda: watcher.is_healthy)
            await eventually(lambda: recorder.rescans > rescans_before)
        finally:
            await watcher.stop()
