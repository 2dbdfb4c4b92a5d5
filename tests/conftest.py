"""Shared test fixtures and factories."""

import asyncio
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from mqtt_actor.bus import PublishError

# =============================================================================
# Environment Fixtures
# =============================================================================

_ENV_VARS = [
    "MQTT_BROKER",
    "MQTT_CLIENT_ID",
    "MQTT_USERNAME",
    "MQTT_PASSWORD",
    "MQTT_QOS",
    "SCRIPT_DELIMITER",
    "SCRIPT_SOURCE_DIR",
    "MQTT_ACTOR_LOG_LEVEL",
]


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path: Path):
    """Keep the developer's environment and home directory out of tests."""
    from mqtt_actor.config.paths import ENV_VAR, get_actor_home

    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv(ENV_VAR, str(tmp_path / "home"))
    monkeypatch.chdir(tmp_path)
    get_actor_home.cache_clear()
    yield
    get_actor_home.cache_clear()


@pytest.fixture
def script_dir(tmp_path: Path) -> Path:
    """Empty script source directory."""
    path = tmp_path / "scripts"
    path.mkdir()
    return path


@pytest.fixture
def load_time() -> datetime:
    """Fixed fragment load time."""
    return datetime(2030, 1, 1, 12, 0, 0, tzinfo=UTC)


@pytest.fixture
def cli_runner():
    """Create a Typer CLI test runner with colors disabled."""
    from typer.testing import CliRunner

    return CliRunner(env={"NO_COLOR": "1", "COLUMNS": "200"})


# =============================================================================
# Publisher Fakes
# =============================================================================


class FakePublisher:
    """Records published messages; can be told to fail for given topics."""

    def __init__(self, fail_topics: set[str] | None = None):
        self.sent: list[tuple[str, str, datetime]] = []
        self.fail_topics = fail_topics or set()
        self.attempts = 0
        self._changed = asyncio.Event()

    @property
    def messages(self) -> list[tuple[str, str]]:
        return [(topic, payload) for topic, payload, _ in self.sent]

    async def publish(self, topic: str, payload: str) -> None:
        self.attempts += 1
        self._changed.set()
        if topic in self.fail_topics:
            raise PublishError(topic, "broker rejected message")
        self.sent.append((topic, payload, datetime.now(UTC)))

    async def wait_for(self, count: int, timeout: float = 3.0) -> None:
        """Wait until at least ``count`` publish attempts were made."""
        async with asyncio.timeout(timeout):
            while self.attempts < count:
                self._changed.clear()
                await self._changed.wait()


@pytest.fixture
def publisher() -> FakePublisher:
    return FakePublisher()


# =============================================================================
# Script Helpers
# =============================================================================


def iso_in(seconds: float) -> str:
    """RFC 3339 timestamp ``seconds`` from now."""
    return (datetime.now(UTC) + timedelta(seconds=seconds)).isoformat()


def write_script(directory: Path, name: str, *lines: str) -> Path:
    path = directory / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("\n".join(lines) + "\n")
    return path
