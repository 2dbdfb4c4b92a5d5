"""Runtime orchestration: publisher, scheduling actor and directory watcher."""

from __future__ import annotations

import asyncio
import logging
import signal as signal_module

from mqtt_actor.bus import DryRunPublisher, MqttPublisher, Publisher
from mqtt_actor.config.models import ActorConfig
from mqtt_actor.scheduling.actor import SchedulingActor
from mqtt_actor.scheduling.errors import WatchError
from mqtt_actor.scheduling.watcher import DirectoryWatcher

logger = logging.getLogger(__name__)


def create_publisher(config: ActorConfig, *, dry_run: bool = False) -> Publisher:
    if dry_run:
        return DryRunPublisher()
    mqtt = config.mqtt
    return MqttPublisher(
        mqtt.broker,
        client_id=mqtt.client_id,
        username=mqtt.username,
        password=mqtt.password.get_secret_value() if mqtt.password else None,
        qos=mqtt.qos,
        keepalive=mqtt.keepalive,
        reconnect_min_delay=mqtt.reconnect_min_delay,
        reconnect_max_delay=mqtt.reconnect_max_delay,
    )


class ActorRunner:
    """Owns the lifecycle of the actor, its watcher and the publisher."""

    def __init__(self, config: ActorConfig, publisher: Publisher) -> None:
        source_dir = config.require_source_dir()
        script = config.script
        self._publisher = publisher
        self._actor = SchedulingActor(
            source_dir,
            publisher,
            delimiter=script.delimiter,
            suffix=script.suffix,
            recursive=script.recursive,
        )
        self._watcher = DirectoryWatcher(
            source_dir,
            on_change=self._actor.notify_changed,
            on_rescan=self._actor.request_rescan,
            suffix=script.suffix,
            recursive=script.recursive,
            debounce_seconds=script.debounce_seconds,
        )
        self._shutdown = asyncio.Event()

    @property
    def actor(self) -> SchedulingActor:
        return self._actor

    @property
    def watcher(self) -> DirectoryWatcher:
        return self._watcher

    def request_shutdown(self) -> None:
        self._shutdown.set()

    async def run(self) -> None:
        """Run until SIGINT/SIGTERM or request_shutdown()."""
        loop = asyncio.get_running_loop()
        shutdown_count = 0

        def handle_signal() -> None:
            nonlocal shutdown_count
            shutdown_count += 1
            if shutdown_count == 1:
                logger.info("actor_shutting_down")
                self._shutdown.set()
            else:
                logger.warning("actor_force_shutdown")
                import os

                os._exit(1)

        for sig in (signal_module.SIGTERM, signal_module.SIGINT):
            loop.add_signal_handler(sig, handle_signal)

        try:
            await self.start()
            await self._shutdown.wait()
        finally:
            for sig in (signal_module.SIGTERM, signal_module.SIGINT):
                loop.remove_signal_handler(sig)
            await self.stop()

    async def start(self) -> None:
        if isinstance(self._publisher, MqttPublisher):
            await self._publisher.connect()
        # Watch first: edits made while the initial compile runs are not lost
        try:
            await self._watcher.start()
        except WatchError as e:
            # Supervisor keeps retrying and rescans once the watch attaches
            logger.error("directory_watch_failed", extra={"error.message": str(e)})
        await self._actor.start()

    async def stop(self) -> None:
        """Clean up runtime resources."""
        for resource, method in [
            (self._watcher, "stop"),
            (self._actor, "stop"),
        ]:
            try:
                await getattr(resource, method)()
            except Exception as e:
                logger.warning(f"Error during {method}: {e}")
        if isinstance(self._publisher, MqttPublisher):
            try:
                await self._publisher.close()
            except Exception as e:
                logger.warning(f"Error during close: {e}")
