"""MQTT bus publisher.

The scheduling actor only needs ``await publisher.publish(topic, payload)``.
Delivery guarantees (QoS, reconnects, in-flight queueing) are the MQTT
client's business; a failure is reported as PublishError and never retried
here.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Protocol
from urllib.parse import urlsplit

import paho.mqtt.client as mqtt

logger = logging.getLogger(__name__)

CONNECT_TIMEOUT_SECONDS = 10.0

_DEFAULT_PORTS = {
    "tcp": 1883,
    "mqtt": 1883,
    "ssl": 8883,
    "mqtts": 8883,
    "ws": 80,
    "wss": 443,
}


class BusError(Exception):
    """Base error for the message bus boundary."""


class PublishError(BusError):
    """A message could not be handed to the broker."""

    def __init__(self, topic: str, message: str, code: int | None = None):
        super().__init__(f"publish to {topic!r} failed: {message}")
        self.topic = topic
        self.code = code


class BusConnectError(BusError):
    """The broker could not be reached."""


class Publisher(Protocol):
    """Minimal publisher contract required by the scheduling actor."""

    async def publish(self, topic: str, payload: str) -> None: ...


@dataclass(frozen=True)
class BrokerAddress:
    """Parsed broker URI such as ``tcp://localhost:1883``."""

    scheme: str
    host: str
    port: int
    path: str = ""

    @property
    def uses_tls(self) -> bool:
        return self.scheme in ("ssl", "mqtts", "wss")

    @property
    def transport(self) -> str:
        return "websockets" if self.scheme in ("ws", "wss") else "tcp"

    @classmethod
    def parse(cls, uri: str) -> BrokerAddress:
        """Parse a broker URI.

        A bare ``host`` or ``host:port`` is treated as ``tcp://``.

        Raises:
            ValueError: If the scheme is unsupported or the host is missing.
        """
        if "://" not in uri:
            uri = f"tcp://{uri}"
        parts = urlsplit(uri)
        scheme = parts.scheme.lower()
        if scheme not in _DEFAULT_PORTS:
            supported = ", ".join(sorted(_DEFAULT_PORTS))
            raise ValueError(f"Unsupported broker scheme '{scheme}'. Use: {supported}")
        if not parts.hostname:
            raise ValueError(f"Broker URI has no host: {uri}")
        return cls(
            scheme=scheme,
            host=parts.hostname,
            port=parts.port or _DEFAULT_PORTS[scheme],
            path=parts.path,
        )


class MqttPublisher:
    """Publishes scheduled messages through a paho-mqtt client.

    Example:
        publisher = MqttPublisher("tcp://localhost:1883", client_id="mqtt-actor")
        await publisher.connect()
        await publisher.publish("lights/hall", "on")
        await publisher.close()
    """

    def __init__(
        self,
        broker: str,
        *,
        client_id: str = "mqtt-actor",
        username: str | None = None,
        password: str | None = None,
        qos: int = 1,
        keepalive: int = 5,
        reconnect_min_delay: int = 1,
        reconnect_max_delay: int = 5,
        client: Any | None = None,
    ):
        self._address = BrokerAddress.parse(broker)
        self._qos = qos
        self._keepalive = keepalive
        self._connected = False
        self._client = client or mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=client_id,
            clean_session=True,
            transport=self._address.transport,
        )
        if username:
            self._client.username_pw_set(username, password or None)
        if self._address.uses_tls:
            self._client.tls_set()
        if self._address.transport == "websockets" and self._address.path:
            self._client.ws_set_options(path=self._address.path)
        self._client.reconnect_delay_set(
            min_delay=reconnect_min_delay, max_delay=reconnect_max_delay
        )
        self._client.on_connect = self._on_connect
        self._client.on_disconnect = self._on_disconnect
        self._client.on_publish = self._on_publish

    @property
    def address(self) -> BrokerAddress:
        return self._address

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        """Connect to the broker and start the network loop.

        Raises:
            BusConnectError: If the initial connection fails.
        """
        try:
            await asyncio.wait_for(
                asyncio.to_thread(
                    self._client.connect,
                    self._address.host,
                    self._address.port,
                    self._keepalive,
                ),
                timeout=CONNECT_TIMEOUT_SECONDS,
            )
        except (OSError, TimeoutError) as e:
            raise BusConnectError(
                f"cannot connect to {self._address.host}:{self._address.port}: {e}"
            ) from e
        # The network loop thread handles automatic reconnects from here on
        self._client.loop_start()

    async def publish(self, topic: str, payload: str) -> None:
        """Hand a message to the MQTT client.

        While disconnected, paho keeps QoS 1 and 2 messages in its outgoing
        queue and delivers them after reconnecting. QoS 0 messages are dropped.

        Raises:
            PublishError: If the client rejects the message.
        """
        try:
            info = self._client.publish(topic, payload, qos=self._qos)
        except ValueError as e:
            raise PublishError(topic, str(e)) from e

        if info.rc == mqtt.MQTT_ERR_NO_CONN and self._qos > 0:
            logger.warning(
                "message_queued_offline",
                extra={"messaging.topic": topic, "messaging.mid": info.mid},
            )
            return
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise PublishError(topic, mqtt.error_string(info.rc), code=info.rc)
        logger.debug(
            "message_queued",
            extra={"messaging.topic": topic, "messaging.mid": info.mid},
        )

    async def close(self) -> None:
        self._client.disconnect()
        self._client.loop_stop()

    # ------------------------------------------------------------------
    # paho callbacks (run on the client's network thread)
    # ------------------------------------------------------------------

    def _on_connect(self, client, userdata, flags, reason_code, properties) -> None:
        if reason_code.is_failure:
            logger.error(
                "broker_connect_failed", extra={"error.message": str(reason_code)}
            )
            return
        self._connected = True
        logger.info(
            "broker_connected",
            extra={"broker.host": self._address.host, "broker.port": self._address.port},
        )

    def _on_disconnect(
        self, client, userdata, disconnect_flags, reason_code, properties
    ) -> None:
        self._connected = False
        logger.warning("broker_disconnected", extra={"error.message": str(reason_code)})

    def _on_publish(self, client, userdata, mid, reason_code, properties) -> None:
        logger.debug("message_delivered", extra={"messaging.mid": mid})


class DryRunPublisher:
    """Publisher that only logs what would have been sent."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []

    async def publish(self, topic: str, payload: str) -> None:
        self.sent.append((topic, payload))
        logger.info(
            "dry_run_publish",
            extra={"messaging.topic": topic, "messaging.payload": payload[:80]},
        )
