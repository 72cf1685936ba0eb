"""
Message bus: deliver topic messages to registered handlers.

The dispatcher only needs one thing from a bus: "call this handler for
every message on this topic filter". ``MessageBus`` is that protocol; two
implementations ship here:

    MqttBus       ─ paho-mqtt client; every delivery is handed to a thread
                    pool so a running command never blocks the network loop
    InMemoryBus   ─ in-process, synchronous delivery in the publisher's
                    thread; for tests and local wiring

Handlers have the shape ``(topic, payload) -> None``. A handler that raises
is logged (``message_handler_error``) and never takes the bus down.

Topic filters follow MQTT rules (``+`` single level, ``#`` multi level) on
both implementations.

Example::

    bus = MqttBus.from_settings(Settings())
    bus.connect()
    bus.subscribe("ci/build", 1, lambda topic, payload: print(topic))
    ...
    bus.disconnect()
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from functools import partial
from typing import Any, Literal, Protocol, runtime_checkable
from urllib.parse import urlparse

import paho.mqtt.client as mqtt

from mqtt_exec.errors import BusConnectionError, BusError, ConfigError
from mqtt_exec.logging import get_logger
from mqtt_exec.settings import Settings

logger = get_logger(__name__)

MessageHandler = Callable[[str, bytes], None]


@runtime_checkable
class MessageBus(Protocol):
    """Protocol for message buses the dispatcher can register on."""

    def subscribe(self, topic: str, qos: int, handler: MessageHandler) -> None:
        """Call ``handler(topic, payload)`` for every message matching ``topic``."""
        ...


def topic_matches(topic_filter: str, topic: str) -> bool:
    """True if ``topic`` matches the MQTT ``topic_filter``."""
    return mqtt.topic_matches_sub(topic_filter, topic)


def _safe_deliver(handler: MessageHandler, topic: str, payload: bytes) -> None:
    try:
        handler(topic, payload)
    except Exception as e:
        logger.error("message_handler_error", topic=topic, error=str(e), exc_info=True)


# =============================================================================
# BROKER ADDRESS
# =============================================================================


_SCHEMES: dict[str, tuple[Literal["tcp", "websockets"], bool, int]] = {
    # scheme: (transport, tls, default port)
    "tcp": ("tcp", False, 1883),
    "mqtt": ("tcp", False, 1883),
    "ssl": ("tcp", True, 8883),
    "tls": ("tcp", True, 8883),
    "mqtts": ("tcp", True, 8883),
    "ws": ("websockets", False, 80),
    "wss": ("websockets", True, 443),
}


@dataclass(frozen=True)
class BrokerAddress:
    """Where and how to reach the broker."""

    host: str
    port: int
    transport: Literal["tcp", "websockets"] = "tcp"
    tls: bool = False
    path: str = "/mqtt"

    @property
    def url(self) -> str:
        scheme = {
            ("tcp", False): "tcp",
            ("tcp", True): "ssl",
            ("websockets", False): "ws",
            ("websockets", True): "wss",
        }[(self.transport, self.tls)]
        suffix = self.path if self.transport == "websockets" else ""
        return f"{scheme}://{self.host}:{self.port}{suffix}"


def parse_broker_url(url: str) -> BrokerAddress:
    """Parse ``tcp://host:1883``-style broker URLs.

    Raises:
        ConfigError: Unknown scheme, missing host or invalid port.
    """
    parsed = urlparse(url)
    scheme = parsed.scheme.lower()
    if scheme not in _SCHEMES:
        raise ConfigError(
            f"unsupported broker URL scheme {parsed.scheme!r} in {url!r} "
            f"(expected one of: {', '.join(sorted(_SCHEMES))})"
        )

    transport, tls, default_port = _SCHEMES[scheme]
    try:
        port = parsed.port or default_port
    except ValueError as e:
        raise ConfigError(f"invalid port in broker URL {url!r}", cause=e) from e

    if not parsed.hostname:
        raise ConfigError(f"broker URL {url!r} has no host")

    return BrokerAddress(
        host=parsed.hostname,
        port=port,
        transport=transport,
        tls=tls,
        path=parsed.path or "/mqtt",
    )


# =============================================================================
# IN-MEMORY BUS
# =============================================================================


@dataclass
class Subscription:
    """Internal subscription record."""

    topic: str
    qos: int
    handler: MessageHandler


class InMemoryBus:
    """In-process bus for tests and single-process wiring.

    ``publish`` delivers synchronously to all matching handlers in the
    caller's thread; publish from several threads to get concurrent
    deliveries.

    Example::

        bus = InMemoryBus()
        bus.subscribe("ci/+", 1, handler)
        bus.publish("ci/build", b"go")   # handler("ci/build", b"go")
    """

    def __init__(self) -> None:
        self._subscriptions: list[Subscription] = []
        self._lock = threading.Lock()
        self._closed = False

    def subscribe(self, topic: str, qos: int, handler: MessageHandler) -> None:
        with self._lock:
            self._subscriptions.append(Subscription(topic=topic, qos=qos, handler=handler))

    def publish(self, topic: str, payload: bytes = b"") -> int:
        """Deliver ``payload`` to every matching handler.

        Returns:
            Number of handlers the message was delivered to.
        """
        if self._closed:
            return 0

        with self._lock:
            handlers = [s.handler for s in self._subscriptions if topic_matches(s.topic, topic)]

        for handler in handlers:
            _safe_deliver(handler, topic, payload)
        return len(handlers)

    def close(self) -> None:
        """Mark bus as closed and clear subscriptions."""
        self._closed = True
        with self._lock:
            self._subscriptions.clear()

    @property
    def subscriptions(self) -> list[tuple[str, int]]:
        """(topic, qos) of every subscription, in registration order."""
        with self._lock:
            return [(s.topic, s.qos) for s in self._subscriptions]


# =============================================================================
# MQTT BUS
# =============================================================================


class MqttBus:
    """paho-mqtt backed bus.

    The paho network loop runs in its own thread (``loop_start``). Each
    delivered message is submitted to a ``ThreadPoolExecutor``, so handlers
    for any topic, including the same one, run concurrently and a blocking
    command never stalls message intake.

    Several handlers may share one topic filter; the broker sees a single
    subscription at the highest requested QoS and every handler is called.
    Subscriptions are renewed whenever the client reconnects.
    """

    def __init__(
        self,
        address: BrokerAddress,
        *,
        client_id: str = "mqtt-exec",
        username: str = "",
        password: str = "",
        keepalive: int = 60,
        connect_timeout: float = 10.0,
        max_workers: int = 32,
    ) -> None:
        self.address = address
        self.keepalive = keepalive
        self.connect_timeout = connect_timeout
        self.max_workers = max_workers

        self._handlers: dict[str, list[MessageHandler]] = {}
        self._qos: dict[str, int] = {}
        self._lock = threading.Lock()
        self._connack = threading.Event()
        self._connect_error: str | None = None
        self._executor: ThreadPoolExecutor | None = None
        self._running = False

        self._client = mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=client_id,
            transport=address.transport,
        )
        if address.transport == "websockets":
            self._client.ws_set_options(path=address.path)
        if address.tls:
            self._client.tls_set()
        if username:
            self._client.username_pw_set(username, password or None)

        self._client.on_connect = self._on_connect
        self._client.on_disconnect = self._on_disconnect

    @classmethod
    def from_settings(cls, settings: Settings) -> MqttBus:
        return cls(
            parse_broker_url(settings.host),
            client_id=settings.cid,
            username=settings.username,
            password=settings.password,
            keepalive=settings.keepalive,
            connect_timeout=settings.connect_timeout,
            max_workers=settings.max_workers,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def connect(self) -> None:
        """Connect and wait for the broker's CONNACK.

        Raises:
            BusConnectionError: Broker unreachable, refused, or no CONNACK
                within ``connect_timeout``.
        """
        if self._running:
            logger.warning("bus_already_connected", broker=self.address.url)
            return

        logger.info("bus_connecting", broker=self.address.url)
        self._connack.clear()
        self._connect_error = None

        try:
            self._client.connect(self.address.host, self.address.port, self.keepalive)
        except OSError as e:
            raise BusConnectionError(
                f"cannot connect to {self.address.url}: {e}", cause=e
            ) from e

        self._client.loop_start()

        if not self._connack.wait(self.connect_timeout):
            self._client.loop_stop()
            raise BusConnectionError(
                f"no CONNACK from {self.address.url} within {self.connect_timeout}s"
            )
        if self._connect_error is not None:
            self._client.loop_stop()
            raise BusConnectionError(
                f"connection to {self.address.url} refused: {self._connect_error}"
            )

        self._executor = ThreadPoolExecutor(
            max_workers=self.max_workers, thread_name_prefix="mqtt-exec"
        )
        self._running = True
        logger.info("bus_connected", broker=self.address.url, max_workers=self.max_workers)

    def disconnect(self) -> None:
        """Disconnect and stop delivering.

        Pending deliveries are cancelled; handlers already running (and
        their commands) finish in their worker threads.
        """
        if not self._running:
            return

        logger.info("bus_disconnecting", broker=self.address.url)
        self._running = False
        self._client.disconnect()
        self._client.loop_stop()

        if self._executor:
            self._executor.shutdown(wait=False, cancel_futures=True)

        logger.info("bus_disconnected", broker=self.address.url)

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, topic: str, qos: int, handler: MessageHandler) -> None:
        """Subscribe ``handler`` to ``topic``.

        Raises:
            BusError: Not connected, or the client rejected the subscription.
        """
        if not self._running:
            raise BusError(f"cannot subscribe to {topic!r}: bus is not connected").with_context(
                topic=topic
            )

        with self._lock:
            previous_qos = self._qos.get(topic)
            is_new = previous_qos is None
            effective_qos = qos if is_new else max(qos, previous_qos)
            self._handlers.setdefault(topic, []).append(handler)
            self._qos[topic] = effective_qos

        if is_new:
            self._client.message_callback_add(topic, partial(self._on_message, topic))

        if effective_qos != previous_qos:
            result, _mid = self._client.subscribe(topic, effective_qos)
            if result != mqtt.MQTT_ERR_SUCCESS:
                self._discard(topic, handler, previous_qos)
                raise BusError(
                    f"subscription to {topic!r} rejected: {mqtt.error_string(result)}"
                ).with_context(topic=topic)

        logger.debug("bus_subscribed", topic=topic, qos=effective_qos)

    def _discard(self, topic: str, handler: MessageHandler, previous_qos: int | None) -> None:
        """Undo a rejected ``subscribe`` so reconnects do not renew it."""
        with self._lock:
            handlers = self._handlers.get(topic, [])
            if handler in handlers:
                handlers.remove(handler)
            if not handlers:
                self._handlers.pop(topic, None)
                self._qos.pop(topic, None)
            elif previous_qos is not None:
                self._qos[topic] = previous_qos

        if not handlers:
            self._client.message_callback_remove(topic)

    # ------------------------------------------------------------------
    # paho callbacks (network thread)
    # ------------------------------------------------------------------

    def _on_connect(
        self, client: Any, userdata: Any, flags: Any, reason_code: Any, properties: Any
    ) -> None:
        if reason_code.is_failure:
            self._connect_error = str(reason_code)
            logger.error("bus_connect_refused", broker=self.address.url, reason=str(reason_code))
            self._connack.set()
            return

        with self._lock:
            renew = list(self._qos.items())

        for topic, qos in renew:
            client.subscribe(topic, qos)
        if renew:
            logger.info("bus_resubscribed", topics=len(renew))

        self._connack.set()

    def _on_disconnect(
        self, client: Any, userdata: Any, flags: Any, reason_code: Any, properties: Any
    ) -> None:
        if self._running:
            logger.warning("bus_connection_lost", broker=self.address.url, reason=str(reason_code))

    def _on_message(self, topic_filter: str, client: Any, userdata: Any, message: Any) -> None:
        with self._lock:
            handlers = list(self._handlers.get(topic_filter, ()))

        executor = self._executor
        if executor is None or not self._running:
            return

        for handler in handlers:
            try:
                executor.submit(_safe_deliver, handler, message.topic, message.payload)
            except RuntimeError:
                # Executor shut down between the check and the submit
                logger.debug("message_dropped_on_shutdown", topic=message.topic)
                return


__all__ = [
    "MessageHandler",
    "MessageBus",
    "topic_matches",
    "BrokerAddress",
    "parse_broker_url",
    "InMemoryBus",
    "MqttBus",
]
