"""
Bus subscriber feeding the target registry.

Scrape target announcements are published on the ``metrics.scrape_targets``
channel of the Redis message bus. `ScrapeTargetSubscriber` keeps a pub/sub
subscription open on a background thread and passes every payload to
`handle_scrape_target_message`, which decodes it and upserts it into the
registry. Malformed payloads are logged and dropped.

The subscription is best effort. Once the initial connection has succeeded,
losing the bus never stops the process: the subscriber waits a short fixed
backoff, moves on to the next configured endpoint and subscribes again, for as
long as it takes. Meanwhile the registry keeps serving what it already has and
stale entries age out through eviction.
"""
from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Optional, Sequence, Union

import redis
import yaml
from pydantic import ValidationError

from .config import SCRAPE_TARGET_TOPIC, SidecarSettings
from .registry import TargetRegistry
from .schemas import ScrapeTarget

LOGGER = logging.getLogger(__name__)

ClientFactory = Callable[[str], redis.Redis]


class BusConnectionError(RuntimeError):
    """Raised when none of the configured bus endpoints accepts a connection."""


def decode_scrape_target(payload: Union[bytes, str]) -> ScrapeTarget:
    """
    Decodes a message payload into a `ScrapeTarget`.

    Payloads are YAML documents; JSON, being a subset of YAML, is accepted too.

    Raises:
        ValueError: If the payload is not a mapping with the expected field types.
    """
    try:
        document = yaml.safe_load(payload)
    except yaml.YAMLError as exc:
        raise ValueError(f"undecodable payload: {exc}") from exc
    if not isinstance(document, dict):
        raise ValueError(f"expected a mapping, got {type(document).__name__}")
    try:
        return ScrapeTarget.model_validate(document)
    except ValidationError as exc:
        raise ValueError(f"invalid scrape target: {exc}") from exc


def handle_scrape_target_message(registry: TargetRegistry, payload: Union[bytes, str]) -> bool:
    """
    Decodes one bus message and records it in ``registry``.

    Returns:
        True if the message was stored, False if it was dropped.
    """
    try:
        target = decode_scrape_target(payload)
    except ValueError as exc:
        LOGGER.warning("failed to unmarshal message data: %s", exc)
        return False
    registry.upsert(target)
    LOGGER.debug("Registered %d target(s) from %r", len(target.targets), target.source)
    return True


def redis_client_factory(settings: SidecarSettings) -> ClientFactory:
    """Returns a factory building Redis clients for a bus host from ``settings``."""

    def _factory(host: str) -> redis.Redis:
        kwargs: dict[str, Any] = dict(
            host=host,
            port=settings.bus_port,
            username=settings.bus_username,
            password=settings.bus_password,
            health_check_interval=settings.bus_health_check_interval,
            socket_connect_timeout=5.0,
            socket_keepalive=True,
        )
        if settings.bus_tls:
            kwargs.update(
                ssl=True,
                ssl_ca_certs=settings.bus_tls_ca,
                ssl_certfile=settings.bus_tls_cert,
                ssl_keyfile=settings.bus_tls_key,
            )
        return redis.Redis(**kwargs)

    return _factory


class ScrapeTargetSubscriber:
    """
    Background subscription to scrape target announcements.

    Attributes:
        registry: Registry receiving decoded announcements.
        endpoints: Bus hosts, tried in order and rotated through on reconnect.
        topic: Channel carrying the announcements.
        reconnect_wait: Seconds to wait before each reconnect attempt.
    """

    def __init__(
        self,
        registry: TargetRegistry,
        endpoints: Sequence[str],
        client_factory: ClientFactory,
        *,
        topic: str = SCRAPE_TARGET_TOPIC,
        reconnect_wait: float = 0.1,
        poll_timeout: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if not endpoints:
            raise ValueError("at least one bus endpoint is required")
        self.registry = registry
        self.endpoints = list(endpoints)
        self.topic = topic
        self.reconnect_wait = reconnect_wait
        self.poll_timeout = poll_timeout
        self._client_factory = client_factory
        self._sleep = sleep

        self._client: Optional[redis.Redis] = None
        self._pubsub: Optional[Any] = None
        self._endpoint_index = 0
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

    @classmethod
    def from_settings(cls, settings: SidecarSettings, registry: TargetRegistry) -> "ScrapeTargetSubscriber":
        return cls(
            registry,
            settings.bus_endpoints,
            redis_client_factory(settings),
            topic=settings.scrape_topic,
            reconnect_wait=settings.bus_reconnect_wait,
        )

    @property
    def connected_endpoint(self) -> Optional[str]:
        if self._client is None:
            return None
        return self.endpoints[self._endpoint_index]

    def _open(self, index: int) -> None:
        host = self.endpoints[index]
        client = self._client_factory(host)
        try:
            client.ping()
            pubsub = client.pubsub(ignore_subscribe_messages=True)
            pubsub.subscribe(self.topic)
        except redis.RedisError:
            client.close()
            raise
        self._client = client
        self._pubsub = pubsub
        self._endpoint_index = index

    def _discard(self) -> None:
        pubsub, client = self._pubsub, self._client
        self._pubsub = None
        self._client = None
        for resource in (pubsub, client):
            if resource is None:
                continue
            try:
                resource.close()
            except redis.RedisError as exc:
                LOGGER.debug("Error while closing bus connection: %s", exc)

    def connect(self) -> None:
        """
        Opens the initial connection and subscription.

        Every endpoint is tried once, in order.

        Raises:
            BusConnectionError: If no endpoint could be reached.
        """
        errors = []
        for index, host in enumerate(self.endpoints):
            try:
                self._open(index)
            except redis.RedisError as exc:
                LOGGER.warning("Unable to connect to bus at %s: %s", host, exc)
                errors.append(f"{host}: {exc}")
                continue
            LOGGER.info("Connected to bus at %s, subscribed to %s", host, self.topic)
            return
        raise BusConnectionError("Unable to connect to bus servers: " + "; ".join(errors))

    def start(self) -> None:
        """Starts the listener thread, connecting first if needed."""
        if self._thread is not None and self._thread.is_alive():
            LOGGER.warning("Subscriber already running")
            return
        if self._pubsub is None:
            self.connect()
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._listen_loop, name="scrape-target-subscriber", daemon=True
        )
        self._thread.start()

    def close(self) -> None:
        """Stops listening and closes the bus connection."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=5.0)
            self._thread = None
        self._discard()
        LOGGER.info("Bus connection closed")

    def poll_once(self) -> bool:
        """
        Waits for at most one message and processes it.

        Returns:
            True if a message was stored in the registry.
        """
        if self._pubsub is None:
            raise redis.ConnectionError("not subscribed")
        message = self._pubsub.get_message(timeout=self.poll_timeout)
        if not message or message.get("type") != "message":
            return False
        return handle_scrape_target_message(self.registry, message.get("data", b""))

    def reconnect(self) -> bool:
        """
        Re-establishes the subscription, rotating through the endpoints.

        Keeps trying until it succeeds or the subscriber is closed.

        Returns:
            True once subscribed again, False if the subscriber was closed first.
        """
        self._discard()
        index = self._endpoint_index
        while not self._stop_event.is_set():
            self._sleep(self.reconnect_wait)
            index = (index + 1) % len(self.endpoints)
            try:
                self._open(index)
            except redis.RedisError as exc:
                LOGGER.debug("Reconnect to %s failed: %s", self.endpoints[index], exc)
                continue
            LOGGER.info("Reconnected to %s", self.endpoints[index])
            return True
        return False

    def _listen_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.poll_once()
            except redis.RedisError as exc:
                if self._stop_event.is_set():
                    break
                LOGGER.error("Bus error: %s", exc)
                self.reconnect()
            except Exception as exc:
                LOGGER.error("Unexpected error in subscriber: %s", exc, exc_info=True)
                self._sleep(self.reconnect_wait)


__all__ = [
    "BusConnectionError",
    "ScrapeTargetSubscriber",
    "decode_scrape_target",
    "handle_scrape_target_message",
    "redis_client_factory",
]
