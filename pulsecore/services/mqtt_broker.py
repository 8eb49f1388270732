import logging
import asyncio
import json
from dataclasses import asdict, is_dataclass
from typing import Optional, Any
from amqtt.client import MQTTClient
from amqtt.mqtt.constants import QOS_0
from ..core.config import Config
from ..core.events import SNAPSHOT_EVENT, WARNING_EVENT, EventHub
from ..core.models import Event

logger = logging.getLogger(__name__)

FORWARDED_EVENTS = {SNAPSHOT_EVENT, WARNING_EVENT}


def event_topic(prefix: str, event_name: str) -> str:
    """``telemetry.snapshot`` -> ``<prefix>/telemetry/snapshot``"""
    return f"{prefix.rstrip('/')}/{event_name.replace('.', '/')}"


def encode_payload(payload: Any) -> bytes:
    if hasattr(payload, "to_dict"):
        data = payload.to_dict()
    elif is_dataclass(payload):
        data = asdict(payload)
    else:
        data = payload
    return json.dumps(data, default=str).encode("utf-8")


class MQTTBrokerService:
    """Forwards telemetry and warning events to an external MQTT broker."""

    def __init__(self, config: Config, hub: EventHub):
        self.config = config
        self.hub = hub
        self._mqtt: Optional[MQTTClient] = None
        self._active = False
        self._connected = False
        self._queue: Optional[asyncio.Queue] = None
        self._forward_task: Optional[asyncio.Task] = None
        self._retry_task: Optional[asyncio.Task] = None
        self._backoff = config.mqtt.reconnect_min_seconds
        self.published = 0

    @property
    def broker_url(self) -> str:
        mqtt = self.config.mqtt
        return f"mqtt://{mqtt.host}:{mqtt.port}/"

    @property
    def connected(self) -> bool:
        return self._connected

    async def _open(self) -> bool:
        """One connection attempt; resets the backoff when it succeeds."""
        try:
            self._mqtt = MQTTClient()
            await self._mqtt.connect(self.broker_url)
        except Exception as e:
            logger.error(f"MQTT connection to {self.broker_url} failed: {e}")
            self._connected = False
            return False

        self._connected = True
        self._backoff = self.config.mqtt.reconnect_min_seconds
        logger.info(f"Forwarding events to MQTT broker {self.broker_url}")
        return True

    async def start(self):
        """Subscribe to the hub and begin forwarding; no-op when disabled."""
        if not self.config.mqtt.enabled:
            logger.info("MQTT forwarding disabled")
            return

        self._active = True
        await self._open()

        self._queue = self.hub.subscribe()
        self._forward_task = asyncio.create_task(self._forward_loop())
        self._retry_task = asyncio.create_task(self._retry_loop())

    async def _forward_loop(self):
        """Drain the event queue; events arriving while disconnected are dropped."""
        while self._active:
            event: Event = await self._queue.get()
            if event.name not in FORWARDED_EVENTS:
                continue
            topic = event_topic(self.config.mqtt.topic_prefix, event.name)
            await self.publish(topic, event.payload)

    async def _retry_loop(self):
        """Reopen a dropped connection, doubling the wait after each failure."""
        while self._active:
            await asyncio.sleep(self._backoff)
            if not self._active or self._connected:
                continue

            logger.info(f"Reconnecting to MQTT broker {self.broker_url}")
            if not await self._open():
                self._backoff = min(self._backoff * 2, self.config.mqtt.reconnect_max_seconds)

    async def publish(self, topic: str, payload: Any) -> bool:
        """Publish one JSON-encoded payload; False when not connected or on failure."""
        if not (self._active and self._connected and self._mqtt):
            return False

        try:
            await self._mqtt.publish(topic, encode_payload(payload), qos=QOS_0)
        except Exception as e:
            logger.error(f"MQTT publish to {topic} failed: {e}")
            self._connected = False
            return False
        self.published += 1
        return True

    async def stop(self):
        """Cancel background tasks, leave the hub and disconnect."""
        self._active = False

        for task in (self._forward_task, self._retry_task):
            if task:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

        if self._queue is not None:
            self.hub.unsubscribe(self._queue)
            self._queue = None

        if self._mqtt and self._connected:
            try:
                await self._mqtt.disconnect()
            except Exception as e:
                logger.debug(f"MQTT disconnect failed: {e}")
        self._connected = False
        logger.info(f"Stopped MQTT forwarding after {self.published} messages")
