"""Tests for MQTT event forwarding."""

import asyncio
import json

import pytest

from pulsecore.core.config import Config
from pulsecore.core.events import SNAPSHOT_EVENT, WARNING_EVENT, EventHub
from pulsecore.core.models import WarningEvent
from pulsecore.services import mqtt_broker
from pulsecore.services.mqtt_broker import MQTTBrokerService, encode_payload, event_topic


def test_event_topic():
    assert event_topic("pulsecore", "telemetry.snapshot") == "pulsecore/telemetry/snapshot"
    assert event_topic("office/pc1/", "system.warning") == "office/pc1/system/warning"


def test_encode_dataclass_payload():
    data = json.loads(encode_payload(WarningEvent(message="locked", source="history_prune")))
    assert data == {"message": "locked", "source": "history_prune"}


def test_disabled_service_does_not_subscribe():
    hub = EventHub()
    service = MQTTBrokerService(Config(), hub)

    async def run():
        await service.start()
        published = await service.publish("pulsecore/x", {"a": 1})
        await service.stop()
        return published

    assert asyncio.run(run()) is False
    assert hub.subscriber_count == 0
    assert service.connected is False


class FakeMQTTClient:
    """Stands in for amqtt's client; records connects and publishes."""

    fail_connect = False
    instances = []

    def __init__(self):
        self.connects = 0
        self.messages = []
        self.disconnected = False
        FakeMQTTClient.instances.append(self)

    async def connect(self, url):
        self.connects += 1
        if FakeMQTTClient.fail_connect:
            raise ConnectionRefusedError(url)

    async def publish(self, topic, message, qos=None):
        self.messages.append((topic, json.loads(message)))

    async def disconnect(self):
        self.disconnected = True


@pytest.fixture
def fake_client(monkeypatch):
    FakeMQTTClient.fail_connect = False
    FakeMQTTClient.instances = []
    monkeypatch.setattr(mqtt_broker, "MQTTClient", FakeMQTTClient)
    return FakeMQTTClient


def enabled_config(**mqtt):
    config = Config()
    config.mqtt.enabled = True
    config.mqtt.topic_prefix = "office/pc1"
    for key, value in mqtt.items():
        setattr(config.mqtt, key, value)
    return config


def test_forwards_snapshot_and_warning_events_only(fake_client):
    hub = EventHub()
    service = MQTTBrokerService(enabled_config(), hub)

    async def run():
        await service.start()
        hub.publish(SNAPSHOT_EVENT, {"cpu": {"usage_pct": 12.5}})
        hub.publish("debug.noise", {"ignored": True})
        hub.publish(WARNING_EVENT, WarningEvent(message="locked", source="history_prune"))
        for _ in range(10):
            await asyncio.sleep(0)
        await service.stop()

    asyncio.run(run())

    client = fake_client.instances[0]
    assert client.messages == [
        ("office/pc1/telemetry/snapshot", {"cpu": {"usage_pct": 12.5}}),
        ("office/pc1/system/warning", {"message": "locked", "source": "history_prune"}),
    ]
    assert service.published == 2
    assert client.disconnected
    assert hub.subscriber_count == 0


def test_events_dropped_while_disconnected(fake_client):
    fake_client.fail_connect = True
    hub = EventHub()
    service = MQTTBrokerService(enabled_config(reconnect_min_seconds=60), hub)

    async def run():
        await service.start()
        hub.publish(SNAPSHOT_EVENT, {"cpu": 1})
        for _ in range(10):
            await asyncio.sleep(0)
        await service.stop()

    asyncio.run(run())
    assert service.published == 0
    assert service.connected is False


def test_failed_reconnects_double_backoff_up_to_cap(fake_client):
    fake_client.fail_connect = True
    service = MQTTBrokerService(
        enabled_config(reconnect_min_seconds=0.01, reconnect_max_seconds=0.04), EventHub()
    )

    async def run():
        await service.start()
        await asyncio.sleep(0.3)
        backoff = service._backoff
        await service.stop()
        return backoff

    assert asyncio.run(run()) == 0.04
    assert len(fake_client.instances) >= 4


def test_successful_reconnect_resets_backoff(fake_client):
    fake_client.fail_connect = True
    service = MQTTBrokerService(
        enabled_config(reconnect_min_seconds=0.01, reconnect_max_seconds=1.0), EventHub()
    )

    async def run():
        await service.start()
        await asyncio.sleep(0.05)
        fake_client.fail_connect = False
        await asyncio.sleep(0.3)
        state = (service.connected, service._backoff)
        await service.stop()
        return state

    assert asyncio.run(run()) == (True, 0.01)
