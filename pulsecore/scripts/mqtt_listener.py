"""Print PulseCore events forwarded to an MQTT broker.

Usage: python -m pulsecore.scripts.mqtt_listener [url] [topic]
"""

import asyncio
import logging
import sys

from amqtt.client import MQTTClient
from amqtt.mqtt.constants import QOS_0

logging.basicConfig(format='%(asctime)s - %(message)s', level=logging.INFO)
logger = logging.getLogger(__name__)

DEFAULT_URL = "mqtt://localhost:1883/"
DEFAULT_TOPIC = "pulsecore/#"


async def listen(url: str, topic: str):
    client = MQTTClient()
    print(f"Connecting to {url}...")

    try:
        await client.connect(url)
        print("Connected!")

        await client.subscribe([(topic, QOS_0)])
        print(f"Subscribed to {topic}")
        print("Waiting for messages... (Press Ctrl+C to stop)")
        print("-" * 50)

        while True:
            message = await client.deliver_message()
            packet = message.publish_packet
            name = packet.variable_header.topic_name
            payload = packet.payload.data.decode('utf-8')
            print(f"[{name}] {payload}")
    finally:
        try:
            await client.disconnect()
        except Exception as e:
            logger.debug(f"Disconnect failed: {e}")


def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv
    if argv and argv[0] in ('-h', '--help'):
        print("Usage: python -m pulsecore.scripts.mqtt_listener [url] [topic]")
        print(f"Default: {DEFAULT_URL} {DEFAULT_TOPIC}")
        return 0

    url = argv[0] if argv else DEFAULT_URL
    topic = argv[1] if len(argv) > 1 else DEFAULT_TOPIC
    try:
        asyncio.run(listen(url, topic))
    except KeyboardInterrupt:
        print("\nStopping...")
    return 0


if __name__ == '__main__':
    sys.exit(main())
