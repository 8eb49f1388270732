#!/usr/bin/env python3
"""
Start the PulseCore engine with its HTTP API.

Usage:
    python start_web.py              # Serve on the configured port (8765)
    python start_web.py --port 3000  # Custom port
"""

import argparse

from pulsecore.core.config import Config, get_default_config_path
from pulsecore.core.logging_setup import setup_logging
from pulsecore.web.api import start_web_server


def main():
    parser = argparse.ArgumentParser(
        description="PulseCore telemetry engine with HTTP API"
    )

    parser.add_argument(
        "-c", "--config",
        default=None,
        help="Path to configuration file"
    )

    parser.add_argument(
        "-p", "--port",
        type=int,
        default=None,
        help="Web server port (default: from config)"
    )

    parser.add_argument(
        "--host",
        default=None,
        help="Host to bind to (default: from config)"
    )

    parser.add_argument(
        "--low-power",
        action="store_true",
        help="Start in low power mode"
    )

    args = parser.parse_args()

    # Load config
    config_path = args.config or get_default_config_path()
    print(f"Loading configuration from: {config_path}")
    config = Config.from_yaml(config_path)
    setup_logging(config.logging)

    # Apply command line overrides
    if args.low_power:
        config.telemetry.start_low_power = True

    host = args.host or config.web.host
    port = args.port or config.web.port

    print(f"\nStarting PulseCore")
    print(f"=" * 60)
    print(f"API: http://{host}:{port}/api/state")
    print(f"API Documentation: http://{host}:{port}/docs")
    print(f"=" * 60)
    print(f"\nHistory database: {config.storage.db_path}")
    print(f"MQTT forwarding: {'on' if config.mqtt.enabled else 'off'}")
    print(f"\nPress Ctrl+C to stop\n")

    start_web_server(
        host=host,
        port=port,
        app_config=config,
    )


if __name__ == "__main__":
    main()
