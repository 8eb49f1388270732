"""
PulseCore - Main Entry Point.

Runs the telemetry engine, or performs a one-shot diagnostic or export.
"""

import argparse
import asyncio
import json
import logging
import signal
import sys
from dataclasses import asdict
from datetime import datetime
from pathlib import Path

from .core.config import Config, get_default_config_path
from .core.database import HistoryStore
from .core.errors import ProbeError, StorageError
from .core.events import EventHub
from .core.logging_setup import setup_logging
from .core.models import Mode, TimeRange
from .core.scheduler import TelemetryScheduler
from .core.state import AppState
from .collectors.local_collector import ResourceSampler
from .diagnostics.ping_probe import NetworkProbe, SubprocessPingRunner
from .services.mqtt_broker import MQTTBrokerService


logger = logging.getLogger(__name__)


class PulseCoreApplication:
    """
    Main application that coordinates all components.

    - Samples host resources on an adaptive cadence
    - Prunes old speed-test history
    - Forwards events to MQTT when enabled
    """

    def __init__(self, config: Config):
        self.config = config
        self.store = HistoryStore(config.storage.db_path, config.storage.busy_timeout_seconds)
        self.state = AppState(
            self.store,
            recent_history_size=config.telemetry.recent_history_size,
            mode=Mode.LOW_POWER if config.telemetry.start_low_power else Mode.NORMAL,
        )
        self.hub = EventHub()
        self.scheduler = TelemetryScheduler(
            ResourceSampler(),
            self.store,
            self.state,
            self.hub,
            prune_every_ticks=config.telemetry.prune_every_ticks,
            min_interval_ms=config.telemetry.min_interval_ms,
            max_interval_ms=config.telemetry.max_interval_ms,
        )
        self.mqtt_service = MQTTBrokerService(config, self.hub)
        self._running = False

    async def start(self):
        """Start the application."""
        logger.info("Starting PulseCore...")
        self._running = True

        settings = self.state.load()
        logger.info(
            f"Refresh rate {settings.refresh_rate_ms} ms, "
            f"low power rate {settings.low_power_rate_ms} ms, mode {self.state.mode.value}"
        )

        await self.mqtt_service.start()
        self.scheduler.start()
        logger.info("PulseCore started successfully")

    async def stop(self):
        """Stop the application."""
        if not self._running:
            return
        logger.info("Stopping PulseCore...")
        self._running = False
        await self.scheduler.stop()
        await self.mqtt_service.stop()
        logger.info("PulseCore stopped")


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="PulseCore desktop telemetry engine"
    )

    parser.add_argument(
        "-c", "--config",
        default=None,
        help="Path to configuration file (YAML)"
    )

    parser.add_argument(
        "--db",
        default=None,
        help="Path to the history database"
    )

    parser.add_argument(
        "--low-power",
        action="store_true",
        help="Start in low power mode"
    )

    parser.add_argument(
        "--web",
        action="store_true",
        help="Serve the HTTP API (runs the engine inside the web server)"
    )

    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="HTTP port for --web"
    )

    parser.add_argument(
        "--ping",
        metavar="TARGET",
        default=None,
        help="Run a single ping diagnostic and exit"
    )

    parser.add_argument(
        "--count",
        type=int,
        default=4,
        help="Echo requests for --ping (1-20)"
    )

    parser.add_argument(
        "--export",
        metavar="PATH",
        default=None,
        help="Export speed-test history to CSV and exit"
    )

    parser.add_argument(
        "--from",
        dest="from_",
        type=datetime.fromisoformat,
        default=None,
        help="Export lower bound (ISO 8601)"
    )

    parser.add_argument(
        "--to",
        type=datetime.fromisoformat,
        default=None,
        help="Export upper bound (ISO 8601)"
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging"
    )

    parser.add_argument(
        "--generate-config",
        action="store_true",
        help="Generate a sample configuration file"
    )

    return parser.parse_args(argv)


async def run_ping(config: Config, target: str, count: int) -> int:
    probe = NetworkProbe(SubprocessPingRunner(config.probe.timeout_seconds, config.probe.ping_command))
    try:
        result = await probe.measure(target, count)
    except ProbeError as e:
        logger.error(f"Ping failed: {e}")
        return 1
    print(json.dumps(asdict(result), indent=2))
    return 0


def run_export(config: Config, path: str, time_range: TimeRange) -> int:
    try:
        store = HistoryStore(config.storage.db_path, config.storage.busy_timeout_seconds)
        result = store.export_csv(path, time_range)
    except StorageError as e:
        logger.error(f"Export failed: {e}")
        return 1
    print(f"Exported {result.rows} rows to {result.path}")
    return 0


async def main(argv=None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    # Generate sample config if requested
    if args.generate_config:
        config = Config()
        config_path = "config/config.yaml"
        Path("config").mkdir(exist_ok=True)
        config.to_yaml(config_path)
        print(f"Generated sample configuration: {config_path}")
        return 0

    # Load configuration
    config_path = args.config or get_default_config_path()
    config = Config.from_yaml(config_path)
    setup_logging(config.logging, verbose=args.verbose)
    logger.info(f"Loaded configuration from {config_path}")

    # Apply command line overrides
    if args.db:
        config.storage.db_path = args.db
    if args.low_power:
        config.telemetry.start_low_power = True
    if args.port:
        config.web.port = args.port

    if args.ping:
        return await run_ping(config, args.ping, args.count)

    if args.export:
        return run_export(config, args.export, TimeRange(from_=args.from_, to=args.to))

    app = PulseCoreApplication(config)

    # Setup signal handlers
    loop = asyncio.get_running_loop()
    stopped = asyncio.Event()

    def signal_handler():
        logger.info("Received shutdown signal")
        stopped.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, signal_handler)
        except NotImplementedError:
            # Windows event loops have no signal handler support
            pass

    try:
        await app.start()
        await stopped.wait()
    finally:
        await app.stop()
    return 0


def run():
    """Entry point for the application."""
    args = parse_args()
    if args.web:
        from .web.api import start_web_server

        config = Config.from_yaml(args.config or get_default_config_path())
        setup_logging(config.logging, verbose=args.verbose)
        if args.db:
            config.storage.db_path = args.db
        if args.low_power:
            config.telemetry.start_low_power = True
        start_web_server(port=args.port, app_config=config)
        return

    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        print("\nShutdown complete")


if __name__ == "__main__":
    run()
