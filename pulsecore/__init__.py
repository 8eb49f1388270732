"""PulseCore - desktop telemetry and network diagnostics engine."""

__version__ = "1.0.0"
