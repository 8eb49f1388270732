"""Diagnostics module for on-demand network probing."""

from .ping_probe import NetworkProbe, PingRunner, SubprocessPingRunner

__all__ = [
    "NetworkProbe",
    "PingRunner",
    "SubprocessPingRunner",
]
