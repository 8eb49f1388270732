"""Core module containing data models, configuration and storage."""

from .models import (
    AppSettings,
    HistoryFilter,
    HistoryPage,
    Mode,
    PingResult,
    SpeedTestResult,
    TelemetrySnapshot,
)
from .config import Config
from .errors import ProbeError, StorageError

__all__ = [
    "AppSettings",
    "HistoryFilter",
    "HistoryPage",
    "Mode",
    "PingResult",
    "SpeedTestResult",
    "TelemetrySnapshot",
    "Config",
    "ProbeError",
    "StorageError",
]
