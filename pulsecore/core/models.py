"""
Data models for telemetry, diagnostics and history.

These dataclasses are the immutable values passed between the sampler,
the scheduler, the probe and the history store.
"""

from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class Mode(str, Enum):
    """Operating cadence of the telemetry loop."""

    NORMAL = "normal"
    LOW_POWER = "low_power"


@dataclass(frozen=True)
class CpuMetrics:
    """CPU utilization metrics."""

    usage_pct: float = 0.0
    frequency_mhz: Optional[float] = None
    temperature_c: Optional[float] = None


@dataclass(frozen=True)
class GpuMetrics:
    """GPU metrics; every field is absent when the platform exposes none."""

    usage_pct: Optional[float] = None
    temperature_c: Optional[float] = None
    memory_used_mb: Optional[float] = None
    memory_total_mb: Optional[float] = None


@dataclass(frozen=True)
class MemoryMetrics:
    """Memory/RAM metrics."""

    used_mb: float = 0.0
    total_mb: float = 0.0
    usage_pct: float = 0.0


@dataclass(frozen=True)
class DiskMetrics:
    """Storage capacity aggregated over all mounted volumes."""

    used_gb: float = 0.0
    total_gb: float = 0.0
    usage_pct: float = 0.0
    read_bytes_per_sec: Optional[float] = None
    write_bytes_per_sec: Optional[float] = None


@dataclass(frozen=True)
class NetworkMetrics:
    """Network throughput derived from counter deltas."""

    download_bytes_per_sec: float = 0.0
    upload_bytes_per_sec: float = 0.0
    latency_ms: Optional[float] = None


@dataclass(frozen=True)
class TelemetrySnapshot:
    """One telemetry reading for a single point in time."""

    timestamp: datetime
    cpu: CpuMetrics
    gpu: GpuMetrics
    memory: MemoryMetrics
    disk: DiskMetrics
    network: NetworkMetrics
    power_watts: Optional[float] = None
    # dotted field path -> reason the field is absent
    degradations: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        """Convert snapshot to dictionary for serialization."""
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data


@dataclass(frozen=True)
class SpeedTestResult:
    """A completed network-performance test, keyed by its task id."""

    task_id: str
    endpoint: str
    download_mbps: float
    started_at: datetime
    duration_ms: int
    upload_mbps: Optional[float] = None
    latency_ms: Optional[float] = None
    jitter_ms: Optional[float] = None
    loss_pct: Optional[float] = None


@dataclass(frozen=True)
class HistoryFilter:
    """Page request over the speed-test history. Bounds are inclusive."""

    page: int = 1
    page_size: int = 20
    from_: Optional[datetime] = None
    to: Optional[datetime] = None


@dataclass(frozen=True)
class HistoryPage:
    """A page of history, most recent first."""

    total: int
    items: List[SpeedTestResult] = field(default_factory=list)


@dataclass(frozen=True)
class TimeRange:
    """Optional inclusive time bounds used by exports."""

    from_: Optional[datetime] = None
    to: Optional[datetime] = None


@dataclass(frozen=True)
class ExportResult:
    """Where an export was written and how many rows it holds."""

    path: str
    rows: int


@dataclass(frozen=True)
class PingResult:
    """Latency statistics derived from one probe run."""

    target: str
    min_ms: Optional[float] = None
    max_ms: Optional[float] = None
    avg_ms: Optional[float] = None
    jitter_ms: Optional[float] = None
    loss_pct: Optional[float] = None
    samples: Tuple[float, ...] = ()


def _valid_setting(value: Any, default: Any) -> bool:
    if isinstance(default, bool):
        return isinstance(value, bool)
    if isinstance(default, int):
        return isinstance(value, int) and not isinstance(value, bool) and value >= 1
    return isinstance(value, type(default))


@dataclass(frozen=True)
class AppSettings:
    """User preferences stored as the single settings record."""

    refresh_rate_ms: int = 1000
    low_power_rate_ms: int = 5000
    history_retention_days: int = 30
    ping_target: str = "1.1.1.1"
    ping_count: int = 10
    overlay_enabled: bool = False
    theme: str = "dark"

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "AppSettings":
        """Build settings from a decoded blob.

        Unknown keys are ignored. A value of the wrong type, or a
        non-positive number, falls back to that field's default.
        """
        values = {}
        for f in fields(cls):
            if f.name in raw and _valid_setting(raw[f.name], f.default):
                values[f.name] = raw[f.name]
        return cls(**values)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class WarningEvent:
    """Non-fatal problem reported by a background task."""

    message: str
    source: str


@dataclass(frozen=True)
class HardwareInfo:
    """Static descriptive strings about the host."""

    cpu_model: str = "Unknown CPU"
    gpu_model: str = "N/A"
    ram_spec: str = "Unknown"
    disk_models: Tuple[str, ...] = ()
    motherboard: str = "Unknown motherboard"
    device_brand: str = "Unknown vendor"


@dataclass(frozen=True)
class Event:
    """Envelope delivered to event subscribers."""

    name: str
    payload: Any
    emitted_at: datetime = field(default_factory=utc_now)
