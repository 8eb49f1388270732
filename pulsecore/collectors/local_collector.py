"""
Local Resource Sampler.

Turns cumulative OS counters into rate-normalized telemetry snapshots
using psutil.
"""

import logging
import math
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Optional, Tuple

import psutil

from ..core.models import (
    CpuMetrics,
    DiskMetrics,
    GpuMetrics,
    MemoryMetrics,
    NetworkMetrics,
    TelemetrySnapshot,
    utc_now,
)


logger = logging.getLogger(__name__)

MB = 1024 ** 2
GB = 1024 ** 3

# Floor for the sampling interval, avoids blow-up on back-to-back calls
MIN_ELAPSED_SECONDS = 0.001

RAPL_PATH = Path("/sys/class/powercap/intel-rapl")

TEMPERATURE_SENSORS = ["coretemp", "cpu_thermal", "k10temp", "cpu-thermal"]


def clamp_percent(value: Optional[float]) -> float:
    """Clamp to [0, 100]; NaN and None become 0."""
    if value is None or math.isnan(value):
        return 0.0
    return max(0.0, min(100.0, float(value)))


def percent_of(used: float, total: float) -> float:
    if not total or total <= 0:
        return 0.0
    return clamp_percent(used / total * 100.0)


def rate(current: int, previous: int, elapsed: float) -> float:
    """Per-second rate of a cumulative counter; a counter reset yields 0."""
    return max(0, current - previous) / max(elapsed, MIN_ELAPSED_SECONDS)


@dataclass
class _Counters:
    """Cumulative counter values captured at one instant."""

    tick: float
    net_rx: Optional[int] = None
    net_tx: Optional[int] = None
    disk_read: Optional[int] = None
    disk_write: Optional[int] = None
    energy_uj: Optional[int] = None


class ResourceSampler:
    """
    Collects one telemetry snapshot per call.

    Keeps the previous counter values so network, disk IO and power rates
    reflect the interval since the prior call. ``collect`` never raises:
    anything that cannot be read is left absent and explained in
    ``TelemetrySnapshot.degradations``.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        net = self._network_totals()
        disk = self._disk_io_totals()
        self._prev = _Counters(
            tick=self._clock(),
            net_rx=net[0] if net else None,
            net_tx=net[1] if net else None,
            disk_read=disk[0] if disk else None,
            disk_write=disk[1] if disk else None,
            energy_uj=self._read_rapl_energy_uj(),
        )
        # First cpu_percent(interval=None) call always returns 0.0
        try:
            psutil.cpu_percent(interval=None)
        except Exception as e:
            logger.debug(f"Could not prime CPU usage counter: {e}")

    def collect(self) -> TelemetrySnapshot:
        """Collect all metrics and return a complete snapshot."""
        degradations: Dict[str, str] = {}
        now = self._clock()
        elapsed = max(now - self._prev.tick, MIN_ELAPSED_SECONDS)

        cpu = self._cpu_metrics(degradations)
        memory = self._memory_metrics(degradations)
        disk, disk_counters = self._disk_metrics(elapsed, degradations)
        network, net_counters = self._network_metrics(elapsed, degradations)
        power, energy = self._power_watts(elapsed, degradations)

        degradations["gpu"] = "no portable GPU metrics source"

        self._prev = _Counters(
            tick=now,
            net_rx=net_counters[0],
            net_tx=net_counters[1],
            disk_read=disk_counters[0],
            disk_write=disk_counters[1],
            energy_uj=energy,
        )

        if degradations:
            logger.debug(f"Degraded fields: {degradations}")

        return TelemetrySnapshot(
            timestamp=utc_now(),
            cpu=cpu,
            gpu=GpuMetrics(),
            memory=memory,
            disk=disk,
            network=network,
            power_watts=power,
            degradations=degradations,
        )

    def _cpu_metrics(self, degradations: Dict[str, str]) -> CpuMetrics:
        """Get CPU usage, average clock and temperature."""
        try:
            usage = clamp_percent(psutil.cpu_percent(interval=None))
        except Exception as e:
            degradations["cpu.usage_pct"] = f"cpu usage unavailable: {e}"
            usage = 0.0

        frequency = None
        try:
            per_core = psutil.cpu_freq(percpu=True) or []
            if per_core:
                frequency = sum(f.current for f in per_core) / len(per_core)
            else:
                degradations["cpu.frequency_mhz"] = "no cores reported"
        except Exception as e:
            degradations["cpu.frequency_mhz"] = f"cpu frequency unavailable: {e}"

        temperature = self._cpu_temperature()
        if temperature is None:
            degradations["cpu.temperature_c"] = "no temperature sensor"

        return CpuMetrics(usage_pct=usage, frequency_mhz=frequency, temperature_c=temperature)

    def _cpu_temperature(self) -> Optional[float]:
        """Attempt to get CPU temperature."""
        try:
            temps = psutil.sensors_temperatures()
        except Exception:
            return None
        if not temps:
            return None
        # Try common sensor names
        for name in TEMPERATURE_SENSORS:
            readings = temps.get(name)
            if readings and readings[0].current is not None:
                return float(readings[0].current)
        # Fall back to first available sensor
        for readings in temps.values():
            if readings and readings[0].current is not None:
                return float(readings[0].current)
        return None

    def _memory_metrics(self, degradations: Dict[str, str]) -> MemoryMetrics:
        try:
            mem = psutil.virtual_memory()
        except Exception as e:
            degradations["memory"] = f"memory stats unavailable: {e}"
            return MemoryMetrics()

        return MemoryMetrics(
            used_mb=mem.used / MB,
            total_mb=mem.total / MB,
            usage_pct=percent_of(mem.used, mem.total),
        )

    def _disk_metrics(
        self, elapsed: float, degradations: Dict[str, str]
    ) -> Tuple[DiskMetrics, Tuple[Optional[int], Optional[int]]]:
        """Sum capacity over all mounted volumes and derive IO rates."""
        total_bytes = 0
        used_bytes = 0
        seen = set()
        readable = 0

        try:
            partitions = psutil.disk_partitions(all=False)
        except Exception as e:
            degradations["disk"] = f"cannot list partitions: {e}"
            partitions = []

        for partition in partitions:
            if partition.device and partition.device in seen:
                continue
            try:
                usage = psutil.disk_usage(partition.mountpoint)
            except (PermissionError, OSError) as e:
                logger.debug(f"Could not access {partition.mountpoint}: {e}")
                continue
            seen.add(partition.device)
            readable += 1
            total_bytes += usage.total
            # available can momentarily exceed total while counters refresh
            used_bytes += max(0, usage.total - usage.free)

        if partitions and not readable:
            degradations["disk"] = "no readable volumes"

        read_rate = None
        write_rate = None
        counters = self._disk_io_totals()
        if counters is None:
            degradations["disk.read_bytes_per_sec"] = "disk IO counters unavailable"
            degradations["disk.write_bytes_per_sec"] = "disk IO counters unavailable"
            counters = (None, None)
        elif self._prev.disk_read is None or self._prev.disk_write is None:
            degradations["disk.read_bytes_per_sec"] = "no previous sample"
            degradations["disk.write_bytes_per_sec"] = "no previous sample"
        else:
            read_rate = rate(counters[0], self._prev.disk_read, elapsed)
            write_rate = rate(counters[1], self._prev.disk_write, elapsed)

        disk = DiskMetrics(
            used_gb=used_bytes / GB,
            total_gb=total_bytes / GB,
            usage_pct=percent_of(used_bytes, total_bytes),
            read_bytes_per_sec=read_rate,
            write_bytes_per_sec=write_rate,
        )
        return disk, counters

    def _network_metrics(
        self, elapsed: float, degradations: Dict[str, str]
    ) -> Tuple[NetworkMetrics, Tuple[Optional[int], Optional[int]]]:
        """Throughput since the previous call."""
        totals = self._network_totals()
        if totals is None:
            degradations["network"] = "network counters unavailable"
            return NetworkMetrics(), (self._prev.net_rx, self._prev.net_tx)

        rx, tx = totals
        if self._prev.net_rx is None or self._prev.net_tx is None:
            degradations["network"] = "no previous sample"
            return NetworkMetrics(), totals

        network = NetworkMetrics(
            download_bytes_per_sec=rate(rx, self._prev.net_rx, elapsed),
            upload_bytes_per_sec=rate(tx, self._prev.net_tx, elapsed),
        )
        return network, totals

    def _power_watts(
        self, elapsed: float, degradations: Dict[str, str]
    ) -> Tuple[Optional[float], Optional[int]]:
        energy = self._read_rapl_energy_uj()
        if energy is None:
            degradations["power_watts"] = "RAPL energy counter unavailable"
            return None, None
        if self._prev.energy_uj is None:
            degradations["power_watts"] = "no previous sample"
            return None, energy
        if energy < self._prev.energy_uj:
            degradations["power_watts"] = "energy counter wrapped"
            return None, energy
        return (energy - self._prev.energy_uj) / elapsed / 1_000_000, energy

    @staticmethod
    def _network_totals() -> Optional[Tuple[int, int]]:
        """Total received/transmitted bytes over all non-loopback interfaces."""
        try:
            stats = psutil.net_io_counters(pernic=True)
        except Exception as e:
            logger.debug(f"Error getting network counters: {e}")
            return None
        if stats is None:
            return None

        rx = 0
        tx = 0
        for name, io in stats.items():
            # Skip loopback
            if name.lower().startswith("lo"):
                continue
            rx += io.bytes_recv
            tx += io.bytes_sent
        return rx, tx

    @staticmethod
    def _disk_io_totals() -> Optional[Tuple[int, int]]:
        try:
            io = psutil.disk_io_counters()
        except Exception as e:
            logger.debug(f"Error getting disk IO counters: {e}")
            return None
        if io is None:
            return None
        return io.read_bytes, io.write_bytes

    @staticmethod
    def _read_rapl_energy_uj() -> Optional[int]:
        """
        Sum of package energy counters from Intel RAPL, in microjoules.

        Note: Requires read access to powercap, usually root on Linux.
        """
        try:
            if not RAPL_PATH.exists():
                return None
            total = 0
            found = False
            for domain in RAPL_PATH.iterdir():
                # Package domains only; sub-domains are intel-rapl:0:0 etc.
                if domain.name.startswith("intel-rapl:") and domain.name.count(":") == 1:
                    energy_file = domain / "energy_uj"
                    if energy_file.exists():
                        total += int(energy_file.read_text())
                        found = True
            return total if found else None
        except (PermissionError, OSError, ValueError):
            return None
