"""
Hardware identity lookup.

Static descriptive strings about the host, gathered from psutil, /proc and
/sys on Linux, sysctl on macOS and wmic on Windows.
"""

import logging
import platform
import subprocess
from pathlib import Path
from typing import List, Optional

import psutil

from ..core.models import HardwareInfo


logger = logging.getLogger(__name__)

DMI_PATH = Path("/sys/class/dmi/id")


def _run(args: List[str], timeout: float = 5.0) -> Optional[str]:
    try:
        result = subprocess.run(args, capture_output=True, text=True, timeout=timeout)
    except (OSError, subprocess.SubprocessError) as e:
        logger.debug(f"{args[0]} failed: {e}")
        return None
    if result.returncode != 0:
        return None
    return result.stdout


def _wmic_values(args: List[str]) -> List[str]:
    """Values of ``Key=Value`` lines printed by ``wmic ... /value``."""
    raw = _run(["wmic", *args])
    if not raw:
        return []
    values = []
    for line in raw.splitlines():
        if "=" in line:
            value = line.split("=", 1)[1].strip()
            if value:
                values.append(value)
    return values


def _read_dmi(name: str) -> Optional[str]:
    try:
        value = (DMI_PATH / name).read_text().strip()
    except OSError:
        return None
    return value or None


def _cpu_model() -> Optional[str]:
    """Get CPU model name."""
    system = platform.system()
    try:
        if system == "Darwin":
            out = _run(["sysctl", "-n", "machdep.cpu.brand_string"])
            if out and out.strip():
                return out.strip()
        elif system == "Linux":
            with open("/proc/cpuinfo", "r") as f:
                for line in f:
                    if "model name" in line:
                        return line.split(":", 1)[1].strip()
        elif system == "Windows":
            values = _wmic_values(["cpu", "get", "name", "/value"])
            if values:
                return values[0]
    except OSError:
        pass
    return platform.processor() or None


def _gpu_model() -> Optional[str]:
    system = platform.system()
    if system == "Windows":
        values = _wmic_values(["path", "win32_VideoController", "get", "Name", "/value"])
        return values[0] if values else None
    if system == "Linux":
        out = _run(["lspci"])
        if out:
            for line in out.splitlines():
                if "VGA compatible controller" in line or "3D controller" in line:
                    return line.split(":", 2)[-1].strip()
    if system == "Darwin":
        out = _run(["system_profiler", "SPDisplaysDataType"])
        if out:
            for line in out.splitlines():
                if "Chipset Model:" in line:
                    return line.split(":", 1)[1].strip()
    return None


def _disk_models() -> List[str]:
    system = platform.system()
    if system == "Windows":
        return _wmic_values(["diskdrive", "get", "model", "/value"])
    if system == "Linux":
        models = []
        for model_file in sorted(Path("/sys/block").glob("*/device/model")):
            try:
                model = model_file.read_text().strip()
            except OSError:
                continue
            if model:
                models.append(model)
        if models:
            return models
    try:
        return sorted({p.device for p in psutil.disk_partitions(all=False) if p.device})
    except Exception:
        return []


def _motherboard() -> Optional[str]:
    if platform.system() == "Windows":
        values = _wmic_values(["baseboard", "get", "product", "/value"])
        return values[0] if values else None
    return _read_dmi("board_name")


def _device_brand() -> Optional[str]:
    if platform.system() == "Windows":
        values = _wmic_values(["computersystem", "get", "manufacturer", "/value"])
        return values[0] if values else None
    if platform.system() == "Darwin":
        return "Apple"
    return _read_dmi("sys_vendor")


def collect_hardware_info() -> HardwareInfo:
    """Gather hardware identity strings, with placeholders for anything unknown."""
    try:
        total_gb = max(psutil.virtual_memory().total / (1024 ** 3), 1.0)
        ram_spec = f"{total_gb:.0f} GB"
    except Exception:
        ram_spec = "Unknown"

    disk_models = _disk_models()

    return HardwareInfo(
        cpu_model=_cpu_model() or "Unknown CPU",
        gpu_model=_gpu_model() or "N/A",
        ram_spec=ram_spec,
        disk_models=tuple(disk_models) if disk_models else ("Unknown disk",),
        motherboard=_motherboard() or "Unknown motherboard",
        device_brand=_device_brand() or "Unknown vendor",
    )
