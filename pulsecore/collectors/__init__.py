"""Collectors module for gathering host metrics."""

from .local_collector import ResourceSampler
from .hardware_info import collect_hardware_info

__all__ = [
    "ResourceSampler",
    "collect_hardware_info",
]
