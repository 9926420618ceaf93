"""
TopDash Agent Collectors.

Each collector gathers one kind of data from the host.
"""

from .site import SiteProbe
from .system import SystemCollector, SystemSnapshot

__all__ = [
    "SiteProbe",
    "SystemCollector",
    "SystemSnapshot",
]
