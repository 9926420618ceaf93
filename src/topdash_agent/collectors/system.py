"""
System Metrics Collector.

Collects CPU, Memory, Disk and Network counters for the report cycle.
"""

import asyncio
import logging
import platform
import time
from dataclasses import dataclass
from typing import Optional

import psutil

from ..errors import CollectionError

logger = logging.getLogger(__name__)

OS_RELEASE_PATH = "/etc/os-release"


@dataclass
class SystemSnapshot:
    """Point-in-time system metrics."""
    cpu_usage: float
    memory_usage: float
    disk_usage: float
    network_in: float
    network_out: float
    os_version: str


class SystemCollector:
    """
    Collects system-level metrics using psutil.

    CPU is sampled over a short window. If that sample looks like a spike
    (above `spike_threshold`), a second sample is taken after a pause and
    the two are averaged.
    """

    def __init__(
        self,
        disk_path: str = "/",
        sample_interval: float = 3.0,
        spike_threshold: float = 80.0,
        resample_delay: float = 1.0,
        resample_interval: float = 2.0,
    ):
        """Initialize the system collector."""
        self.disk_path = disk_path
        self.sample_interval = sample_interval
        self.spike_threshold = spike_threshold
        self.resample_delay = resample_delay
        self.resample_interval = resample_interval

    async def collect(self) -> SystemSnapshot:
        """
        Collect all system metrics.

        Raises CollectionError if any source fails; no partial snapshot
        is ever returned.
        """
        # Run blocking psutil calls in thread pool
        loop = asyncio.get_event_loop()

        cpu = await loop.run_in_executor(None, self._collect_cpu)
        memory = await loop.run_in_executor(None, self._collect_memory)
        disk = await loop.run_in_executor(None, self._collect_disk)
        bytes_recv, bytes_sent = await loop.run_in_executor(None, self._collect_network)

        return SystemSnapshot(
            cpu_usage=cpu,
            memory_usage=memory,
            disk_usage=disk,
            network_in=float(bytes_recv),
            network_out=float(bytes_sent),
            os_version=get_os_version(),
        )

    def _collect_cpu(self) -> float:
        """Collect CPU usage, smoothing out single-sample spikes."""
        try:
            first = psutil.cpu_percent(interval=self.sample_interval)
        except Exception as e:
            raise CollectionError("CPU usage", str(e)) from e

        if first <= self.spike_threshold:
            return first

        time.sleep(self.resample_delay)
        try:
            second = psutil.cpu_percent(interval=self.resample_interval)
        except Exception as e:
            logger.debug(f"CPU resample failed, keeping first sample: {e}")
            return first

        return (first + second) / 2

    def _collect_memory(self) -> float:
        """Collect memory usage percent."""
        try:
            return psutil.virtual_memory().percent
        except Exception as e:
            raise CollectionError("memory usage", str(e)) from e

    def _collect_disk(self) -> float:
        """Collect disk usage percent for the configured mount."""
        try:
            return psutil.disk_usage(self.disk_path).percent
        except Exception as e:
            raise CollectionError("disk usage", str(e)) from e

    def _collect_network(self) -> tuple[int, int]:
        """Collect total bytes received and sent across all interfaces."""
        try:
            stats = psutil.net_io_counters(pernic=False)
        except Exception as e:
            raise CollectionError("network stats", str(e)) from e

        # No interfaces reports as zero traffic
        if stats is None:
            return 0, 0
        return stats.bytes_recv, stats.bytes_sent


def get_os_version(path: str = OS_RELEASE_PATH) -> str:
    """Human readable OS label, e.g. 'Ubuntu 22.04.4 LTS'."""
    pretty_name: Optional[str] = None
    try:
        with open(path, "r") as f:
            for line in f:
                if line.startswith("PRETTY_NAME="):
                    pretty_name = line.split("=", 1)[1].strip().strip('"')
                    break
    except OSError:
        pass

    return pretty_name or platform.system()
