"""
Metrics Reporter.

Collects a metrics snapshot and sends it to the control server. There are
no retries within a cycle: the next scheduled report is the retry.
"""

import asyncio
import json
import logging
from dataclasses import asdict, dataclass
from typing import Optional

import aiohttp

from .collectors import SiteProbe, SystemCollector
from .config import AgentConfig

logger = logging.getLogger(__name__)

METRICS_ENDPOINT = "/api/v1/metrics"


@dataclass
class MetricsSnapshot:
    """One report's worth of metrics, tagged with the server it came from."""
    server_id: str
    cpu_usage: float
    memory_usage: float
    disk_usage: float
    network_in: float
    network_out: float
    os_version: str
    site_status: int

    def to_json(self) -> str:
        return json.dumps(asdict(self), separators=(",", ":"))


@dataclass
class SendResult:
    """Result of a send operation."""
    success: bool
    status_code: int = 0
    error: Optional[str] = None


class Reporter:
    """
    Sends metrics to the control server.

    A snapshot is only sent if every metric source succeeded; a failing
    source raises CollectionError out of `collect` and nothing is posted.
    """

    def __init__(
        self,
        config: AgentConfig,
        session: aiohttp.ClientSession,
        collector: Optional[SystemCollector] = None,
        site_probe: Optional[SiteProbe] = None,
        timeout: int = 30,
    ):
        """Initialize the reporter."""
        self.config = config
        self.session = session
        self.collector = collector or SystemCollector()
        self.site_probe = site_probe or SiteProbe(session)
        self.timeout = timeout

    def _get_headers(self) -> dict:
        """Get request headers."""
        return {
            "Content-Type": "application/json",
            "X-Agent-Token": self.config.api_token,
        }

    async def collect(self) -> MetricsSnapshot:
        """Collect a fresh snapshot. Raises CollectionError on any source failure."""
        system = await self.collector.collect()
        site_status = await self.site_probe.check(self.config.site_url)

        return MetricsSnapshot(
            server_id=self.config.server_id,
            cpu_usage=system.cpu_usage,
            memory_usage=system.memory_usage,
            disk_usage=system.disk_usage,
            network_in=system.network_in,
            network_out=system.network_out,
            os_version=system.os_version,
            site_status=site_status,
        )

    async def send(self, snapshot: MetricsSnapshot) -> SendResult:
        """POST a snapshot. Only HTTP 200 counts as success."""
        url = f"{self.config.api_url}{METRICS_ENDPOINT}"

        try:
            async with self.session.post(
                url,
                data=snapshot.to_json(),
                headers=self._get_headers(),
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            ) as response:
                if response.status == 200:
                    return SendResult(success=True, status_code=response.status)

                error_text = await response.text()
                return SendResult(
                    success=False,
                    status_code=response.status,
                    error=f"unexpected status code: {response.status} {error_text[:200]}".rstrip(),
                )

        except asyncio.TimeoutError:
            return SendResult(success=False, error="Request timeout")
        except aiohttp.ClientError as e:
            return SendResult(success=False, error=f"failed to send request: {e}")

    async def collect_and_report(self) -> SendResult:
        """
        Run one report cycle.

        Raises CollectionError when collection fails, before anything is
        sent. Send failures come back as an unsuccessful SendResult.
        """
        snapshot = await self.collect()
        result = await self.send(snapshot)

        if result.success:
            logger.info(
                f"Metrics sent successfully: CPU={snapshot.cpu_usage:.1f}%, "
                f"Memory={snapshot.memory_usage:.1f}%, Disk={snapshot.disk_usage:.1f}%"
            )
        else:
            logger.warning(f"Error sending metrics: {result.error}")

        return result
