"""
TopDash Host Agent - Main Daemon.

Runs on each monitored server: reports system metrics to the control
server on a fixed interval and periodically checks for, and installs,
newer agent builds.
"""

import asyncio
import logging
import signal
from typing import Optional

import aiohttp

from .collectors import SiteProbe, SystemCollector
from .config import AGENT_VERSION, AgentConfig
from .errors import CollectionError
from .reporter import Reporter
from .scheduler import UPDATE_CHECK_INTERVAL, Scheduler
from .update_checker import UpdateChecker
from .updater import Updater

logger = logging.getLogger(__name__)


class Agent:
    """
    Main host agent.

    Owns one HTTP session shared by the reporter, update checker and
    updater, and drives them from a single Scheduler.
    """

    def __init__(
        self,
        config: AgentConfig,
        version: str = AGENT_VERSION,
        collector: Optional[SystemCollector] = None,
        update_interval: float = UPDATE_CHECK_INTERVAL,
    ):
        """Initialize the agent."""
        self.config = config
        self.identity = config.identity(version)
        self.collector = collector or SystemCollector()

        self.scheduler = Scheduler(
            report_interval=config.report_interval,
            on_report=self.report_cycle,
            on_update_check=self.update_cycle,
            update_interval=update_interval,
        )

        self._session: Optional[aiohttp.ClientSession] = None
        self.reporter: Optional[Reporter] = None
        self.checker: Optional[UpdateChecker] = None
        self.updater: Optional[Updater] = None

    async def open(self) -> None:
        """Create the HTTP session and the components that use it."""
        if self._session is not None and not self._session.closed:
            return

        self._session = aiohttp.ClientSession(
            headers={"User-Agent": f"TopDashAgent/{self.identity.agent_version}"},
        )
        self.reporter = Reporter(
            self.config,
            self._session,
            collector=self.collector,
            site_probe=SiteProbe(self._session),
        )
        self.checker = UpdateChecker(self.identity, self.config, self._session)
        self.updater = Updater(self._session, executable_path=self.config.executable_path)

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()

    async def __aenter__(self):
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def report_cycle(self) -> None:
        """Collect and send one metrics snapshot."""
        try:
            await self.reporter.collect_and_report()
        except CollectionError as e:
            logger.error(f"Error collecting metrics: {e}")

    async def update_cycle(self) -> bool:
        """
        Check for an update and install it if one is offered.

        Returns True only when a new binary has been installed.
        """
        logger.info("Checking for agent updates...")
        result = await self.checker.check()

        if not result.success:
            logger.warning(f"Update check failed: {result.error}")
            return False

        current = self.identity.agent_version
        descriptor = result.descriptor
        if not descriptor.update_available:
            logger.info(f"Agent is up to date (v{current})")
            return False

        logger.info(f"Update available: {current} -> {descriptor.latest_version}")
        outcome = await self.updater.apply(descriptor)
        return outcome.success

    def stop(self) -> None:
        """Stop the agent after the current cycle."""
        logger.info("Stopping agent...")
        self.scheduler.stop()

    async def start(self) -> int:
        """
        Run the agent until stopped or updated.

        Returns the process exit code. A successful self-update also exits
        with 0 so the service manager restarts into the new binary.
        """
        logger.info(f"Starting server monitoring agent for server: {self.config.server_name}")
        logger.info(f"API URL: {self.config.api_url}")
        logger.info(f"Interval: {self.config.report_interval} seconds")

        loop = asyncio.get_running_loop()
        signals = (signal.SIGTERM, signal.SIGINT)
        for sig in signals:
            loop.add_signal_handler(sig, self.stop)

        await self.open()
        try:
            updated = await self.scheduler.run()
        finally:
            for sig in signals:
                loop.remove_signal_handler(sig)
            await self.close()

        if updated:
            logger.info("Update installed, exiting so the service manager restarts the agent")
        else:
            logger.info("Agent stopped")
        return 0


def run_agent(config: AgentConfig) -> int:
    """Run the agent and return its exit code."""
    agent = Agent(config)

    try:
        return asyncio.run(agent.start())
    except KeyboardInterrupt:
        return 0

