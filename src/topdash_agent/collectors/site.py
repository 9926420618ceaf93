"""
External Site Probe.

Checks whether a configured website answers, reporting its HTTP status.
"""

import asyncio
import logging

import aiohttp

logger = logging.getLogger(__name__)

NO_STATUS = 0


class SiteProbe:
    """Reports the HTTP status code of an external site, or 0."""

    def __init__(self, session: aiohttp.ClientSession, timeout: int = 10):
        self.session = session
        self.timeout = timeout

    async def check(self, url: str) -> int:
        """
        Fetch `url` and return its status code.

        An empty URL means no site is configured and yields 0 without any
        request. An unreachable site also yields 0 and is logged.
        """
        if not url:
            return NO_STATUS

        try:
            async with self.session.get(
                url,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            ) as response:
                return response.status
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning(f"Site check failed: {e!r}")
            return NO_STATUS
