"""
Update Checker.

Asks the control server whether a newer agent build is available.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Optional

import aiohttp
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from .config import AgentConfig, AgentIdentity

logger = logging.getLogger(__name__)

UPDATE_CHECK_ENDPOINT = "/api/v1/agent/update-check"


class UpdateDescriptor(BaseModel):
    """
    What the control server offers. Lives for one update-check cycle.

    Types are strict: a flag sent as the string "false" or a numeric
    checksum is a malformed answer, not something to coerce.
    """

    model_config = ConfigDict(frozen=True, strict=True)

    update_available: bool = False
    latest_version: str = ""
    download_url: str = ""
    checksum: str = ""

    @field_validator("latest_version", "download_url", "checksum", mode="before")
    @classmethod
    def _null_as_empty(cls, value: Any) -> Any:
        # The server sends null for download_url/checksum when up to date
        return "" if value is None else value

    @classmethod
    def from_dict(cls, data: dict) -> "UpdateDescriptor":
        """Validate a decoded response body. Raises ValidationError."""
        return cls.model_validate(data)


@dataclass
class UpdateCheckResult:
    """Result of an update check."""
    success: bool
    descriptor: Optional[UpdateDescriptor] = None
    status_code: int = 0
    error: Optional[str] = None

    @property
    def update_available(self) -> bool:
        return bool(self.success and self.descriptor and self.descriptor.update_available)


class UpdateChecker:
    """Polls the control server for agent updates."""

    def __init__(
        self,
        identity: AgentIdentity,
        config: AgentConfig,
        session: aiohttp.ClientSession,
        timeout: int = 30,
    ):
        self.identity = identity
        self.config = config
        self.session = session
        self.timeout = timeout

    def _get_headers(self) -> dict:
        return {
            "X-Agent-Token": self.identity.api_token,
            "X-Server-ID": self.identity.server_id,
            "X-Agent-Version": self.identity.agent_version,
        }

    async def check(self) -> UpdateCheckResult:
        """
        Query the update-check endpoint.

        Any non-200 status, transport error or undecodable body is a failed
        check; it is reported, never raised.
        """
        url = f"{self.config.api_url}{UPDATE_CHECK_ENDPOINT}"

        try:
            async with self.session.get(
                url,
                headers=self._get_headers(),
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            ) as response:
                if response.status != 200:
                    return UpdateCheckResult(
                        success=False,
                        status_code=response.status,
                        error=f"update check failed with status: {response.status}",
                    )

                try:
                    data = await response.json(content_type=None)
                except ValueError as e:
                    return UpdateCheckResult(
                        success=False,
                        status_code=response.status,
                        error=f"failed to decode update info: {e}",
                    )

        except asyncio.TimeoutError:
            return UpdateCheckResult(success=False, error="update check timed out")
        except aiohttp.ClientError as e:
            return UpdateCheckResult(success=False, error=f"update check failed: {e}")

        if not isinstance(data, dict):
            return UpdateCheckResult(
                success=False,
                status_code=200,
                error="failed to decode update info: expected a JSON object",
            )

        try:
            descriptor = UpdateDescriptor.from_dict(data)
        except ValidationError as e:
            return UpdateCheckResult(
                success=False,
                status_code=200,
                error=f"failed to decode update info: {e}",
            )

        return UpdateCheckResult(success=True, descriptor=descriptor, status_code=200)
