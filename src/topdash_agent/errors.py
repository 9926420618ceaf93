"""
Agent Errors.

Exception hierarchy for configuration, metric collection and self-update
failures. Network failures in report and update-check cycles are not
raised; they come back as result objects.
"""

from typing import Optional


class AgentError(Exception):
    """Base class for all agent errors."""


class ConfigError(AgentError):
    """Configuration is missing or invalid. Fatal at startup."""


class CollectionError(AgentError):
    """A metric source failed; the report cycle must be abandoned."""

    def __init__(self, source: str, message: str):
        super().__init__(f"failed to get {source}: {message}")
        self.source = source


class UpdateError(AgentError):
    """
    Base class for self-update failures.

    `state` is the updater state the failure happened in, so callers can
    tell pre-write failures (nothing touched) from post-write ones.
    """

    def __init__(self, message: str, state: Optional[str] = None):
        super().__init__(message)
        self.state = state


class DownloadError(UpdateError):
    """Candidate binary could not be downloaded."""


class ChecksumMismatchError(UpdateError):
    """Downloaded bytes do not match the expected digest."""

    def __init__(self, expected: str, actual: str, state: Optional[str] = None):
        super().__init__(
            f"checksum mismatch: expected {expected}, got {actual}", state=state
        )
        self.expected = expected
        self.actual = actual


class UpdateInProgressError(UpdateError):
    """Another process holds the update lock for this executable."""


class BackupError(UpdateError):
    """Backup of the running executable could not be created."""


class WriteError(UpdateError):
    """New binary could not be written; the backup was restored."""


class RollbackError(UpdateError):
    """
    Restoring the backup failed after a failed write.

    The on-disk executable may be corrupt and the agent may not restart.
    """
