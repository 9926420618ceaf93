"""
Self Updater.

Replaces the agent's own executable with a verified build offered by the
control server.

The executable on disk is the one piece of durable state the agent mutates,
so every attempt walks an explicit state machine:

    IDLE -> DOWNLOADING -> VERIFYING -> BACKING_UP -> WRITING
         -> (CLEANUP -> SUCCESS) | (ROLLING_BACK -> FAILED)

Nothing on disk is touched until the download is complete and its digest
matches. From BACKING_UP until CLEANUP a `<path>.bak` copy exists and is the
recovery path. New bytes go to a sibling temp file and are moved over the
canonical path with `os.replace`, so the path always holds a whole binary.
The backup/write/rollback section runs under an exclusive `flock` on
`<path>.lock`, so two agents sharing one executable cannot interleave.
"""

import asyncio
import fcntl
import hashlib
import logging
import os
import shutil
import sys
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterator, Optional

import aiohttp

from .errors import (
    BackupError,
    ChecksumMismatchError,
    DownloadError,
    RollbackError,
    UpdateError,
    UpdateInProgressError,
    WriteError,
)
from .update_checker import UpdateDescriptor

logger = logging.getLogger(__name__)

EXECUTABLE_MODE = 0o755
DOWNLOAD_CHUNK_SIZE = 8192


class UpdateState(Enum):
    """States of a single update attempt."""
    IDLE = "idle"
    DOWNLOADING = "downloading"
    VERIFYING = "verifying"
    BACKING_UP = "backing_up"
    WRITING = "writing"
    ROLLING_BACK = "rolling_back"
    CLEANUP = "cleanup"
    SUCCESS = "success"
    FAILED = "failed"


@dataclass
class UpdateOutcome:
    """Result of an update attempt."""
    success: bool
    state: UpdateState
    version: str = ""
    error: Optional[UpdateError] = None


def resolve_executable_path() -> Optional[Path]:
    """
    Path of the executable the current process was started from.

    Returns None when running from Python source (`python -m`, a `.py`
    script): there is no binary to replace, only package files.
    """
    if getattr(sys, "frozen", False):
        return Path(sys.executable).resolve()

    path = Path(sys.argv[0]).resolve()
    if path.suffix == ".py":
        return None
    return path


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


class Updater:
    """
    Downloads, verifies and installs a new agent executable.

    `apply` never raises for update failures; it returns an UpdateOutcome
    whose `state` is SUCCESS or FAILED. A successful outcome means the new
    binary is in place and the process should exit so its supervisor can
    restart it.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        executable_path: Optional[Path] = None,
        download_timeout: int = 300,
    ):
        self.session = session
        self._executable_path = Path(executable_path) if executable_path else None
        self.download_timeout = download_timeout
        self.state = UpdateState.IDLE

    @property
    def executable_path(self) -> Optional[Path]:
        if self._executable_path is None:
            return resolve_executable_path()
        return self._executable_path

    @staticmethod
    def backup_path_for(path: Path) -> Path:
        return path.with_name(path.name + ".bak")

    @staticmethod
    def lock_path_for(path: Path) -> Path:
        return path.with_name(path.name + ".lock")

    def _transition(self, state: UpdateState) -> None:
        logger.debug(f"Updater: {self.state.value} -> {state.value}")
        self.state = state

    async def apply(self, descriptor: UpdateDescriptor) -> UpdateOutcome:
        """Run one update attempt for the offered build."""
        self.state = UpdateState.IDLE
        version = descriptor.latest_version

        try:
            data = await self._download(descriptor.download_url)
            self._verify(data, descriptor.checksum)
            self._install(data)
        except RollbackError as e:
            self._transition(UpdateState.FAILED)
            logger.critical(
                f"CRITICAL: Failed to restore from backup, executable at "
                f"{self.executable_path} may be corrupt and the agent may not restart: {e}"
            )
            return UpdateOutcome(success=False, state=self.state, version=version, error=e)
        except ChecksumMismatchError as e:
            self._transition(UpdateState.FAILED)
            logger.error(
                f"SECURITY: downloaded update {version} failed integrity check, "
                f"discarding it: {e}"
            )
            return UpdateOutcome(success=False, state=self.state, version=version, error=e)
        except UpdateError as e:
            failed_in = e.state
            self._transition(UpdateState.FAILED)
            logger.error(f"Update failed during {failed_in}: {e}")
            return UpdateOutcome(success=False, state=self.state, version=version, error=e)

        self._transition(UpdateState.SUCCESS)
        logger.info(f"Update to {version} completed successfully")
        return UpdateOutcome(success=True, state=self.state, version=version)

    async def _download(self, url: str) -> bytes:
        self._transition(UpdateState.DOWNLOADING)
        state = self.state.value

        if not url:
            raise DownloadError("no download URL offered", state=state)

        logger.info(f"Downloading update from: {url}")
        try:
            async with self.session.get(
                url,
                timeout=aiohttp.ClientTimeout(total=self.download_timeout),
            ) as response:
                if response.status != 200:
                    raise DownloadError(
                        f"download failed with status: {response.status}", state=state
                    )
                data = bytearray()
                async for chunk in response.content.iter_chunked(DOWNLOAD_CHUNK_SIZE):
                    data.extend(chunk)
                return bytes(data)
        except asyncio.TimeoutError as e:
            raise DownloadError("download timed out", state=state) from e
        except aiohttp.ClientError as e:
            raise DownloadError(f"download failed: {e}", state=state) from e

    def _verify(self, data: bytes, expected: str) -> None:
        self._transition(UpdateState.VERIFYING)

        if not expected:
            logger.warning("No checksum offered for update, skipping verification")
            return

        actual = sha256_hex(data)
        if actual != expected.strip().lower():
            raise ChecksumMismatchError(expected, actual, state=self.state.value)

    def _install(self, data: bytes) -> None:
        self._transition(UpdateState.BACKING_UP)
        exe_path = self.executable_path
        if exe_path is None:
            raise BackupError(
                "failed to get executable path: agent is running from Python source, "
                "set EXECUTABLE_PATH to the binary to update",
                state=self.state.value,
            )
        with self._update_lock(exe_path):
            backup_path = self._backup(exe_path)
            self._write(exe_path, backup_path, data)
            self._cleanup(backup_path)

    @contextmanager
    def _update_lock(self, exe_path: Path) -> Iterator[None]:
        """Exclusive, non-blocking lock on `<path>.lock` for the install steps."""
        lock_path = self.lock_path_for(exe_path)
        try:
            fd = os.open(lock_path, os.O_RDWR | os.O_CREAT, 0o644)
        except OSError as e:
            raise BackupError(
                f"failed to open update lock {lock_path}: {e}", state=self.state.value
            ) from e

        try:
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            except BlockingIOError as e:
                raise UpdateInProgressError(
                    f"another update holds {lock_path}", state=self.state.value
                ) from e
            try:
                yield
            finally:
                fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)

    def _backup(self, exe_path: Path) -> Path:
        backup_path = self.backup_path_for(exe_path)

        if not exe_path.is_file():
            raise BackupError(
                f"failed to get executable path: {exe_path} is not a file",
                state=self.state.value,
            )

        try:
            # copy2 keeps the permission bits
            shutil.copy2(exe_path, backup_path)
        except OSError as e:
            _remove_quietly(backup_path)
            raise BackupError(f"failed to create backup: {e}", state=self.state.value) from e

        return backup_path

    def _write(self, exe_path: Path, backup_path: Path, data: bytes) -> None:
        self._transition(UpdateState.WRITING)
        staging_path = exe_path.with_name(exe_path.name + ".new")

        try:
            with open(staging_path, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(staging_path, EXECUTABLE_MODE)
            os.replace(staging_path, exe_path)
        except OSError as e:
            _remove_quietly(staging_path)
            self._rollback(exe_path, backup_path)
            raise WriteError(
                f"failed to write new binary: {e}; restored previous binary from backup",
                state=UpdateState.WRITING.value,
            ) from e

    def _rollback(self, exe_path: Path, backup_path: Path) -> None:
        self._transition(UpdateState.ROLLING_BACK)
        logger.warning(f"Restoring {exe_path} from {backup_path}")
        restore_path = exe_path.with_name(exe_path.name + ".rollback")

        try:
            shutil.copy2(backup_path, restore_path)
            os.replace(restore_path, exe_path)
        except OSError as e:
            _remove_quietly(restore_path)
            raise RollbackError(
                f"failed to restore {exe_path} from {backup_path}: {e}",
                state=self.state.value,
            ) from e

        _remove_quietly(backup_path)

    def _cleanup(self, backup_path: Path) -> None:
        self._transition(UpdateState.CLEANUP)
        try:
            os.remove(backup_path)
        except OSError as e:
            logger.warning(f"Failed to remove backup {backup_path}: {e}")


def _remove_quietly(path: Path) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"Failed to remove {path}: {e}")
