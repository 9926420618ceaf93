"""
TopDash Agent Test Fixtures
===========================

Shared fixtures: a fake control server, agent config, a fake executable
and a canned system collector.
"""

import hashlib
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

import aiohttp
import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from topdash_agent.collectors import SystemCollector, SystemSnapshot
from topdash_agent.config import AgentConfig
from topdash_agent.errors import CollectionError

OLD_BINARY = b"#!/bin/sh\necho topdash-agent 1.1.0\n"
NEW_BINARY = b"#!/bin/sh\necho topdash-agent 1.2.0\n" + bytes(range(256)) * 16


# ============================================
# CONTROL SERVER
# ============================================

@dataclass
class RecordedRequest:
    """A request seen by the fake control server."""
    method: str
    path: str
    headers: Mapping[str, str]
    body: str


class ControlServer:
    """In-process stand-in for the TopDash API."""

    def __init__(self):
        self.metrics_status = 200
        self.update_status = 200
        self.update_body: Optional[str] = None
        self.update_info = {
            "update_available": False,
            "latest_version": "1.1.0",
            "download_url": None,
            "checksum": None,
        }
        self.binary = b""
        self.download_status = 200
        self.requests: list[RecordedRequest] = []

        self.app = web.Application()
        self.app.router.add_post("/api/v1/metrics", self._metrics)
        self.app.router.add_get("/api/v1/agent/update-check", self._update_check)
        self.app.router.add_get("/bin", self._download)
        self.app.router.add_get("/site", self._site)
        self.server = TestServer(self.app)

    async def start(self):
        await self.server.start_server()

    async def close(self):
        await self.server.close()

    @property
    def url(self) -> str:
        return str(self.server.make_url("")).rstrip("/")

    def offer_update(self, payload: bytes, checksum: Optional[str] = None, version: str = "1.2.0"):
        """Offer `payload` as the next agent build."""
        self.binary = payload
        self.update_info = {
            "update_available": True,
            "latest_version": version,
            "download_url": f"{self.url}/bin",
            "checksum": hashlib.sha256(payload).hexdigest() if checksum is None else checksum,
        }

    def requests_to(self, path: str) -> list[RecordedRequest]:
        return [r for r in self.requests if r.path == path]

    async def _record(self, request: web.Request):
        body = await request.text()
        self.requests.append(
            RecordedRequest(request.method, request.path, request.headers.copy(), body)
        )

    async def _metrics(self, request: web.Request) -> web.Response:
        await self._record(request)
        return web.json_response({"message": "ok"}, status=self.metrics_status)

    async def _update_check(self, request: web.Request) -> web.Response:
        await self._record(request)
        if self.update_body is not None:
            return web.Response(text=self.update_body, status=self.update_status)
        return web.json_response(self.update_info, status=self.update_status)

    async def _download(self, request: web.Request) -> web.Response:
        await self._record(request)
        if self.download_status != 200:
            return web.Response(status=self.download_status)
        return web.Response(body=self.binary, content_type="application/octet-stream")

    async def _site(self, request: web.Request) -> web.Response:
        await self._record(request)
        return web.Response(status=204)


@pytest.fixture
async def control_server():
    """Running fake control server."""
    server = ControlServer()
    await server.start()
    yield server
    await server.close()


@pytest.fixture
async def session():
    """HTTP session closed after the test."""
    async with aiohttp.ClientSession() as s:
        yield s


# ============================================
# AGENT
# ============================================

@pytest.fixture
def executable(tmp_path) -> Path:
    """A fake agent executable on disk."""
    path = tmp_path / "topdash-agent"
    path.write_bytes(OLD_BINARY)
    os.chmod(path, 0o755)
    return path


@pytest.fixture
def make_config(executable):
    """Build an AgentConfig for tests, overriding any field."""
    def _make(**overrides) -> AgentConfig:
        values = {
            "server_id": "srv-42",
            "api_token": "agent-token",
            "api_url": "http://127.0.0.1:1",
            "report_interval": 5,
            "site_url": "",
            "server_name": "web-01",
            "executable_path": executable,
        }
        values.update(overrides)
        return AgentConfig(_env_file=None, **values)
    return _make


@pytest.fixture
def config(make_config, control_server) -> AgentConfig:
    """Config pointing at the running control server."""
    return make_config(api_url=control_server.url)


class FakeCollector(SystemCollector):
    """System collector returning a fixed snapshot or raising."""

    def __init__(self, snapshot: Optional[SystemSnapshot] = None, error: Optional[Exception] = None):
        super().__init__()
        self.snapshot = snapshot or SystemSnapshot(
            cpu_usage=12.5,
            memory_usage=40.0,
            disk_usage=63.2,
            network_in=1024.0,
            network_out=2048.0,
            os_version="Ubuntu 22.04.4 LTS",
        )
        self.error = error
        self.calls = 0

    async def collect(self) -> SystemSnapshot:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.snapshot


@pytest.fixture
def fake_collector() -> FakeCollector:
    return FakeCollector()


@pytest.fixture
def failing_collector() -> FakeCollector:
    return FakeCollector(error=CollectionError("CPU usage", "no /proc"))


@pytest.fixture
def old_binary() -> bytes:
    return OLD_BINARY


@pytest.fixture
def new_binary() -> bytes:
    return NEW_BINARY
