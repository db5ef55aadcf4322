"""Pytest configuration for shared fixtures."""

from __future__ import annotations

from collections import deque
from pathlib import Path
from typing import Any, Deque, Dict, List, Optional

import pytest
import redis

from scrape_config_sidecar.config import SidecarSettings
from scrape_config_sidecar.process import ProcessControlError


@pytest.fixture
def anyio_backend():
    return "asyncio"


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeProcessController:
    """Records reload requests instead of signalling a real process."""

    def __init__(self, pid: Optional[int] = 4242) -> None:
        self.pid = pid
        self.reloads: List[int] = []
        self.fail_reload = False

    def current_pid(self) -> int:
        if self.pid is None:
            raise ProcessControlError("pid file missing")
        return self.pid

    def reload(self, pid: int) -> None:
        if self.fail_reload:
            raise ProcessControlError(f"no such process {pid}")
        self.reloads.append(pid)


class FakePubSub:
    def __init__(self, server: "FakeBusServer") -> None:
        self.server = server
        self.channels: List[str] = []
        self.closed = False

    def subscribe(self, *channels: str) -> None:
        self.server.check()
        self.channels.extend(channels)

    def get_message(self, timeout: float = 0.0) -> Optional[Dict[str, Any]]:
        self.server.check()
        if not self.server.messages:
            return None
        channel, data = self.server.messages.popleft()
        if channel not in self.channels:
            return None
        return {"type": "message", "channel": channel.encode(), "data": data, "pattern": None}

    def close(self) -> None:
        self.closed = True


class FakeBusServer:
    """A single bus endpoint shared by every client connecting to it."""

    def __init__(self, host: str) -> None:
        self.host = host
        self.up = True
        self.messages: Deque[tuple] = deque()

    def check(self) -> None:
        if not self.up:
            raise redis.ConnectionError(f"Error connecting to {self.host}:6379. Connection refused.")

    def publish(self, channel: str, data: Any) -> None:
        self.messages.append((channel, data))


class FakeRedisClient:
    def __init__(self, server: FakeBusServer) -> None:
        self.server = server
        self.closed = False

    def ping(self) -> bool:
        self.server.check()
        return True

    def pubsub(self, ignore_subscribe_messages: bool = False) -> FakePubSub:
        return FakePubSub(self.server)

    def close(self) -> None:
        self.closed = True


class FakeBus:
    """Client factory over a set of fake endpoints."""

    def __init__(self, *hosts: str) -> None:
        self.servers = {host: FakeBusServer(host) for host in hosts}
        self.connections: List[str] = []

    def __call__(self, host: str) -> FakeRedisClient:
        self.connections.append(host)
        return FakeRedisClient(self.servers[host])


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(start=1000.0)


@pytest.fixture
def controller() -> FakeProcessController:
    return FakeProcessController()


@pytest.fixture
def bus() -> FakeBus:
    return FakeBus("bus-a", "bus-b")


@pytest.fixture
def settings(tmp_path: Path) -> SidecarSettings:
    return SidecarSettings(
        app_dir=str(tmp_path),
        bus_hosts="bus-a\nbus-b",
        instance_ip="10.0.0.9",
    )
