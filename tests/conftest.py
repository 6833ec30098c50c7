"""Pytest configuration for ovasforge."""
import os
from collections import deque
from typing import Callable, Dict, List

import pytest
import redis

from ovas.base.config import set_config


def pytest_configure():
    # Keep tests away from the system-wide configuration file.
    os.environ.setdefault("OVAS_SYSCONF_DIR", "/nonexistent/ovas-tests")


class InMemoryPubSub:
    def __init__(self, server: "InMemoryRedis", ignore_subscribe_messages: bool = False):
        self._server = server
        self.channels: List[str] = []
        self.queue = deque()
        self.closed = False

    def subscribe(self, *channels: str) -> None:
        for channel in channels:
            self.channels.append(channel)
        self._server._subscribers.append(self)

    def get_message(self, timeout: float = 0.0):
        if self.queue:
            return self.queue.popleft()
        return None

    def close(self) -> None:
        self.closed = True
        if self in self._server._subscribers:
            self._server._subscribers.remove(self)


class InMemoryRedis:
    """The slice of redis.Redis the knowledge base and the message bus use."""

    def __init__(self):
        self.data: Dict[str, str] = {}
        self.published: List[tuple] = []
        self.on_publish: List[Callable[[str, str], None]] = []
        self._subscribers: List[InMemoryPubSub] = []
        self.fail = False

    def _check(self):
        if self.fail:
            raise redis.ConnectionError("connection refused")

    def ping(self) -> bool:
        self._check()
        return True

    def set(self, key, value):
        self._check()
        self.data[key] = str(value)
        return True

    def get(self, key):
        self._check()
        return self.data.get(key)

    def delete(self, *keys):
        self._check()
        return sum(1 for key in keys if self.data.pop(key, None) is not None)

    def exists(self, *keys):
        self._check()
        return sum(1 for key in keys if key in self.data)

    def publish(self, channel, message):
        self._check()
        self.published.append((channel, message))
        receivers = 0
        for sub in list(self._subscribers):
            if channel in sub.channels:
                sub.queue.append({"type": "message", "channel": channel, "data": message})
                receivers += 1
        for hook in list(self.on_publish):
            hook(channel, message)
        return receivers

    def pubsub(self, ignore_subscribe_messages: bool = False):
        self._check()
        return InMemoryPubSub(self, ignore_subscribe_messages)


@pytest.fixture
def fake_redis():
    return InMemoryRedis()


@pytest.fixture(autouse=True)
def reset_config():
    set_config(None)
    yield
    set_config(None)
