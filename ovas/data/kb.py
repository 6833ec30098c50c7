"""
ovas/data/kb.py

Purpose:
    The shared knowledge base: a Redis-backed associative store that every
    process of a scan, and the separate stop invocation, can reach. It is
    the only inter-process coordination substrate of the core.

Semantics:
    - A KnowledgeBase may be scoped to a namespace; its keys are then stored
      as "<namespace>/<key>" so "internal/ovas_pid" inside the scan scope
      becomes "internal/<scan-id>/internal/ovas_pid".
    - get_int() returns -1 for a missing or non-integer key. Callers must
      treat any non-positive value as "absent".
    - KnowledgeBase.find() locates a scan's record by its marker key
      ("internal/<scan-id>") and returns None when there is none.
"""

from __future__ import annotations

import logging
from typing import Optional, Union

import redis

from ovas.errors import KnowledgeBaseError

logger = logging.getLogger(__name__)

# Value get_int() reports for a missing key
MISSING_INT = -1


def scan_namespace(scan_id: str) -> str:
    return f"internal/{scan_id}"


def connect(db_address: str, connect_timeout: float = 5.0) -> "redis.Redis":
    """
    Build a Redis client from a URL or a bare unix socket path.

    openvas.conf carries "db_address = /run/redis/redis.sock"; a redis://,
    rediss:// or unix:// URL is passed through to redis.from_url.
    """
    if "://" in db_address:
        return redis.Redis.from_url(
            db_address,
            decode_responses=True,
            socket_connect_timeout=connect_timeout,
        )
    return redis.Redis(
        unix_socket_path=db_address,
        decode_responses=True,
        socket_connect_timeout=connect_timeout,
    )


class KnowledgeBase:
    """Thin key/value view over a Redis client, optionally namespaced."""

    def __init__(self, client: "redis.Redis", namespace: str = ""):
        self._client = client
        self.namespace = namespace.rstrip("/")

    @classmethod
    def from_address(cls, db_address: str, connect_timeout: float = 5.0) -> "KnowledgeBase":
        return cls(connect(db_address, connect_timeout))

    @classmethod
    def find(cls, client: "redis.Redis", name: str) -> Optional["KnowledgeBase"]:
        """
        Return the KB scoped to ``name`` if its marker key exists, else None.
        """
        try:
            exists = client.exists(name)
        except redis.RedisError as exc:
            raise KnowledgeBaseError(
                f"kb_find({name}): {exc}", details={"name": name}
            ) from exc
        if not exists:
            return None
        return cls(client, namespace=name)

    @property
    def client(self) -> "redis.Redis":
        return self._client

    def key(self, key: str) -> str:
        return f"{self.namespace}/{key}" if self.namespace else key

    def scoped(self, namespace: str) -> "KnowledgeBase":
        return KnowledgeBase(self._client, self.key(namespace))

    def set_str(self, key: str, value: str) -> None:
        self._call("set", self.key(key), value)

    def set_int(self, key: str, value: int) -> None:
        self._call("set", self.key(key), int(value))

    def get_str(self, key: str) -> Optional[str]:
        value = self._call("get", self.key(key))
        if isinstance(value, bytes):
            value = value.decode("utf-8", "replace")
        return value

    def get_int(self, key: str) -> int:
        value = self.get_str(key)
        if value is None:
            return MISSING_INT
        try:
            return int(value)
        except ValueError:
            logger.warning(f"KB item {self.key(key)} is not an integer: {value!r}")
            return MISSING_INT

    def delete(self, key: str) -> None:
        self._call("delete", self.key(key))

    def delete_self(self) -> None:
        """Remove the namespace marker key itself."""
        if not self.namespace:
            return
        self._call("delete", self.namespace)

    def mark(self, value: Union[str, int]) -> None:
        """Write (or refresh) the namespace marker key."""
        if not self.namespace:
            raise KnowledgeBaseError("cannot mark the unscoped knowledge base")
        self._call("set", self.namespace, value)

    def _call(self, method: str, *args):
        try:
            return getattr(self._client, method)(*args)
        except redis.RedisError as exc:
            raise KnowledgeBaseError(
                f"kb {method} {args[0] if args else ''}: {exc}",
                details={"method": method},
            ) from exc
