"""
ovas/data/messaging.py

Purpose:
    The publish/subscribe channel between the scanner and its director,
    carried over Redis pub/sub, plus the one request/reply exchange the core
    needs: fetching a scan's configuration.

Semantics:
    - MessageBus.subscribe() must succeed before a request is published, so
      the reply cannot be missed.
    - retrieve() blocks until a message arrives on a subscribed topic, or
      until ``timeout`` seconds when one is given.
    - Every transport failure surfaces as TransportUnavailable.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Optional, Tuple

import redis

from ovas.errors import TransportUnavailable
from .messages import GetScanRequest, director_topic, info_topic

logger = logging.getLogger(__name__)


class MessageBus:
    """Blocking publish/subscribe client on top of a Redis connection."""

    def __init__(self, client: "redis.Redis"):
        self._client = client
        self._pubsub = None

    @classmethod
    def from_uri(cls, server_uri: str, connect_timeout: float = 5.0) -> "MessageBus":
        """
        Connect to the broker and check that it answers.

        mqtt:// and tcp:// addresses from older configurations are mapped to
        redis:// on the same host and port.
        """
        uri = server_uri
        for legacy in ("mqtt://", "tcp://"):
            if uri.startswith(legacy):
                uri = "redis://" + uri[len(legacy):]
        if "://" not in uri:
            uri = f"redis://{uri}"
        try:
            client = redis.Redis.from_url(
                uri, decode_responses=True, socket_connect_timeout=connect_timeout
            )
            client.ping()
        except (redis.RedisError, ValueError) as exc:
            raise TransportUnavailable(
                f"cannot reach message broker {server_uri}: {exc}",
                details={"server_uri": server_uri},
            ) from exc
        return cls(client)

    def subscribe(self, topic: str) -> None:
        try:
            if self._pubsub is None:
                self._pubsub = self._client.pubsub(ignore_subscribe_messages=True)
            self._pubsub.subscribe(topic)
        except redis.RedisError as exc:
            raise TransportUnavailable(
                f"subscription to {topic} failed: {exc}", details={"topic": topic}
            ) from exc
        logger.info(f"Successfully subscribed to {topic}")

    def publish(self, topic: str, payload: str) -> None:
        try:
            self._client.publish(topic, payload)
        except redis.RedisError as exc:
            raise TransportUnavailable(
                f"publish to {topic} failed: {exc}", details={"topic": topic}
            ) from exc

    def retrieve(self, timeout: Optional[float] = None) -> Tuple[str, str]:
        """Block for the next message; returns (topic, payload)."""
        if self._pubsub is None:
            raise TransportUnavailable("retrieve() called without a subscription")

        deadline = None if timeout is None else time.monotonic() + timeout
        try:
            while True:
                if deadline is None:
                    wait = 1.0
                else:
                    wait = deadline - time.monotonic()
                    if wait <= 0:
                        raise TransportUnavailable(
                            f"no message received within {timeout}s",
                            details={"timeout": timeout},
                        )
                message = self._pubsub.get_message(timeout=wait)
                if message is None or message.get("type") != "message":
                    continue
                return _text(message["channel"]), _text(message["data"])
        except redis.RedisError as exc:
            raise TransportUnavailable(f"receive failed: {exc}") from exc

    def close(self) -> None:
        if self._pubsub is not None:
            try:
                self._pubsub.close()
            except redis.RedisError as exc:
                logger.debug(f"Closing subscription failed: {exc}")
            self._pubsub = None


def _text(value) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", "replace")
    return str(value)


class ScanConfigFetcher:
    """One synchronous get.scan round trip over a MessageBus."""

    def __init__(self, bus: Optional[MessageBus], context: str = "eulabeia",
                 timeout: Optional[float] = None):
        self.bus = bus
        self.context = context
        self.timeout = timeout

    def fetch(self, scan_id: str) -> str:
        """
        Ask the director for the configuration of ``scan_id`` and return the
        raw reply document.

        Replies that parse as JSON objects and name a different scan ``id``
        belong to someone else and are skipped. Anything unparsable is
        returned unchanged; judging it is the ingestion step's job.
        """
        if self.bus is None:
            raise TransportUnavailable(
                "messaging transport is not initialised", details={"scan_id": scan_id}
            )

        self.bus.subscribe(info_topic(self.context))

        request = GetScanRequest(id=scan_id)
        logger.debug(f"Requesting configuration for scan {scan_id} (message {request.message_id})")
        self.bus.publish(director_topic(self.context), request.model_dump_json())

        while True:
            topic, payload = self.bus.retrieve(self.timeout)
            reply_id = _reply_scan_id(payload)
            if reply_id is not None and reply_id != scan_id:
                logger.debug(f"Ignoring reply on {topic} for scan {reply_id}")
                continue
            return payload


def _reply_scan_id(payload: str) -> Optional[str]:
    try:
        doc = json.loads(payload)
    except ValueError:
        return None
    if isinstance(doc, dict) and isinstance(doc.get("id"), str):
        return doc["id"]
    return None
