"""
ovas/data/messages.py

Purpose:
    Wire envelopes and topic names of the scanner/director exchange.

Semantics:
    - Every request carries a fresh message id and group id, its creation
      time in epoch seconds and the scan id it is about.
    - Topics are "<context>/scan/info" (replies, subscribed) and
      "<context>/scan/cmd/director" (requests, published).
    - RESERVED_MEMBERS are envelope fields; ingestion never turns them into
      preferences.
"""

from __future__ import annotations

import time
import uuid
from typing import Literal

from pydantic import BaseModel, Field

# Members of a message envelope that never become preferences
RESERVED_MEMBERS = frozenset({"created", "message_type", "group_id", "message_id"})


def _new_id() -> str:
    return str(uuid.uuid4())


class GetScanRequest(BaseModel):
    """Request the director publishes the scan configuration for ``id``."""
    message_id: str = Field(default_factory=_new_id)
    group_id: str = Field(default_factory=_new_id)
    message_type: Literal["get.scan"] = "get.scan"
    created: int = Field(default_factory=lambda: int(time.time()))
    id: str = Field(..., min_length=1)


def info_topic(context: str) -> str:
    return f"{context}/scan/info"


def director_topic(context: str) -> str:
    return f"{context}/scan/cmd/director"
