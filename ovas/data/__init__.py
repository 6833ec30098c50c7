# ============================================================================
# ovas/data/__init__.py
# Shared State & Messaging
# ============================================================================
#
# MODULES IN THIS PACKAGE:
# - **kb.py**: Redis-backed knowledge base shared by every scan process
# - **messaging.py**: publish/subscribe channel and the get.scan round trip
# - **messages.py**: message envelopes and topic names
#
# ============================================================================
from .kb import KnowledgeBase, scan_namespace
from .messaging import MessageBus, ScanConfigFetcher

__all__ = ["KnowledgeBase", "scan_namespace", "MessageBus", "ScanConfigFetcher"]
