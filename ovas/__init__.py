# ============================================================================
# ovas/__init__.py
# Scanner Execution & Control Core
# ============================================================================
#
# PURPOSE:
# Everything a single scan process needs below the scheduler: privileged
# script primitives (files, external commands), preference ingestion, and
# the start/stop lifecycle of the scan's process group.
#
# PACKAGE MAP:
# - base/: process configuration and the preference store
# - data/: shared knowledge base (Redis) and the messaging channel
# - toolkit/: script builtins (secure file access, external commands)
# - engine/: ingestion, process supervision, scan lifecycle
# - errors.py: the error taxonomy shared by all of the above
#
# ============================================================================

__version__ = "0.4.0"
