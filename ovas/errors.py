"""Module errors: structured error taxonomy for the ovas execution core."""
#
# PURPOSE:
# Provides one error hierarchy for the scanner core with searchable error
# codes, typed exceptions, and a helper that turns raw OSErrors into
# structured ones.
#
# ERROR CODE FORMAT:
# - EXEC_XXX: External command execution errors
# - FILE_XXX: Privileged file access errors
# - CONFIG_XXX: Scan configuration / preference errors
# - IPC_XXX: Messaging transport errors
# - SCAN_XXX: Scan lifecycle errors
# - KB_XXX: Shared knowledge base errors
#
# PROPAGATION:
# - EXEC_* and FILE_* errors are local to one script call. The builtins layer
#   turns them into a failed (None) result and the scan keeps running.
# - CONFIG_*, IPC_*, KB_* and SCAN_PROCESS_GROUP raised on the start path are
#   fatal: the CLI logs them and exits non-zero.
# - SCAN_UNKNOWN is never fatal; the stop invocation resolves it to a no-op.
#
# USAGE:
#   from ovas.errors import ReentrancyViolation
#
#   raise ReentrancyViolation("pread is not reentrant", details={"pid": 4242})
#
import errno
import json
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(Enum):
    # Command execution
    EXEC_REENTRANT = "EXEC_001"
    EXEC_SPAWN_FAILED = "EXEC_002"
    EXEC_CHILD_IO = "EXEC_003"
    EXEC_PATH_RESOLUTION = "EXEC_004"

    # File access
    FILE_SYMLINK_ATTACK = "FILE_001"
    FILE_ACCESS_FAILED = "FILE_002"

    # Configuration
    CONFIG_MALFORMED = "CONFIG_001"

    # Messaging
    IPC_TRANSPORT_UNAVAILABLE = "IPC_001"

    # Lifecycle
    SCAN_UNKNOWN = "SCAN_001"
    SCAN_PROCESS_GROUP = "SCAN_002"

    # Knowledge base
    KB_UNAVAILABLE = "KB_001"


class OvasError(Exception):
    """
    Base exception for the scanner core with structured error information.

    Attributes:
        code: ErrorCode enum value (e.g. "EXEC_001")
        message: Human-readable error message
        details: Optional dictionary with additional context
    """

    default_code: ErrorCode = ErrorCode.FILE_ACCESS_FAILED

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        code: Optional[ErrorCode] = None,
    ):
        self.code = code or self.default_code
        self.message = message
        self.details = details or {}

        # Build exception message with code for easy grepping in logs
        super().__init__(f"[{self.code.value}] {message}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to a dictionary for JSON serialization."""
        return {
            "code": self.code.value,
            "kind": type(self).__name__,
            "message": self.message,
            "details": self.details,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)


class ReentrancyViolation(OvasError):
    """A second spawn was attempted while one is still outstanding."""
    default_code = ErrorCode.EXEC_REENTRANT


class SpawnFailure(OvasError):
    """The external command could not be launched."""
    default_code = ErrorCode.EXEC_SPAWN_FAILED


class ChildIOFailure(OvasError):
    """Reading the child's output pipe failed (other than EINTR)."""
    default_code = ErrorCode.EXEC_CHILD_IO


class PathResolutionFailure(OvasError):
    """Command not found on the search path, or the directory change failed."""
    default_code = ErrorCode.EXEC_PATH_RESOLUTION


class SymlinkAttackDetected(OvasError):
    """The object opened is not the one observed at check time."""
    default_code = ErrorCode.FILE_SYMLINK_ATTACK


class FileAccessError(OvasError):
    """Any other failure of a privileged file operation."""
    default_code = ErrorCode.FILE_ACCESS_FAILED


class MalformedConfiguration(OvasError):
    """The scan configuration message is not parseable or has no members."""
    default_code = ErrorCode.CONFIG_MALFORMED


class TransportUnavailable(OvasError):
    """Subscribe, publish or receive on the messaging channel failed."""
    default_code = ErrorCode.IPC_TRANSPORT_UNAVAILABLE


class ScanUnknown(OvasError):
    """No record for the scan identifier exists in the shared store."""
    default_code = ErrorCode.SCAN_UNKNOWN


class ProcessGroupError(OvasError):
    """The scan could not become, or launch into, its own process group."""
    default_code = ErrorCode.SCAN_PROCESS_GROUP


class KnowledgeBaseError(OvasError):
    """The shared knowledge base could not be reached."""
    default_code = ErrorCode.KB_UNAVAILABLE


FATAL_ERRORS = (
    MalformedConfiguration,
    TransportUnavailable,
    ProcessGroupError,
    KnowledgeBaseError,
)


# ============================================================================
# Convenience Functions
# ============================================================================

def wrap_os_error(
    error: OSError,
    context: str,
    path: Optional[str] = None,
    kind: type = FileAccessError,
) -> OvasError:
    """
    Convert an OSError into a structured error.

    ELOOP is what the kernel reports when O_NOFOLLOW refuses a symlink, so it
    always maps to SymlinkAttackDetected regardless of ``kind``.

    Args:
        error: The original OSError
        context: Short description of the failing step (e.g. "fread")
        path: Optional file name involved
        kind: OvasError subclass to build for every other errno

    Returns:
        An OvasError instance (not raised)
    """
    if error.errno == errno.ELOOP:
        kind = SymlinkAttackDetected

    target = f"{path}: " if path else ""
    return kind(
        f"{context}: {target}{error.strerror or error}",
        details={
            "errno": error.errno,
            "path": path,
            "original_type": type(error).__name__,
        },
    )


__all__ = [
    "ErrorCode",
    "OvasError",
    "ReentrancyViolation",
    "SpawnFailure",
    "ChildIOFailure",
    "PathResolutionFailure",
    "SymlinkAttackDetected",
    "FileAccessError",
    "MalformedConfiguration",
    "TransportUnavailable",
    "ScanUnknown",
    "ProcessGroupError",
    "KnowledgeBaseError",
    "FATAL_ERRORS",
    "wrap_os_error",
]
