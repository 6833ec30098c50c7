from .builtins import BUILTINS, ScriptBuiltins
from .file_access import FileIdentity, SecureFileAccessor
from .subprocess_exec import CommandDescriptor, CommandResult, SubprocessExecutor, find_in_path

__all__ = [
    "BUILTINS",
    "ScriptBuiltins",
    "FileIdentity",
    "SecureFileAccessor",
    "CommandDescriptor",
    "CommandResult",
    "SubprocessExecutor",
    "find_in_path",
]
