"""Script-facing privileged builtins.

Binds one SecureFileAccessor and one SubprocessExecutor to an interpreter
instance and exposes them under the names scripts call. Failures are logged
and returned as None so the script (and the scan) keeps running.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional, Sequence

from ovas.data.kb import KnowledgeBase
from ovas.errors import OvasError
from .file_access import SecureFileAccessor
from .subprocess_exec import SubprocessExecutor, find_in_path

logger = logging.getLogger(__name__)


class ScriptBuiltins:
    def __init__(self, kb: Optional[KnowledgeBase] = None, search_path: Optional[str] = None,
                 files: Optional[SecureFileAccessor] = None,
                 executor: Optional[SubprocessExecutor] = None):
        self.search_path = search_path
        self.files = files or SecureFileAccessor()
        self.executor = executor or SubprocessExecutor(kb=kb, search_path=search_path)

    def pread(self, cmd: Optional[str] = None, argv: Optional[Sequence[Any]] = None,
              cd: bool = False) -> Optional[bytes]:
        if not argv:
            logger.warning("pread() usage: cmd:..., argv:...")
            return None
        return self._guard(
            "pread", lambda: self.executor.run(argv, change_dir=cd, command=cmd)
        )

    def find_in_path(self, cmd: Optional[str] = None) -> Optional[bool]:
        if cmd is None:
            logger.warning("find_in_path() usage: cmd")
            return None
        return find_in_path(cmd, self.search_path)

    def fread(self, path: Optional[str] = None) -> Optional[bytes]:
        if path is None:
            logger.warning("fread: need one argument (file name)")
            return None
        return self._guard("fread", lambda: self.files.read(path))

    def fwrite(self, data: Any = None, file: Optional[str] = None) -> Optional[int]:
        if data is None or file is None:
            logger.warning("fwrite: need two arguments 'data' and 'file'")
            return None
        return self._guard("fwrite", lambda: self.files.write(file, data))

    def unlink(self, path: Optional[str] = None) -> Optional[bool]:
        if path is None:
            logger.warning("unlink: need one argument (file name)")
            return None
        return self._guard("unlink", lambda: self.files.unlink(path) or True)

    def file_stat(self, path: Optional[str] = None) -> Optional[int]:
        if path is None:
            logger.warning("file_stat: need one argument (file name)")
            return None
        return self.files.stat(path)

    def get_tmp_dir(self) -> Optional[str]:
        return self._guard("get_tmp_dir", self.files.get_tmp_dir)

    def call(self, name: str, *args: Any, **kwargs: Any) -> Any:
        try:
            method = BUILTINS[name]
        except KeyError:
            raise KeyError(f"unknown builtin: {name}") from None
        return getattr(self, method)(*args, **kwargs)

    def _guard(self, name: str, fn: Callable[[], Any]) -> Any:
        try:
            return fn()
        except OvasError as exc:
            logger.warning(f"{name}: {exc}")
            return None


# Script name -> ScriptBuiltins method
BUILTINS: Dict[str, str] = {
    "pread": "pread",
    "find_in_path": "find_in_path",
    "fread": "fread",
    "fwrite": "fwrite",
    "unlink": "unlink",
    "file_stat": "file_stat",
    "get_tmp_dir": "get_tmp_dir",
}
