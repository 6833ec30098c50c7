"""
ovas/toolkit/file_access.py

Purpose:
    File primitives scripts may call with attacker-influenced paths:
    read, write, stat, unlink and the temp directory lookup.

Semantics:
    - read/write follow snapshot -> open -> re-snapshot -> compare. The
      pre-open snapshot is a non-following stat of the path, the post-open
      snapshot a stat of the descriptor. Both must agree on
      (device, inode, mode) or the call fails before any byte moves.
    - A path that did not exist at check time is created with O_EXCL and
      O_NOFOLLOW by write(); read() refuses anything found there, so a file
      or symlink planted between the check and the open is never used.
    - read() ends with an fstat of the descriptor: a regular file must hold
      exactly the bytes read.
    - write() is all-or-nothing: a failed write removes the file.
    - stat() reports absence as None rather than raising.
"""

from __future__ import annotations

import errno
import logging
import os
import stat
import tempfile
from dataclasses import dataclass
from typing import Optional, Union

from ovas.errors import FileAccessError, SymlinkAttackDetected, wrap_os_error

logger = logging.getLogger(__name__)

O_NOFOLLOW = getattr(os, "O_NOFOLLOW", 0)
READ_CHUNK = 4096


@dataclass(frozen=True)
class FileIdentity:
    """What must not change between check and use."""
    device: int
    inode: int
    mode: int

    @classmethod
    def from_stat(cls, st: os.stat_result) -> "FileIdentity":
        return cls(device=st.st_dev, inode=st.st_ino, mode=st.st_mode)

    @classmethod
    def of_path(cls, path: str) -> "FileIdentity":
        return cls.from_stat(os.lstat(path))

    @classmethod
    def of_fd(cls, fd: int) -> "FileIdentity":
        return cls.from_stat(os.fstat(fd))


class SecureFileAccessor:
    """TOCTOU-resistant file operations for script builtins."""

    def read(self, path: str) -> bytes:
        expected, size_hint = self._precheck(path, "fread")
        fd = self._open_checked(path, os.O_RDONLY, expected, "fread")
        try:
            return self._read_all(fd, size_hint, path)
        finally:
            os.close(fd)

    def write(self, path: str, data: Union[bytes, bytearray, str]) -> int:
        if isinstance(data, str):
            data = data.encode("utf-8")
        payload = memoryview(bytes(data))

        expected, _ = self._precheck(path, "fwrite")
        fd = self._open_checked(path, os.O_WRONLY | os.O_CREAT, expected, "fwrite")
        try:
            os.ftruncate(fd, 0)
        except OSError as exc:
            os.close(fd)
            raise wrap_os_error(exc, "fwrite", path) from exc

        try:
            written = 0
            while written < len(payload):
                try:
                    n = os.write(fd, payload[written:])
                except InterruptedError:
                    continue
                if n <= 0:
                    raise OSError(errno.EIO, "short write")
                written += n
        except OSError as exc:
            os.close(fd)
            self._discard(path)
            raise wrap_os_error(exc, "fwrite", path) from exc

        try:
            os.close(fd)
        except OSError as exc:
            self._discard(path)
            raise wrap_os_error(exc, "fwrite", path) from exc
        return len(payload)

    def stat(self, path: str) -> Optional[int]:
        try:
            return os.lstat(path).st_size
        except OSError as exc:
            logger.debug(f"file_stat: {path}: {exc.strerror}")
            return None

    def unlink(self, path: str) -> None:
        try:
            os.unlink(path)
        except OSError as exc:
            raise wrap_os_error(exc, "unlink", path) from exc

    def get_tmp_dir(self) -> str:
        path = os.path.join(tempfile.gettempdir(), "")
        if not os.access(path, os.R_OK | os.W_OK | os.X_OK):
            raise FileAccessError(
                f"get_tmp_dir(): {path} not available", details={"path": path}
            )
        return path

    # ------------------------------------------------------------------
    # guard
    # ------------------------------------------------------------------

    def _precheck(self, path: str, op: str):
        """Returns (identity or None if absent, size hint)."""
        try:
            st = os.lstat(path)
        except FileNotFoundError:
            return None, 0
        except OSError as exc:
            raise wrap_os_error(exc, op, path) from exc
        return FileIdentity.from_stat(st), st.st_size

    def _open_checked(self, path: str, flags: int, expected: Optional[FileIdentity], op: str) -> int:
        if expected is None:
            # Absent at check time: anything there now was planted
            try:
                fd = os.open(path, flags | os.O_EXCL | O_NOFOLLOW, 0o600)
            except OSError as exc:
                raise wrap_os_error(exc, op, path) from exc
            if not flags & os.O_CREAT:
                # O_EXCL only guards creation; an open without it found a planted file
                os.close(fd)
                logger.warning(f"{op}: {path}: appeared between check and open")
                raise SymlinkAttackDetected(
                    f"{op}: {path}: possible symlink attack", details={"path": path}
                )
            return fd

        # Present at check time: never create, so a vanished file stays vanished
        try:
            fd = os.open(path, (flags & ~os.O_CREAT) | O_NOFOLLOW)
        except OSError as exc:
            if exc.errno == errno.ELOOP:
                raise SymlinkAttackDetected(
                    f"{op}: {path}: possible symlink attack", details={"path": path}
                ) from exc
            raise wrap_os_error(exc, op, path) from exc

        try:
            actual = FileIdentity.of_fd(fd)
        except OSError as exc:
            os.close(fd)
            raise SymlinkAttackDetected(
                f"{op}: {path}: possible symlink attack ({exc.strerror})",
                details={"path": path},
            ) from exc

        if actual != expected:
            os.close(fd)
            logger.warning(f"{op}: {path}: identity changed between check and open")
            raise SymlinkAttackDetected(
                f"{op}: {path}: possible symlink attack",
                details={"path": path, "expected": expected.__dict__, "actual": actual.__dict__},
            )
        return fd

    def _read_all(self, fd: int, size_hint: int, path: str) -> bytes:
        buf = bytearray()
        total = 0
        # size from the pre-check stat, then grow for files that grow meanwhile
        want = size_hint + 1
        while True:
            try:
                chunk = os.read(fd, max(want - total, READ_CHUNK))
            except InterruptedError:
                continue
            except OSError as exc:
                raise wrap_os_error(exc, "fread", path) from exc
            if not chunk:
                break
            buf += chunk
            total += len(chunk)
            if total >= want:
                want = total + READ_CHUNK
        try:
            st = os.fstat(fd)
        except OSError as exc:
            raise wrap_os_error(exc, "fread", path) from exc
        # Regular files must end where the descriptor says they end
        if stat.S_ISREG(st.st_mode) and st.st_size != total:
            raise FileAccessError(
                f"fread: {path}: read {total} bytes of {st.st_size}",
                details={"path": path, "read": total, "size": st.st_size},
            )
        return bytes(buf)

    def _discard(self, path: str) -> None:
        try:
            os.unlink(path)
        except OSError as exc:
            logger.warning(f"fwrite: could not remove partial file {path}: {exc.strerror}")
