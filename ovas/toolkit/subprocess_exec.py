"""
ovas/toolkit/subprocess_exec.py

Purpose:
    Runs one external command on behalf of a script and hands back its
    standard output.

Semantics:
    - One command at a time per executor (one executor per interpreter
      instance). The ``_child_pid`` slot is 0 when idle; a call while it is
      set raises ReentrancyViolation and leaves the running call alone.
    - The child's pid is published as "internal/child/<our pid>" in the
      knowledge base as soon as it exists, so a supervisor can find and kill
      it if we die. The key is removed on every exit path.
    - change_dir runs the command from its own directory and restores the
      previous working directory once the output is drained, whatever
      happened while draining.
    - A pipe read error other than EINTR is logged and recorded on the
      result; the bytes read so far are kept.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
from dataclasses import dataclass
from typing import Any, Optional, Sequence, Tuple

from ovas.data.kb import KnowledgeBase
from ovas.errors import (
    ChildIOFailure,
    KnowledgeBaseError,
    PathResolutionFailure,
    ReentrancyViolation,
    SpawnFailure,
    wrap_os_error,
)

logger = logging.getLogger(__name__)

PIPE_CHUNK = 8192
IDLE = 0


def child_key(pid: Optional[int] = None) -> str:
    return f"internal/child/{os.getpid() if pid is None else pid}"


def find_in_path(name: str, search_path: Optional[str] = None) -> bool:
    """True when ``name`` resolves to an executable on the search path."""
    if not name:
        return False
    return shutil.which(name, path=search_path) is not None


@dataclass(frozen=True)
class CommandDescriptor:
    argv: Tuple[str, ...]
    change_dir: bool = False
    # Program to execute; argv[0] when not given
    command: Optional[str] = None

    @classmethod
    def build(cls, argv: Sequence[Any], change_dir: bool = False,
              command: Optional[str] = None) -> "CommandDescriptor":
        # Elements without a string form are dropped, like unset array slots
        args = tuple(str(item) for item in argv if item is not None)
        return cls(argv=args, change_dir=bool(change_dir), command=command)

    @property
    def program(self) -> str:
        if self.command:
            return self.command
        return self.argv[0] if self.argv else ""


@dataclass
class CommandResult:
    output: bytes
    returncode: Optional[int] = None
    io_error: Optional[ChildIOFailure] = None

    def __len__(self) -> int:
        return len(self.output)


class SubprocessExecutor:
    """Non-reentrant external command runner for one interpreter instance."""

    def __init__(self, kb: Optional[KnowledgeBase] = None, search_path: Optional[str] = None):
        self.kb = kb
        self.search_path = search_path
        self._child_pid = IDLE

    @property
    def busy(self) -> bool:
        return self._child_pid != IDLE

    @property
    def child_pid(self) -> int:
        return self._child_pid

    def run(self, argv: Sequence[Any], change_dir: bool = False,
            command: Optional[str] = None) -> bytes:
        return self.run_command(CommandDescriptor.build(argv, change_dir, command)).output

    def run_command(self, descriptor: CommandDescriptor) -> CommandResult:
        if self.busy:
            raise ReentrancyViolation(
                "pread is not reentrant", details={"running_pid": self._child_pid}
            )
        if not descriptor.argv:
            raise SpawnFailure("pread: empty argv")

        program = descriptor.program
        saved_cwd = None
        if descriptor.change_dir:
            program, saved_cwd = self._enter_command_dir(program)

        try:
            proc = self._spawn(descriptor.argv, program)
        except SpawnFailure:
            self._restore_cwd(saved_cwd)
            raise

        self._child_pid = proc.pid
        key = child_key()
        result = CommandResult(output=b"")
        try:
            try:
                self._register(key, proc.pid)
                result.output, result.io_error = self._drain(proc.stdout)
            finally:
                self._restore_cwd(saved_cwd)
        finally:
            try:
                if proc.stdout is not None:
                    proc.stdout.close()
                result.returncode = proc.wait()
            finally:
                self._child_pid = IDLE
                self._unregister(key)

        logger.debug(
            f"pread: {program} exited with {result.returncode}, {len(result.output)} bytes captured"
        )
        return result

    # ------------------------------------------------------------------

    def _enter_command_dir(self, program: str) -> Tuple[str, Optional[str]]:
        if os.path.isabs(program):
            resolved = program
        else:
            resolved = shutil.which(program, path=self.search_path)
            if resolved is None:
                raise PathResolutionFailure(
                    f"pread: '{program}' not found in $PATH", details={"command": program}
                )
            resolved = os.path.abspath(resolved)

        newdir = os.path.dirname(resolved) or "/"

        try:
            saved_cwd = os.getcwd()
        except OSError as exc:
            logger.warning(f"pread(): getcwd: {exc.strerror}")
            saved_cwd = None

        try:
            os.chdir(newdir)
        except OSError as exc:
            raise PathResolutionFailure(
                f"pread: could not chdir to {newdir}: {exc.strerror}",
                details={"directory": newdir},
            ) from exc
        return resolved, saved_cwd

    def _restore_cwd(self, saved_cwd: Optional[str]) -> None:
        if not saved_cwd:
            return
        try:
            os.chdir(saved_cwd)
        except OSError as exc:
            logger.error(f"pread(): chdir({saved_cwd}): {exc.strerror}")

    def _spawn(self, argv: Tuple[str, ...], program: str) -> subprocess.Popen:
        executable = program
        if self.search_path is not None and os.sep not in program:
            executable = shutil.which(program, path=self.search_path)
            if executable is None:
                raise SpawnFailure(
                    f"pread: '{program}' not found in search path", details={"command": program}
                )
        try:
            return subprocess.Popen(
                list(argv),
                executable=executable,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                close_fds=True,
            )
        except OSError as exc:
            raise wrap_os_error(exc, "pread", program, kind=SpawnFailure) from exc

    def _drain(self, stream) -> Tuple[bytes, Optional[ChildIOFailure]]:
        buf = bytearray()
        while True:
            try:
                chunk = stream.read(PIPE_CHUNK)
            except InterruptedError:
                continue
            except OSError as exc:
                error = wrap_os_error(exc, "pread: read", kind=ChildIOFailure)
                logger.error(str(error))
                return bytes(buf), error
            if not chunk:
                return bytes(buf), None
            buf += chunk

    def _register(self, key: str, pid: int) -> None:
        if self.kb is None:
            return
        try:
            self.kb.set_int(key, pid)
        except KnowledgeBaseError as exc:
            logger.error(f"pread: could not register child {pid}: {exc}")

    def _unregister(self, key: str) -> None:
        if self.kb is None:
            return
        try:
            self.kb.delete(key)
        except KnowledgeBaseError as exc:
            logger.error(f"pread: could not remove {key}: {exc}")
