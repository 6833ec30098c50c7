"""
ovas/engine/supervisor.py

Purpose:
    OS process supervision for one scan: process-group leadership, the
    forked attack process, signal bookkeeping and child reaping. It also
    carries the only capability that signals a whole process group.

Semantics:
    - SIGINT, SIGTERM, SIGQUIT and the stop signal (SIGUSR1) are recorded,
      never acted on inside the handler. wait() turns a recorded signal into
      an orderly stop of the attack child (SIGTERM, then SIGKILL after the
      grace period).
    - SIGCHLD runs a non-blocking reaper so no zombie is left behind; exit
      statuses are kept until wait() collects them.
    - signal_group() refuses anything but a strictly positive pid of a live
      process; 0 and negative ids are never signaled.
"""

from __future__ import annotations

import logging
import os
import signal
import time
from typing import Any, Callable, Dict, Optional

import psutil

from ovas.errors import ProcessGroupError

logger = logging.getLogger(__name__)

STOP_SIGNAL = signal.SIGUSR1
TERMINATION_SIGNALS = (signal.SIGTERM, signal.SIGINT, signal.SIGQUIT)


def signal_group(pgid: int, sig: int = STOP_SIGNAL) -> bool:
    """
    Deliver ``sig`` to the process group led by ``pgid``.

    Returns True when the signal was sent.
    """
    if not isinstance(pgid, int) or isinstance(pgid, bool) or pgid <= 0:
        logger.warning(f"Refusing to signal process group {pgid!r}")
        return False
    if not psutil.pid_exists(pgid):
        logger.info(f"Process group leader {pgid} is gone, nothing to signal")
        return False
    try:
        os.killpg(pgid, sig)
    except ProcessLookupError:
        logger.info(f"Process group {pgid} vanished before it could be signaled")
        return False
    except PermissionError as exc:
        logger.error(f"Not allowed to signal process group {pgid}: {exc}")
        return False
    logger.info(f"Sent {signal.Signals(sig).name} to process group {pgid}")
    return True


class ProcessSupervisor:
    def __init__(self, poll_interval: float = 0.2, stop_grace_seconds: float = 10.0):
        self.poll_interval = poll_interval
        self.stop_grace_seconds = stop_grace_seconds
        self.termination_signal: Optional[int] = None
        self._exited: Dict[int, int] = {}
        self._previous: Dict[int, Any] = {}

    # ------------------------------------------------------------------
    # process group
    # ------------------------------------------------------------------

    def become_group_leader(self) -> int:
        """Make this process a group leader and return the group id."""
        try:
            os.setpgid(0, 0)
        except OSError as exc:
            # EPERM for a session leader, which already leads its group
            logger.debug(f"setpgid(0, 0): {exc}")
        pgid = os.getpgrp()
        if pgid != os.getpid():
            raise ProcessGroupError(
                f"process {os.getpid()} could not become a process group leader",
                details={"pgid": pgid, "pid": os.getpid()},
            )
        return pgid

    # ------------------------------------------------------------------
    # signals
    # ------------------------------------------------------------------

    def install_signal_handlers(self) -> None:
        for sig in TERMINATION_SIGNALS + (STOP_SIGNAL,):
            self._previous[sig] = signal.signal(sig, self._record_termination)
        self._previous[signal.SIGCHLD] = signal.signal(signal.SIGCHLD, self._on_child_exit)

    def restore_signal_handlers(self) -> None:
        for sig, handler in self._previous.items():
            signal.signal(sig, handler if handler is not None else signal.SIG_DFL)
        self._previous.clear()

    def _record_termination(self, signum: int, frame) -> None:
        self.termination_signal = signum

    def request_stop(self, sig: int = signal.SIGTERM) -> None:
        """Ask wait() to stop the attack process as if ``sig`` had arrived."""
        if self.termination_signal is None:
            self.termination_signal = sig

    def _on_child_exit(self, signum: int, frame) -> None:
        self.reap()

    def reap(self) -> None:
        """Collect every exited child without blocking."""
        while True:
            try:
                pid, status = os.waitpid(-1, os.WNOHANG)
            except ChildProcessError:
                return
            if pid == 0:
                return
            self._exited[pid] = os.waitstatus_to_exitcode(status)

    # ------------------------------------------------------------------
    # attack process
    # ------------------------------------------------------------------

    def launch(self, target: Callable[[], Optional[int]]) -> int:
        """Fork ``target`` into a child of this process group; returns its pid."""
        try:
            pid = os.fork()
        except OSError as exc:
            raise ProcessGroupError(f"fork failed: {exc}") from exc

        if pid != 0:
            logger.debug(f"Attack process {pid} started in group {os.getpgrp()}")
            return pid

        code = 1
        try:
            for sig in TERMINATION_SIGNALS + (STOP_SIGNAL, signal.SIGCHLD):
                signal.signal(sig, signal.SIG_DFL)
            code = int(target() or 0)
        except SystemExit as exc:
            # sys.exit() semantics: None is success, a message is failure
            if exc.code is None:
                code = 0
            elif isinstance(exc.code, int):
                code = exc.code
            else:
                logger.error(f"Attack process exited: {exc.code}")
                code = 1
        except Exception:
            logger.exception("Attack process failed")
        finally:
            logging.shutdown()
            os._exit(code)

    def wait(self, pid: int) -> int:
        """
        Wait for ``pid`` to exit and return its exit code.

        A recorded termination signal is forwarded to the child as SIGTERM,
        escalated to SIGKILL after the grace period.
        """
        forwarded_at: Optional[float] = None
        killed = False
        while True:
            self.reap()
            if pid in self._exited:
                return self._exited.pop(pid)
            if not psutil.pid_exists(pid):
                # SIGCHLD may have reaped it since the check above
                if pid in self._exited:
                    return self._exited.pop(pid)
                logger.warning(f"Attack process {pid} was reaped elsewhere")
                return -1

            if self.termination_signal is not None:
                now = time.monotonic()
                if forwarded_at is None:
                    name = signal.Signals(self.termination_signal).name
                    logger.info(f"Received {name}, stopping attack process {pid}")
                    self._signal_child(pid, signal.SIGTERM)
                    forwarded_at = now
                elif not killed and now - forwarded_at > self.stop_grace_seconds:
                    logger.warning(f"Attack process {pid} ignored SIGTERM, killing it")
                    self._signal_child(pid, signal.SIGKILL)
                    killed = True

            time.sleep(self.poll_interval)

    def _signal_child(self, pid: int, sig: int) -> None:
        try:
            os.kill(pid, sig)
        except ProcessLookupError:
            logger.debug(f"Attack process {pid} already gone")
