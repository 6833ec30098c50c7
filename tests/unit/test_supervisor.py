"""Unit tests for process-group supervision."""
import os
import signal
import sys
import time
import unittest
from unittest.mock import patch

from ovas.engine.supervisor import STOP_SIGNAL, ProcessSupervisor, signal_group
from ovas.errors import ProcessGroupError


class TestSignalGroup(unittest.TestCase):

    @patch("ovas.engine.supervisor.os.killpg")
    @patch("ovas.engine.supervisor.psutil.pid_exists", return_value=True)
    def test_refuses_non_positive_ids(self, mock_exists, mock_killpg):
        for pgid in (0, -1, -4242, True, "4242", None):
            self.assertFalse(signal_group(pgid))
        mock_killpg.assert_not_called()

    @patch("ovas.engine.supervisor.os.killpg")
    @patch("ovas.engine.supervisor.psutil.pid_exists", return_value=False)
    def test_dead_leader_is_not_signaled(self, mock_exists, mock_killpg):
        self.assertFalse(signal_group(4242))
        mock_exists.assert_called_once_with(4242)
        mock_killpg.assert_not_called()

    @patch("ovas.engine.supervisor.os.killpg")
    @patch("ovas.engine.supervisor.psutil.pid_exists", return_value=True)
    def test_live_leader_gets_stop_signal(self, mock_exists, mock_killpg):
        self.assertTrue(signal_group(4242))
        mock_killpg.assert_called_once_with(4242, signal.SIGUSR1)

    @patch("ovas.engine.supervisor.os.killpg", side_effect=ProcessLookupError())
    @patch("ovas.engine.supervisor.psutil.pid_exists", return_value=True)
    def test_vanished_group(self, mock_exists, mock_killpg):
        self.assertFalse(signal_group(4242))


class TestGroupLeadership(unittest.TestCase):

    @patch("ovas.engine.supervisor.os.getpid", return_value=100)
    @patch("ovas.engine.supervisor.os.getpgrp", return_value=100)
    @patch("ovas.engine.supervisor.os.setpgid")
    def test_becomes_leader(self, mock_setpgid, mock_getpgrp, mock_getpid):
        self.assertEqual(ProcessSupervisor().become_group_leader(), 100)
        mock_setpgid.assert_called_once_with(0, 0)

    @patch("ovas.engine.supervisor.os.getpid", return_value=100)
    @patch("ovas.engine.supervisor.os.getpgrp", return_value=99)
    @patch("ovas.engine.supervisor.os.setpgid", side_effect=PermissionError(1, "Operation not permitted"))
    def test_leadership_verified(self, mock_setpgid, mock_getpgrp, mock_getpid):
        with self.assertRaises(ProcessGroupError):
            ProcessSupervisor().become_group_leader()


class TestAttackProcess(unittest.TestCase):

    def test_exit_code_is_collected(self):
        supervisor = ProcessSupervisor(poll_interval=0.01)
        pid = supervisor.launch(lambda: 3)
        self.assertEqual(supervisor.wait(pid), 3)

    def test_failing_target_exits_non_zero(self):
        supervisor = ProcessSupervisor(poll_interval=0.01)

        def boom():
            raise RuntimeError("scheduler crashed")

        pid = supervisor.launch(boom)
        self.assertEqual(supervisor.wait(pid), 1)

    def test_recorded_signal_stops_child(self):
        supervisor = ProcessSupervisor(poll_interval=0.01, stop_grace_seconds=5)
        pid = supervisor.launch(lambda: time.sleep(30))
        supervisor.request_stop()
        self.assertEqual(supervisor.wait(pid), -signal.SIGTERM)

    def test_stubborn_child_is_killed(self):
        supervisor = ProcessSupervisor(poll_interval=0.01, stop_grace_seconds=0.1)

        def stubborn():
            signal.signal(signal.SIGTERM, signal.SIG_IGN)
            time.sleep(30)

        pid = supervisor.launch(stubborn)
        time.sleep(0.2)
        supervisor.request_stop()
        self.assertEqual(supervisor.wait(pid), -signal.SIGKILL)

    def test_sys_exit_code_is_kept(self):
        supervisor = ProcessSupervisor(poll_interval=0.01)
        self.assertEqual(supervisor.wait(supervisor.launch(lambda: sys.exit(0))), 0)
        self.assertEqual(supervisor.wait(supervisor.launch(lambda: sys.exit(4))), 4)
        self.assertEqual(supervisor.wait(supervisor.launch(lambda: sys.exit())), 0)
        self.assertEqual(supervisor.wait(supervisor.launch(lambda: sys.exit("fatal"))), 1)

    def test_status_reaped_during_wait_is_returned(self):
        supervisor = ProcessSupervisor(poll_interval=0.01)

        def reaped_by_handler(pid):
            # SIGCHLD lands between the status check and the liveness check
            supervisor._exited[pid] = 5
            return False

        with patch.object(supervisor, "reap"), \
                patch("ovas.engine.supervisor.psutil.pid_exists", side_effect=reaped_by_handler):
            self.assertEqual(supervisor.wait(4242), 5)
        self.assertNotIn(4242, supervisor._exited)

    def test_handlers_record_and_restore(self):
        supervisor = ProcessSupervisor()
        previous = signal.getsignal(STOP_SIGNAL)
        supervisor.install_signal_handlers()
        try:
            os.kill(os.getpid(), STOP_SIGNAL)
            time.sleep(0.05)
            self.assertEqual(supervisor.termination_signal, STOP_SIGNAL)
        finally:
            supervisor.restore_signal_handlers()
        self.assertEqual(signal.getsignal(STOP_SIGNAL), previous)


if __name__ == "__main__":
    unittest.main()
