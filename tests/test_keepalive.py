"""Tests for the keep-alive scheduler."""

import threading
import unittest

from twinpane.scheduler import KeepAliveTask


class TestKeepAliveTask(unittest.TestCase):
    """Test cases for KeepAliveTask."""

    def test_runs_job_periodically(self):
        fired = threading.Event()
        task = KeepAliveTask(fired.set, interval_seconds=1, name="test", poll_seconds=0.05)
        task.start()
        try:
            self.assertTrue(task.is_running())
            self.assertTrue(fired.wait(5))
        finally:
            task.stop()
        self.assertFalse(task.is_running())

    def test_failing_job_does_not_stop_loop(self):
        calls = []
        second_call = threading.Event()

        def job():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("NOOP failed")
            second_call.set()

        task = KeepAliveTask(job, interval_seconds=1, name="flaky", poll_seconds=0.05)
        task.start()
        try:
            self.assertTrue(second_call.wait(6))
        finally:
            task.stop()

    def test_stop_is_effective_once(self):
        task = KeepAliveTask(lambda: None, interval_seconds=60, poll_seconds=0.05)
        task.start()
        task.stop()
        task.stop()
        self.assertFalse(task.is_running())

        # A stopped task cannot be restarted
        task.start()
        self.assertFalse(task.is_running())

    def test_rejects_non_positive_interval(self):
        with self.assertRaises(ValueError):
            KeepAliveTask(lambda: None, interval_seconds=0)


if __name__ == '__main__':
    unittest.main()
