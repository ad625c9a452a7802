"""Tests for progress snapshots, throttling and cancellation."""

import unittest

from twinpane.fileops import CancellationToken, Progress, ThrottledProgress
from twinpane.vfs import TransferCancelledError


class TestProgress(unittest.TestCase):

    def test_percent(self):
        self.assertEqual(Progress("a", 0, 200).percent, 0)
        self.assertEqual(Progress("a", 50, 200).percent, 25)
        self.assertEqual(Progress("a", 200, 200).percent, 100)

    def test_empty_file_is_complete(self):
        progress = Progress("empty", 0, 0)
        self.assertEqual(progress.percent, 100)
        self.assertTrue(progress.finished)

    def test_percent_is_capped(self):
        # The file grew while being copied
        self.assertEqual(Progress("a", 300, 200).percent, 100)


class TestThrottledProgress(unittest.TestCase):
    """Test cases for ThrottledProgress."""

    def setUp(self):
        self.now = 0.0
        self.received = []
        self.throttle = ThrottledProgress(self.received.append, interval_ms=100, clock=lambda: self.now)

    def test_drops_updates_within_interval(self):
        self.throttle(Progress("a", 10, 100, 1, 1))
        self.now = 0.05
        self.throttle(Progress("a", 20, 100, 1, 1))
        self.now = 0.2
        self.throttle(Progress("a", 30, 100, 1, 1))

        self.assertEqual([p.done for p in self.received], [10, 30])

    def test_final_update_always_forwarded(self):
        self.throttle(Progress("a", 10, 100))
        self.throttle(Progress("a", 100, 100))
        self.assertEqual([p.done for p in self.received], [10, 100])

    def test_new_file_always_forwarded(self):
        self.throttle(Progress("a", 10, 100, 1, 2))
        self.throttle(Progress("b", 10, 100, 2, 2))
        self.assertEqual([p.file_name for p in self.received], ["a", "b"])


class TestCancellationToken(unittest.TestCase):

    def test_cancel(self):
        token = CancellationToken()
        token.raise_if_cancelled()
        self.assertFalse(token.cancelled)

        token.cancel()

        self.assertTrue(token.cancelled)
        with self.assertRaises(TransferCancelledError):
            token.raise_if_cancelled()


if __name__ == '__main__':
    unittest.main()
