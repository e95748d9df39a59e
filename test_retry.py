#!/usr/bin/env python3
"""
Retry policy tests.
"""

import unittest

from exceptions import PermanentAgentError, TransientAgentError
from utils.retry import RetryPolicy


class TestRetryPolicy(unittest.TestCase):

    def test_default_delays(self):
        self.assertEqual(RetryPolicy().delays(), [2.0, 4.0])

    def test_delays_double_and_cap(self):
        policy = RetryPolicy(max_attempts=6, initial_delay=2.0, multiplier=2.0, max_delay=30.0)
        self.assertEqual(policy.delays(), [2.0, 4.0, 8.0, 16.0, 30.0])

    def test_delays_never_decrease(self):
        for multiplier in (1.0, 1.5, 2.0, 3.0):
            delays = RetryPolicy(max_attempts=8, multiplier=multiplier, max_delay=20).delays()
            self.assertEqual(delays, sorted(delays))

    def test_retry_only_transient_within_budget(self):
        policy = RetryPolicy(max_attempts=3)
        transient = TransientAgentError("StoryAgent", "timeout")
        permanent = PermanentAgentError("StoryAgent", "bad request", 400)
        self.assertTrue(policy.should_retry(1, transient))
        self.assertTrue(policy.should_retry(2, transient))
        self.assertFalse(policy.should_retry(3, transient))
        self.assertFalse(policy.should_retry(1, permanent))
        self.assertFalse(policy.should_retry(1, ValueError("not an agent error")))

    def test_invalid_policies_rejected(self):
        with self.assertRaises(ValueError):
            RetryPolicy(max_attempts=0)
        with self.assertRaises(ValueError):
            RetryPolicy(multiplier=0.5)


if __name__ == "__main__":
    unittest.main()
