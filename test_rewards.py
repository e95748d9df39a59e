#!/usr/bin/env python3
"""
Reward ledger and trigger tests.
"""

import unittest

from exceptions import LedgerError
from fakes import FailingLedger
from features.rewards import InMemoryRewardLedger, RewardTrigger
from models.schemas import Stage


class TestLedger(unittest.IsolatedAsyncioTestCase):

    async def test_balance_is_sum_of_credits(self):
        ledger = InMemoryRewardLedger()
        await ledger.credit("user-1", 10, "upload_story")
        await ledger.credit("user-1", 10, "upload_image")
        await ledger.credit("user-1", 10, "upload_code")
        await ledger.credit("user-2", 1, "view")
        self.assertEqual(await ledger.balance("user-1"), 30)
        self.assertEqual(await ledger.balance("user-2"), 1)
        self.assertEqual(await ledger.balance("nobody"), 0)

    async def test_same_tx_ref_credits_once(self):
        ledger = InMemoryRewardLedger()
        first = await ledger.credit("user-1", 10, "upload_story", tx_ref="room-1:story")
        again = await ledger.credit("user-1", 10, "upload_story", tx_ref="room-1:story")
        self.assertEqual(first, again)
        self.assertEqual(await ledger.balance("user-1"), 10)

    async def test_non_positive_amount_rejected(self):
        with self.assertRaises(LedgerError):
            await InMemoryRewardLedger().credit("user-1", 0, "nothing")


class TestTrigger(unittest.IsolatedAsyncioTestCase):

    async def test_stage_completion_credits_configured_amount(self):
        ledger = InMemoryRewardLedger()
        trigger = RewardTrigger(ledger, {"story": (10, "upload_story")})
        task = trigger.notify_stage_complete("room-1", "user-1", Stage.STORY)
        await task
        history = await ledger.history("user-1")
        self.assertEqual([(tx["amount"], tx["reason"], tx["tx_ref"]) for tx in history],
                         [(10, "upload_story", "room-1:story")])

    async def test_unrewarded_stage_spawns_nothing(self):
        trigger = RewardTrigger(InMemoryRewardLedger(), {"story": (10, "upload_story")})
        self.assertIsNone(trigger.notify_stage_complete("room-1", "user-1", Stage.DEPLOY))

    async def test_ledger_failure_is_logged_not_raised(self):
        trigger = RewardTrigger(FailingLedger(), {"story": (10, "upload_story")})
        with self.assertLogs("features.rewards.trigger", level="WARNING") as logs:
            trigger.notify_stage_complete("room-1", "user-1", Stage.STORY)
            await trigger.drain()
        self.assertIn("ledger unavailable", logs.output[0])


if __name__ == "__main__":
    unittest.main()
