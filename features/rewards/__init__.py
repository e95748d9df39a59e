"""
Rewards feature — HHCW token credits for completed stages.

Public API:
    from features.rewards import RewardTrigger, InMemoryRewardLedger
    from features.rewards import ledger as reward_ledger   # PostgresRewardLedger, init_db
"""

from features.rewards.ledger import InMemoryRewardLedger
from features.rewards.trigger import RewardTrigger

__all__ = ["InMemoryRewardLedger", "RewardTrigger"]
