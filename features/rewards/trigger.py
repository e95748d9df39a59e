"""
Reward Trigger — best-effort token credit when a stage completes.

Credits run as detached tasks. A failing ledger is logged and dropped; it
never touches room state.
"""

from __future__ import annotations

import asyncio
import logging

import config
from models.schemas import Stage

log = logging.getLogger(__name__)


class RewardTrigger:
    def __init__(self, ledger, rewards: dict[str, tuple[int, str]] | None = None):
        self.ledger = ledger
        self.rewards = rewards if rewards is not None else config.STAGE_REWARDS
        self._pending: set[asyncio.Task] = set()

    def notify_stage_complete(self, room_id: str, user_id: str, stage: Stage) -> asyncio.Task | None:
        """Fire-and-forget credit for ``stage``. Returns the spawned task, if any."""
        reward = self.rewards.get(stage.value)
        if reward is None:
            return None
        amount, reason = reward
        task = asyncio.create_task(self._credit(room_id, user_id, stage, amount, reason))
        # Hold a reference until done so the task isn't garbage-collected mid-flight
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _credit(self, room_id: str, user_id: str, stage: Stage, amount: int, reason: str) -> None:
        try:
            tx_id = await self.ledger.credit(user_id, amount, reason, tx_ref=f"{room_id}:{stage.value}")
            log.info("[REWARD] %s/%s → %s: %d HHCW (%s)", room_id, stage.value, user_id, amount, tx_id)
        except Exception as e:
            log.warning("[REWARD] Failed to credit %s for %s/%s: %s", user_id, room_id, stage.value, e)

    async def drain(self) -> None:
        """Wait for in-flight credits (shutdown and tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
