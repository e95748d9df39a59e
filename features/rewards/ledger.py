"""
Reward ledger — HHCW token credits per user.

The balance is the sum of all of a user's transactions. A credit that
repeats an existing ``tx_ref`` returns the original transaction instead of
crediting twice.
"""

from __future__ import annotations

import logging
import uuid

from exceptions import LedgerError
from models.schemas import utcnow
from utils.db import get_cursor, run_sync

log = logging.getLogger(__name__)


class InMemoryRewardLedger:
    def __init__(self):
        self.transactions: list[dict] = []

    async def credit(self, user_id: str, amount: int, reason: str, tx_ref: str | None = None) -> str:
        if amount <= 0:
            raise LedgerError(f"Credit amount must be positive, got {amount}")
        if tx_ref:
            for tx in self.transactions:
                if tx["tx_ref"] == tx_ref:
                    return tx["id"]
        tx_id = f"tx-{uuid.uuid4().hex[:12]}"
        self.transactions.append({
            "id": tx_id,
            "user_id": user_id,
            "amount": amount,
            "reason": reason,
            "tx_ref": tx_ref,
            "created_at": utcnow(),
        })
        log.info("[REWARD] Credited %d to %s (%s)", amount, user_id, reason)
        return tx_id

    async def balance(self, user_id: str) -> int:
        return sum(tx["amount"] for tx in self.transactions if tx["user_id"] == user_id)

    async def history(self, user_id: str) -> list[dict]:
        return [dict(tx) for tx in self.transactions if tx["user_id"] == user_id]


# ── Postgres ──────────────────────────────────────────────────────────

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS token_transactions (
    id              TEXT PRIMARY KEY,
    user_id         TEXT NOT NULL,
    amount          BIGINT NOT NULL,
    reason          TEXT NOT NULL,
    tx_ref          TEXT UNIQUE,
    created_at      TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE INDEX IF NOT EXISTS idx_token_transactions_user ON token_transactions(user_id);
"""


def init_db():
    with get_cursor() as cur:
        cur.execute(SCHEMA_SQL)
    log.info("Ledger schema initialized")


def credit(user_id: str, amount: int, reason: str, tx_ref: str | None = None) -> str:
    if amount <= 0:
        raise LedgerError(f"Credit amount must be positive, got {amount}")
    tx_id = f"tx-{uuid.uuid4().hex[:12]}"
    with get_cursor() as cur:
        cur.execute("""
            INSERT INTO token_transactions (id, user_id, amount, reason, tx_ref)
            VALUES (%s, %s, %s, %s, %s)
            ON CONFLICT (tx_ref) DO NOTHING
            RETURNING id
        """, (tx_id, user_id, amount, reason, tx_ref))
        row = cur.fetchone()
        if row:
            log.info("[REWARD] Credited %d to %s (%s)", amount, user_id, reason)
            return row["id"]
        cur.execute("SELECT id FROM token_transactions WHERE tx_ref = %s", (tx_ref,))
        return cur.fetchone()["id"]


def balance(user_id: str) -> int:
    with get_cursor() as cur:
        cur.execute(
            "SELECT coalesce(sum(amount), 0) AS balance FROM token_transactions WHERE user_id = %s",
            (user_id,),
        )
        return int(cur.fetchone()["balance"])


def history(user_id: str) -> list[dict]:
    with get_cursor() as cur:
        cur.execute(
            "SELECT * FROM token_transactions WHERE user_id = %s ORDER BY created_at ASC",
            (user_id,),
        )
        return [dict(row) for row in cur.fetchall()]


class PostgresRewardLedger:
    async def credit(self, user_id: str, amount: int, reason: str, tx_ref: str | None = None) -> str:
        return await run_sync(credit, user_id, amount, reason, tx_ref)

    async def balance(self, user_id: str) -> int:
        return await run_sync(balance, user_id)

    async def history(self, user_id: str) -> list[dict]:
        return await run_sync(history, user_id)
