"""
Postgres backing store for rooms, stage results and assets.

Tables:
  rooms          — one row per room
  stage_results  — at most one row per (room, stage); re-running replaces it
  assets         — artifact metadata (CID, size, mime type) per stage result

The conditional stage update and the stage result upsert commit in one
transaction.
"""

from __future__ import annotations

import json
import logging
import uuid

from exceptions import NotFoundError
from features.rooms.store import status_allowed
from models.schemas import FailureReason, Room, RoomStatus, Stage, StageResult
from utils.db import get_cursor, run_sync

log = logging.getLogger(__name__)

# ── Schema ────────────────────────────────────────────────────────────

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS rooms (
    id              TEXT PRIMARY KEY,
    owner_id        TEXT NOT NULL,
    input_text      TEXT NOT NULL,
    stage           TEXT NOT NULL DEFAULT 'none',
    status          TEXT NOT NULL DEFAULT 'idle',
    failure_reason  TEXT,
    error           TEXT,
    created_at      TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at      TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS stage_results (
    room_id         TEXT NOT NULL REFERENCES rooms(id) ON DELETE CASCADE,
    stage           TEXT NOT NULL,
    success         BOOLEAN NOT NULL,
    output          JSONB DEFAULT '{}'::jsonb,
    content_id      TEXT,
    error           TEXT,
    attempts        INTEGER NOT NULL DEFAULT 0,
    duration_sec    DOUBLE PRECISION,
    completed_at    TIMESTAMPTZ NOT NULL DEFAULT now(),
    PRIMARY KEY (room_id, stage)
);

CREATE TABLE IF NOT EXISTS assets (
    id              TEXT PRIMARY KEY,
    room_id         TEXT NOT NULL REFERENCES rooms(id) ON DELETE CASCADE,
    stage           TEXT NOT NULL,
    content_id      TEXT NOT NULL,
    size            BIGINT,
    mime_type       TEXT,
    created_at      TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE INDEX IF NOT EXISTS idx_rooms_owner ON rooms(owner_id, created_at DESC);
CREATE INDEX IF NOT EXISTS idx_assets_room ON assets(room_id);
"""


def init_db():
    """Create tables if they don't exist."""
    try:
        with get_cursor() as cur:
            cur.execute(SCHEMA_SQL)
        log.info("Room schema initialized")
    except Exception as e:
        log.error("Failed to initialize room schema: %s", e)
        raise


# ── Row mapping ───────────────────────────────────────────────────────

def _room_from_row(row: dict, result_rows: list[dict]) -> Room:
    room = Room(
        id=row["id"],
        owner_id=row["owner_id"],
        input_text=row["input_text"],
        stage=Stage(row["stage"]),
        status=RoomStatus(row["status"]),
        failure_reason=FailureReason(row["failure_reason"]) if row["failure_reason"] else None,
        error=row["error"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )
    for r in result_rows:
        result = StageResult(
            stage=Stage(r["stage"]),
            success=r["success"],
            output=r["output"] or {},
            content_id=r["content_id"],
            error=r["error"],
            attempts=r["attempts"],
            duration_sec=r["duration_sec"],
            completed_at=r["completed_at"],
        )
        room.results[result.stage] = result
    return room


# ── Room CRUD ─────────────────────────────────────────────────────────

def create_room(room: Room) -> str:
    with get_cursor() as cur:
        cur.execute("""
            INSERT INTO rooms (id, owner_id, input_text, stage, status, created_at, updated_at)
            VALUES (%(id)s, %(owner_id)s, %(input_text)s, %(stage)s, %(status)s,
                    %(created_at)s, %(updated_at)s)
        """, {
            "id": room.id,
            "owner_id": room.owner_id,
            "input_text": room.input_text,
            "stage": room.stage.value,
            "status": room.status.value,
            "created_at": room.created_at,
            "updated_at": room.updated_at,
        })
    log.info("[ROOM] Created: %s for %s", room.id, room.owner_id)
    return room.id


def get_room(room_id: str) -> Room:
    with get_cursor() as cur:
        cur.execute("SELECT * FROM rooms WHERE id = %s", (room_id,))
        row = cur.fetchone()
        if not row:
            raise NotFoundError(f"Room not found: {room_id}")
        cur.execute("SELECT * FROM stage_results WHERE room_id = %s", (room_id,))
        return _room_from_row(dict(row), [dict(r) for r in cur.fetchall()])


def update_room_stage(
    room_id: str,
    expected_stage: Stage,
    new_stage: Stage,
    result: StageResult | None = None,
    status: RoomStatus | None = None,
    failure_reason: FailureReason | None = None,
    error: str | None = None,
) -> bool:
    """Conditional stage update; writes ``result`` in the same transaction."""
    with get_cursor() as cur:
        cur.execute("SELECT status, stage FROM rooms WHERE id = %s FOR UPDATE", (room_id,))
        row = cur.fetchone()
        if not row:
            raise NotFoundError(f"Room not found: {room_id}")
        if row["stage"] != expected_stage.value or not status_allowed(RoomStatus(row["status"]), status):
            return False

        cur.execute("""
            UPDATE rooms SET
                stage = %(new_stage)s,
                status = COALESCE(%(status)s, status),
                failure_reason = COALESCE(%(failure_reason)s, failure_reason),
                error = COALESCE(%(error)s, error),
                updated_at = now()
            WHERE id = %(id)s
        """, {
            "id": room_id,
            "new_stage": new_stage.value,
            "status": status.value if status else None,
            "failure_reason": failure_reason.value if failure_reason else None,
            "error": error,
        })
        if result is not None:
            _upsert_stage_result(cur, room_id, result)
        return True


def _upsert_stage_result(cur, room_id: str, result: StageResult) -> None:
    cur.execute("""
        INSERT INTO stage_results (
            room_id, stage, success, output, content_id,
            error, attempts, duration_sec, completed_at
        ) VALUES (
            %(room_id)s, %(stage)s, %(success)s, %(output)s, %(content_id)s,
            %(error)s, %(attempts)s, %(duration_sec)s, %(completed_at)s
        )
        ON CONFLICT (room_id, stage) DO UPDATE SET
            success = EXCLUDED.success,
            output = EXCLUDED.output,
            content_id = EXCLUDED.content_id,
            error = EXCLUDED.error,
            attempts = EXCLUDED.attempts,
            duration_sec = EXCLUDED.duration_sec,
            completed_at = EXCLUDED.completed_at
    """, {
        "room_id": room_id,
        "stage": result.stage.value,
        "success": result.success,
        "output": json.dumps(result.output, default=str),
        "content_id": result.content_id,
        "error": result.error,
        "attempts": result.attempts,
        "duration_sec": result.duration_sec,
        "completed_at": result.completed_at,
    })


def list_rooms_by_owner(owner_id: str) -> list[Room]:
    """List a user's rooms, newest first."""
    with get_cursor() as cur:
        cur.execute(
            "SELECT * FROM rooms WHERE owner_id = %s ORDER BY created_at DESC",
            (owner_id,),
        )
        rows = [dict(r) for r in cur.fetchall()]
        if not rows:
            return []
        cur.execute(
            "SELECT * FROM stage_results WHERE room_id = ANY(%s)",
            ([r["id"] for r in rows],),
        )
        by_room: dict[str, list[dict]] = {}
        for r in cur.fetchall():
            by_room.setdefault(r["room_id"], []).append(dict(r))
    return [_room_from_row(r, by_room.get(r["id"], [])) for r in rows]


# ── Asset CRUD ────────────────────────────────────────────────────────

def create_asset(room_id: str, stage: Stage, content_id: str, size: int | None, mime_type: str | None) -> str:
    asset_id = f"asset-{uuid.uuid4().hex[:12]}"
    with get_cursor() as cur:
        cur.execute("""
            INSERT INTO assets (id, room_id, stage, content_id, size, mime_type)
            VALUES (%s, %s, %s, %s, %s, %s)
        """, (asset_id, room_id, stage.value, content_id, size, mime_type))
    return asset_id


def list_assets(room_id: str) -> list[dict]:
    with get_cursor() as cur:
        cur.execute("SELECT * FROM assets WHERE room_id = %s ORDER BY created_at ASC", (room_id,))
        return [dict(row) for row in cur.fetchall()]


class PostgresRoomStore:
    """Async facade over the functions above; same contract as InMemoryRoomStore."""

    async def create(self, room: Room) -> str:
        return await run_sync(create_room, room)

    async def get(self, room_id: str) -> Room:
        return await run_sync(get_room, room_id)

    async def compare_and_set_stage(
        self,
        room_id: str,
        expected_stage: Stage,
        new_stage: Stage,
        result: StageResult | None = None,
        *,
        status: RoomStatus | None = None,
        failure_reason: FailureReason | None = None,
        error: str | None = None,
    ) -> bool:
        return await run_sync(
            update_room_stage, room_id, expected_stage, new_stage, result,
            status, failure_reason, error,
        )

    async def list_by_owner(self, owner_id: str) -> list[Room]:
        return await run_sync(list_rooms_by_owner, owner_id)

    async def create_asset(
        self, room_id: str, stage: Stage, content_id: str, size: int | None, mime_type: str | None,
    ) -> str:
        return await run_sync(create_asset, room_id, stage, content_id, size, mime_type)

    async def list_assets(self, room_id: str) -> list[dict]:
        return await run_sync(list_assets, room_id)
