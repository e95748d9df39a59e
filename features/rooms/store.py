"""
Room State Store — per-room state with compare-and-set as the only mutation.

``compare_and_set_stage`` succeeds only when the room is still at
``expected_stage`` and not yet finished, which is what keeps exactly one
writer per room without a separate lock.
"""

from __future__ import annotations

import copy
import logging
import uuid

from exceptions import NotFoundError
from models.schemas import FailureReason, Room, RoomStatus, Stage, StageResult, utcnow

log = logging.getLogger(__name__)


def status_allowed(current: RoomStatus, new: RoomStatus | None) -> bool:
    """Status moves forward only: idle → running → done | error."""
    if current.terminal:
        return False
    if new is None or new == current:
        return True
    return new != RoomStatus.IDLE


class InMemoryRoomStore:
    """Dict-backed store. Reads return copies; callers never share live state."""

    def __init__(self):
        self._rooms: dict[str, Room] = {}
        self._assets: dict[str, list[dict]] = {}

    async def create(self, room: Room) -> str:
        if room.id in self._rooms:
            raise ValueError(f"Room already exists: {room.id}")
        self._rooms[room.id] = copy.deepcopy(room)
        log.info("[ROOM] Created: %s for %s", room.id, room.owner_id)
        return room.id

    async def get(self, room_id: str) -> Room:
        return copy.deepcopy(self._get(room_id))

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
        # No awaits between the check and the write: atomic on the event loop.
        room = self._get(room_id)
        if room.stage != expected_stage or not status_allowed(room.status, status):
            return False
        room.stage = new_stage
        if status is not None:
            room.status = status
        if failure_reason is not None:
            room.failure_reason = failure_reason
        if error is not None:
            room.error = error
        if result is not None:
            room.results[result.stage] = copy.deepcopy(result)
        room.updated_at = utcnow()
        return True

    async def list_by_owner(self, owner_id: str) -> list[Room]:
        rooms = [r for r in self._rooms.values() if r.owner_id == owner_id]
        rooms.sort(key=lambda r: r.created_at, reverse=True)
        return [copy.deepcopy(r) for r in rooms]

    async def create_asset(
        self, room_id: str, stage: Stage, content_id: str, size: int | None, mime_type: str | None,
    ) -> str:
        self._get(room_id)
        asset_id = f"asset-{uuid.uuid4().hex[:12]}"
        self._assets.setdefault(room_id, []).append({
            "id": asset_id,
            "room_id": room_id,
            "stage": stage.value,
            "content_id": content_id,
            "size": size,
            "mime_type": mime_type,
            "created_at": utcnow(),
        })
        return asset_id

    async def list_assets(self, room_id: str) -> list[dict]:
        self._get(room_id)
        return [dict(a) for a in self._assets.get(room_id, [])]

    def _get(self, room_id: str) -> Room:
        try:
            return self._rooms[room_id]
        except KeyError:
            raise NotFoundError(f"Room not found: {room_id}") from None
