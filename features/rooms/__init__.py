"""
Rooms feature — per-room state with single-writer compare-and-set.

Public API:
    from features.rooms import InMemoryRoomStore
    from features.rooms import db as room_db   # PostgresRoomStore, init_db
"""

from features.rooms.store import InMemoryRoomStore

__all__ = ["InMemoryRoomStore"]
