"""
Features package: one sub-package per room-pipeline concern.

  features/rooms/      room state, compare-and-set store (memory + Postgres)
  features/logstream/  per-room live log fan-out with a bounded replay buffer
  features/rewards/    token ledger and the fire-and-forget stage reward trigger

Each sub-package re-exports its public API from __init__.py; db.py modules
hold the Postgres layer where one exists.
"""
