"""
FastAPI application — REST API for the HauntedAI room orchestrator.

Endpoints:
  POST /rooms                     — Create a room for a user prompt
  POST /rooms/{room_id}/start     — Start the story → asset → code → deploy pipeline
  POST /rooms/{room_id}/cancel    — Cancel a running room
  GET  /rooms/{room_id}           — Room state + stage results
  GET  /rooms/{room_id}/logs      — Live log stream (Server-Sent Events)
  GET  /users/{owner_id}/rooms    — A user's rooms, newest first
  GET  /users/{user_id}/balance   — HHCW reward balance
  GET  /health                    — Health check
"""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Any

from dotenv import load_dotenv
from fastapi import FastAPI, Header, HTTPException, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

import config
from exceptions import InvalidStateError, NotFoundError
from features.logstream import LogStream, Subscription
from features.rewards import InMemoryRewardLedger, RewardTrigger
from features.rewards import ledger as reward_ledger
from features.rooms import InMemoryRoomStore
from features.rooms import db as room_db
from utils import db
from utils.ipfs import get_uploader
from utils.retry import RetryPolicy
from workflows.definition import default_workflow
from workflows.pipeline import RoomPipeline

load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    datefmt="%H:%M:%S",
)
log = logging.getLogger(__name__)

SSE_KEEPALIVE_SEC = 15.0

pipeline: RoomPipeline | None = None
ledger: Any = None


def build_pipeline() -> tuple[RoomPipeline, Any]:
    """Wire the pipeline from config. Falls back to in-memory stores without Postgres."""
    store: Any = InMemoryRoomStore()
    rewards_ledger: Any = InMemoryRewardLedger()
    if config.DATABASE_URL:
        try:
            room_db.init_db()
            reward_ledger.init_db()
            store = room_db.PostgresRoomStore()
            rewards_ledger = reward_ledger.PostgresRewardLedger()
            log.info("Postgres database initialized")
        except Exception as e:
            log.warning("Could not connect to Postgres: %s (rooms will be in-memory only)", e)
    else:
        log.info("DATABASE_URL not set — rooms will be in-memory only")

    orchestrator = RoomPipeline(
        store=store,
        log_stream=LogStream(config.LOG_BUFFER_SIZE, config.LOG_RETENTION_SEC),
        workflow=default_workflow(),
        rewards=RewardTrigger(rewards_ledger),
        uploader=get_uploader(),
        retry_policy=RetryPolicy.from_config(),
    )
    return orchestrator, rewards_ledger


@asynccontextmanager
async def lifespan(app: FastAPI):
    global pipeline, ledger
    if pipeline is None:
        pipeline, ledger = build_pipeline()
    yield
    await pipeline.shutdown()
    db.close_pool()


app = FastAPI(
    title="HauntedAI Orchestrator",
    description="Multi-agent room pipeline: story → asset → code → deploy, with live logs",
    version="1.0.0",
    lifespan=lifespan,
)


def _pipeline() -> RoomPipeline:
    if pipeline is None:
        raise HTTPException(status_code=503, detail="Orchestrator not ready")
    return pipeline


class RoomCreateRequest(BaseModel):
    owner_id: str = Field(min_length=1)
    input: str = Field(min_length=1, max_length=5000)


class RoomStartResponse(BaseModel):
    room_id: str
    status: str
    message: str


# ── Health ────────────────────────────────────────────────────────────

@app.get("/health")
def health():
    return {
        "status": "ok",
        "service": "hauntedai-orchestrator",
        "database": bool(config.DATABASE_URL),
        "stages": [s.value for s in pipeline.workflow.stages] if pipeline else [],
    }


# ── Rooms ─────────────────────────────────────────────────────────────

@app.post("/rooms", status_code=201)
async def create_room(req: RoomCreateRequest):
    """Create an idle room for a user prompt."""
    try:
        room = await _pipeline().create_room(req.owner_id, req.input)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _serialize(room.to_dict())


@app.post("/rooms/{room_id}/start", status_code=202, response_model=RoomStartResponse)
async def start_room(room_id: str):
    """Start the pipeline for an idle room. 409 if it has already started."""
    try:
        await _pipeline().start(room_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return RoomStartResponse(
        room_id=room_id,
        status="running",
        message=f"Pipeline started. Follow /rooms/{room_id}/logs for progress",
    )


@app.post("/rooms/{room_id}/cancel", status_code=202)
async def cancel_room(room_id: str):
    try:
        room = await _pipeline().cancel(room_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return _serialize(room.to_dict())


@app.get("/rooms/{room_id}")
async def get_room(room_id: str):
    """Current room state plus every stage result recorded so far."""
    orchestrator = _pipeline()
    try:
        room = await orchestrator.get_room(room_id)
        assets = await orchestrator.store.list_assets(room_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return _serialize({**room.to_dict(), "assets": assets})


@app.get("/rooms/{room_id}/logs")
async def stream_room_logs(room_id: str, request: Request, last_event_id: str | None = Header(default=None)):
    """SSE endpoint — buffered backlog, then live events until the room finishes."""
    orchestrator = _pipeline()
    try:
        room = await orchestrator.get_room(room_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    after_seq = int(last_event_id) if last_event_id and last_event_id.isdigit() else None
    sub = orchestrator.log_stream.subscribe(room_id, after_seq=after_seq)
    # Nothing left to run for a finished room: replay what's buffered and end
    if room.status.terminal and orchestrator.task(room_id) is None:
        orchestrator.log_stream.close(room_id)

    return StreamingResponse(_sse_events(sub, request), media_type="text/event-stream", headers={
        "Cache-Control": "no-cache",
        "X-Accel-Buffering": "no",  # Disable nginx buffering
    })


async def _sse_events(sub: Subscription, request: Request):
    try:
        while True:
            try:
                event = await sub.get(timeout=SSE_KEEPALIVE_SEC)
            except asyncio.TimeoutError:
                if await request.is_disconnected():
                    break
                yield ": keepalive\n\n"
                continue
            if event is None:
                break
            yield f"id: {event.seq}\nevent: log\ndata: {json.dumps(event.to_dict())}\n\n"
        yield "event: end\ndata: {}\n\n"
    finally:
        sub.close()


# ── Users ─────────────────────────────────────────────────────────────

@app.get("/users/{owner_id}/rooms")
async def list_rooms(owner_id: str):
    rooms = await _pipeline().list_rooms(owner_id)
    return {"owner_id": owner_id, "rooms": [_serialize(r.to_dict()) for r in rooms]}


@app.get("/users/{user_id}/balance")
async def get_balance(user_id: str):
    _pipeline()
    return {"user_id": user_id, "balance": await ledger.balance(user_id)}


def _serialize(obj: Any) -> Any:
    """Make a dict JSON-serializable (handle datetimes, enums, etc)."""
    if isinstance(obj, dict):
        return {k: _serialize(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_serialize(v) for v in obj]
    if hasattr(obj, "isoformat"):
        return obj.isoformat()
    return obj
