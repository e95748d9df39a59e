"""
Room Pipeline — drives a room through its workflow stages:
  1. Story   → story text (pinned to IPFS)
  2. Asset   → cover image
  3. Code    → playable mini-game (pinned to IPFS)
  4. Deploy  → public URL

Each room runs as its own asyncio task; stages within a room run strictly
one after another. Every state change goes through the room store's
compare-and-set, so a room has exactly one writer and a cancelled or
finished room can't be moved again by a late agent response.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from activities.base import AgentClient
from exceptions import (
    AgentError,
    InvalidStateError,
    PermanentAgentError,
    TransientAgentError,
    UploadError,
)
from features.logstream import LogStream
from features.rewards import RewardTrigger
from models.schemas import (
    FailureReason,
    LogLevel,
    Room,
    RoomStatus,
    Stage,
    StageOutput,
    StageResult,
)
from utils.ipfs import is_valid_cid
from utils.retry import RetryPolicy
from workflows.definition import WorkflowDefinition

log = logging.getLogger(__name__)

ORCHESTRATOR = "orchestrator"


@dataclass
class RoomContext:
    """Per-room state carried through one orchestration run."""
    room_id: str
    owner_id: str
    input_text: str
    cancelled: asyncio.Event = field(default_factory=asyncio.Event)
    outputs: dict[Stage, StageOutput] = field(default_factory=dict)

    @property
    def is_cancelled(self) -> bool:
        return self.cancelled.is_set()


class RoomPipeline:
    """Workflow orchestrator for rooms.

    All collaborators are injected; the pipeline keeps no state beyond the
    currently running room tasks.
    """

    def __init__(
        self,
        store,
        log_stream: LogStream,
        workflow: WorkflowDefinition,
        rewards: RewardTrigger | None = None,
        uploader=None,
        retry_policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.store = store
        self.log_stream = log_stream
        self.workflow = workflow
        self.rewards = rewards
        self.uploader = uploader
        self.retry_policy = retry_policy or RetryPolicy()
        self._sleep = sleep
        self._tasks: dict[str, asyncio.Task] = {}
        self._contexts: dict[str, RoomContext] = {}

    # ── Public operations ─────────────────────────────────────────────

    async def create_room(self, owner_id: str, input_text: str) -> Room:
        if not input_text.strip():
            raise ValueError("Room input must not be empty")
        room = Room(id=str(uuid.uuid4()), owner_id=owner_id, input_text=input_text)
        await self.store.create(room)
        return room

    async def get_room(self, room_id: str) -> Room:
        return await self.store.get(room_id)

    async def list_rooms(self, owner_id: str) -> list[Room]:
        return await self.store.list_by_owner(owner_id)

    async def start(self, room_id: str) -> asyncio.Task:
        """Move an idle room to its first stage and run the workflow in the background.

        Raises InvalidStateError if the room is not idle, NotFoundError if unknown.
        Concurrent calls for one room: exactly one wins the compare-and-set.
        """
        first = self.workflow.first_stage
        started = await self.store.compare_and_set_stage(
            room_id, Stage.NONE, first, status=RoomStatus.RUNNING,
        )
        if not started:
            room = await self.store.get(room_id)
            raise InvalidStateError(f"Room {room_id} is {room.status.value}, expected idle")

        room = await self.store.get(room_id)
        ctx = RoomContext(room_id=room.id, owner_id=room.owner_id, input_text=room.input_text)
        self._contexts[room_id] = ctx
        task = asyncio.create_task(self._run(ctx), name=f"room-{room_id}")
        self._tasks[room_id] = task
        log.info("[ROOM] Started: %s", room_id)
        return task

    async def cancel(self, room_id: str, reason: str = "Cancelled by user") -> Room:
        """Fail a running room with reason ``cancelled``.

        An in-flight agent call is left to finish; its result is discarded.
        """
        ctx = self._contexts.get(room_id)
        while True:
            room = await self.store.get(room_id)
            if room.status != RoomStatus.RUNNING:
                raise InvalidStateError(f"Room {room_id} is {room.status.value}, expected running")
            if ctx is not None:
                ctx.cancelled.set()
            # Retry if the workflow advanced the stage between our read and write
            if await self.store.compare_and_set_stage(
                room_id, room.stage, room.stage,
                status=RoomStatus.ERROR,
                failure_reason=FailureReason.CANCELLED,
                error=reason,
            ):
                break

        self._emit(room_id, room.stage.value, LogLevel.ERROR,
                   f"Workflow cancelled during {room.stage.value} stage",
                   {"reason": FailureReason.CANCELLED.value, "detail": reason})
        self.log_stream.close(room_id)
        log.info("[ROOM] Cancelled: %s at %s", room_id, room.stage.value)
        return await self.store.get(room_id)

    def task(self, room_id: str) -> asyncio.Task | None:
        return self._tasks.get(room_id)

    async def wait(self, room_id: str) -> Room:
        """Wait for a room's current run (if any) and return its final state."""
        task = self._tasks.get(room_id)
        if task is not None:
            await asyncio.shield(task)
        return await self.store.get(room_id)

    async def shutdown(self) -> None:
        """Stop all room tasks. Rooms they leave running end with ``internal_error``."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        if self.rewards is not None:
            await self.rewards.drain()

    # ── Workflow run ──────────────────────────────────────────────────

    async def _run(self, ctx: RoomContext) -> None:
        room_id = ctx.room_id
        pipeline_start = time.monotonic()
        stage = self.workflow.first_stage
        try:
            self._emit(room_id, ORCHESTRATOR, LogLevel.INFO, "Starting workflow execution",
                       {"input": ctx.input_text[:50]})

            for agent in self.workflow.agents:
                stage = agent.stage
                if ctx.is_cancelled:
                    log.info("[ROOM] %s cancelled before %s stage", room_id, stage.value)
                    return
                output = await self._run_stage(ctx, agent)
                if output is None:
                    return

            duration = round(time.monotonic() - pipeline_start, 2)
            self._emit(room_id, ORCHESTRATOR, LogLevel.SUCCESS, "Workflow completed successfully",
                       {"completedStages": [s.value for s in ctx.outputs], "durationSec": duration})
            log.info("[ROOM] %s complete in %.1fs", room_id, duration)

        except asyncio.CancelledError:
            if await self._fail_room(room_id, "Workflow interrupted", "orchestrator shut down"):
                log.warning("[ROOM] %s interrupted by shutdown", room_id)
            raise
        except Exception as e:
            log.error("[ROOM] %s crashed at %s stage: %s", room_id, stage.value, e, exc_info=True)
            await self._fail_room(room_id, "Workflow failed", str(e))
        finally:
            self.log_stream.close(room_id)
            self._tasks.pop(room_id, None)
            self._contexts.pop(room_id, None)

    async def _run_stage(self, ctx: RoomContext, agent: AgentClient) -> StageOutput | None:
        """Run one stage with retries. Returns its output, or None if the room stopped."""
        room_id = ctx.room_id
        stage = agent.stage
        policy = self.retry_policy
        stage_input = agent.build_input(room_id, ctx.input_text, ctx.outputs)

        self._emit(room_id, stage.value, LogLevel.INFO, f"{agent.name} starting",
                   {"maxAttempts": policy.max_attempts})
        log.info("[STAGE] %s/%s starting", room_id, stage.value)
        start = time.monotonic()
        attempt = 0

        while True:
            attempt += 1
            try:
                output = await agent.invoke(stage_input)
                size, mime_type = await self._pin_artifact(agent, output)
            except UploadError as e:
                error: AgentError = TransientAgentError(agent.name, str(e))
            except AgentError as e:
                error = e
            else:
                break

            if ctx.is_cancelled:
                return None

            if not policy.should_retry(attempt, error):
                message = (
                    f"{agent.name} failed after {attempt} attempts: {error}"
                    if error.retryable else f"{agent.name} failed: {error}"
                )
                result = StageResult(
                    stage=stage, success=False, error=str(error), attempts=attempt,
                    duration_sec=round(time.monotonic() - start, 2),
                )
                await self._fail(ctx, stage, result, message,
                                 {"error": str(error), "attempts": attempt, "retryable": error.retryable})
                return None

            delay = policy.delay_for(attempt)
            self._emit(room_id, stage.value, LogLevel.WARN,
                       f"{agent.name} failed, retrying in {int(delay * 1000)}ms",
                       {"error": str(error), "attempt": attempt, "nextDelay": int(delay * 1000)})
            log.warning("[STAGE] %s/%s attempt %d/%d failed (%s), retrying in %.1fs",
                        room_id, stage.value, attempt, policy.max_attempts, error, delay)
            await self._sleep(delay)
            if ctx.is_cancelled:
                return None

        if ctx.is_cancelled:
            log.info("[STAGE] %s/%s discarding result that arrived after cancellation",
                     room_id, stage.value)
            return None

        # ━━ Persist + advance ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
        duration = round(time.monotonic() - start, 2)
        result = StageResult(
            stage=stage, success=True, output=output.to_dict(),
            content_id=output.content_id, attempts=attempt, duration_sec=duration,
        )
        next_stage = self.workflow.next_stage(stage)
        advanced = await self.store.compare_and_set_stage(
            room_id, stage, next_stage, result,
            status=RoomStatus.DONE if next_stage == Stage.COMPLETE else None,
        )
        if not advanced or ctx.is_cancelled:
            log.info("[STAGE] %s/%s result not applied, room moved on", room_id, stage.value)
            return None
        ctx.outputs[stage] = output

        # No await between the stage advance and its success event
        metadata = {"attempts": attempt, "durationSec": duration, "contentId": output.content_id}
        if stage == Stage.DEPLOY:
            code = ctx.outputs.get(Stage.CODE)
            metadata["deployedUrl"] = getattr(output, "deployed_url", None)
            metadata["codeCid"] = code.content_id if code else None
        self._emit(room_id, stage.value, LogLevel.SUCCESS, f"{agent.name} completed successfully", metadata)
        log.info("[STAGE] %s/%s completed in %.2fs (%d attempts)", room_id, stage.value, duration, attempt)

        if self.rewards is not None:
            self.rewards.notify_stage_complete(room_id, ctx.owner_id, stage)

        if output.content_id:
            try:
                await self.store.create_asset(room_id, stage, output.content_id, size, mime_type)
            except Exception as e:
                log.warning("Could not record asset %s for %s: %s", output.content_id, room_id, e)

        if ctx.is_cancelled:
            return None
        return output

    async def _pin_artifact(self, agent: AgentClient, output: StageOutput) -> tuple[int | None, str | None]:
        """Make sure content-bearing output has a valid CID. Returns (size, mime type)."""
        payload = output.pin_payload()
        size = len(payload[0]) if payload else None
        mime_type = payload[2] if payload else output.mime_type

        if output.content_id:
            if not is_valid_cid(output.content_id):
                raise PermanentAgentError(agent.name, f"invalid content identifier {output.content_id!r}")
            return size, mime_type
        if payload and self.uploader is not None:
            data, filename, mime_type = payload
            output.content_id = await self.uploader.upload(data, filename, mime_type)
        return size, mime_type

    async def _fail(self, ctx: RoomContext, stage: Stage, result: StageResult,
                    message: str, metadata: dict) -> None:
        failed = await self.store.compare_and_set_stage(
            ctx.room_id, stage, stage, result,
            status=RoomStatus.ERROR,
            failure_reason=FailureReason.AGENT_ERROR,
            error=result.error,
        )
        if not failed:
            log.info("[STAGE] %s/%s failure not applied, room already finished", ctx.room_id, stage.value)
            return
        self._emit(ctx.room_id, stage.value, LogLevel.ERROR, message, metadata)
        log.error("[STAGE] %s", message)

    async def _fail_room(self, room_id: str, message: str, error: str) -> bool:
        """Fail a room that is still running, at whatever stage it reached."""
        stage = (await self.store.get(room_id)).stage
        failed = await self.store.compare_and_set_stage(
            room_id, stage, stage,
            status=RoomStatus.ERROR,
            failure_reason=FailureReason.INTERNAL_ERROR,
            error=error,
        )
        if failed:
            self._emit(room_id, stage.value, LogLevel.ERROR,
                       f"{message} at {stage.value} stage: {error}",
                       {"reason": FailureReason.INTERNAL_ERROR.value})
        return failed

    def _emit(self, room_id: str, agent: str, level: LogLevel, message: str, metadata: dict | None = None) -> None:
        self.log_stream.emit(room_id, agent, level, message, metadata)
