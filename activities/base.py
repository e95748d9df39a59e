"""
Agent client base — one HTTP call to one agent service, classified result.

Clients never retry; the orchestrator owns the retry decision.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

import httpx

from exceptions import PermanentAgentError, TransientAgentError
from models.schemas import Stage, StageOutput

log = logging.getLogger(__name__)


class AgentClient:
    """Typed RPC wrapper around a single agent service endpoint.

    Subclasses set ``stage``/``name``/``path`` and implement ``build_input``
    and ``parse_output``.
    """

    stage: Stage
    name: str = "Agent"
    path: str = "/generate"

    def __init__(
        self,
        endpoint: str,
        timeout: float,
        client: httpx.AsyncClient | None = None,
    ):
        self.endpoint = endpoint.rstrip("/")
        self.timeout = timeout
        self._client = client

    @property
    def url(self) -> str:
        return f"{self.endpoint}{self.path}"

    def build_input(self, room_id: str, room_input: str, results: dict[Stage, StageOutput]) -> dict:
        """Build this stage's request payload from the room prompt and prior outputs."""
        raise NotImplementedError

    def parse_output(self, payload: dict) -> StageOutput:
        raise NotImplementedError

    async def invoke(self, stage_input: dict) -> StageOutput:
        """Make one call. Raises TransientAgentError or PermanentAgentError on failure."""
        start = time.monotonic()
        try:
            # The stage timeout bounds the whole call, body included
            resp = await asyncio.wait_for(self._post(stage_input), self.timeout)
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            raise TransientAgentError(self.name, f"timeout after {self.timeout}s") from e
        except httpx.TransportError as e:
            raise TransientAgentError(self.name, f"network error: {e}") from e

        elapsed = time.monotonic() - start
        if resp.status_code == 429 or resp.status_code >= 500:
            raise TransientAgentError(self.name, _error_detail(resp), resp.status_code)
        if resp.status_code >= 300:
            raise PermanentAgentError(self.name, _error_detail(resp), resp.status_code)

        try:
            payload = resp.json()
        except ValueError as e:
            raise PermanentAgentError(self.name, "response is not valid JSON") from e
        if not isinstance(payload, dict):
            raise PermanentAgentError(self.name, "response is not a JSON object")

        # Some agents wrap their output as {"success": true, "data": {...}}
        if isinstance(payload.get("data"), dict):
            payload = payload["data"]

        try:
            output = self.parse_output(payload)
        except (KeyError, TypeError, ValueError) as e:
            raise PermanentAgentError(self.name, f"malformed response: {e}") from e

        log.info("%s responded in %.2fs", self.name, elapsed)
        return output

    async def _post(self, body: dict) -> httpx.Response:
        if self._client is not None:
            return await self._client.post(self.url, json=body, timeout=self.timeout)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.post(self.url, json=body)


def _error_detail(resp: httpx.Response) -> str:
    try:
        body: Any = resp.json()
    except ValueError:
        return resp.text[:500] or resp.reason_phrase
    if isinstance(body, dict):
        return str(body.get("error") or body.get("message") or body)[:500]
    return str(body)[:500]


def require_str(payload: dict, *keys: str) -> str:
    """Return the first non-empty string among ``keys``; KeyError if none."""
    for key in keys:
        value = payload.get(key)
        if isinstance(value, str) and value:
            return value
    raise KeyError(f"missing field {keys[0]!r}")


def optional_str(payload: dict, *keys: str) -> str | None:
    for key in keys:
        value = payload.get(key)
        if isinstance(value, str) and value:
            return value
    return None
