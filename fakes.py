"""
Test doubles: scripted agent services behind httpx.MockTransport, a
recording sleep, and ledgers/uploaders that fail on demand.
"""

from __future__ import annotations

import json
from collections import defaultdict

import httpx

from activities.asset import AssetAgent
from activities.code import CodeAgent
from activities.deploy import DeployAgent
from activities.story import StoryAgent
from exceptions import LedgerError, UploadError
from features.logstream import LogStream
from features.rewards import InMemoryRewardLedger, RewardTrigger
from features.rooms import InMemoryRoomStore
from utils.ipfs import LocalUploader
from utils.retry import RetryPolicy
from workflows.definition import WorkflowDefinition
from workflows.pipeline import RoomPipeline

STORY_CID = "bafybeigdyrzt5sfp7udm7hu76uh7y26nf3efuylqabf3oclgtqy55fbzdi"
IMAGE_CID = "bafybeibhwfzx6oo5rymsxmkdxpmkfwyvbjrrwcl7cekmbzlupmp5ypkyfi"
CODE_CID = "bafybeihdwdcefgh4dqkjv67uzcmw7ojee6xedzdetojuzjevtenxquvyku"

HOSTS = {
    "story.agents.test": "story",
    "asset.agents.test": "asset",
    "code.agents.test": "code",
    "deploy.agents.test": "deploy",
}

DEFAULT_RESPONSES = {
    "story": (200, {"story": "The keeper lit the lamp, but the light came back wrong.", "storyCid": STORY_CID}),
    "asset": (200, {"imageUrl": "https://images.test/lighthouse.png", "imageCid": IMAGE_CID}),
    "code": (200, {"code": "<html><body>Escape the lighthouse</body></html>", "codeCid": CODE_CID, "tested": True}),
    "deploy": (200, {"deployedUrl": "https://haunted.test/lighthouse", "status": "deployed"}),
}


class FakeAgentServices:
    """Four agent services answering from per-stage scripts.

    A script is a list of steps; each call consumes one step and the last
    step repeats. A step is ``(status, body)`` or an exception instance.
    """

    def __init__(self, **scripts):
        self.scripts = {stage: [DEFAULT_RESPONSES[stage]] for stage in DEFAULT_RESPONSES}
        for stage, steps in scripts.items():
            self.scripts[stage] = list(steps)
        self.calls: dict[str, list[dict]] = defaultdict(list)
        self.client = httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    def handler(self, request: httpx.Request) -> httpx.Response:
        stage = HOSTS[request.url.host]
        self.calls[stage].append(json.loads(request.content))
        script = self.scripts[stage]
        step = script.pop(0) if len(script) > 1 else script[0]
        if isinstance(step, Exception):
            raise step
        status, body = step
        return httpx.Response(status, json=body)

    def workflow(self) -> WorkflowDefinition:
        return WorkflowDefinition(agents=(
            StoryAgent("http://story.agents.test", 30, self.client),
            AssetAgent("http://asset.agents.test", 60, self.client),
            CodeAgent("http://code.agents.test", 60, self.client),
            DeployAgent("http://deploy.agents.test", 120, self.client),
        ))


def timeout_error(stage: str) -> httpx.ConnectTimeout:
    host = next(h for h, s in HOSTS.items() if s == stage)
    return httpx.ConnectTimeout("timed out", request=httpx.Request("POST", f"http://{host}/generate"))


class RecordingSleep:
    """Stands in for asyncio.sleep; records requested delays and returns at once."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class FailingLedger(InMemoryRewardLedger):
    async def credit(self, user_id, amount, reason, tx_ref=None):
        raise LedgerError("ledger unavailable")


class FailingUploader(LocalUploader):
    async def upload(self, data, filename, mime_type):
        raise UploadError("gateway down")


def make_pipeline(services: FakeAgentServices, ledger=None, uploader=None, sleep=None, **kwargs) -> RoomPipeline:
    return RoomPipeline(
        store=kwargs.pop("store", None) or InMemoryRoomStore(),
        log_stream=kwargs.pop("log_stream", None) or LogStream(buffer_size=100, retention_sec=60),
        workflow=services.workflow(),
        rewards=RewardTrigger(ledger if ledger is not None else InMemoryRewardLedger()),
        uploader=uploader if uploader is not None else LocalUploader(),
        retry_policy=kwargs.pop("retry_policy", None) or RetryPolicy(),
        sleep=sleep or RecordingSleep(),
    )
