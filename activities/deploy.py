"""
Activity: Deploy — publishes the generated game and returns its public URL.
"""

from __future__ import annotations

from activities.base import AgentClient, require_str
from models.schemas import DeployOutput, Stage, StageOutput


class DeployAgent(AgentClient):
    stage = Stage.DEPLOY
    name = "DeployAgent"
    path = "/deploy"

    def build_input(self, room_id: str, room_input: str, results: dict[Stage, StageOutput]) -> dict:
        code = results[Stage.CODE]
        return {"roomId": room_id, "code": code.code, "codeCid": code.content_id}

    def parse_output(self, payload: dict) -> DeployOutput:
        return DeployOutput(
            deployed_url=require_str(payload, "deployedUrl", "deploymentUrl", "url"),
            status=payload.get("status") or "deployed",
        )
