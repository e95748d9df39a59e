"""
Activity: Code — builds a playable mini-game from the story and its image.
"""

from __future__ import annotations

from activities.base import AgentClient, optional_str, require_str
from models.schemas import CodeOutput, Stage, StageOutput


class CodeAgent(AgentClient):
    stage = Stage.CODE
    name = "CodeAgent"
    path = "/generate"

    def build_input(self, room_id: str, room_input: str, results: dict[Stage, StageOutput]) -> dict:
        story = results[Stage.STORY]
        asset = results[Stage.ASSET]
        return {
            "roomId": room_id,
            "story": story.text,
            "imageUrl": asset.image_url,
            "imageCid": asset.content_id,
        }

    def parse_output(self, payload: dict) -> CodeOutput:
        tested = payload.get("tested", False)
        if not isinstance(tested, bool):
            raise TypeError("'tested' must be a boolean")
        return CodeOutput(
            code=require_str(payload, "code"),
            content_id=optional_str(payload, "contentId", "codeCid", "cid"),
            tested=tested,
        )
