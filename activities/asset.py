"""
Activity: Asset — generates the cover image for a story.
"""

from __future__ import annotations

from activities.base import AgentClient, optional_str, require_str
from models.schemas import AssetOutput, Stage, StageOutput


class AssetAgent(AgentClient):
    stage = Stage.ASSET
    name = "AssetAgent"
    path = "/generate"

    def build_input(self, room_id: str, room_input: str, results: dict[Stage, StageOutput]) -> dict:
        story = results[Stage.STORY]
        return {"roomId": room_id, "story": story.text, "storyCid": story.content_id}

    def parse_output(self, payload: dict) -> AssetOutput:
        return AssetOutput(
            image_url=require_str(payload, "imageUrl", "url"),
            content_id=optional_str(payload, "contentId", "imageCid", "cid"),
        )
