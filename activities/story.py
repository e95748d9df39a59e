"""
Activity: Story — turns the user's prompt into a short haunted story.
"""

from __future__ import annotations

from activities.base import AgentClient, optional_str, require_str
from models.schemas import Stage, StageOutput, StoryOutput


class StoryAgent(AgentClient):
    stage = Stage.STORY
    name = "StoryAgent"
    path = "/generate"

    def build_input(self, room_id: str, room_input: str, results: dict[Stage, StageOutput]) -> dict:
        return {"roomId": room_id, "input": room_input}

    def parse_output(self, payload: dict) -> StoryOutput:
        return StoryOutput(
            text=require_str(payload, "story", "text"),
            content_id=optional_str(payload, "contentId", "storyCid", "cid"),
        )
