"""
Workflow definition — the fixed, ordered list of pipeline stages.

    story → asset → code → deploy
"""

from __future__ import annotations

from dataclasses import dataclass

import httpx

import config
from activities.asset import AssetAgent
from activities.base import AgentClient
from activities.code import CodeAgent
from activities.deploy import DeployAgent
from activities.story import StoryAgent
from models.schemas import Stage


@dataclass(frozen=True)
class WorkflowDefinition:
    agents: tuple[AgentClient, ...]

    def __post_init__(self):
        if not self.agents:
            raise ValueError("Workflow needs at least one stage")
        stages = [a.stage for a in self.agents]
        if len(set(stages)) != len(stages):
            raise ValueError(f"Duplicate stage in workflow: {stages}")

    @property
    def stages(self) -> list[Stage]:
        return [a.stage for a in self.agents]

    @property
    def first_stage(self) -> Stage:
        return self.agents[0].stage

    def next_stage(self, stage: Stage) -> Stage:
        """Stage that follows ``stage``; Stage.COMPLETE after the last one."""
        stages = self.stages
        index = stages.index(stage)
        return stages[index + 1] if index + 1 < len(stages) else Stage.COMPLETE


def default_workflow(client: httpx.AsyncClient | None = None) -> WorkflowDefinition:
    """Build the story → asset → code → deploy workflow from config."""
    return WorkflowDefinition(agents=(
        StoryAgent(config.STORY_AGENT_URL, config.STORY_AGENT_TIMEOUT, client),
        AssetAgent(config.ASSET_AGENT_URL, config.ASSET_AGENT_TIMEOUT, client),
        CodeAgent(config.CODE_AGENT_URL, config.CODE_AGENT_TIMEOUT, client),
        DeployAgent(config.DEPLOY_AGENT_URL, config.DEPLOY_AGENT_TIMEOUT, client),
    ))
