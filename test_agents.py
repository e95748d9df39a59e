#!/usr/bin/env python3
"""
Agent client tests: request payloads, output parsing and error classification.
"""

import asyncio
import json
import unittest

import httpx

from activities.asset import AssetAgent
from activities.code import CodeAgent
from activities.deploy import DeployAgent
from activities.story import StoryAgent
from exceptions import PermanentAgentError, TransientAgentError
from fakes import CODE_CID, IMAGE_CID, STORY_CID
from models.schemas import AssetOutput, CodeOutput, Stage, StoryOutput


class AgentTestCase(unittest.IsolatedAsyncioTestCase):

    def client_returning(self, response=None, error=None):
        self.requests = []

        def handler(request):
            self.requests.append(request)
            if error is not None:
                raise error
            return response

        self.http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return self.http

    async def asyncTearDown(self):
        if hasattr(self, "http"):
            await self.http.aclose()


class TestClassification(AgentTestCase):

    async def assert_classified(self, response=None, error=None, expected=TransientAgentError):
        agent = StoryAgent("http://story.test", 30, self.client_returning(response, error))
        with self.assertRaises(expected):
            await agent.invoke({"input": "boo"})
        await self.http.aclose()

    async def test_retryable_statuses(self):
        for status in (429, 500, 502, 503):
            with self.subTest(status=status):
                await self.assert_classified(httpx.Response(status, json={"error": "x"}))

    async def test_client_errors_are_permanent(self):
        for status in (400, 401, 403, 404, 422):
            with self.subTest(status=status):
                await self.assert_classified(httpx.Response(status, json={"error": "x"}),
                                             expected=PermanentAgentError)

    async def test_timeouts_and_resets_are_transient(self):
        request = httpx.Request("POST", "http://story.test/generate")
        for error in (httpx.ReadTimeout("slow", request=request),
                      httpx.ConnectError("refused", request=request),
                      httpx.RemoteProtocolError("reset", request=request)):
            with self.subTest(error=type(error).__name__):
                await self.assert_classified(error=error)

    async def test_slow_body_past_stage_timeout_is_transient(self):
        async def trickle():
            body = json.dumps({"story": "slow but steady", "storyCid": STORY_CID}).encode()
            for i in range(0, len(body), 8):
                await asyncio.sleep(0.05)
                yield body[i:i + 8]

        http = self.client_returning(httpx.Response(
            200, headers={"content-type": "application/json"}, content=trickle(),
        ))
        agent = StoryAgent("http://story.test", 0.2, http)
        with self.assertRaises(TransientAgentError) as ctx:
            await agent.invoke({"input": "boo"})
        self.assertIn("timeout after 0.2s", str(ctx.exception))

    async def test_non_json_body_is_permanent(self):
        await self.assert_classified(httpx.Response(200, text="<html>oops</html>"),
                                     expected=PermanentAgentError)

    async def test_missing_field_is_permanent(self):
        await self.assert_classified(httpx.Response(200, json={"cid": STORY_CID}),
                                     expected=PermanentAgentError)

    async def test_error_carries_status_and_detail(self):
        agent = StoryAgent("http://story.test", 30,
                           self.client_returning(httpx.Response(400, json={"error": "prompt too short"})))
        with self.assertRaises(PermanentAgentError) as ctx:
            await agent.invoke({"input": ""})
        self.assertEqual(ctx.exception.status_code, 400)
        self.assertIn("prompt too short", str(ctx.exception))


class TestPayloads(AgentTestCase):

    async def test_story_request_and_output(self):
        http = self.client_returning(httpx.Response(200, json={"story": "Boo.", "storyCid": STORY_CID}))
        agent = StoryAgent("http://story.test/", 30, http)
        body = agent.build_input("room-1", "A haunted lighthouse", {})
        output = await agent.invoke(body)

        self.assertEqual(str(self.requests[0].url), "http://story.test/generate")
        self.assertEqual(json.loads(self.requests[0].content), {"roomId": "room-1", "input": "A haunted lighthouse"})
        self.assertEqual(output, StoryOutput(text="Boo.", content_id=STORY_CID))

    async def test_wrapped_data_payload_is_unwrapped(self):
        http = self.client_returning(httpx.Response(200, json={
            "success": True, "data": {"imageUrl": "https://img.test/a.png", "imageCid": IMAGE_CID},
        }))
        output = await AssetAgent("http://asset.test", 60, http).invoke({})
        self.assertEqual(output, AssetOutput(image_url="https://img.test/a.png", content_id=IMAGE_CID))

    async def test_code_input_uses_story_and_image(self):
        agent = CodeAgent("http://code.test", 60)
        body = agent.build_input("room-1", "prompt", {
            Stage.STORY: StoryOutput(text="Boo.", content_id=STORY_CID),
            Stage.ASSET: AssetOutput(image_url="https://img.test/a.png", content_id=IMAGE_CID),
        })
        self.assertEqual(body, {"roomId": "room-1", "story": "Boo.",
                                "imageUrl": "https://img.test/a.png", "imageCid": IMAGE_CID})

    async def test_code_tested_flag_must_be_boolean(self):
        http = self.client_returning(httpx.Response(200, json={"code": "<html/>", "tested": "yes"}))
        with self.assertRaises(PermanentAgentError):
            await CodeAgent("http://code.test", 60, http).invoke({})

    async def test_deploy_posts_to_deploy_path(self):
        http = self.client_returning(httpx.Response(200, json={"deploymentUrl": "https://g.test/r1"}))
        agent = DeployAgent("http://deploy.test", 120, http)
        body = agent.build_input("room-1", "prompt", {
            Stage.CODE: CodeOutput(code="<html/>", content_id=CODE_CID, tested=True),
        })
        output = await agent.invoke(body)
        self.assertEqual(self.requests[0].url.path, "/deploy")
        self.assertEqual(body["codeCid"], CODE_CID)
        self.assertEqual(output.deployed_url, "https://g.test/r1")
        self.assertEqual(output.status, "deployed")


if __name__ == "__main__":
    unittest.main()
