#!/usr/bin/env python3
"""
Content-addressed uploader tests: every identifier the uploaders hand back
satisfies the CID predicate used by the pipeline.
"""

import os
import unittest

import httpx

from exceptions import UploadError
from fakes import STORY_CID
from utils.ipfs import LocalUploader, StorachaUploader, is_valid_cid


class TestCidPredicate(unittest.TestCase):

    def test_accepts_cidv1_base32(self):
        self.assertTrue(is_valid_cid(STORY_CID))

    def test_rejects_other_values(self):
        for value in ("", "bafy123", "invalid-cid-format", "Qm" + "a" * 44,
                      STORY_CID.upper(), STORY_CID + "!", None, 42):
            with self.subTest(value=value):
                self.assertFalse(is_valid_cid(value))


class TestLocalUploader(unittest.IsolatedAsyncioTestCase):

    async def test_arbitrary_bytes_give_valid_cid(self):
        uploader = LocalUploader()
        for data in (b"", b"boo", os.urandom(4096), "👻".encode("utf-8")):
            cid = await uploader.upload(data, "blob.bin", "application/octet-stream")
            self.assertTrue(is_valid_cid(cid), cid)

    async def test_same_content_same_cid(self):
        uploader = LocalUploader()
        a = await uploader.upload(b"same", "a.txt", "text/plain")
        b = await uploader.upload(b"same", "b.txt", "text/plain")
        c = await uploader.upload(b"different", "c.txt", "text/plain")
        self.assertEqual(a, b)
        self.assertNotEqual(a, c)


class TestStorachaUploader(unittest.IsolatedAsyncioTestCase):

    def uploader(self, handler):
        self.http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return StorachaUploader("https://up.storacha.test", token="secret", client=self.http)

    async def asyncTearDown(self):
        await self.http.aclose()

    async def test_returns_gateway_cid(self):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers.get("authorization")
            seen["path"] = request.url.path
            return httpx.Response(200, json={"cid": STORY_CID})

        cid = await self.uploader(handler).upload(b"boo", "story.txt", "text/plain")
        self.assertEqual(cid, STORY_CID)
        self.assertEqual(seen, {"auth": "Bearer secret", "path": "/upload"})

    async def test_invalid_cid_rejected(self):
        uploader = self.uploader(lambda request: httpx.Response(200, json={"cid": "bafy123"}))
        with self.assertRaises(UploadError):
            await uploader.upload(b"boo", "story.txt", "text/plain")

    async def test_http_error_raises_upload_error(self):
        uploader = self.uploader(lambda request: httpx.Response(502, text="bad gateway"))
        with self.assertRaises(UploadError):
            await uploader.upload(b"boo", "story.txt", "text/plain")

    async def test_network_error_raises_upload_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with self.assertRaises(UploadError):
            await self.uploader(handler).upload(b"boo", "story.txt", "text/plain")


if __name__ == "__main__":
    unittest.main()
