"""
Content-addressed storage helpers (IPFS via Storacha).

Every content identifier the pipeline stores must satisfy ``is_valid_cid``.
"""

from __future__ import annotations

import base64
import hashlib
import logging
import re

import httpx

import config
from exceptions import UploadError

log = logging.getLogger(__name__)

# CIDv1, base32 lower-case, dag-pb ("bafy...")
CID_PATTERN = re.compile(r"^bafy[a-z2-7]{55,}$")


def is_valid_cid(value: object) -> bool:
    return isinstance(value, str) and bool(CID_PATTERN.match(value))


class LocalUploader:
    """Derives a CID-shaped identifier from the content hash; keeps bytes in memory.

    Used when no Storacha endpoint is configured.
    """

    def __init__(self):
        self.blobs: dict[str, tuple[bytes, str, str]] = {}

    async def upload(self, data: bytes, filename: str, mime_type: str) -> str:
        digest = hashlib.sha256(data).digest()
        cid = "bafybei" + base64.b32encode(digest).decode("ascii").lower().rstrip("=")
        self.blobs[cid] = (data, filename, mime_type)
        log.info("Pinned %s (%d bytes) locally as %s", filename, len(data), cid)
        return cid


class StorachaUploader:
    """Uploads to a Storacha/IPFS HTTP gateway and returns the CID it reports."""

    def __init__(
        self,
        base_url: str,
        token: str = "",
        timeout: float = 60.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self._client = client

    async def upload(self, data: bytes, filename: str, mime_type: str) -> str:
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        files = {"file": (filename, data, mime_type)}
        try:
            if self._client is not None:
                resp = await self._client.post(
                    f"{self.base_url}/upload", files=files, headers=headers, timeout=self.timeout,
                )
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    resp = await client.post(f"{self.base_url}/upload", files=files, headers=headers)
        except httpx.HTTPError as e:
            raise UploadError(f"Upload of {filename} failed: {e}") from e

        if resp.status_code >= 300:
            raise UploadError(f"Upload of {filename} failed: HTTP {resp.status_code}")
        try:
            cid = resp.json().get("cid")
        except (ValueError, AttributeError) as e:
            raise UploadError(f"Upload of {filename} returned an unreadable body") from e
        if not is_valid_cid(cid):
            raise UploadError(f"Upload of {filename} returned invalid CID: {cid!r}")
        log.info("Uploaded %s (%d bytes) → %s", filename, len(data), cid)
        return cid


def get_uploader():
    if config.STORACHA_URL:
        return StorachaUploader(config.STORACHA_URL, config.STORACHA_TOKEN, config.STORACHA_TIMEOUT)
    return LocalUploader()
