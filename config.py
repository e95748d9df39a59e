"""
Configuration — loads settings from environment / .env file.
"""

from __future__ import annotations

import os

from dotenv import load_dotenv

load_dotenv()

# Postgres (empty → in-memory stores)
DATABASE_URL = os.getenv("DATABASE_URL", "")
DB_POOL_MIN = int(os.getenv("DB_POOL_MIN", "1"))
DB_POOL_MAX = int(os.getenv("DB_POOL_MAX", "10"))

# Agent services
STORY_AGENT_URL = os.getenv("STORY_AGENT_URL", "http://localhost:3002")
ASSET_AGENT_URL = os.getenv("ASSET_AGENT_URL", "http://localhost:3003")
CODE_AGENT_URL = os.getenv("CODE_AGENT_URL", "http://localhost:3004")
DEPLOY_AGENT_URL = os.getenv("DEPLOY_AGENT_URL", "http://localhost:3005")

# Per-stage timeouts (seconds)
STORY_AGENT_TIMEOUT = float(os.getenv("STORY_AGENT_TIMEOUT", "30"))
ASSET_AGENT_TIMEOUT = float(os.getenv("ASSET_AGENT_TIMEOUT", "60"))
CODE_AGENT_TIMEOUT = float(os.getenv("CODE_AGENT_TIMEOUT", "60"))
DEPLOY_AGENT_TIMEOUT = float(os.getenv("DEPLOY_AGENT_TIMEOUT", "120"))

# Retry policy
RETRY_MAX_ATTEMPTS = int(os.getenv("RETRY_MAX_ATTEMPTS", "3"))
RETRY_INITIAL_DELAY = float(os.getenv("RETRY_INITIAL_DELAY", "2.0"))
RETRY_BACKOFF_MULTIPLIER = float(os.getenv("RETRY_BACKOFF_MULTIPLIER", "2.0"))
RETRY_MAX_DELAY = float(os.getenv("RETRY_MAX_DELAY", "30.0"))

# Log stream
LOG_BUFFER_SIZE = int(os.getenv("LOG_BUFFER_SIZE", "100"))
LOG_RETENTION_SEC = float(os.getenv("LOG_RETENTION_SEC", "300"))

# Content-addressed storage (empty URL → local content-hash uploader)
STORACHA_URL = os.getenv("STORACHA_URL", "")
STORACHA_TOKEN = os.getenv("STORACHA_TOKEN", "")
STORACHA_TIMEOUT = float(os.getenv("STORACHA_TIMEOUT", "60"))

# Rewards: stage → (HHCW amount, ledger reason)
STAGE_REWARDS = {
    "story": (10, "upload_story"),
    "asset": (10, "upload_image"),
    "code": (10, "upload_code"),
    "deploy": (10, "deploy_game"),
}
