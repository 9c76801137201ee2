"""
Configuration — loads settings from environment / .env file.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# Paths
PROJECT_ROOT = Path(__file__).parent
RUNS_DIR = Path(os.getenv("SNAPSHOT_RUNS_DIR", str(PROJECT_ROOT / "snapshot_runs")))

# Capture service
ASSISTANT_API_URL = os.getenv("ASSISTANT_API_URL", "")
ASSISTANT_API_KEY = os.getenv("ASSISTANT_API_KEY", "")
CAPTURE_TIMEOUT_SECONDS = float(os.getenv("CAPTURE_TIMEOUT_SECONDS", "90"))

# Temporal
TEMPORAL_HOST = os.getenv("TEMPORAL_HOST", "localhost:7233")
TEMPORAL_TASK_QUEUE = "news-snapshotter-queue"
TEMPORAL_NAMESPACE = "default"

# Postgres (step records + runs). Empty means in-memory only.
DATABASE_URL = os.getenv("DATABASE_URL", "")

# Batching
BATCH_SIZE = 3
BATCH_DELAY_SECONDS = 5

# Batch step retries: RETRY_LIMIT retries after the first attempt
RETRY_LIMIT = 3
RETRY_BASE_DELAY_SECONDS = 10
RETRY_BACKOFF = "exponential"

# Render options sent with every capture request
VIEWPORT = {"width": 1740, "height": 1008}
NAVIGATION_WAIT_UNTIL = "networkidle0"
NAVIGATION_TIMEOUT_MS = 60_000


class ConfigurationError(Exception):
    """Required configuration is missing or invalid."""


@dataclass(frozen=True)
class SnapshotSettings:
    """Explicit settings handed to the run controllers and activities."""
    api_url: str = ""
    api_key: str = ""
    capture_timeout: float = CAPTURE_TIMEOUT_SECONDS

    @classmethod
    def from_env(cls) -> "SnapshotSettings":
        return cls(
            api_url=ASSISTANT_API_URL.rstrip("/"),
            api_key=ASSISTANT_API_KEY,
            capture_timeout=CAPTURE_TIMEOUT_SECONDS,
        )

    def validate(self) -> "SnapshotSettings":
        """Raise ConfigurationError unless the capture service is configured."""
        missing = [name for name, value in (("api_url", self.api_url), ("api_key", self.api_key)) if not value]
        if missing:
            raise ConfigurationError(
                f"API URL and API Key are required (missing: {', '.join(missing)})"
            )
        return self
