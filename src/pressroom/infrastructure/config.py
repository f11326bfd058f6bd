"""Configuration constants, .env parsing, and collaborator timeout settings."""

from __future__ import annotations

import os
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


def read_env_file(keys: list[str]) -> dict[str, str]:
    """Parse .env file and return values for requested keys.

    Does NOT load into os.environ; callers decide what to do with values.
    """
    env_file = Path.cwd() / ".env"
    try:
        content = env_file.read_text()
    except OSError:
        return {}

    result: dict[str, str] = {}
    wanted = set(keys)

    for line in content.splitlines():
        trimmed = line.strip()
        if not trimmed or trimmed.startswith("#"):
            continue
        eq_idx = trimmed.find("=")
        if eq_idx == -1:
            continue
        key = trimmed[:eq_idx].strip()
        if key not in wanted:
            continue
        value = trimmed[eq_idx + 1 :].strip()
        if (value.startswith('"') and value.endswith('"')) or (value.startswith("'") and value.endswith("'")):
            value = value[1:-1]
        if value:
            result[key] = value

    return result


_ENV_KEYS = [
    "PRESSROOM_DB_PATH",
    "PRESSROOM_COLLABORATORS",
    "DUE_POST_POLL_INTERVAL",
    "JOB_POLL_INTERVAL",
    "SCHEDULED_POST_MAX_ATTEMPTS",
    "BULK_ITEM_DELAY",
    "BULK_ITEM_CONCURRENCY",
    "BULK_MAX_WORKERS",
    "DEFAULT_MAX_ITEMS_PER_RUN",
    "GENERATION_TIMEOUT",
    "METADATA_TIMEOUT",
    "IMAGE_TIMEOUT",
    "PUBLISH_TIMEOUT",
    "MEDIA_UPLOAD_TIMEOUT",
    "FEED_TIMEOUT",
]

# Read config values from .env (os.environ wins).
_env_config = read_env_file(_ENV_KEYS)


def _setting(key: str, default: str) -> str:
    return os.environ.get(key) or _env_config.get(key, default)


PROJECT_ROOT: Path = Path.cwd()
STORE_DIR: Path = (PROJECT_ROOT / "store").resolve()
DB_PATH: Path = Path(_setting("PRESSROOM_DB_PATH", str(STORE_DIR / "pressroom.db")))
COLLABORATORS_FACTORY: str = _setting("PRESSROOM_COLLABORATORS", "")

DUE_POST_POLL_INTERVAL: float = float(_setting("DUE_POST_POLL_INTERVAL", "60"))  # seconds
SCHEDULED_POST_MAX_ATTEMPTS: int = max(1, int(_setting("SCHEDULED_POST_MAX_ATTEMPTS", "3")))
JOB_POLL_INTERVAL: float = float(_setting("JOB_POLL_INTERVAL", "5"))  # seconds

BULK_ITEM_DELAY: float = float(_setting("BULK_ITEM_DELAY", "1.0"))
BULK_ITEM_CONCURRENCY: int = max(1, int(_setting("BULK_ITEM_CONCURRENCY", "1")))
BULK_MAX_WORKERS: int = max(1, int(_setting("BULK_MAX_WORKERS", "1")))

DEFAULT_MAX_ITEMS_PER_RUN: int = max(1, int(_setting("DEFAULT_MAX_ITEMS_PER_RUN", "20")))
MAX_IMAGE_PHRASES: int = 3
IMAGES_PER_PHRASE: int = 5
MAX_INLINE_IMAGES: int = 4

GENERATION_TIMEOUT: float = float(_setting("GENERATION_TIMEOUT", "300"))
METADATA_TIMEOUT: float = float(_setting("METADATA_TIMEOUT", "120"))
IMAGE_TIMEOUT: float = float(_setting("IMAGE_TIMEOUT", "30"))
PUBLISH_TIMEOUT: float = float(_setting("PUBLISH_TIMEOUT", "30"))
MEDIA_UPLOAD_TIMEOUT: float = float(_setting("MEDIA_UPLOAD_TIMEOUT", "300"))
FEED_TIMEOUT: float = float(_setting("FEED_TIMEOUT", "30"))


def _resolve_timezone() -> str:
    tz = os.environ.get("TZ", "")
    if not tz:
        tz_file = Path("/etc/timezone")
        try:
            if tz_file.exists():
                tz = tz_file.read_text().strip()
            else:
                # /etc/localtime -> /usr/share/zoneinfo/Europe/Berlin
                parts = Path("/etc/localtime").resolve().parts
                if "zoneinfo" in parts:
                    tz = "/".join(parts[parts.index("zoneinfo") + 1 :])
        except OSError:
            tz = ""

    if not tz:
        return "UTC"

    try:
        ZoneInfo(tz)
        return tz
    except (ZoneInfoNotFoundError, ValueError):
        return "UTC"


TIMEZONE: str = _resolve_timezone()


class TimeoutConfig:
    """Per-collaborator call timeouts, in seconds."""

    def __init__(
        self,
        generation: float = GENERATION_TIMEOUT,
        metadata: float = METADATA_TIMEOUT,
        images: float = IMAGE_TIMEOUT,
        publish: float = PUBLISH_TIMEOUT,
        media_upload: float = MEDIA_UPLOAD_TIMEOUT,
        feed: float = FEED_TIMEOUT,
    ) -> None:
        self.generation = generation
        self.metadata = metadata
        self.images = images
        self.publish = publish
        self.media_upload = media_upload
        self.feed = feed

    def for_collaborator(self, name: str) -> float:
        """Timeout for a named collaborator call; unknown names get the publish timeout."""
        return {
            "content": self.generation,
            "metadata": self.metadata,
            "images": self.images,
            "publisher": self.publish,
            "media": self.media_upload,
            "feed": self.feed,
        }.get(name, self.publish)

    @classmethod
    def uniform(cls, seconds: float) -> TimeoutConfig:
        """Same timeout for every collaborator. Handy for tests."""
        return cls(seconds, seconds, seconds, seconds, seconds, seconds)
