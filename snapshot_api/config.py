"""Runtime configuration read from environment variables.

Environment variables:
    Required:
        MONGODB_URL - MongoDB connection URL (e.g., mongodb://...)

    Optional:
        MONGODB_DATABASE - Database name (default: snapshot)
        IDENTITY_API_KEY - Identity provider web API key
        IDENTITY_API_URL - Identity provider base URL
            (default: https://identitytoolkit.googleapis.com/v1)
        STORAGE_BUCKET - Blob store bucket for profile images
        STORAGE_API_URL - Blob store base URL
            (default: https://firebasestorage.googleapis.com/v0)
        HTTP_TIMEOUT - Timeout in seconds for identity/blob requests (default: 30)
        TRANSACTIONAL_SAVES - Save tag + increment counter in one transaction
            (default: true; set false for standalone MongoDB)
        UNSAVE_POLICY - "keep" (unsave never touches useCount) or "decrement"
            (default: keep)
        LOG_LEVEL - Logging level (default: INFO)

A ``.env`` file is loaded by the entry points (API and scripts) before
``Settings.from_env()`` is called.
"""

import os
from dataclasses import dataclass
from enum import Enum
from typing import Mapping, Optional

DEFAULT_IDENTITY_API_URL = "https://identitytoolkit.googleapis.com/v1"
DEFAULT_STORAGE_API_URL = "https://firebasestorage.googleapis.com/v0"


class UnsavePolicy(str, Enum):
    """How unsaving a tag affects its useCount."""
    KEEP = "keep"
    DECREMENT = "decrement"


def _parse_bool(value: Optional[str], default: bool) -> bool:
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Settings:
    mongodb_url: str
    mongodb_database: str = "snapshot"
    identity_api_key: str = ""
    identity_api_url: str = DEFAULT_IDENTITY_API_URL
    storage_bucket: str = ""
    storage_api_url: str = DEFAULT_STORAGE_API_URL
    http_timeout: float = 30.0
    transactional_saves: bool = True
    unsave_policy: UnsavePolicy = UnsavePolicy.KEEP
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """Build settings from environment variables.

        Raises:
            ValueError: If MONGODB_URL is missing or a value is malformed
        """
        env = os.environ if environ is None else environ

        mongodb_url = env.get("MONGODB_URL")
        if not mongodb_url:
            raise ValueError("MONGODB_URL environment variable required")

        policy_name = env.get("UNSAVE_POLICY", UnsavePolicy.KEEP.value).strip().lower()
        try:
            unsave_policy = UnsavePolicy(policy_name)
        except ValueError:
            raise ValueError(
                f"UNSAVE_POLICY must be one of: "
                f"{', '.join(p.value for p in UnsavePolicy)} (got {policy_name!r})"
            )

        return cls(
            mongodb_url=mongodb_url,
            mongodb_database=env.get("MONGODB_DATABASE", "snapshot"),
            identity_api_key=env.get("IDENTITY_API_KEY", ""),
            identity_api_url=env.get("IDENTITY_API_URL", DEFAULT_IDENTITY_API_URL),
            storage_bucket=env.get("STORAGE_BUCKET", ""),
            storage_api_url=env.get("STORAGE_API_URL", DEFAULT_STORAGE_API_URL),
            http_timeout=float(env.get("HTTP_TIMEOUT", "30")),
            transactional_saves=_parse_bool(env.get("TRANSACTIONAL_SAVES"), True),
            unsave_policy=unsave_policy,
            log_level=env.get("LOG_LEVEL", "INFO").upper(),
        )
