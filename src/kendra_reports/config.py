"""
Environment-driven settings for the reporting backend.
"""

from __future__ import annotations

import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from .errors import ConfigurationError

BACKEND_URL_ENV = "KENDRA_REPORTS_BACKEND_URL"
ACCESS_KEY_ENV = "KENDRA_REPORTS_ACCESS_KEY"


class Settings(BaseModel):
    backend_url: str
    access_key: str
    page_size: int = Field(20, ge=1)
    trend_weeks: int = Field(5, ge=1)
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None) -> "Settings":
        load_dotenv(dotenv_path)

        backend_url = os.getenv(BACKEND_URL_ENV)
        access_key = os.getenv(ACCESS_KEY_ENV)
        missing = [
            name
            for name, value in ((BACKEND_URL_ENV, backend_url), (ACCESS_KEY_ENV, access_key))
            if not value
        ]
        if missing:
            raise ConfigurationError(
                f"Missing required environment variables: {', '.join(missing)}",
                kind="missing_environment",
            )

        return cls(
            backend_url=backend_url,
            access_key=access_key,
            page_size=_env_int("KENDRA_REPORTS_PAGE_SIZE", 20),
            trend_weeks=_env_int("KENDRA_REPORTS_TREND_WEEKS", 5),
            log_level=os.getenv("KENDRA_REPORTS_LOG_LEVEL", "INFO").upper(),
        )


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default
