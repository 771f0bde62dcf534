import os
import re
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

from errors import ConfigurationError


# Load environment variables from .env file
load_dotenv()

DEFAULT_GOOGLE_SCOPES = [
    "https://www.googleapis.com/auth/calendar.readonly",
    "https://www.googleapis.com/auth/userinfo.email",
    "https://www.googleapis.com/auth/userinfo.profile",
]


def _split_list(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    return [item.strip() for item in re.split(r"[,\s]+", raw) if item.strip()]


@dataclass(frozen=True)
class GoogleConfig:
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    redirect_uri: Optional[str] = None
    scopes: List[str] = field(default_factory=lambda: list(DEFAULT_GOOGLE_SCOPES))
    timeout: float = 20.0

    def require(self) -> "GoogleConfig":
        if not self.client_id or not self.client_secret:
            raise ConfigurationError(
                "Google OAuth is not configured. Set GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET."
            )
        return self


@dataclass(frozen=True)
class AppConfig:
    allowed_origins: List[str]
    frontend_url: Optional[str]
    default_timezone: str
    auto_sync_interval: int
    log_level: str


def load_google_config() -> GoogleConfig:
    return GoogleConfig(
        client_id=os.environ.get("GOOGLE_CLIENT_ID"),
        client_secret=os.environ.get("GOOGLE_CLIENT_SECRET"),
        redirect_uri=os.environ.get("GOOGLE_REDIRECT_URI"),
        scopes=_split_list(os.environ.get("GOOGLE_SCOPES")) or list(DEFAULT_GOOGLE_SCOPES),
        timeout=float(os.environ.get("GOOGLE_HTTP_TIMEOUT", "20")),
    )


def load_app_config() -> AppConfig:
    return AppConfig(
        allowed_origins=[
            origin.strip()
            for origin in os.environ.get("ALLOWED_ORIGINS", "*").split(",")
            if origin.strip()
        ],
        frontend_url=os.environ.get("FRONTEND_URL"),
        default_timezone=os.environ.get("DEFAULT_TIMEZONE", "UTC"),
        auto_sync_interval=int(os.environ.get("AUTO_SYNC_INTERVAL_SECONDS", "0")),
        log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    )
