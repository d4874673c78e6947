"""
Application Configuration
Reads settings from environment variables (and a local .env file)
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Settings:
    """Runtime settings for the API process."""

    mongo_uri: str = "mongodb://localhost:27017/ridehail"
    jwt_secret_key: str = "your-secret-key-change-in-production"
    access_token_expire_hours: int = 24 * 7  # 7 days
    auth_rate_limit_max: int = 5
    auth_rate_limit_window_seconds: int = 15 * 60
    surge_pricing_enabled: bool = False
    google_maps_api_key: Optional[str] = None
    log_level: str = "INFO"
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    # Only enable behind a proxy that overwrites X-Forwarded-For
    trust_forwarded_for: bool = False

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from the process environment."""
        origins = os.getenv("CORS_ORIGINS", "*")
        return cls(
            mongo_uri=os.getenv("MONGO_URI", cls.mongo_uri),
            jwt_secret_key=os.getenv("JWT_SECRET_KEY", cls.jwt_secret_key),
            access_token_expire_hours=int(
                os.getenv("ACCESS_TOKEN_EXPIRE_HOURS", cls.access_token_expire_hours)
            ),
            auth_rate_limit_max=int(
                os.getenv("AUTH_RATE_LIMIT_MAX", cls.auth_rate_limit_max)
            ),
            auth_rate_limit_window_seconds=int(
                os.getenv(
                    "AUTH_RATE_LIMIT_WINDOW_SECONDS",
                    cls.auth_rate_limit_window_seconds,
                )
            ),
            surge_pricing_enabled=_env_bool("SURGE_PRICING_ENABLED"),
            google_maps_api_key=os.getenv("GOOGLE_MAPS_API_KEY") or None,
            log_level=os.getenv("LOG_LEVEL", cls.log_level).upper(),
            cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
            trust_forwarded_for=_env_bool("TRUST_FORWARDED_FOR"),
        )
