"""
Configuration for the expense tracker service
"""

import os
from dataclasses import dataclass
from typing import List, Optional

from dotenv import load_dotenv

# Searches the current dir and its parents for a .env file
load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass
class Settings:
    """Settings read once at startup"""

    # Database
    mongodb_uri: Optional[str] = None
    db_name: str = "expense_tracker"
    expenses_collection: str = "expenses"

    # Dashboard
    page_size: int = 5

    # HTTP
    rate_limit: str = "60/minute"
    rate_limit_enabled: bool = True
    cors_origins: List[str] = None
    max_body_size: int = 16 * 1024  # 16KB

    # Identity headers set by the OAuth proxy in front of the app
    auth_uid_header: str = "X-Forwarded-User"
    auth_email_header: str = "X-Forwarded-Email"
    auth_proxy_prefix: str = "/oauth2"

    log_level: str = "INFO"

    def __post_init__(self):
        if self.cors_origins is None:
            self.cors_origins = ["*"]

    @classmethod
    def from_env(cls) -> "Settings":
        """Create settings from environment variables"""
        return cls(
            mongodb_uri=os.getenv("MONGODB_URI"),
            db_name=os.getenv("DB_NAME", "expense_tracker"),
            expenses_collection=os.getenv("EXPENSES_COLLECTION", "expenses"),
            page_size=int(os.getenv("PAGE_SIZE", "5")),
            rate_limit=os.getenv("RATE_LIMIT", "60/minute"),
            rate_limit_enabled=_env_bool("RATE_LIMIT_ENABLED", "true"),
            cors_origins=[o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()],
            max_body_size=int(os.getenv("MAX_BODY_SIZE", str(16 * 1024))),
            auth_uid_header=os.getenv("AUTH_UID_HEADER", "X-Forwarded-User"),
            auth_email_header=os.getenv("AUTH_EMAIL_HEADER", "X-Forwarded-Email"),
            auth_proxy_prefix=os.getenv("AUTH_PROXY_PREFIX", "/oauth2").rstrip("/"),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )


# Global settings instance
settings = Settings.from_env()
