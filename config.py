import logging
import os
import sys
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

load_dotenv()

LOG_FORMAT = "%(asctime)s - %(name)s - [%(levelname)-7s] - %(message)s"


def _split(value: str) -> List[str]:
    return [v.strip() for v in value.split(",") if v.strip()]


@dataclass(frozen=True)
class Settings:
    database_url: str = "sqlite:///./storefront.db"
    port: int = 8000
    token_secret: str = "dev-secret-change"
    token_expire_days: int = 10
    frontend_domain_url: str = "http://localhost:3000"
    stripe_secret_key: str = ""
    stripe_webhook_secret: Optional[str] = None
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database_url=os.getenv("DATABASE_URL", cls.database_url),
            port=int(os.getenv("PORT", cls.port)),
            token_secret=os.getenv("TOKEN_SECRET", cls.token_secret),
            token_expire_days=int(os.getenv("TOKEN_EXPIRE_DAYS", cls.token_expire_days)),
            frontend_domain_url=os.getenv("FRONTEND_DOMAIN_URL", cls.frontend_domain_url).rstrip("/"),
            stripe_secret_key=os.getenv("STRIPE_SECRET_KEY", ""),
            stripe_webhook_secret=os.getenv("STRIPE_WEBHOOK_SECRET") or None,
            cors_origins=_split(os.getenv("CORS_ORIGINS", "*")),
            log_level=os.getenv("LOG_LEVEL", cls.log_level).upper(),
        )


def setup_logging(level: str = "INFO") -> None:
    """Configure the root logger once; repeated calls only adjust the level."""
    root = logging.getLogger()
    root.setLevel(level)
    if not root.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)
