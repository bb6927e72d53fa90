from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_ALLOWED_ORIGINS = [
    "http://localhost:5173",  # Vite dev server
    "http://localhost:5174",
    "http://localhost:3000",
]


def _env_bool(name: str, default: bool = False) -> bool:
    return os.getenv(name, str(default)).lower() == "true"


def _env_list(name: str, default: List[str]) -> List[str]:
    raw = os.getenv(name)
    if not raw:
        return list(default)
    return [item.strip() for item in raw.split(",") if item.strip()]


@dataclass(frozen=True)
class Settings:
    port: int = 3000
    app_env: str = "development"

    # AI provider
    gemini_api_key: Optional[str] = None
    gemini_model: str = "gemini-1.5-flash"
    gemini_api_base: str = "https://generativelanguage.googleapis.com/v1beta"
    use_openai_api: bool = False
    openai_api_base: Optional[str] = None  # e.g. "http://localhost:8080/v1"
    openai_api_key: Optional[str] = None
    openai_api_model: str = "gpt-4o-mini"
    ai_timeout_seconds: float = 45.0

    # Storage
    mongo_uri: str = "mongodb://localhost:27017"
    db_name: str = "codecollab"
    redis_url: str = "redis://localhost:6379/0"
    message_ttl_seconds: int = 24 * 60 * 60

    # Auth
    jwt_secret: Optional[str] = None
    jwt_algorithm: str = "HS256"
    jwt_expires_hours: int = 24

    allowed_origins: List[str] = field(default_factory=lambda: list(DEFAULT_ALLOWED_ORIGINS))
    log_level: str = "INFO"

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            port=int(os.getenv("PORT", "3000")),
            app_env=os.getenv("APP_ENV", "development"),
            gemini_api_key=os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_AI_KEY"),
            gemini_model=os.getenv("GEMINI_MODEL", "gemini-1.5-flash"),
            gemini_api_base=os.getenv("GEMINI_API_BASE", "https://generativelanguage.googleapis.com/v1beta"),
            use_openai_api=_env_bool("USE_OPENAI_API"),
            openai_api_base=os.getenv("OPENAI_API_BASE", None),
            openai_api_key=os.getenv("OPENAI_API_KEY", None),
            openai_api_model=os.getenv("OPENAI_API_MODEL", "gpt-4o-mini"),
            ai_timeout_seconds=float(os.getenv("AI_TIMEOUT_SECONDS", "45")),
            mongo_uri=os.getenv("MONGO_URI", "mongodb://localhost:27017"),
            db_name=os.getenv("DB_NAME", "codecollab"),
            redis_url=os.getenv("REDIS_URL", "redis://localhost:6379/0"),
            message_ttl_seconds=int(os.getenv("MESSAGE_TTL_SECONDS", str(24 * 60 * 60))),
            jwt_secret=os.getenv("JWT_SECRET"),
            jwt_expires_hours=int(os.getenv("JWT_EXPIRES_HOURS", "24")),
            allowed_origins=_env_list("ALLOWED_ORIGINS", DEFAULT_ALLOWED_ORIGINS),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )

    def warn_missing(self) -> None:
        """Log the settings the server can start without but will misbehave without."""
        if not self.gemini_api_key and not (self.use_openai_api and self.openai_api_base):
            logger.warning("GEMINI_API_KEY (or GOOGLE_AI_KEY) is not set; AI requests will fail")
        if not os.getenv("MONGO_URI"):
            logger.warning("MONGO_URI is not set; using %s", self.mongo_uri)
        if not self.jwt_secret:
            logger.warning("JWT_SECRET is not set; authentication will reject every token")


def configure_logging(level: Optional[str] = None) -> None:
    logging.basicConfig(
        level=level or settings.log_level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


settings = Settings.from_env()
