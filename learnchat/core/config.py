import logging

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import Dict, Optional


class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False
    DEFAULT_LOCALE: str = "ja"

    # Text generation (Groq)
    GROQ_API_KEY: Optional[str] = None
    LLM_TIMEOUT_SECONDS: float = 60.0
    CHAT_MODEL_STANDARD: str = "llama-3.3-70b-versatile"
    CHAT_MODEL_ADVANCED: str = "openai/gpt-oss-120b"
    AUX_MODEL: str = "llama-3.1-8b-instant"
    CHAT_MAX_TOKENS: int = 4096

    # Database & Cache
    DATABASE_URL: Optional[str] = None
    TEST_DATABASE_URL: Optional[str] = None
    REDIS_URL: str = "redis://localhost:6379"

    # Auth
    AUTH_JWT_SECRET: Optional[str] = None
    AUTH_JWT_ALGORITHM: str = "HS256"
    AUTH_ALLOW_USER_HEADER: bool = True  # X-User-Id fallback (dev/tests)

    # Credits
    LOW_BALANCE_TURNS: int = 5

    # Rate limiting
    RATE_LIMIT_ENABLED: bool = False
    RATE_LIMIT_BACKEND: str = "memory"  # memory | redis
    RATE_LIMIT_WINDOW_SECONDS: int = 60
    RATE_LIMIT_CHAT: int = 60
    RATE_LIMIT_LEARNING: int = 30
    RATE_LIMIT_CONVERSATION: int = 20
    RATE_LIMIT_API: int = 100
    RATE_LIMIT_AUTH: int = 5
    RATE_LIMIT_ADMIN: int = 30

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def chat_model_ids(self) -> Dict[str, str]:
        """Map plan model keys to provider model ids."""
        return {
            "standard": self.CHAT_MODEL_STANDARD,
            "advanced": self.CHAT_MODEL_ADVANCED,
        }


settings = Settings()


def validate_config(strict: Optional[bool] = None, settings_obj: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Validate required configuration.

    In strict mode raise RuntimeError; otherwise emit warnings only.
    Secrets are not logged, only missing keys.
    """
    cfg = settings_obj or settings
    log = logger or logging.getLogger("learnchat")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    required_keys = [
        "DATABASE_URL",
        "GROQ_API_KEY",
        "AUTH_JWT_SECRET",
    ]

    missing = [key for key in required_keys if not getattr(cfg, key, None)]
    if missing:
        message = f"Missing required configuration: {', '.join(missing)}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    if cfg.RATE_LIMIT_BACKEND not in {"memory", "redis"}:
        message = f"Unknown RATE_LIMIT_BACKEND: {cfg.RATE_LIMIT_BACKEND}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    return True
