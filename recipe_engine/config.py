"""
Runtime configuration.

Settings are read once from the environment (and a .env file, via
python-dotenv) and passed explicitly to the components that need them.
"""

import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from dotenv import load_dotenv


def _bool(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _parse_tokens(raw: str) -> Dict[str, str]:
    """API_TOKENS="token1:user1,token2:user2" -> {token: user_id}"""
    tokens: Dict[str, str] = {}
    for pair in raw.split(","):
        pair = pair.strip()
        if not pair:
            continue
        token, _, user_id = pair.partition(":")
        if token and user_id:
            tokens[token.strip()] = user_id.strip()
    return tokens


def normalize_database_url(url: str) -> str:
    # Railway/Heroku style URLs use the deprecated postgres:// scheme
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql://", 1)
    return url


@dataclass(frozen=True)
class Settings:
    database_url: str = "sqlite:///./recipes.db"
    redis_url: str = "redis://localhost:6379/0"

    log_level: str = "INFO"
    json_logs: bool = False
    log_file: Optional[str] = None

    # "celery" (worker queue) or "inline" (FastAPI background task)
    execution_backend: str = "celery"

    asset_dir: str = "./assets"
    asset_base_url: Optional[str] = None

    persistence_max_attempts: int = 3
    persistence_backoff_seconds: float = 0.5

    api_tokens: Dict[str, str] = field(default_factory=dict)
    auth_disabled: bool = False
    cors_origins: List[str] = field(default_factory=lambda: [
        "http://localhost:3000",
        "http://localhost:5173",
    ])

    openai_api_key: Optional[str] = None
    anthropic_api_key: Optional[str] = None
    gemini_api_key: Optional[str] = None

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv()

        cors = os.getenv("CORS_ORIGINS")
        return cls(
            database_url=normalize_database_url(os.getenv("DATABASE_URL", cls.database_url)),
            redis_url=os.getenv("REDIS_URL", cls.redis_url),
            log_level=os.getenv("LOG_LEVEL", cls.log_level).upper(),
            json_logs=_bool(os.getenv("JSON_LOGS")),
            log_file=os.getenv("LOG_FILE") or None,
            execution_backend=os.getenv("EXECUTION_BACKEND", cls.execution_backend).lower(),
            asset_dir=os.getenv("ASSET_DIR", cls.asset_dir),
            asset_base_url=os.getenv("ASSET_BASE_URL") or None,
            persistence_max_attempts=int(os.getenv("PERSISTENCE_MAX_ATTEMPTS", "3")),
            persistence_backoff_seconds=float(os.getenv("PERSISTENCE_BACKOFF_SECONDS", "0.5")),
            api_tokens=_parse_tokens(os.getenv("API_TOKENS", "")),
            auth_disabled=_bool(os.getenv("AUTH_DISABLED")),
            cors_origins=[o.strip() for o in cors.split(",") if o.strip()] if cors else cls().cors_origins,
            openai_api_key=os.getenv("OPENAI_API_KEY") or None,
            anthropic_api_key=os.getenv("ANTHROPIC_API_KEY") or None,
            gemini_api_key=os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY") or None,
        )
