"""Configuration management."""

import os
from typing import Optional
from pathlib import Path
from dotenv import load_dotenv

# Load .env file from project root
# This ensures dotenv works regardless of where the script is run from
project_root = Path(__file__).parent.parent.parent
env_file = project_root / ".env"

# override=False means existing environment variables take precedence
load_dotenv(dotenv_path=env_file, override=False)


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return int(value)


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return float(value)


class Config:
    """Application configuration."""
    # Database
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./chathub.db")

    # Redis (shared rate limits, push queue)
    REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")

    # Application
    APP_ENV: str = os.getenv("APP_ENV", "development")
    DEBUG: bool = os.getenv("DEBUG", "false").lower() == "true"
    CORS_ORIGINS: str = os.getenv("CORS_ORIGINS", "")

    # Bearer credentials issued by the identity service
    JWT_SECRET: str = os.getenv("JWT_SECRET", "change-me")
    JWT_ALGORITHM: str = os.getenv("JWT_ALGORITHM", "HS256")

    # Chat rules
    CHAT_DEFAULT_CHANNEL: str = os.getenv("CHAT_DEFAULT_CHANNEL", "general")
    CHAT_MAX_TEXT_LENGTH: int = _env_int("CHAT_MAX_TEXT_LENGTH", 2000)
    CHAT_EDIT_WINDOW_SECONDS: int = _env_int("CHAT_EDIT_WINDOW_SECONDS", 15 * 60)
    CHAT_MAX_EMOJI_LENGTH: int = _env_int("CHAT_MAX_EMOJI_LENGTH", 32)
    CHAT_SEARCH_LIMIT: int = _env_int("CHAT_SEARCH_LIMIT", 50)

    # Rate limiting: 'memory' (per process) or 'redis' (shared)
    RATE_LIMIT_BACKEND: str = os.getenv("RATE_LIMIT_BACKEND", "memory")
    RATE_LIMIT_CAPACITY: int = _env_int("RATE_LIMIT_CAPACITY", 30)
    RATE_LIMIT_WINDOW_SECONDS: int = _env_int("RATE_LIMIT_WINDOW_SECONDS", 60)
    RATE_LIMIT_SWEEP_SECONDS: int = _env_int("RATE_LIMIT_SWEEP_SECONDS", 60)

    # Push notification provider
    PUSH_PROVIDER_URL: Optional[str] = os.getenv("PUSH_PROVIDER_URL")
    PUSH_PROVIDER_KEY: Optional[str] = os.getenv("PUSH_PROVIDER_KEY")
    PUSH_TIMEOUT_SECONDS: float = _env_float("PUSH_TIMEOUT_SECONDS", 10.0)
    PUSH_BATCH_SIZE: int = _env_int("PUSH_BATCH_SIZE", 500)

    # Notification hand-off: 'memory' (in-process worker) or 'rq'
    NOTIFICATION_BACKEND: str = os.getenv("NOTIFICATION_BACKEND", "memory")
    NOTIFICATION_QUEUE_SIZE: int = _env_int("NOTIFICATION_QUEUE_SIZE", 1000)


config = Config()
