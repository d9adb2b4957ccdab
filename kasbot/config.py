from functools import lru_cache
from typing import Optional

from pydantic import AnyHttpUrl, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Centralised application settings, sourced from environment variables or .env."""

    app_name: str = Field(default="KasBot")
    environment: str = Field(default="development", alias="ENVIRONMENT")
    database_url: str = Field(alias="DATABASE_URL")
    direct_database_url: Optional[str] = Field(
        default=None,
        alias="DIRECT_DATABASE_URL",
        description="Optional direct Postgres connection string used for running migrations.",
    )
    auto_run_migrations: bool = Field(default=False, alias="AUTO_RUN_MIGRATIONS")

    bot_name: str = Field(
        default="KasAI",
        alias="BOT_NAME",
        description="Display name the bot introduces itself with.",
    )
    voice_replies_enabled: bool = Field(
        default=True,
        alias="VOICE_REPLIES_ENABLED",
        description="Deliver replies as voice notes when the user asks for it.",
    )
    parser_confidence_threshold: float = Field(
        default=0.6,
        alias="PARSER_CONFIDENCE_THRESHOLD",
        description="Minimum confidence for accepting the LLM parser output.",
        ge=0.0,
        le=1.0,
    )
    parser_timeout_seconds: float = Field(default=15.0, alias="PARSER_TIMEOUT_SECONDS", gt=0)
    store_timeout_seconds: float = Field(default=10.0, alias="STORE_TIMEOUT_SECONDS", gt=0)
    session_expiry_seconds: int = Field(
        default=5 * 60,
        alias="SESSION_EXPIRY_SECONDS",
        description="Idle time after which a pending transaction is discarded.",
        ge=10,
    )
    max_sessions: int = Field(default=10_000, alias="MAX_SESSIONS", ge=1)

    gemini_api_key: Optional[str] = Field(
        default=None, alias="GEMINI_API_KEY", description="Google Generative AI key"
    )
    gemini_model: str = Field(default="gemini-2.5-flash", alias="GEMINI_MODEL")

    telegram_bot_token: Optional[str] = Field(default=None, alias="TELEGRAM_BOT_TOKEN")
    telegram_webhook_secret: Optional[str] = Field(
        default=None, alias="TELEGRAM_WEBHOOK_SECRET"
    )
    telegram_register_webhook_on_start: bool = Field(
        default=False, alias="TELEGRAM_REGISTER_WEBHOOK_ON_START"
    )
    backend_base_url: Optional[AnyHttpUrl] = Field(
        default=None,
        alias="BACKEND_BASE_URL",
        description="The public URL where FastAPI is reachable (used by Telegram webhooks).",
    )
    internal_backend_base_url: Optional[AnyHttpUrl] = Field(
        default=None,
        alias="INTERNAL_BACKEND_BASE_URL",
        description="Internal URL used by services to avoid egress charges; falls back to BACKEND_BASE_URL.",
    )

    elevenlabs_api_key: Optional[str] = Field(default=None, alias="ELEVENLABS_API_KEY")
    elevenlabs_voice_id: str = Field(default="pNInz6obpgDQGcFmaJgB", alias="ELEVENLABS_VOICE_ID")
    elevenlabs_model: str = Field(default="eleven_multilingual_v2", alias="ELEVENLABS_MODEL")
    elevenlabs_base_url: AnyHttpUrl = Field(
        default="https://api.elevenlabs.io/v1", alias="ELEVENLABS_BASE_URL"
    )
    elevenlabs_language_id: str = Field(default="id", alias="ELEVENLABS_LANGUAGE_ID")

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Cached accessor so imports share a single settings instance."""
    return Settings()  # type: ignore[call-arg]
