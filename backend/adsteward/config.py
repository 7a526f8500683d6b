import logging
from pydantic_settings import BaseSettings
from pydantic import model_validator, ConfigDict
from functools import lru_cache

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Environment: "development" or "production"
    environment: str = "development"
    log_level: str = "INFO"
    timezone: str = "Europe/Moscow"

    database_url: str = "postgresql+asyncpg://localhost/adsteward"

    @model_validator(mode="before")
    @classmethod
    def _fix_database_url_for_asyncpg(cls, values: dict) -> dict:
        """Hosted Postgres gives postgresql://; asyncpg needs postgresql+asyncpg://."""
        if not isinstance(values, dict):
            return values
        url = values.get("database_url") or ""
        if url.startswith("postgresql://") and "+asyncpg" not in url:
            values["database_url"] = url.replace("postgresql://", "postgresql+asyncpg://", 1)
        return values

    api_key: str = ""  # Required in production; in dev, empty = auth disabled
    cron_secret: str = ""

    # Yandex Direct API v5
    yandex_token: str = ""
    yandex_client_login: str = ""
    yandex_api_url: str = "https://api.direct.yandex.com/json/v5"
    yandex_sandbox: bool = False

    # LLM: "provider:model". OpenAI-compatible gateways (OpenRouter) via openai_base_url
    ai_model: str = "openai:gpt-4o"
    openai_api_key: str = ""
    openai_model: str = "gpt-4o"
    openai_base_url: str = ""
    anthropic_api_key: str = ""

    # Telegram Bot API
    telegram_bot_token: str = ""
    telegram_admin_chat_id: str = ""
    telegram_api_url: str = "https://api.telegram.org"

    # Policy values
    action_expiry_hours: int = 24
    clarification_confidence_threshold: float = 0.5
    clarification_menu_size: int = 5
    search_query_min_cost: float = 100.0
    search_query_min_clicks: int = 3
    search_query_limit: int = 20
    conversation_tail_size: int = 10
    knowledge_context_limit: int = 50
    dry_run_actions: bool = False
    default_goals: str = "Maximize conversions at optimal CPA"

    # Job workers per queue
    reports_concurrency: int = 1
    messages_concurrency: int = 3
    system_concurrency: int = 1

    learnings_log_path: str = "knowledge/learnings.md"

    @model_validator(mode="after")
    def _validate_production_settings(self) -> "Settings":
        """Enforce that critical secrets are set when running in production."""
        if self.is_production:
            if not self.api_key:
                raise ValueError(
                    "API_KEY must be set in production. "
                    "Generate one with: python -c \"import secrets; print(secrets.token_hex(32))\""
                )
            if not self.cron_secret:
                raise ValueError("CRON_SECRET must be set in production.")
            if not self.database_url or "localhost" in self.database_url:
                logger.warning("DATABASE_URL appears to point at localhost in production.")
        if not 0 <= self.clarification_confidence_threshold <= 1:
            raise ValueError("CLARIFICATION_CONFIDENCE_THRESHOLD must be between 0 and 1.")
        return self

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def queue_concurrency(self) -> dict[str, int]:
        return {
            "reports": self.reports_concurrency,
            "messages": self.messages_concurrency,
            "system": self.system_concurrency,
        }


@lru_cache
def get_settings() -> Settings:
    return Settings()
