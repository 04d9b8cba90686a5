"""Centralized configuration — all env vars in one place."""

import os


def _bool_env(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Settings:
    """Application settings loaded from environment variables."""

    def __init__(self):
        self.cors_origins: list[str] = os.getenv("CORS_ORIGINS", "*").split(",")
        self.git_sha: str = os.getenv("GIT_SHA", "unknown")
        self.environment: str = os.getenv("ENVIRONMENT", "local")

        # Cache table
        self.database_url: str = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./coinlens.db")
        self.database_echo: bool = _bool_env("DATABASE_ECHO")
        self.cache_default_ttl: int = int(os.getenv("CACHE_DEFAULT_TTL", "3600"))

        # Warm-up job
        self.cron_secret: str | None = os.getenv("CRON_SECRET")
        self.warmup_delay_seconds: float = float(os.getenv("WARMUP_DELAY_SECONDS", "1.0"))

        # Market data
        self.http_timeout_seconds: float = float(os.getenv("HTTP_TIMEOUT_SECONDS", "10"))
        self.coingecko_base_url: str = os.getenv("COINGECKO_BASE_URL", "https://api.coingecko.com/api/v3")
        self.fear_greed_url: str = os.getenv("FEAR_GREED_URL", "https://api.alternative.me/fng/")

        # AI model (OpenAI key, or Azure endpoint + managed identity)
        self.openai_api_key: str | None = os.getenv("OPENAI_API_KEY")
        self.llm_endpoint: str | None = os.getenv("LLM_ENDPOINT")
        self.llm_model: str = os.getenv("LLM_MODEL", "gpt-4o-mini")
        self.managed_identity_client_id: str | None = os.getenv("MANAGED_IDENTITY_CLIENT_ID")

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def uses_managed_identity(self) -> bool:
        return not self.openai_api_key

    def validate(self) -> list[str]:
        """Return list of missing env vars for AI features and the warm-up job."""
        if self.uses_managed_identity:
            required = ["LLM_ENDPOINT", "MANAGED_IDENTITY_CLIENT_ID"]
        else:
            required = []
        required.append("CRON_SECRET")
        return [var for var in required if not getattr(self, _attr_for(var))]


settings = Settings()


def _attr_for(env_var: str) -> str:
    """Map env var name to Settings attribute name."""
    mapping = {
        "LLM_ENDPOINT": "llm_endpoint",
        "MANAGED_IDENTITY_CLIENT_ID": "managed_identity_client_id",
        "CRON_SECRET": "cron_secret",
    }
    return mapping.get(env_var, env_var.lower())
