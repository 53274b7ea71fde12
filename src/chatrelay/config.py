from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = Field(default="chatrelay")
    app_version: str = Field(default="0.1.0")
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)
    # "development" exposes raw error messages in HTTP error bodies
    environment: str = Field(default="production")

    # Response cache
    redis_url: str = Field(default="redis://redis:6379")
    cache_enabled: bool = Field(default=True)
    cache_ttl: int = Field(default=3600)

    # Observability
    otel_exporter_otlp_endpoint: str = Field(default="http://jaeger:4318")
    otel_service_name: str = Field(default="chatrelay")
    log_level: str = Field(default="INFO")

    # LLM provider API keys, stored as SecretStr to avoid accidental logging
    openai_api_key: SecretStr | None = Field(default=None)
    anthropic_api_key: SecretStr | None = Field(default=None)
    deepseek_api_key: SecretStr | None = Field(default=None)
    openrouter_api_key: SecretStr | None = Field(default=None)
    openrouter_base_url: str = Field(default="https://openrouter.ai/api/v1")

    # LLM call behaviour
    llm_timeout: int = Field(default=60)
    llm_max_retries: int = Field(default=3)
    llm_retry_base_delay: float = Field(default=1.0)
    default_chat_model: str = Field(default="deepseek-chat")

    # Request deadlines, in seconds
    chat_timeout: float = Field(default=15.0)
    ai_builder_timeout: float = Field(default=30.0)
    enhancer_timeout: float = Field(default=10.0)
    integration_timeout: float = Field(default=20.0)
    default_timeout: float = Field(default=5.0)

    # Alert thresholds
    slow_response_threshold: float = Field(default=5.0)
    high_cost_threshold: float = Field(default=0.1)

    @property
    def expose_error_details(self) -> bool:
        return self.environment.lower() == "development"

    def api_keys(self) -> dict[str, str | None]:
        """Plain-text API keys by provider name; ``None`` when unset."""
        keys = {
            "openai": self.openai_api_key,
            "anthropic": self.anthropic_api_key,
            "deepseek": self.deepseek_api_key,
            "openrouter": self.openrouter_api_key,
        }
        return {
            name: secret.get_secret_value() if secret is not None else None
            for name, secret in keys.items()
        }


settings = Settings()
