import os
from functools import lru_cache
from typing import Literal, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Pocketbase (message store)
    store_backend: Literal["pocketbase", "memory"] = "pocketbase"
    pocketbase_url: str = "http://pocketbase:8090"
    pocketbase_admin_email: Optional[str] = None
    pocketbase_admin_password: Optional[str] = None

    # Redis (notification bus + producer leases)
    bus_backend: Literal["redis", "memory"] = "redis"
    redis_url: str = "redis://redis:6379"

    # LLM Providers
    anthropic_api_key: Optional[str] = None
    openai_api_key: Optional[str] = None
    google_api_key: Optional[str] = None

    # Defaults when a request does not name a provider/model
    llm_provider: str = "openai"  # openai, anthropic, google
    llm_model: str = "gpt-4o"

    # Producer / gateway
    heartbeat_interval: float = 25.0
    persist_interval: float = 0.0  # 0 = persist every fragment
    lease_ttl: int = 600
    dedent_output: bool = False

    # Viewer-side stream controller
    client_base_delay: float = 3.0
    client_backoff_factor: float = 1.5
    client_max_delay: float = 30.0
    client_jitter: float = 2.0
    client_max_retries: int = 5
    client_liveness_timeout: float = 45.0

    # App settings
    log_level: str = "INFO"

    @field_validator("pocketbase_url")
    @classmethod
    def pocketbase_url_not_empty(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("POCKETBASE_URL is required and cannot be empty")
        return v

    @field_validator("redis_url")
    @classmethod
    def redis_url_not_empty(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("REDIS_URL is required and cannot be empty")
        return v

    @field_validator("heartbeat_interval", "client_liveness_timeout")
    @classmethod
    def interval_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("intervals must be positive")
        return v

    def get_llm_model(self, provider: Optional[str] = None, model: Optional[str] = None) -> str:
        """
        Get the LLM model string for pydantic-ai.

        Returns model in format: "provider:model"
        """
        provider = provider or self.llm_provider
        model = model or self.llm_model

        if provider == "openai":
            return f"openai:{model}"
        elif provider == "anthropic":
            return f"anthropic:{model}"
        elif provider == "google":
            return f"google-gla:{model}"
        else:
            return model

    def get_api_key(self, provider: str) -> Optional[str]:
        """Credential configured for a provider, if any."""
        return {
            "openai": self.openai_api_key,
            "anthropic": self.anthropic_api_key,
            "google": self.google_api_key,
        }.get(provider)

    def export_provider_keys(self) -> None:
        """
        Expose configured credentials to the provider SDKs.

        pydantic-ai providers read their keys from the process environment,
        while these settings may come from an .env file.
        """
        env_names = {
            "openai": "OPENAI_API_KEY",
            "anthropic": "ANTHROPIC_API_KEY",
            "google": "GEMINI_API_KEY",
        }
        for provider, env_name in env_names.items():
            key = self.get_api_key(provider)
            if key:
                os.environ.setdefault(env_name, key)

    class Config:
        env_file = ".env"
        case_sensitive = False


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
