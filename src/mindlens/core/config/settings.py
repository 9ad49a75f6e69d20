"""Application settings loaded from environment variables."""

from __future__ import annotations

from typing import Literal

from pydantic_settings import BaseSettings

ProviderName = Literal["gemini", "openai", "anthropic"]


class Settings(BaseSettings):
    """MindLens pipeline configuration."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    # Server
    # Default to loopback; binding elsewhere must be opted into explicitly.
    mindlens_host: str = "127.0.0.1"
    mindlens_port: int = 8003
    mindlens_log_level: str = "info"
    mindlens_allow_insecure_bind: bool = False
    mindlens_env: Literal["development", "test", "production"] = "development"

    # AI provider
    llm_provider: ProviderName = "gemini"
    gemini_api_key: str = ""
    gemini_api_base: str = "https://generativelanguage.googleapis.com/v1beta"
    openai_api_key: str = ""
    anthropic_api_key: str = ""
    chat_demo_mode: bool = False
    # When no credential is configured anywhere, answer with demo replies
    # instead of failing with NoCredential.
    demo_when_unconfigured: bool = True

    # Generation parameters
    llm_temperature: float = 0.7
    llm_max_output_tokens: int = 512
    llm_top_p: float = 0.95
    llm_top_k: int = 40
    llm_timeout_seconds: float = 20.0
    max_history_messages: int = 20

    # Storage
    db_path: str = "~/.mindlens/records.db"
    analytics_db_path: str = "~/.mindlens/analytics.db"
    analytics_enabled: bool = True

    # Crypto
    encryption_key_base64: str = ""
    pseudonymization_salt: str = "MINDLENS_SALT_2025"

    # Auth (static verifier): token -> {"user_id": ..., "email": ...}
    auth_tokens: dict[str, dict[str, str]] = {}

    @property
    def env_credential(self) -> str:
        """The environment-supplied credential for the configured provider."""
        return {
            "gemini": self.gemini_api_key,
            "openai": self.openai_api_key,
            "anthropic": self.anthropic_api_key,
        }[self.llm_provider]


def get_settings() -> Settings:
    """Create and return a Settings instance."""
    return Settings()
