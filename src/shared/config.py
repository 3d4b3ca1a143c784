"""Configuration management for the Nomad agent.

Supports YAML configuration files and environment variable overrides.
Configuration is loaded once and cached for performance.
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LLMSettings(BaseSettings):
    """Language model backend configuration."""
    provider: str = Field(
        default="ollama",
        description="ollama, lmstudio, localai, vllm, openrouter, openai or mock",
    )
    base_url: str = Field(default="http://localhost:11434")
    model: str = Field(default="llama3.2")
    api_key: Optional[str] = Field(default=None)
    max_tokens: int = Field(default=4096, gt=0)
    temperature: float = Field(default=0.7, ge=0, le=2)
    timeout_seconds: float = Field(default=120, gt=0, validation_alias="LLM_TIMEOUT")

    model_config = SettingsConfigDict(
        env_prefix="LLM_",
        env_file=".env",
        extra="ignore",
        populate_by_name=True,
    )


class GatewaySettings(BaseSettings):
    """HTTP gateway configuration."""
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8080)
    cors_origins: list[str] = Field(default_factory=lambda: ["http://localhost:*"])

    model_config = SettingsConfigDict(
        env_prefix="GATEWAY_",
        env_file=".env",
        extra="ignore"
    )


class SecuritySettings(BaseSettings):
    """Authentication configuration."""
    auth_mode: str = Field(default="jwt", description="jwt or none")
    jwt_secret: Optional[str] = Field(default=None)
    token_expire_minutes: int = Field(default=60)

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        extra="ignore"
    )


class AzureDevOpsSettings(BaseSettings):
    """Azure DevOps integration."""
    enabled: bool = Field(default=False)
    organization: str = Field(default="")
    project: str = Field(default="")
    pat: Optional[str] = Field(default=None)
    api_version: str = Field(default="7.0")
    timeout_seconds: float = Field(default=30)

    model_config = SettingsConfigDict(
        env_prefix="AZURE_DEVOPS_",
        env_file=".env",
        extra="ignore"
    )


class TrelloSettings(BaseSettings):
    """Trello integration."""
    enabled: bool = Field(default=False)
    api_key: Optional[str] = Field(default=None)
    token: Optional[str] = Field(default=None)
    timeout_seconds: float = Field(default=30)

    model_config = SettingsConfigDict(
        env_prefix="TRELLO_",
        env_file=".env",
        extra="ignore"
    )


class TelegramSettings(BaseSettings):
    """Telegram bot channel."""
    enabled: bool = Field(default=False)
    bot_token: Optional[str] = Field(default=None)
    allowed_users: list[int] = Field(default_factory=list)
    poll_timeout_seconds: int = Field(default=30)

    model_config = SettingsConfigDict(
        env_prefix="TELEGRAM_",
        env_file=".env",
        extra="ignore"
    )


class WebChatSettings(BaseSettings):
    """Web chat channel."""
    enabled: bool = Field(default=True)
    session_ttl_minutes: int = Field(default=60)
    max_messages: int = Field(default=100)
    cleanup_interval_seconds: int = Field(default=300)

    model_config = SettingsConfigDict(
        env_prefix="WEBCHAT_",
        env_file=".env",
        extra="ignore"
    )


class Settings(BaseSettings):
    """Main application settings."""
    environment: str = Field(default="development")
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")
    enable_audit: bool = Field(default=False)
    audit_log_path: str = Field(default="logs/audit.log")

    # Component settings
    llm: LLMSettings = Field(default_factory=LLMSettings)
    gateway: GatewaySettings = Field(default_factory=GatewaySettings)
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    azure_devops: AzureDevOpsSettings = Field(default_factory=AzureDevOpsSettings)
    trello: TrelloSettings = Field(default_factory=TrelloSettings)
    telegram: TelegramSettings = Field(default_factory=TelegramSettings)
    webchat: WebChatSettings = Field(default_factory=WebChatSettings)

    model_config = SettingsConfigDict(
        env_prefix="NOMAD_",
        env_file=".env",
        extra="ignore"
    )

    @model_validator(mode="after")
    def check_required(self) -> "Settings":
        """Enabled integrations must carry their credentials."""
        if self.security.auth_mode not in ("jwt", "none"):
            raise ValueError(f"AUTH_MODE must be 'jwt' or 'none', got {self.security.auth_mode!r}")
        if self.security.auth_mode == "jwt" and not self.security.jwt_secret:
            raise ValueError("JWT_SECRET is required when AUTH_MODE=jwt")

        devops = self.azure_devops
        if devops.enabled:
            if not devops.organization:
                raise ValueError("AZURE_DEVOPS_ORGANIZATION is required when Azure DevOps is enabled")
            if not devops.project:
                raise ValueError("AZURE_DEVOPS_PROJECT is required when Azure DevOps is enabled")
            if not devops.pat:
                raise ValueError("AZURE_DEVOPS_PAT is required when Azure DevOps is enabled")

        if self.trello.enabled and not (self.trello.api_key and self.trello.token):
            raise ValueError("TRELLO_API_KEY and TRELLO_TOKEN are required when Trello is enabled")

        if self.telegram.enabled and not self.telegram.bot_token:
            raise ValueError("TELEGRAM_BOT_TOKEN is required when Telegram is enabled")

        return self

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    def public_view(self) -> dict[str, Any]:
        """Configuration snapshot with every secret removed."""
        return {
            "llm": {
                "provider": self.llm.provider,
                "model": self.llm.model,
                "base_url": self.llm.base_url,
            },
            "channels": {
                "webchat": self.webchat.enabled,
                "telegram": self.telegram.enabled,
            },
            "integrations": {
                "azure_devops": self.azure_devops.enabled,
                "trello": self.trello.enabled,
            },
            "auth_mode": self.security.auth_mode,
        }

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Settings":
        """Load settings from a YAML file."""
        return cls(**load_yaml_config(path))


def load_yaml_config(path: str | Path) -> dict[str, Any]:
    """Load a YAML configuration file."""
    path = Path(path)
    if not path.exists():
        return {}

    with open(path) as f:
        return yaml.safe_load(f) or {}


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    config_path = os.environ.get("NOMAD_CONFIG_PATH", "config/settings.yaml")
    return Settings.from_yaml(config_path)
