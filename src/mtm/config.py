"""Configuration management using pydantic-settings."""

from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_prefix="MTM_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Data paths
    state_file: Path = Field(
        default=Path("data/mtm_state.json"), description="Registry snapshot file"
    )
    grants_file: Path = Field(
        default=Path("config/grants.yml"), description="Permission grants YAML file"
    )

    # Policy
    owner: str | None = Field(
        default=None, description="Caller that holds every permission tag"
    )
    paused: bool = Field(default=False, description="Start with all decisions suspended")

    log_level: str = Field(default="INFO", description="Logging level")

    @field_validator("log_level", mode="after")
    @classmethod
    def normalize_level(cls, v: str) -> str:
        """Upper-case the logging level name."""
        return v.upper()


# Global settings instance (lazy loaded)
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get or create settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Reset settings instance (useful for testing)."""
    global _settings
    _settings = None
