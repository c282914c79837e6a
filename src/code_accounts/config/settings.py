"""Settings configuration for code-accounts."""

import tomllib
from functools import lru_cache
from pathlib import Path
from typing import Any

import structlog
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from code_accounts.config.discovery import (
    find_toml_config_file,
    get_default_code_home,
    get_legacy_code_home,
)


__all__ = [
    "AccountSettings",
    "ConfigurationError",
    "get_settings",
]


logger = structlog.get_logger(__name__)


class ConfigurationError(Exception):
    """Raised when configuration loading or validation fails."""

    pass


class AccountSettings(BaseSettings):
    """
    Configuration settings for the account catalogue and scheduler.

    Settings are loaded from environment variables (CODE_ACCOUNTS_ prefix)
    and an optional TOML configuration file. Environment variables take
    precedence over defaults; explicit keyword arguments take precedence
    over everything.
    """

    model_config = SettingsConfigDict(
        env_prefix="CODE_ACCOUNTS_",
        case_sensitive=False,
        extra="ignore",
    )

    code_home: Path = Field(
        default_factory=get_default_code_home,
        description="Installation root holding auth.json, the accounts container and the slot registry",
    )

    legacy_home: Path | None = Field(
        default_factory=get_legacy_code_home,
        description="Previous-version installation root scanned for slots and a fallback auth.json",
    )

    scan_legacy_home: bool = Field(
        default=True,
        description="Whether the legacy installation root is used as a discovery root",
    )

    scan_parent_slots: bool = Field(
        default=True,
        description="Scan sibling slots when the installation root is itself a slot directory",
    )

    default_cooldown_seconds: float = Field(
        default=15.0,
        gt=0,
        le=86_400,
        description="Cooldown applied to a rate-limited account without an explicit resume time",
    )

    @field_validator("code_home", "legacy_home", mode="after")
    @classmethod
    def expand_user(cls, v: Path | None) -> Path | None:
        if v is None:
            return None
        return v.expanduser()

    @property
    def effective_legacy_home(self) -> Path | None:
        """Legacy root to use for discovery, honoring scan_legacy_home."""
        if not self.scan_legacy_home:
            return None
        return self.legacy_home

    @classmethod
    def load_toml_config(cls, toml_path: Path) -> dict[str, Any]:
        """Load configuration from a TOML file.

        Args:
            toml_path: Path to the TOML configuration file

        Returns:
            dict: Configuration data from the TOML file

        Raises:
            ValueError: If the TOML file is invalid or cannot be read
        """
        try:
            with toml_path.open("rb") as f:
                return tomllib.load(f)
        except OSError as e:
            raise ValueError(f"Cannot read TOML config file {toml_path}: {e}") from e
        except tomllib.TOMLDecodeError as e:
            raise ValueError(f"Invalid TOML syntax in {toml_path}: {e}") from e

    @classmethod
    def from_config(
        cls, config_path: Path | str | None = None, **kwargs: Any
    ) -> "AccountSettings":
        """Create settings from a configuration file.

        Args:
            config_path: Path to a TOML file. If None, auto-discovers one.
            **kwargs: Additional keyword arguments to override config values

        Returns:
            AccountSettings: Configured settings instance
        """
        if isinstance(config_path, str):
            config_path = Path(config_path)

        if config_path is None:
            config_path = find_toml_config_file()

        config_data: dict[str, Any] = {}
        if config_path and config_path.exists():
            config_data = cls.load_toml_config(config_path)
            logger.debug("config_file_loaded", path=str(config_path))

        # kwargs take precedence
        merged_config = {**config_data, **kwargs}
        return cls(**merged_config)


@lru_cache(maxsize=1)
def get_settings(config_path: Path | None = None) -> AccountSettings:
    """Get the cached settings instance.

    Args:
        config_path: Optional path to a TOML configuration file

    Returns:
        AccountSettings: Configured settings instance

    Raises:
        ConfigurationError: If the configuration cannot be loaded
    """
    try:
        return AccountSettings.from_config(config_path=config_path)
    except (OSError, ValueError) as e:
        raise ConfigurationError(f"Failed to load configuration: {e}") from e
