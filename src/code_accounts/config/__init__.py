"""Configuration module for code-accounts."""

from .settings import AccountSettings, ConfigurationError, get_settings


__all__ = [
    "AccountSettings",
    "ConfigurationError",
    "get_settings",
]
