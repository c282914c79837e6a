from pathlib import Path

import platformdirs


DEFAULT_CODE_HOME_DIRNAME = ".code"
LEGACY_CODE_HOME_DIRNAME = ".codex"
CONFIG_FILE_NAME = "config.toml"


def get_default_code_home() -> Path:
    """Get the default installation root.

    Returns:
        Path to ~/.code
    """
    return Path.home() / DEFAULT_CODE_HOME_DIRNAME


def get_legacy_code_home() -> Path | None:
    """Get the previous-version installation root if it exists.

    Returns:
        Path to ~/.codex, or None when it is absent
    """
    candidate = Path.home() / LEGACY_CODE_HOME_DIRNAME
    if candidate.is_dir():
        return candidate
    return None


def get_code_accounts_config_dir() -> Path:
    """Get the code-accounts configuration directory.

    Returns:
        Path to the code-accounts directory within user config directory.
    """
    return Path(platformdirs.user_config_dir()) / "code_accounts"


def find_toml_config_file() -> Path | None:
    """Find the TOML configuration file for code_accounts.

    Searches in the following order:
    1. .code_accounts.toml in current directory
    2. config.toml in user config directory/code_accounts/ (platform-specific)
    """
    candidates = [
        Path(".code_accounts.toml").resolve(),
        get_code_accounts_config_dir() / CONFIG_FILE_NAME,
    ]

    for candidate in candidates:
        if candidate.exists() and candidate.is_file():
            return candidate

    return None
