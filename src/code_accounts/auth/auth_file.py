"""Read and write per-directory credential files (auth.json)."""

from pathlib import Path

from structlog import get_logger

from code_accounts.auth.models import AuthDotJson
from code_accounts.storage.json_file import JsonFileRepository


logger = get_logger(__name__)

AUTH_FILE_NAME = "auth.json"


def get_auth_file_path(directory: Path) -> Path:
    """Path of the credential file inside a directory."""
    return Path(directory) / AUTH_FILE_NAME


def auth_file_repository(path: Path) -> JsonFileRepository[AuthDotJson]:
    return JsonFileRepository(path, AuthDotJson)


def read_auth_file(path: Path) -> AuthDotJson | None:
    """Read a credential file.

    Args:
        path: Path to an auth.json file

    Returns:
        Parsed credentials, or None if the file does not exist

    Raises:
        StorageError: If the file exists but cannot be read or parsed
    """
    repository = auth_file_repository(path)
    if not repository.exists():
        return None
    return repository.load()


def write_auth_file(path: Path, auth: AuthDotJson) -> None:
    """Write a credential file with owner-only permissions.

    Raises:
        StorageWriteError: If the write fails
    """
    auth_file_repository(path).save(auth)
    logger.debug("auth_file_written", path=str(path), mode=auth.mode)


def resolve_auth_read_path(code_home: Path, legacy_home: Path | None = None) -> Path:
    """Locate the credential file for the installation root.

    Prefers the installation root's own auth.json and falls back to the
    legacy root's when only that one exists.
    """
    primary = get_auth_file_path(code_home)
    if primary.is_file() or legacy_home is None:
        return primary

    legacy = get_auth_file_path(legacy_home)
    if legacy.is_file():
        return legacy
    return primary


def load_default_auth(
    code_home: Path, legacy_home: Path | None = None
) -> AuthDotJson | None:
    """Load the installation root's credentials, if any.

    Raises:
        StorageError: If the resolved file exists but cannot be read or parsed
    """
    return read_auth_file(resolve_auth_read_path(code_home, legacy_home))
