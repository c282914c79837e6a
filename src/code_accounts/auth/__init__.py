"""Credential material models and credential file helpers."""

from .auth_file import (
    AUTH_FILE_NAME,
    get_auth_file_path,
    load_default_auth,
    read_auth_file,
    resolve_auth_read_path,
    write_auth_file,
)
from .models import AuthDotJson, AuthMode, IdTokenInfo, TokenData, parse_id_token


__all__ = [
    "AUTH_FILE_NAME",
    "AuthDotJson",
    "AuthMode",
    "IdTokenInfo",
    "TokenData",
    "get_auth_file_path",
    "load_default_auth",
    "parse_id_token",
    "read_auth_file",
    "resolve_auth_read_path",
    "write_auth_file",
]
