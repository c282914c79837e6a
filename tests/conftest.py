"""Shared fixtures for code-accounts tests."""

import base64
from collections.abc import Callable
from pathlib import Path
from typing import Any

import orjson
import pytest

from code_accounts.auth.models import AuthDotJson, TokenData


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def make_id_token(
    email: str | None = "user@example.com",
    account_id: str | None = "acct-1",
    plan: str | None = "pro",
) -> str:
    """Build an unsigned identity token carrying the given claims."""
    auth_claims: dict[str, Any] = {}
    if plan is not None:
        auth_claims["chatgpt_plan_type"] = plan
    if account_id is not None:
        auth_claims["chatgpt_account_id"] = account_id

    payload: dict[str, Any] = {"https://api.openai.com/auth": auth_claims}
    if email is not None:
        payload["email"] = email

    header = _b64url(orjson.dumps({"alg": "none", "typ": "JWT"}))
    body = _b64url(orjson.dumps(payload))
    return f"{header}.{body}.sig"


def make_tokens(
    email: str | None = "user@example.com",
    account_id: str | None = "acct-1",
    plan: str | None = "pro",
    access_token: str = "access-token",
) -> TokenData:
    return TokenData(
        id_token=make_id_token(email, account_id, plan),
        access_token=access_token,
        refresh_token="refresh-token",
    )


@pytest.fixture
def code_home(tmp_path: Path) -> Path:
    """An empty installation root."""
    home = tmp_path / "code_home"
    home.mkdir()
    return home


@pytest.fixture
def write_auth() -> Callable[..., Path]:
    """Write an auth.json into a directory, creating it if needed."""

    def _write(
        directory: Path,
        *,
        api_key: str | None = None,
        email: str | None = None,
        account_id: str | None = None,
        plan: str | None = "pro",
    ) -> Path:
        directory.mkdir(parents=True, exist_ok=True)
        data: dict[str, Any] = {}
        if api_key is not None:
            data["OPENAI_API_KEY"] = api_key
        if email is not None or account_id is not None:
            data["tokens"] = {
                "id_token": make_id_token(email, account_id, plan),
                "access_token": f"access-{account_id or email}",
                "refresh_token": "refresh",
            }
            data["last_refresh"] = "2025-01-01T00:00:00Z"
        path = directory / "auth.json"
        path.write_bytes(orjson.dumps(data))
        return path

    return _write


@pytest.fixture
def id_token_factory() -> Callable[..., str]:
    return make_id_token


@pytest.fixture
def token_factory() -> Callable[..., TokenData]:
    return make_tokens


@pytest.fixture
def chatgpt_auth() -> AuthDotJson:
    return AuthDotJson(tokens=make_tokens())
