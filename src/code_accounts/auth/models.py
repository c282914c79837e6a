"""Pydantic models for stored credential material."""

from datetime import datetime
from enum import StrEnum
from typing import Any

import jwt
from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

from code_accounts.utils.datetime_utils import ensure_utc


# Claim object carrying plan and account details inside the identity token
OPENAI_AUTH_CLAIM = "https://api.openai.com/auth"


class AuthMode(StrEnum):
    """How an account authenticates."""

    API_KEY = "apikey"
    CHATGPT = "chatgpt"


class IdTokenInfo(BaseModel):
    """Fields decoded from the identity token of a session-token bundle."""

    email: str | None = None
    chatgpt_plan_type: str | None = None
    chatgpt_account_id: str | None = None
    raw_jwt: str


def parse_id_token(raw_jwt: str) -> IdTokenInfo:
    """Decode an identity token without verifying its signature.

    Args:
        raw_jwt: Encoded JWT as issued by the login flow

    Returns:
        Decoded identity fields

    Raises:
        ValueError: If the token cannot be decoded
    """
    try:
        claims: dict[str, Any] = jwt.decode(
            raw_jwt, options={"verify_signature": False}
        )
    except jwt.InvalidTokenError as e:
        raise ValueError(f"Invalid id token: {e}") from e

    auth_claims = claims.get(OPENAI_AUTH_CLAIM)
    if not isinstance(auth_claims, dict):
        auth_claims = {}

    email = claims.get("email")
    plan = auth_claims.get("chatgpt_plan_type")
    account_id = auth_claims.get("chatgpt_account_id")
    return IdTokenInfo(
        email=email if isinstance(email, str) else None,
        chatgpt_plan_type=plan if isinstance(plan, str) else None,
        chatgpt_account_id=account_id if isinstance(account_id, str) else None,
        raw_jwt=raw_jwt,
    )


class TokenData(BaseModel):
    """Session-token bundle produced by a login flow.

    The identity token is persisted as the raw JWT string and decoded on load.
    """

    id_token: IdTokenInfo
    access_token: str
    refresh_token: str
    account_id: str | None = None

    @field_validator("id_token", mode="before")
    @classmethod
    def decode_id_token(cls, v: Any) -> Any:
        if isinstance(v, str):
            return parse_id_token(v)
        return v

    @field_serializer("id_token")
    def encode_id_token(self, value: IdTokenInfo) -> str:
        return value.raw_jwt

    @property
    def external_account_id(self) -> str | None:
        """Upstream account identifier, preferring the explicit field."""
        return self.account_id or self.id_token.chatgpt_account_id

    @property
    def email(self) -> str | None:
        return self.id_token.email

    @property
    def plan_type(self) -> str | None:
        return self.id_token.chatgpt_plan_type


class AuthDotJson(BaseModel):
    """Contents of one credential file (auth.json)."""

    model_config = ConfigDict(populate_by_name=True)

    openai_api_key: str | None = Field(default=None, alias="OPENAI_API_KEY")
    tokens: TokenData | None = None
    last_refresh: datetime | None = None

    @field_validator("last_refresh", mode="after")
    @classmethod
    def normalize_last_refresh(cls, v: datetime | None) -> datetime | None:
        return ensure_utc(v)

    @property
    def mode(self) -> AuthMode:
        return AuthMode.CHATGPT if self.tokens is not None else AuthMode.API_KEY

    @property
    def is_empty(self) -> bool:
        """True when the file carries neither an API key nor tokens."""
        return self.tokens is None and not self.openai_api_key
