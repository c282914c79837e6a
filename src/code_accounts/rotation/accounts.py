"""Account model and file operations for explicitly registered accounts.

Handles loading, merging, and persisting accounts from
<code_home>/auth_accounts.json. Slot-derived accounts are not stored here;
see code_accounts.rotation.slots.
"""

from datetime import datetime
from pathlib import Path

from pydantic import BaseModel, Field, field_validator
from structlog import get_logger

from code_accounts.auth.models import AuthDotJson, AuthMode, TokenData
from code_accounts.config.settings import AccountSettings
from code_accounts.exceptions import InvalidCredentialError
from code_accounts.rotation.constants import ACCOUNTS_FILE_NAME, ACCOUNTS_FILE_VERSION
from code_accounts.storage.base import ModelRepository
from code_accounts.storage.json_file import JsonFileRepository
from code_accounts.utils.datetime_utils import ensure_utc, utc_now
from code_accounts.utils.id_generator import generate_account_id


logger = get_logger(__name__)


class StoredAccount(BaseModel):
    """One credential record, either registered or materialized from a slot."""

    id: str
    mode: AuthMode
    label: str | None = None
    openai_api_key: str | None = None
    tokens: TokenData | None = None
    last_refresh: datetime | None = None
    created_at: datetime | None = None
    last_used_at: datetime | None = None

    @field_validator("last_refresh", "created_at", "last_used_at", mode="after")
    @classmethod
    def normalize_timestamps(cls, v: datetime | None) -> datetime | None:
        return ensure_utc(v)

    @property
    def has_credentials(self) -> bool:
        """Check if the record carries usable secret material for its mode."""
        if self.mode == AuthMode.API_KEY:
            return bool(self.openai_api_key)
        return self.tokens is not None

    @property
    def external_account_id(self) -> str | None:
        if self.tokens is None:
            return None
        return self.tokens.external_account_id

    @property
    def email(self) -> str | None:
        if self.tokens is None:
            return None
        return self.tokens.email

    @property
    def plan_type(self) -> str | None:
        if self.tokens is None:
            return None
        return self.tokens.plan_type

    @property
    def display_label(self) -> str:
        return self.label or self.id

    @classmethod
    def from_auth(
        cls, account_id: str, auth: AuthDotJson, label: str | None
    ) -> "StoredAccount":
        """Materialize a record from a credential file."""
        return cls(
            id=account_id,
            mode=auth.mode,
            label=label,
            openai_api_key=auth.openai_api_key,
            tokens=auth.tokens,
            last_refresh=auth.last_refresh,
        )


class AccountsContainer(BaseModel):
    """Represents the auth_accounts.json file structure."""

    version: int = ACCOUNTS_FILE_VERSION
    active_account_id: str | None = None
    accounts: list[StoredAccount] = Field(default_factory=list)

    def find(self, account_id: str) -> StoredAccount | None:
        return next((acc for acc in self.accounts if acc.id == account_id), None)


def normalize_email(email: str) -> str:
    return email.strip().lower()


def matches_chatgpt_account(existing: StoredAccount, tokens: TokenData) -> bool:
    """Check whether a session-token credential belongs to an existing record.

    Both the upstream account id and the normalized email must be present on
    each side and agree. Email alone never matches: one person can hold
    several organizational accounts under the same address.
    """
    if existing.mode != AuthMode.CHATGPT or existing.tokens is None:
        return False

    existing_id = existing.tokens.external_account_id
    incoming_id = tokens.external_account_id
    if existing_id is None or incoming_id is None or existing_id != incoming_id:
        return False

    existing_email = existing.tokens.email
    incoming_email = tokens.email
    if existing_email is None or incoming_email is None:
        return False
    return normalize_email(existing_email) == normalize_email(incoming_email)


def matches_api_key_account(existing: StoredAccount, api_key: str) -> bool:
    return existing.mode == AuthMode.API_KEY and existing.openai_api_key == api_key


def touch_account(account: StoredAccount, *, used: bool, now: datetime) -> None:
    """Stamp created_at if unset and, when used, last_used_at."""
    if account.created_at is None:
        account.created_at = now
    if used:
        account.last_used_at = now


def merge_account(
    container: AccountsContainer, incoming: StoredAccount, now: datetime
) -> tuple[StoredAccount, bool]:
    """Insert a record or merge it into the one it matches.

    On a match the existing id and created_at are kept, and each of label,
    secret payload, last_refresh and last_used_at is overwritten only when
    the incoming value is present.

    Returns:
        The stored record and whether it was merged into an existing one
    """
    existing: StoredAccount | None = None
    if incoming.mode == AuthMode.CHATGPT and incoming.tokens is not None:
        tokens = incoming.tokens
        existing = next(
            (acc for acc in container.accounts if matches_chatgpt_account(acc, tokens)),
            None,
        )
    elif incoming.mode == AuthMode.API_KEY and incoming.openai_api_key is not None:
        api_key = incoming.openai_api_key
        existing = next(
            (acc for acc in container.accounts if matches_api_key_account(acc, api_key)),
            None,
        )

    if existing is not None:
        if incoming.label is not None:
            existing.label = incoming.label
        if incoming.last_refresh is not None:
            existing.last_refresh = incoming.last_refresh
        if incoming.tokens is not None:
            existing.tokens = incoming.tokens
        if incoming.openai_api_key is not None:
            existing.openai_api_key = incoming.openai_api_key
        if incoming.last_used_at is not None:
            existing.last_used_at = incoming.last_used_at
        return existing, True

    if incoming.created_at is None:
        incoming.created_at = now
    container.accounts.append(incoming)
    return incoming, False


class AccountStore:
    """Durable, deduplicated storage of explicitly registered accounts.

    Every operation is a fresh read-modify-write of the container file; no
    state is cached between calls.
    """

    def __init__(
        self,
        code_home: Path,
        repository: ModelRepository[AccountsContainer] | None = None,
    ) -> None:
        """Initialize the store.

        Args:
            code_home: Installation root holding auth_accounts.json
            repository: Alternative backing store (defaults to the JSON file)
        """
        self.code_home = Path(code_home).expanduser()
        self._repository: ModelRepository[AccountsContainer] = (
            repository
            or JsonFileRepository(self.code_home / ACCOUNTS_FILE_NAME, AccountsContainer)
        )

    @classmethod
    def from_settings(cls, settings: AccountSettings) -> "AccountStore":
        return cls(settings.code_home)

    @property
    def location(self) -> str:
        return self._repository.get_location()

    def load(self) -> AccountsContainer:
        """Load the container; an absent file is an empty container.

        Raises:
            StorageError: If the file exists but cannot be read or parsed
        """
        return self._repository.load()

    def list_accounts(self) -> list[StoredAccount]:
        return self.load().accounts

    def find_account(self, account_id: str) -> StoredAccount | None:
        return self.load().find(account_id)

    def get_active_account_id(self) -> str | None:
        return self.load().active_account_id

    def set_active_account_id(self, account_id: str | None) -> StoredAccount | None:
        """Record the active account.

        The pointer is recorded even when the id is not a registered account
        (it may name a slot); only registered records are stamped and returned.

        Returns:
            The touched registered account, or None
        """
        container = self.load()
        container.active_account_id = account_id

        touched: StoredAccount | None = None
        if account_id is not None:
            touched = container.find(account_id)
            if touched is not None:
                touch_account(touched, used=True, now=utc_now())

        self._repository.save(container)
        logger.info(
            "active_account_set",
            account=account_id,
            registered=touched is not None,
        )
        return touched

    def remove_account(self, account_id: str) -> StoredAccount | None:
        """Delete a registered account, clearing the active pointer if needed.

        Returns:
            The removed account, or None if it was not registered
        """
        container = self.load()
        removed = container.find(account_id)
        if removed is not None:
            container.accounts.remove(removed)

        if container.active_account_id == account_id:
            container.active_account_id = None

        self._repository.save(container)
        if removed is not None:
            logger.info("account_removed", account=account_id, mode=removed.mode)
        else:
            logger.debug("account_remove_unknown", account=account_id)
        return removed

    def upsert_api_key_account(
        self,
        api_key: str,
        label: str | None = None,
        make_active: bool = False,
    ) -> StoredAccount:
        """Insert an API-key account or merge it into the record with the same key.

        Raises:
            InvalidCredentialError: If the key is empty
        """
        if not api_key or not api_key.strip():
            raise InvalidCredentialError("API key must not be empty")

        incoming = StoredAccount(
            id=generate_account_id(),
            mode=AuthMode.API_KEY,
            label=label,
            openai_api_key=api_key,
        )
        return self._upsert(incoming, make_active)

    def upsert_chatgpt_account(
        self,
        tokens: TokenData,
        last_refresh: datetime,
        label: str | None = None,
        make_active: bool = False,
    ) -> StoredAccount:
        """Insert a session-token account or merge it into the matching record.

        Raises:
            InvalidCredentialError: If the token bundle has no access token
        """
        if not tokens.access_token:
            raise InvalidCredentialError("Token bundle has no access token")

        incoming = StoredAccount(
            id=generate_account_id(),
            mode=AuthMode.CHATGPT,
            label=label,
            tokens=tokens,
            last_refresh=last_refresh,
        )
        return self._upsert(incoming, make_active)

    def _upsert(self, incoming: StoredAccount, make_active: bool) -> StoredAccount:
        now = utc_now()
        container = self.load()
        stored, merged = merge_account(container, incoming, now)

        if make_active:
            container.active_account_id = stored.id
            touch_account(stored, used=True, now=now)

        self._repository.save(container)
        logger.info(
            "account_upserted",
            account=stored.id,
            mode=stored.mode,
            merged=merged,
            active=make_active,
        )
        return stored
