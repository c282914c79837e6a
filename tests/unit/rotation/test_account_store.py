"""Tests for the registered-account store.

Covers deduplication on upsert, the active pointer and container
persistence.
"""

from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path

import orjson
import pytest

from code_accounts.auth.models import AuthMode, TokenData
from code_accounts.exceptions import InvalidCredentialError, MalformedFileError
from code_accounts.rotation.accounts import AccountStore, StoredAccount


REFRESHED = datetime(2025, 1, 1, tzinfo=UTC)


@pytest.fixture
def store(code_home: Path) -> AccountStore:
    return AccountStore(code_home)


@pytest.mark.unit
class TestApiKeyAccounts:
    def test_insert_assigns_id_and_created_at(self, store: AccountStore) -> None:
        account = store.upsert_api_key_account("sk-1", label="work")

        assert account.id
        assert account.mode == AuthMode.API_KEY
        assert account.label == "work"
        assert account.created_at is not None
        assert account.last_used_at is None
        assert store.list_accounts() == [account]

    def test_same_key_merges(self, store: AccountStore) -> None:
        first = store.upsert_api_key_account("sk-1", label="old")
        second = store.upsert_api_key_account("sk-1", label="new")

        assert second.id == first.id
        assert second.created_at == first.created_at
        accounts = store.list_accounts()
        assert len(accounts) == 1
        assert accounts[0].label == "new"

    def test_merge_keeps_label_when_none_given(self, store: AccountStore) -> None:
        store.upsert_api_key_account("sk-1", label="keep")
        store.upsert_api_key_account("sk-1")

        assert store.list_accounts()[0].label == "keep"

    def test_different_keys_are_distinct(self, store: AccountStore) -> None:
        store.upsert_api_key_account("sk-1")
        store.upsert_api_key_account("sk-2")

        assert len(store.list_accounts()) == 2

    def test_empty_key_rejected(self, store: AccountStore) -> None:
        with pytest.raises(InvalidCredentialError):
            store.upsert_api_key_account("   ")

    def test_make_active_sets_pointer_and_last_used(self, store: AccountStore) -> None:
        account = store.upsert_api_key_account("sk-1", make_active=True)

        assert store.get_active_account_id() == account.id
        assert account.last_used_at is not None


@pytest.mark.unit
class TestChatgptAccounts:
    def test_same_account_and_email_merges(
        self, store: AccountStore, token_factory: Callable[..., TokenData]
    ) -> None:
        first = store.upsert_chatgpt_account(
            token_factory("a@example.com", "acct-1"), REFRESHED
        )
        second = store.upsert_chatgpt_account(
            token_factory("A@Example.com ", "acct-1", access_token="rotated"),
            REFRESHED,
        )

        assert second.id == first.id
        accounts = store.list_accounts()
        assert len(accounts) == 1
        assert accounts[0].tokens is not None
        assert accounts[0].tokens.access_token == "rotated"

    def test_same_email_different_account_is_distinct(
        self, store: AccountStore, token_factory: Callable[..., TokenData]
    ) -> None:
        store.upsert_chatgpt_account(token_factory("a@example.com", "acct-1"), REFRESHED)
        store.upsert_chatgpt_account(token_factory("a@example.com", "acct-2"), REFRESHED)

        assert len(store.list_accounts()) == 2

    def test_missing_email_never_merges(
        self, store: AccountStore, token_factory: Callable[..., TokenData]
    ) -> None:
        store.upsert_chatgpt_account(token_factory(None, "acct-1"), REFRESHED)
        store.upsert_chatgpt_account(token_factory(None, "acct-1"), REFRESHED)

        assert len(store.list_accounts()) == 2

    def test_missing_account_id_never_merges(
        self, store: AccountStore, token_factory: Callable[..., TokenData]
    ) -> None:
        store.upsert_chatgpt_account(token_factory("a@example.com", None), REFRESHED)
        store.upsert_chatgpt_account(token_factory("a@example.com", None), REFRESHED)

        assert len(store.list_accounts()) == 2

    def test_api_key_never_merges_with_chatgpt(
        self, store: AccountStore, token_factory: Callable[..., TokenData]
    ) -> None:
        store.upsert_chatgpt_account(token_factory(), REFRESHED)
        store.upsert_api_key_account("sk-1")

        modes = sorted(account.mode for account in store.list_accounts())
        assert modes == [AuthMode.API_KEY, AuthMode.CHATGPT]

    def test_empty_access_token_rejected(
        self, store: AccountStore, token_factory: Callable[..., TokenData]
    ) -> None:
        with pytest.raises(InvalidCredentialError):
            store.upsert_chatgpt_account(token_factory(access_token=""), REFRESHED)


@pytest.mark.unit
class TestActivePointer:
    def test_set_unknown_id_is_recorded(self, store: AccountStore) -> None:
        touched = store.set_active_account_id("slot-work")

        assert touched is None
        assert store.get_active_account_id() == "slot-work"

    def test_set_registered_id_touches_record(self, store: AccountStore) -> None:
        account = store.upsert_api_key_account("sk-1")

        touched = store.set_active_account_id(account.id)

        assert touched is not None
        assert touched.last_used_at is not None
        assert store.find_account(account.id).last_used_at == touched.last_used_at

    def test_clear_pointer(self, store: AccountStore) -> None:
        store.set_active_account_id("x")
        store.set_active_account_id(None)

        assert store.get_active_account_id() is None

    def test_remove_active_clears_pointer(self, store: AccountStore) -> None:
        account = store.upsert_api_key_account("sk-1", make_active=True)

        removed = store.remove_account(account.id)

        assert removed is not None
        assert removed.id == account.id
        assert store.list_accounts() == []
        assert store.get_active_account_id() is None

    def test_remove_unknown_returns_none(self, store: AccountStore) -> None:
        kept = store.upsert_api_key_account("sk-1", make_active=True)

        assert store.remove_account("missing") is None
        assert store.get_active_account_id() == kept.id


@pytest.mark.unit
class TestPersistence:
    def test_missing_file_is_empty(self, store: AccountStore) -> None:
        assert store.list_accounts() == []
        assert store.get_active_account_id() is None

    def test_file_layout(self, store: AccountStore, code_home: Path) -> None:
        account = store.upsert_api_key_account("sk-1", label="work", make_active=True)

        data = orjson.loads((code_home / "auth_accounts.json").read_bytes())

        assert data["version"] == 1
        assert data["active_account_id"] == account.id
        assert data["accounts"][0]["mode"] == "apikey"
        assert data["accounts"][0]["openai_api_key"] == "sk-1"
        assert store.location == str(code_home / "auth_accounts.json")

    def test_malformed_container_raises(self, store: AccountStore, code_home: Path) -> None:
        (code_home / "auth_accounts.json").write_text("{broken")

        with pytest.raises(MalformedFileError):
            store.list_accounts()

    def test_has_credentials(self) -> None:
        assert not StoredAccount(id="a", mode=AuthMode.API_KEY).has_credentials
        assert not StoredAccount(id="a", mode=AuthMode.CHATGPT).has_credentials
        assert StoredAccount(id="a", mode=AuthMode.API_KEY, openai_api_key="k").has_credentials
