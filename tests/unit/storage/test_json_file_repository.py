"""Tests for the JSON file repository."""

import stat
from pathlib import Path

import orjson
import pytest

from code_accounts.exceptions import ErrorType, MalformedFileError, StorageWriteError
from code_accounts.rotation.accounts import AccountsContainer, StoredAccount
from code_accounts.storage import JsonFileRepository


@pytest.fixture
def repository(tmp_path: Path) -> JsonFileRepository[AccountsContainer]:
    return JsonFileRepository(tmp_path / "nested" / "auth_accounts.json", AccountsContainer)


@pytest.mark.unit
class TestJsonFileRepository:
    def test_absent_file_loads_default(
        self, repository: JsonFileRepository[AccountsContainer]
    ) -> None:
        container = repository.load()

        assert container.version == 1
        assert container.accounts == []
        assert not repository.exists()

    def test_save_creates_parent_and_owner_only_file(
        self, repository: JsonFileRepository[AccountsContainer]
    ) -> None:
        repository.save(AccountsContainer(active_account_id="a"))

        assert repository.exists()
        mode = stat.S_IMODE(repository.file_path.stat().st_mode)
        assert mode == 0o600
        assert not repository.file_path.with_suffix(".json.tmp").exists()

    def test_save_then_load(
        self, repository: JsonFileRepository[AccountsContainer]
    ) -> None:
        container = AccountsContainer(
            active_account_id="a",
            accounts=[StoredAccount(id="a", mode="apikey", openai_api_key="sk-1")],
        )
        repository.save(container)

        loaded = repository.load()

        assert loaded.active_account_id == "a"
        assert loaded.accounts[0].openai_api_key == "sk-1"

    def test_none_fields_are_omitted(
        self, repository: JsonFileRepository[AccountsContainer]
    ) -> None:
        repository.save(
            AccountsContainer(
                accounts=[StoredAccount(id="a", mode="apikey", openai_api_key="sk-1")]
            )
        )

        data = orjson.loads(repository.file_path.read_bytes())

        assert "active_account_id" not in data
        assert "tokens" not in data["accounts"][0]

    def test_invalid_json_is_malformed(
        self, repository: JsonFileRepository[AccountsContainer]
    ) -> None:
        repository.file_path.parent.mkdir(parents=True)
        repository.file_path.write_text("{not json")

        with pytest.raises(MalformedFileError) as exc_info:
            repository.load()

        assert exc_info.value.error_type == ErrorType.MALFORMED_FILE
        assert exc_info.value.path == repository.file_path

    def test_schema_mismatch_is_malformed(
        self, repository: JsonFileRepository[AccountsContainer]
    ) -> None:
        repository.file_path.parent.mkdir(parents=True)
        repository.file_path.write_text('{"accounts": "nope"}')

        with pytest.raises(MalformedFileError, match="schema validation failed"):
            repository.load()

    def test_write_failure_raises_storage_write_error(self, tmp_path: Path) -> None:
        blocker = tmp_path / "blocker"
        blocker.write_text("a file where a directory is expected")
        repository = JsonFileRepository(blocker / "auth_accounts.json", AccountsContainer)

        with pytest.raises(StorageWriteError) as exc_info:
            repository.save(AccountsContainer())

        assert exc_info.value.error_type == ErrorType.STORAGE_WRITE

    def test_get_location(
        self, repository: JsonFileRepository[AccountsContainer]
    ) -> None:
        assert repository.get_location() == str(repository.file_path)
