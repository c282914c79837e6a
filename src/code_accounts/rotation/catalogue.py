"""Unified listing of registered and slot-derived accounts."""

from pathlib import Path

from structlog import get_logger

from code_accounts.config.settings import AccountSettings
from code_accounts.exceptions import CodeAccountsError
from code_accounts.rotation.accounts import AccountStore, StoredAccount
from code_accounts.rotation.slots import SlotManager


logger = get_logger(__name__)


class AccountCatalogue:
    """Composes the Credential Store with slot discovery.

    Registered accounts always come first. A broken slot scan is logged and
    contributes nothing, so registered accounts stay visible.
    """

    def __init__(
        self,
        code_home: Path,
        legacy_home: Path | None = None,
        *,
        store: AccountStore | None = None,
        slots: SlotManager | None = None,
    ) -> None:
        self.code_home = Path(code_home).expanduser()
        self.store = store or AccountStore(self.code_home)
        self.slots = slots or SlotManager(self.code_home, legacy_home)

    @classmethod
    def from_settings(cls, settings: AccountSettings) -> "AccountCatalogue":
        return cls(
            settings.code_home,
            store=AccountStore.from_settings(settings),
            slots=SlotManager.from_settings(settings),
        )

    def _slot_accounts(self) -> list[StoredAccount]:
        try:
            return self.slots.discover_slot_accounts()
        except (CodeAccountsError, OSError) as e:
            logger.warning("slot_discovery_failed", code_home=str(self.code_home), error=str(e))
            return []

    def list_accounts(self) -> list[StoredAccount]:
        """All registered accounts followed by slot-derived accounts.

        Raises:
            StorageError: If the accounts container is malformed or unreadable
        """
        accounts = self.store.list_accounts()
        accounts.extend(self._slot_accounts())
        return accounts

    def find_account(self, account_id: str) -> StoredAccount | None:
        account = self.store.find_account(account_id)
        if account is not None:
            return account
        return next((acc for acc in self._slot_accounts() if acc.id == account_id), None)

    def get_active_account_id(self) -> str | None:
        return self.store.get_active_account_id()

    def set_active_account_id(self, account_id: str | None) -> StoredAccount | None:
        return self.store.set_active_account_id(account_id)

    def get_active_account(self) -> StoredAccount | None:
        """Resolve the active pointer against registered and slot accounts."""
        account_id = self.get_active_account_id()
        if account_id is None:
            return None
        return self.find_account(account_id)
