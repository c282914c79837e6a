"""Slot registry and discovery.

A slot is a directory holding its own auth.json, found by naming
convention under the installation root (and a few secondary roots). The
registry file keeps slot ids and user labels stable across rescans; it
never stores secrets.
"""

import os
import re
import shutil
from dataclasses import dataclass, field
from pathlib import Path

from pydantic import BaseModel, Field, model_validator
from structlog import get_logger

from code_accounts.auth.auth_file import (
    get_auth_file_path,
    load_default_auth,
    read_auth_file,
    resolve_auth_read_path,
)
from code_accounts.auth.models import AuthDotJson
from code_accounts.config.settings import AccountSettings
from code_accounts.exceptions import StorageError, StorageWriteError
from code_accounts.rotation.accounts import StoredAccount
from code_accounts.rotation.constants import (
    CUSTOM_SLOT_COMPONENT,
    DEFAULT_SLOT_COMPONENT,
    DEFAULT_SLOT_ID,
    MAX_SLOT_DEPTH,
    SLOT_PREFIX,
    SLOT_REGISTRY_FILE_NAME,
    SLOT_REGISTRY_VERSION,
)
from code_accounts.storage.base import ModelRepository
from code_accounts.storage.json_file import JsonFileRepository


logger = get_logger(__name__)

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


@dataclass
class AccountSlot:
    """A filesystem-backed credential scope."""

    id: str
    label: str | None
    path: Path
    has_auth_file: bool = False
    is_default: bool = False

    @classmethod
    def at(
        cls, slot_id: str, label: str | None, path: Path, is_default: bool = False
    ) -> "AccountSlot":
        return cls(
            id=slot_id,
            label=label,
            path=path,
            has_auth_file=get_auth_file_path(path).is_file(),
            is_default=is_default,
        )


class SlotRegistryEntry(BaseModel):
    """Label and placement override for one slot id."""

    id: str
    label: str | None = None
    path: str | None = None


class SlotRegistry(BaseModel):
    """Represents the slot_registry.json file structure."""

    version: int = SLOT_REGISTRY_VERSION
    slots: list[SlotRegistryEntry] = Field(default_factory=list)

    @model_validator(mode="after")
    def drop_duplicate_ids(self) -> "SlotRegistry":
        seen: set[str] = set()
        unique: list[SlotRegistryEntry] = []
        for entry in self.slots:
            if entry.id in seen:
                logger.warning("slot_registry_duplicate_id_dropped", slot_id=entry.id)
                continue
            seen.add(entry.id)
            unique.append(entry)
        self.slots = unique
        return self

    def ids(self) -> set[str]:
        return {entry.id for entry in self.slots}

    def entry(self, slot_id: str) -> SlotRegistryEntry | None:
        return next((entry for entry in self.slots if entry.id == slot_id), None)

    def remove(self, slot_id: str) -> SlotRegistryEntry | None:
        entry = self.entry(slot_id)
        if entry is not None:
            self.slots.remove(entry)
        return entry


@dataclass
class SlotDir:
    """A slot directory found on disk that holds a readable auth.json."""

    id: str
    path: Path
    label: str
    auth: AuthDotJson
    components: list[str] = field(default_factory=list)


def sanitize_slot_component(component: str) -> str:
    """Lowercase, collapse non-alphanumeric runs to one hyphen, trim hyphens."""
    return _NON_ALNUM.sub("-", component.lower()).strip("-")


def make_slot_id_slug(components: list[str]) -> str:
    parts = [sanitize_slot_component(c) for c in components]
    parts = [p for p in parts if p]
    slug = "-".join(parts) if parts else "slot"
    return f"{SLOT_PREFIX}-{slug}"


def ensure_unique_slot_id(base: str, seen_ids: set[str]) -> str:
    """Return base, or base-2, base-3, ... whichever is free, and reserve it."""
    candidate = base
    counter = 2
    while candidate in seen_ids:
        candidate = f"{base}-{counter}"
        counter += 1
    seen_ids.add(candidate)
    return candidate


def slot_label(components: list[str]) -> str:
    if not components:
        return "account"
    return f"Slot {' / '.join(components)}"


def derive_label_from_auth(auth: AuthDotJson, components: list[str]) -> str:
    if auth.tokens is not None and auth.tokens.email:
        email = auth.tokens.email.strip()
        if email:
            return email
    return slot_label(components)


def clean_label(label: str | None) -> str | None:
    if label is None:
        return None
    trimmed = label.strip()
    return trimmed or None


def _path_key(path: Path) -> Path:
    return path.resolve(strict=False)


def _is_dir(entry: os.DirEntry[str]) -> bool:
    try:
        return entry.is_dir()
    except OSError:
        return False


def _slot_sort_key(slot: AccountSlot) -> tuple[bool, str, str]:
    return (not slot.is_default, (slot.label or slot.id).lower(), slot.id)


class SlotManager:
    """Finds slot directories and maintains the slot registry."""

    def __init__(
        self,
        code_home: Path,
        legacy_home: Path | None = None,
        *,
        scan_parent_slots: bool = True,
        repository: ModelRepository[SlotRegistry] | None = None,
    ) -> None:
        """Initialize the slot manager.

        Args:
            code_home: Installation root; also the default slot's directory
            legacy_home: Previous-version root used as an extra discovery root
            scan_parent_slots: When code_home is itself a slot directory,
                also discover its sibling slots
            repository: Alternative registry store (defaults to the JSON file)
        """
        self.code_home = Path(code_home).expanduser()
        self.legacy_home = Path(legacy_home).expanduser() if legacy_home else None
        self.scan_parent_slots = scan_parent_slots
        self._home_key = _path_key(self.code_home)
        self._repository: ModelRepository[SlotRegistry] = repository or JsonFileRepository(
            self.code_home / SLOT_REGISTRY_FILE_NAME, SlotRegistry
        )

    @classmethod
    def from_settings(cls, settings: AccountSettings) -> "SlotManager":
        return cls(
            settings.code_home,
            settings.effective_legacy_home,
            scan_parent_slots=settings.scan_parent_slots,
        )

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    def load_registry(self) -> SlotRegistry:
        """Load the registry; an absent file is an empty registry.

        Raises:
            StorageError: If the file exists but cannot be read or parsed
        """
        return self._repository.load()

    def _save_registry(self, registry: SlotRegistry) -> None:
        self._repository.save(registry)

    def _resolve_entry_path(self, entry: SlotRegistryEntry) -> Path:
        raw = entry.path or entry.id
        if raw == ".":
            return self.code_home
        path = Path(raw)
        if path.is_absolute():
            return path
        return self.code_home / path

    def _relativize(self, path: Path) -> str:
        for base, candidate in (
            (self.code_home, path),
            (self._home_key, _path_key(path)),
        ):
            try:
                relative = candidate.relative_to(base)
            except ValueError:
                continue
            return relative.as_posix() if relative.parts else "."
        return str(path)

    def _hydrate(self, registry: SlotRegistry) -> bool:
        """Register newly discovered slot directories.

        Directories are matched to existing entries by resolved path, so a
        renamed slot is never re-added under a fresh id.

        Returns:
            True if the registry changed
        """
        dirty = False
        known_ids = registry.ids() | {DEFAULT_SLOT_ID}
        registered = {_path_key(self._resolve_entry_path(e)) for e in registry.slots}

        for slot in self.scan_slot_dirs():
            key = _path_key(slot.path)
            if key in registered:
                continue
            slot_id = ensure_unique_slot_id(slot.id, known_ids)
            registry.slots.append(
                SlotRegistryEntry(
                    id=slot_id, label=slot.label, path=self._relativize(slot.path)
                )
            )
            registered.add(key)
            dirty = True
            logger.info("slot_discovered", slot_id=slot_id, path=str(slot.path))

        return dirty

    # ------------------------------------------------------------------
    # Slot operations
    # ------------------------------------------------------------------

    def default_slot(self) -> AccountSlot:
        return AccountSlot.at(
            DEFAULT_SLOT_ID,
            slot_label([DEFAULT_SLOT_COMPONENT]),
            self.code_home,
            is_default=True,
        )

    def list_slots(self) -> list[AccountSlot]:
        """Return registered slots plus the default slot, default first.

        Newly discovered directories are merged into the registry, which is
        rewritten when that happens.
        """
        registry = self.load_registry()
        if self._hydrate(registry):
            self._save_registry(registry)

        slots = [
            AccountSlot.at(entry.id, entry.label, self._resolve_entry_path(entry))
            for entry in registry.slots
            if entry.id != DEFAULT_SLOT_ID
        ]
        slots.append(self.default_slot())
        slots.sort(key=_slot_sort_key)
        return slots

    def add_slot(self, label: str | None = None) -> AccountSlot:
        """Create an empty slot directory under the installation root and register it.

        Raises:
            StorageWriteError: If the directory or registry cannot be written
        """
        registry = self.load_registry()
        existing_ids = registry.ids() | {DEFAULT_SLOT_ID}
        existing_ids.update(slot.id for slot in self.scan_slot_dirs())

        cleaned = clean_label(label)
        component = sanitize_slot_component(cleaned) if cleaned else ""
        base_id = make_slot_id_slug([component or CUSTOM_SLOT_COMPONENT])
        slot_id = ensure_unique_slot_id(base_id, existing_ids)

        dir_path = self.code_home / slot_id
        try:
            dir_path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageWriteError(dir_path, str(e)) from e

        registry.slots.append(
            SlotRegistryEntry(id=slot_id, label=cleaned, path=self._relativize(dir_path))
        )
        self._save_registry(registry)
        logger.info("slot_added", slot_id=slot_id, label=cleaned, path=str(dir_path))
        return AccountSlot.at(slot_id, cleaned, dir_path)

    def remove_slot(self, slot_id: str) -> AccountSlot | None:
        """Unregister a slot and delete its directory.

        Directory deletion is best-effort: the registry entry stays removed
        even if the directory cannot be deleted.

        Returns:
            The removed slot, or None for the default or an unknown id
        """
        if slot_id == DEFAULT_SLOT_ID:
            return None

        registry = self.load_registry()
        entry = registry.remove(slot_id)
        if entry is None:
            return None
        self._save_registry(registry)

        path = self._resolve_entry_path(entry)
        removed = AccountSlot.at(entry.id, entry.label, path)
        if _path_key(path) == self._home_key:
            logger.warning("slot_dir_is_code_home_not_deleted", slot_id=slot_id)
        elif path.exists():
            try:
                shutil.rmtree(path)
            except OSError as e:
                logger.warning(
                    "slot_dir_remove_failed",
                    slot_id=slot_id,
                    path=str(path),
                    error=str(e),
                )

        logger.info("slot_removed", slot_id=slot_id, path=str(path))
        return removed

    def rename_slot(self, slot_id: str, new_label: str | None) -> AccountSlot | None:
        """Update a slot's label.

        Returns:
            The updated slot, or None for the default or an unknown id
        """
        if slot_id == DEFAULT_SLOT_ID:
            return None

        registry = self.load_registry()
        entry = registry.entry(slot_id)
        if entry is None:
            return None

        entry.label = clean_label(new_label)
        self._save_registry(registry)
        logger.info("slot_renamed", slot_id=slot_id, label=entry.label)
        return AccountSlot.at(entry.id, entry.label, self._resolve_entry_path(entry))

    def slot_auth_dir(self, slot_id: str) -> Path:
        """Directory that should hold a slot's auth.json, created if missing.

        Raises:
            StorageWriteError: If the directory cannot be created
        """
        if slot_id == DEFAULT_SLOT_ID:
            return self.code_home

        entry = self.load_registry().entry(slot_id)
        path = self._resolve_entry_path(entry) if entry else self.code_home / slot_id
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageWriteError(path, str(e)) from e
        return path

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    def slot_roots(self) -> list[Path]:
        """Directories whose slot-prefixed children are scanned, deduplicated."""
        roots = [self.code_home]
        keys = {self._home_key}

        def push(candidate: Path | None) -> None:
            if candidate is None or not candidate.is_dir():
                return
            key = _path_key(candidate)
            if key not in keys:
                keys.add(key)
                roots.append(candidate)

        push(resolve_auth_read_path(self.code_home, self.legacy_home).parent)
        push(self.legacy_home)
        if self.scan_parent_slots and self.code_home.name.lower().startswith(SLOT_PREFIX):
            push(self.code_home.parent)
        return roots

    def scan_slot_dirs(self) -> list[SlotDir]:
        """Walk every root and collect slot directories holding an auth.json.

        Raises:
            StorageError: If a root exists but cannot be listed
        """
        found: list[SlotDir] = []
        seen_ids = {DEFAULT_SLOT_ID}
        for root in self.slot_roots():
            self._scan_root(root, seen_ids, found)
        return found

    def _scan_root(self, root: Path, seen_ids: set[str], out: list[SlotDir]) -> None:
        try:
            with os.scandir(root) as it:
                children = [(Path(e.path), e.name) for e in it if _is_dir(e)]
        except FileNotFoundError:
            return
        except OSError as e:
            raise StorageError(f"Cannot scan slot root {root}: {e}", path=root) from e

        for path, name in children:
            if not name.lower().startswith(SLOT_PREFIX):
                continue
            self._scan_dir(path, [name], 0, seen_ids, out)

    def _scan_dir(
        self,
        path: Path,
        components: list[str],
        depth: int,
        seen_ids: set[str],
        out: list[SlotDir],
    ) -> None:
        if depth > MAX_SLOT_DEPTH or _path_key(path) == self._home_key:
            return

        auth_path = get_auth_file_path(path)
        if auth_path.is_file():
            try:
                auth = read_auth_file(auth_path)
            except StorageError as e:
                logger.warning("slot_auth_file_unreadable", path=str(auth_path), error=str(e))
                return
            if auth is None:
                return
            slot_id = ensure_unique_slot_id(make_slot_id_slug(components), seen_ids)
            out.append(
                SlotDir(
                    id=slot_id,
                    path=path,
                    label=derive_label_from_auth(auth, components),
                    auth=auth,
                    components=components,
                )
            )
            return

        if depth == MAX_SLOT_DEPTH:
            return

        try:
            with os.scandir(path) as it:
                children = [(Path(e.path), e.name) for e in it if _is_dir(e)]
        except OSError as e:
            logger.warning("slot_dir_unreadable", path=str(path), error=str(e))
            return

        for child, name in children:
            self._scan_dir(child, [*components, name], depth + 1, seen_ids, out)

    def discover_slot_accounts(self) -> list[StoredAccount]:
        """Materialize an account for every slot with credentials.

        Registry labels override derived ones. The default slot's account
        comes from the installation root's own auth.json when it is not
        empty. Results are sorted by display label, case-insensitive.

        Raises:
            StorageError: If the registry, a scan root, or the default
                credential file cannot be read
        """
        registry = self.load_registry()
        labels = {entry.id: entry.label for entry in registry.slots}
        id_by_path = {
            _path_key(self._resolve_entry_path(entry)): entry.id for entry in registry.slots
        }
        taken_ids = set(labels) | {DEFAULT_SLOT_ID}

        accounts: list[StoredAccount] = []
        seen_ids: set[str] = set()
        for slot in self.scan_slot_dirs():
            slot_id = id_by_path.get(_path_key(slot.path))
            if slot_id is None:
                slot_id = ensure_unique_slot_id(slot.id, taken_ids)
            label = labels.get(slot_id) or slot.label
            accounts.append(StoredAccount.from_auth(slot_id, slot.auth, label))
            seen_ids.add(slot_id)

        default_auth = load_default_auth(self.code_home, self.legacy_home)
        if (
            default_auth is not None
            and not default_auth.is_empty
            and DEFAULT_SLOT_ID not in seen_ids
        ):
            accounts.append(
                StoredAccount.from_auth(
                    DEFAULT_SLOT_ID, default_auth, slot_label([DEFAULT_SLOT_COMPONENT])
                )
            )

        accounts.sort(key=lambda account: account.display_label.lower())
        logger.debug("slot_accounts_discovered", count=len(accounts))
        return accounts
