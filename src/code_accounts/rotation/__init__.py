"""Account catalogue, slot discovery and quota-aware rotation."""

from .accounts import AccountsContainer, AccountStore, StoredAccount
from .catalogue import AccountCatalogue
from .rate_limits import is_rate_limit_error, parse_retry_after
from .scheduler import (
    AccountScheduler,
    AccountSelection,
    OutcomeKind,
    SchedulerOutcome,
    compute_weight,
    slot_identity,
)
from .slots import AccountSlot, SlotManager, SlotRegistry, SlotRegistryEntry
from .telemetry import InMemoryTelemetry, RateLimitSnapshot, TelemetrySource


__all__ = [
    "AccountCatalogue",
    "AccountScheduler",
    "AccountSelection",
    "AccountSlot",
    "AccountStore",
    "AccountsContainer",
    "InMemoryTelemetry",
    "OutcomeKind",
    "RateLimitSnapshot",
    "SchedulerOutcome",
    "SlotManager",
    "SlotRegistry",
    "SlotRegistryEntry",
    "StoredAccount",
    "TelemetrySource",
    "compute_weight",
    "is_rate_limit_error",
    "parse_retry_after",
    "slot_identity",
]
