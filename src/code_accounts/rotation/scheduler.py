"""Quota-aware account scheduler.

Turns the account catalogue plus rate-limit telemetry into a single
"use this account next" decision using smooth weighted round-robin over
scheduling identities, and keeps cooldowns for accounts that were just
refused.

Not internally synchronized: one owner picks one account at a time.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import StrEnum
from pathlib import Path
from typing import Any

from structlog import get_logger

from code_accounts.auth.models import AuthMode
from code_accounts.config.settings import AccountSettings
from code_accounts.exceptions import CodeAccountsError
from code_accounts.rotation.accounts import StoredAccount
from code_accounts.rotation.catalogue import AccountCatalogue
from code_accounts.rotation.constants import (
    BASE_RATIO_HIGH,
    BASE_RATIO_LOW,
    CRITICAL_MULTIPLIER,
    CRITICAL_RATIO,
    DEFAULT_COOLDOWN_SECONDS,
    DEFAULT_PRIORITY_RATIO,
    MIN_TIME_FRACTION,
    MIN_WEIGHT,
    SURPLUS_MULTIPLIER,
    SURPLUS_RATIO,
)
from code_accounts.rotation.telemetry import (
    InMemoryTelemetry,
    RateLimitSnapshot,
    TelemetrySource,
)
from code_accounts.utils.datetime_utils import ensure_utc, utc_now


logger = get_logger(__name__)


class OutcomeKind(StrEnum):
    """Result of a request made with a selected account."""

    SUCCESS = "success"
    RATE_LIMITED = "rate_limited"


@dataclass(frozen=True)
class SchedulerOutcome:
    """Feedback for one request, with an optional resume time for refusals."""

    kind: OutcomeKind
    resume_at: datetime | None = None

    @classmethod
    def success(cls) -> "SchedulerOutcome":
        return cls(OutcomeKind.SUCCESS)

    @classmethod
    def rate_limited(cls, resume_at: datetime | None = None) -> "SchedulerOutcome":
        return cls(OutcomeKind.RATE_LIMITED, resume_at)


@dataclass(frozen=True)
class AccountSelection:
    """The account picked for the next request."""

    account_id: str
    label: str | None
    plan: str | None
    snapshot: RateLimitSnapshot | None
    weight: float


@dataclass
class WeightedState:
    """Smooth weighted round-robin counters for one scheduling identity."""

    weight: float = 0.0
    current: float = 0.0


@dataclass
class _Candidate:
    account: StoredAccount
    snapshot: RateLimitSnapshot | None
    weight: float
    identity: str


def priority_ratio(snapshot: RateLimitSnapshot | None, now: datetime) -> float:
    """Remaining quota relative to remaining window time, as a ratio.

    1.0 means quota and time are draining at the same pace. Accounts with
    no telemetry get a large fixed ratio so they are tried eagerly.
    """
    if snapshot is None:
        return DEFAULT_PRIORITY_RATIO

    total_seconds = snapshot.window_seconds
    remaining_pct = min(max(100.0 - snapshot.used_percent, 0.0), 100.0)
    seconds_remaining = snapshot.seconds_until_reset(now)
    if seconds_remaining is None:
        seconds_remaining = total_seconds

    time_fraction = min(max(seconds_remaining / total_seconds, MIN_TIME_FRACTION), 1.0)
    return remaining_pct / time_fraction / 100.0


def urgency_multiplier(ratio: float) -> float:
    """Piecewise-linear boost for surplus quota, damping for scarce quota."""
    if ratio <= CRITICAL_RATIO:
        return CRITICAL_MULTIPLIER
    if ratio < BASE_RATIO_LOW:
        span = (ratio - CRITICAL_RATIO) / (BASE_RATIO_LOW - CRITICAL_RATIO)
        return CRITICAL_MULTIPLIER + span * (1.0 - CRITICAL_MULTIPLIER)
    if ratio <= BASE_RATIO_HIGH:
        return 1.0
    if ratio < SURPLUS_RATIO:
        span = (ratio - BASE_RATIO_HIGH) / (SURPLUS_RATIO - BASE_RATIO_HIGH)
        return 1.0 + span * (SURPLUS_MULTIPLIER - 1.0)
    return SURPLUS_MULTIPLIER


def health_multiplier(account: StoredAccount) -> float:
    """Hook for account-health deprioritization; every account is healthy."""
    return 1.0


def compute_weight(
    snapshot: RateLimitSnapshot | None,
    now: datetime,
    health: float = 1.0,
) -> float:
    """Selection weight for one account, never below MIN_WEIGHT."""
    ratio = priority_ratio(snapshot, now)
    weight = ratio * urgency_multiplier(ratio) * health
    return max(weight, MIN_WEIGHT)


def slot_identity(account: StoredAccount) -> str:
    """Key grouping records that alias the same upstream account."""
    if account.mode == AuthMode.CHATGPT:
        external_id = account.external_account_id
        if external_id:
            return f"chatgpt:{external_id}"
    return f"account:{account.id}"


def _as_utc_now(now: datetime | None) -> datetime:
    return ensure_utc(now) if now is not None else utc_now()


class AccountScheduler:
    """Picks the next account for a model request.

    Carries two pieces of in-memory state between picks: cooldowns
    (account id -> resume time) and weighted round-robin counters per
    scheduling identity.
    """

    def __init__(
        self,
        code_home: Path,
        telemetry: TelemetrySource | None = None,
        *,
        catalogue: AccountCatalogue | None = None,
        legacy_home: Path | None = None,
        default_cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
    ) -> None:
        """Initialize the scheduler.

        Args:
            code_home: Installation root the catalogue is read from
            telemetry: Source of rate-limit snapshots (defaults to an empty
                in-memory store)
            catalogue: Alternative catalogue (defaults to one over code_home)
            legacy_home: Previous-version root for slot discovery
            default_cooldown_seconds: Cooldown for rate limits without a
                resume time
        """
        self.code_home = Path(code_home).expanduser()
        self.telemetry: TelemetrySource = telemetry or InMemoryTelemetry()
        self.catalogue = catalogue or AccountCatalogue(self.code_home, legacy_home)
        self.default_cooldown = timedelta(seconds=default_cooldown_seconds)
        self._cooldowns: dict[str, datetime] = {}
        self._weighted: dict[str, WeightedState] = {}

    @classmethod
    def from_settings(
        cls, settings: AccountSettings, telemetry: TelemetrySource | None = None
    ) -> "AccountScheduler":
        return cls(
            settings.code_home,
            telemetry,
            catalogue=AccountCatalogue.from_settings(settings),
            default_cooldown_seconds=settings.default_cooldown_seconds,
        )

    # ------------------------------------------------------------------
    # Cooldowns
    # ------------------------------------------------------------------

    def _prune_expired_cooldowns(self, now: datetime) -> None:
        self._cooldowns = {
            account_id: until
            for account_id, until in self._cooldowns.items()
            if until > now
        }

    def is_blocked(self, account_id: str, now: datetime) -> bool:
        until = self._cooldowns.get(account_id)
        return until is not None and until > _as_utc_now(now)

    def cooldown_until(self, account_id: str) -> datetime | None:
        return self._cooldowns.get(account_id)

    def record_outcome(
        self,
        account_id: str,
        outcome: SchedulerOutcome,
        now: datetime | None = None,
    ) -> None:
        """Feed back the result of a request made with account_id."""
        if outcome.kind == OutcomeKind.SUCCESS:
            if self._cooldowns.pop(account_id, None) is not None:
                logger.info("account_cooldown_cleared", account=account_id)
            return

        resume_at = ensure_utc(outcome.resume_at)
        if resume_at is None:
            resume_at = _as_utc_now(now) + self.default_cooldown
        self._cooldowns[account_id] = resume_at
        logger.info(
            "account_cooldown_set",
            account=account_id,
            resume_at=resume_at.isoformat(),
            explicit=outcome.resume_at is not None,
        )

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def _load_snapshots(self) -> dict[str, RateLimitSnapshot]:
        try:
            return {s.account_id: s for s in self.telemetry.list_snapshots()}
        except (CodeAccountsError, OSError, ValueError) as e:
            logger.warning("rate_limit_snapshots_unavailable", error=str(e))
            return {}

    def _load_accounts(self) -> list[StoredAccount]:
        try:
            return self.catalogue.list_accounts()
        except (CodeAccountsError, OSError) as e:
            logger.warning("account_catalogue_unavailable", error=str(e))
            return []

    def _candidates(self, now: datetime) -> list[_Candidate]:
        snapshots = self._load_snapshots()
        candidates: list[_Candidate] = []
        seen_ids: set[str] = set()

        for account in self._load_accounts():
            if account.id in seen_ids:
                continue
            seen_ids.add(account.id)
            if not account.has_credentials or self.is_blocked(account.id, now):
                continue

            snapshot = snapshots.get(account.id)
            weight = compute_weight(snapshot, now, health_multiplier(account))
            candidates.append(
                _Candidate(account, snapshot, weight, slot_identity(account))
            )

        return candidates

    def _pick_identity(self, identity_weights: dict[str, float]) -> str | None:
        """One step of smooth weighted round-robin.

        Ties go to the smallest identity key. Identities that are not
        eligible this round lose their accumulated state.
        """
        active = {k: w for k, w in identity_weights.items() if w > 0}
        for identity in list(self._weighted):
            if identity not in active:
                del self._weighted[identity]
        if not active:
            return None

        total = sum(active.values())
        best: str | None = None
        best_current = float("-inf")
        for identity in sorted(active):
            state = self._weighted.setdefault(identity, WeightedState())
            state.weight = active[identity]
            state.current += state.weight
            if state.current > best_current:
                best, best_current = identity, state.current

        if best is not None:
            self._weighted[best].current -= total
        return best

    def next_account(self, now: datetime | None = None) -> AccountSelection | None:
        """Pick the next account, or None when nothing is eligible."""
        now = _as_utc_now(now)
        self._prune_expired_cooldowns(now)

        candidates = self._candidates(now)
        identity_weights: dict[str, float] = {}
        for candidate in candidates:
            identity_weights[candidate.identity] = (
                identity_weights.get(candidate.identity, 0.0) + candidate.weight
            )

        winner = self._pick_identity(identity_weights)
        if winner is None:
            logger.warning(
                "no_account_available",
                cooling_down=len(self._cooldowns),
            )
            return None

        chosen = min(
            (c for c in candidates if c.identity == winner),
            key=lambda c: (-c.weight, c.account.id),
        )
        logger.debug(
            "account_selected",
            account=chosen.account.id,
            identity=winner,
            weight=chosen.weight,
        )
        return AccountSelection(
            account_id=chosen.account.id,
            label=chosen.account.label,
            plan=chosen.account.plan_type,
            snapshot=chosen.snapshot,
            weight=chosen.weight,
        )

    def get_status(self, now: datetime | None = None) -> dict[str, Any]:
        """Get scheduler state for monitoring."""
        now = _as_utc_now(now)
        self._prune_expired_cooldowns(now)
        return {
            "cooldowns": {
                account_id: until.isoformat()
                for account_id, until in sorted(self._cooldowns.items())
            },
            "identities": {
                identity: {"weight": state.weight, "current": state.current}
                for identity, state in sorted(self._weighted.items())
            },
        }
