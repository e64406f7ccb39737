"""
Store contracts consumed by the risk engine, with in-memory implementations.

The engine talks to persistence only through these interfaces:
- AccountStateStore: account reads, conditional lock updates, audit trail
- TradeHistorySource: recent trades for one account
- MistakePatternStore: weekly mistake aggregates (upsert-add)

The in-memory implementations are thread-safe and are what the tests,
the CLI scripts and single-process deployments use. ``InMemoryAccountStore``
can persist its state to a JSON file after every mutation.
"""

from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime, date
from pathlib import Path
from typing import Optional, Dict, List, Tuple, Iterable
import json
import logging
import threading

from propguard.accounts.models import (
    Account,
    AuditEntry,
    LockUpdate,
    MistakePattern,
    MistakeTag,
    Trade,
)
from propguard.lib.errors import DependencyUnavailableError

logger = logging.getLogger(__name__)


# =============================================================================
# Contracts
# =============================================================================

class AccountStateStore(ABC):
    """Reads and writes account equity and lock state."""

    @abstractmethod
    def load_account(self, account_id: str) -> Optional[Account]:
        """Return the account, or None if it does not exist."""

    @abstractmethod
    def update_lock(
        self,
        account_id: str,
        update: LockUpdate,
        expected_prior_locked_until: Optional[datetime],
    ) -> bool:
        """
        Conditionally write the lock fields.

        The write only happens if the stored ``trading_locked_until`` still
        equals ``expected_prior_locked_until``.

        Returns:
            True on success, False if another writer got there first
        """

    @abstractmethod
    def append_audit_entry(self, entry: AuditEntry) -> None:
        """Append an entry to the immutable audit trail."""

    @abstractmethod
    def list_account_ids(self) -> List[str]:
        """All account ids the scheduled sweep should evaluate."""

    @abstractmethod
    def update_average_lot_size(self, account_id: str, average_lot_size: float) -> None:
        """Store the running average lot size used by oversize checks."""


class TradeHistorySource(ABC):
    """Source of recent trades for mistake detection."""

    @abstractmethod
    def recent_trades(self, account_id: str, since: datetime) -> List[Trade]:
        """
        Trades active at or after ``since``, newest close first.

        Closed trades are selected by close time, so a long-held position that
        closed inside the window is included. Open trades are selected by open
        time and come last.
        """

    @abstractmethod
    def recent_lot_sizes(self, account_id: str, limit: int) -> List[float]:
        """Lot sizes of the account's latest ``limit`` trades, newest open first."""


class MistakePatternStore(ABC):
    """Weekly mistake aggregates keyed by (account, week, mistake type)."""

    @abstractmethod
    def upsert_weekly_pattern(
        self,
        account_id: str,
        week_start: date,
        mistake_type: MistakeTag,
        delta_count: int,
        delta_pnl: float,
    ) -> MistakePattern:
        """Create the weekly row or add to it; returns the updated row."""

    @abstractmethod
    def patterns_for(self, account_id: str, since: Optional[date] = None) -> List[MistakePattern]:
        """All rows for an account, optionally from ``since`` onward."""


# =============================================================================
# In-memory implementations
# =============================================================================

class InMemoryAccountStore(AccountStateStore):
    """
    Thread-safe account store.

    Usage:
        store = InMemoryAccountStore([account], state_file=Path("state.json"))
        account = store.load_account("acc-1")
        ok = store.update_lock("acc-1", update, account.trading_locked_until)
    """

    def __init__(
        self,
        accounts: Optional[Iterable[Account]] = None,
        state_file: Optional[Path] = None,
    ):
        """
        Initialize the store.

        Args:
            accounts: Initial accounts
            state_file: JSON file to load from and persist to (optional)
        """
        self._lock = threading.RLock()
        self._accounts: Dict[str, Account] = {}
        self._audit: List[AuditEntry] = []
        self.state_file = Path(state_file) if state_file else None

        if self.state_file and self.state_file.exists():
            self._load_state()

        for account in accounts or []:
            self._accounts[account.account_id] = account

    def load_account(self, account_id: str) -> Optional[Account]:
        with self._lock:
            account = self._accounts.get(account_id)
            return replace(account) if account else None

    def save_account(self, account: Account) -> None:
        """Insert or replace an account (onboarding and external jobs)."""
        with self._lock:
            accounts = dict(self._accounts)
            accounts[account.account_id] = replace(account)
            self._commit(accounts)

    def update_lock(
        self,
        account_id: str,
        update: LockUpdate,
        expected_prior_locked_until: Optional[datetime],
    ) -> bool:
        with self._lock:
            current = self._accounts.get(account_id)
            if current is None:
                return False

            if current.trading_locked_until != expected_prior_locked_until:
                logger.info(
                    f"Lock update conflict on {account_id}: expected "
                    f"{expected_prior_locked_until}, found {current.trading_locked_until}"
                )
                return False

            accounts = dict(self._accounts)
            accounts[account_id] = current.with_lock(update)
            self._commit(accounts)
            return True

    def append_audit_entry(self, entry: AuditEntry) -> None:
        with self._lock:
            self._audit.append(entry)
            self._persist_state(self._accounts)

    def list_account_ids(self) -> List[str]:
        with self._lock:
            return sorted(self._accounts)

    def apply_realized_pnl(self, account_id: str, pnl: float) -> Account:
        """Add a closed trade's P&L to current equity."""
        with self._lock:
            current = self._accounts.get(account_id)
            if current is None:
                raise KeyError(account_id)
            updated = replace(current, current_equity=current.current_equity + pnl)
            accounts = dict(self._accounts)
            accounts[account_id] = updated
            self._commit(accounts)
            return replace(updated)

    def update_average_lot_size(self, account_id: str, average_lot_size: float) -> None:
        with self._lock:
            current = self._accounts.get(account_id)
            if current is None:
                raise KeyError(account_id)
            accounts = dict(self._accounts)
            accounts[account_id] = replace(current, average_lot_size=average_lot_size)
            self._commit(accounts)

    def reset_daily_equity(self, account_id: str) -> Account:
        """Start a new trading day: today's starting equity is current equity."""
        with self._lock:
            current = self._accounts.get(account_id)
            if current is None:
                raise KeyError(account_id)
            updated = replace(current, daily_starting_equity=current.current_equity)
            accounts = dict(self._accounts)
            accounts[account_id] = updated
            self._commit(accounts)
            return replace(updated)

    def get_audit_trail(self, account_id: Optional[str] = None) -> List[AuditEntry]:
        """Audit entries, oldest first."""
        with self._lock:
            if account_id is None:
                return list(self._audit)
            return [e for e in self._audit if e.account_id == account_id]

    def _commit(self, accounts: Dict[str, Account]) -> None:
        # Persist first so a failed write leaves memory untouched
        self._persist_state(accounts)
        self._accounts = accounts

    def _persist_state(self, accounts: Dict[str, Account]) -> None:
        """Save state to file."""
        if not self.state_file:
            return

        state = {
            "accounts": [a.to_dict() for a in accounts.values()],
            "audit": [e.to_dict() for e in self._audit],
        }
        try:
            self.state_file.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.state_file.with_suffix(self.state_file.suffix + ".tmp")
            with open(tmp_path, "w") as f:
                json.dump(state, f, indent=2)
            tmp_path.replace(self.state_file)
        except OSError as e:
            raise DependencyUnavailableError(f"Failed to persist account state: {e}") from e

    def _load_state(self) -> None:
        """Load state from file."""
        try:
            with open(self.state_file, "r") as f:
                state = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise DependencyUnavailableError(f"Failed to load account state: {e}") from e

        for data in state.get("accounts", []):
            account = Account.from_dict(data)
            self._accounts[account.account_id] = account

        # Every later write re-saves the whole trail
        self._audit = [AuditEntry.from_dict(e) for e in state.get("audit", [])]

        logger.info(
            f"Loaded {len(self._accounts)} accounts and {len(self._audit)} audit entries "
            f"from {self.state_file}"
        )


class InMemoryTradeHistory(TradeHistorySource):
    """Thread-safe trade history keyed by trade id."""

    def __init__(self, trades: Optional[Iterable[Trade]] = None):
        self._lock = threading.RLock()
        self._trades: Dict[str, Trade] = {}
        for trade in trades or []:
            self._trades[trade.trade_id] = trade

    def record(self, trade: Trade) -> None:
        """Insert a new trade or replace it with its closed version."""
        with self._lock:
            existing = self._trades.get(trade.trade_id)
            if existing is not None and existing.is_closed:
                raise ValueError(f"Trade {trade.trade_id} is closed and immutable")
            self._trades[trade.trade_id] = trade

    def get(self, trade_id: str) -> Optional[Trade]:
        with self._lock:
            return self._trades.get(trade_id)

    def recent_trades(self, account_id: str, since: datetime) -> List[Trade]:
        with self._lock:
            trades = [
                t for t in self._trades.values()
                if t.account_id == account_id
                and (t.closed_at if t.is_closed else t.created_at) >= since
            ]

        # Closed trades newest-close first, open trades last
        closed = sorted((t for t in trades if t.is_closed), key=lambda t: t.closed_at, reverse=True)
        still_open = sorted((t for t in trades if not t.is_closed), key=lambda t: t.created_at, reverse=True)
        return closed + still_open

    def recent_lot_sizes(self, account_id: str, limit: int) -> List[float]:
        with self._lock:
            trades = [t for t in self._trades.values() if t.account_id == account_id]
        trades.sort(key=lambda t: t.created_at, reverse=True)
        return [t.lot_size for t in trades[:limit]]


class InMemoryMistakePatternStore(MistakePatternStore):
    """Thread-safe weekly pattern aggregates."""

    def __init__(self):
        self._lock = threading.Lock()
        self._rows: Dict[Tuple[str, date, MistakeTag], MistakePattern] = {}

    def upsert_weekly_pattern(
        self,
        account_id: str,
        week_start: date,
        mistake_type: MistakeTag,
        delta_count: int,
        delta_pnl: float,
    ) -> MistakePattern:
        key = (account_id, week_start, mistake_type)
        with self._lock:
            row = self._rows.get(key)
            if row is None:
                row = MistakePattern(account_id, week_start, mistake_type)
                self._rows[key] = row
            row.count += delta_count
            row.total_pnl_impact += delta_pnl
            return replace(row)

    def patterns_for(self, account_id: str, since: Optional[date] = None) -> List[MistakePattern]:
        with self._lock:
            rows = [
                replace(r) for (acc, week, _), r in self._rows.items()
                if acc == account_id and (since is None or week >= since)
            ]
        return sorted(rows, key=lambda r: (r.week_start, r.mistake_type.value))
