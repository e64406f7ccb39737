"""
Circuit Breakers Module for prop firm accounts.

Provides trading locks based on:
1. Daily loss limit hit (locked until next UTC midnight)
2. Daily profit target reached, if the trader opted in (locked until next UTC midnight)
3. Outside the allowed trading hours (derived from the clock, never persisted)

Evaluation order, first match wins:
- An unexpired persisted lock is returned as-is
- Daily loss:  |min(0, pnl)| / daily_starting_equity * 100 >= personal limit (default 3%)
- Profit lock: max(0, pnl) >= daily_profit_target
- Session:     current UTC minute outside allowed_trading_hours

There is no unlock operation. Locks expire at UTC midnight; the daily equity
reset job starts the new day.

The decision itself is the pure ``decide(account, now)``. The evaluator wraps
it with per-account serialization, a compare-and-swap lock write and the
post-commit side effects (audit entry, notification).
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Dict, List, Any
import threading
import logging

from propguard.accounts.models import Account, AuditEntry, LockKind, LockUpdate
from propguard.accounts.stores import AccountStateStore
from propguard.lib.alerts import AlertKind, AlertPayload
from propguard.lib.config import BreakerConfig
from propguard.lib.errors import AccountNotFoundError, LockConflictError
from propguard.lib.logging_utils import RiskLogger
from propguard.lib.time_utils import get_utc_now, to_utc, next_utc_midnight, format_timestamp
from propguard.risk.effects import AuditEffect, AlertEffect, SideEffect

logger = logging.getLogger(__name__)
risk_log = RiskLogger(__name__)


# Notification copy shown to traders
LOSS_ALERT_TITLE = "🔴 Trading Paused - Daily Loss Limit"
LOSS_PUSH_TITLE = "🔴 Trading Locked"
LOSS_ALERT_SUFFIX = " Trading will resume at midnight UTC."
PROFIT_ALERT_TITLE = "🎯 Trading Paused - Target Reached!"
PROFIT_PUSH_TITLE = "🎯 Target Reached!"
PROFIT_ALERT_SUFFIX = " Great discipline! Resume tomorrow."


@dataclass
class CircuitBreakerResult:
    """Outcome of a circuit breaker evaluation."""
    is_locked: bool
    lock_reason: Optional[str]
    locked_until: Optional[datetime]
    breaker_type: LockKind
    daily_loss_pct: float
    daily_profit_pct: float
    personal_limit_pct: float
    profit_target: Optional[float]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "is_locked": self.is_locked,
            "lock_reason": self.lock_reason,
            "locked_until": format_timestamp(self.locked_until),
            "breaker_type": self.breaker_type.value,
            "daily_loss_pct": round(self.daily_loss_pct, 4),
            "daily_profit_pct": round(self.daily_profit_pct, 4),
            "personal_limit_pct": self.personal_limit_pct,
            "profit_target": self.profit_target,
        }


@dataclass
class BreakerDecision:
    """
    Result of the pure decision step.

    ``lock_update`` is set only when a new lock must be persisted; ``effects``
    run only after that write succeeds.
    """
    result: CircuitBreakerResult
    lock_update: Optional[LockUpdate] = None
    effects: List[SideEffect] = field(default_factory=list)


def _plain(value: float) -> str:
    """Render 3.0 as "3" and 2.5 as "2.5"."""
    return f"{value:.2f}".rstrip("0").rstrip(".")


def daily_percentages(account: Account) -> tuple:
    """
    Today's loss and profit as % of start-of-day equity.

    Both are 0 when the start-of-day equity is not positive.
    """
    equity = account.daily_starting_equity
    if equity <= 0:
        return 0.0, 0.0
    pnl = account.daily_pnl
    return abs(min(0.0, pnl)) / equity * 100, max(0.0, pnl) / equity * 100


def decide(
    account: Account,
    now: datetime,
    config: Optional[BreakerConfig] = None,
) -> BreakerDecision:
    """
    Decide an account's lock state at ``now`` without side effects.

    Args:
        account: Current account snapshot
        now: Evaluation time (UTC)
        config: Breaker configuration (uses defaults if None)

    Returns:
        BreakerDecision with the result, an optional lock to persist and the
        side effects to run after persisting it
    """
    config = config or BreakerConfig()
    now = to_utc(now)

    limit = account.personal_daily_loss_limit_pct
    if limit is None or limit <= 0:
        limit = config.default_daily_loss_limit_pct
    target = account.daily_profit_target
    loss_pct, profit_pct = daily_percentages(account)

    def result(is_locked, reason, until, kind) -> CircuitBreakerResult:
        return CircuitBreakerResult(
            is_locked=is_locked,
            lock_reason=reason,
            locked_until=until,
            breaker_type=kind,
            daily_loss_pct=loss_pct,
            daily_profit_pct=profit_pct,
            personal_limit_pct=limit,
            profit_target=target,
        )

    # Existing lock wins, returned verbatim
    if account.is_lock_active(now):
        kind = account.lock_kind if account.lock_kind != LockKind.NONE else LockKind.MANUAL
        return BreakerDecision(
            result(True, account.lock_reason, account.trading_locked_until, kind)
        )

    midnight = next_utc_midnight(now)

    # Daily loss
    if account.daily_starting_equity > 0 and loss_pct >= limit:
        reason = f"Daily loss limit hit: {loss_pct:.2f}% loss (limit: {_plain(limit)}%)"
        return _lock_decision(
            account, now, LockKind.DAILY_LOSS, reason, midnight,
            trigger=loss_pct, threshold=limit,
            payload=AlertPayload(
                title=LOSS_ALERT_TITLE,
                body=reason + LOSS_ALERT_SUFFIX,
                kind=AlertKind.LOSS_LOCK,
                push_title=LOSS_PUSH_TITLE,
                details={"daily_loss_pct": round(loss_pct, 2), "limit_pct": limit},
            ) if config.alerts_enabled else None,
            result=result(True, reason, midnight, LockKind.DAILY_LOSS),
        )

    # Profit lock
    profit = max(0.0, account.daily_pnl)
    if account.lock_after_target_reached and target is not None and target > 0 and profit >= target:
        reason = f"Daily profit target reached: ${profit:.2f} (target: ${_plain(target)})"
        return _lock_decision(
            account, now, LockKind.PROFIT_LOCK, reason, midnight,
            trigger=profit, threshold=target,
            payload=AlertPayload(
                title=PROFIT_ALERT_TITLE,
                body=reason + PROFIT_ALERT_SUFFIX,
                kind=AlertKind.PROFIT_LOCK,
                push_title=PROFIT_PUSH_TITLE,
                details={"daily_profit": round(profit, 2), "target": target},
            ) if config.alerts_enabled else None,
            result=result(True, reason, midnight, LockKind.PROFIT_LOCK),
        )

    # Session window (derived, never persisted)
    hours = account.allowed_trading_hours
    if config.enforce_trading_hours and hours is not None and hours.enabled:
        if not hours.contains_time(now):
            reason = f"Outside trading hours. Allowed: {hours.label()} UTC"
            return BreakerDecision(result(True, reason, None, LockKind.SESSION_TIME))

    return BreakerDecision(result(False, None, None, LockKind.NONE))


def _lock_decision(
    account: Account,
    now: datetime,
    kind: LockKind,
    reason: str,
    locked_until: datetime,
    trigger: float,
    threshold: float,
    payload: Optional[AlertPayload],
    result: CircuitBreakerResult,
) -> BreakerDecision:
    effects: List[SideEffect] = [
        AuditEffect(AuditEntry(
            account_id=account.account_id,
            user_id=account.user_id,
            breaker_type=kind,
            trigger_value=trigger,
            threshold_value=threshold,
            reason=reason,
            locked_until=locked_until,
            created_at=now,
        ))
    ]
    if payload is not None:
        effects.append(AlertEffect(account.account_id, payload))

    return BreakerDecision(
        result=result,
        lock_update=LockUpdate(locked_until=locked_until, reason=reason, kind=kind),
        effects=effects,
    )


class CircuitBreakerEvaluator:
    """
    Daily circuit breaker for trading accounts.

    Serializes evaluations per account, persists new locks with a
    compare-and-swap on the previous ``trading_locked_until`` and runs the
    audit and notification side effects only after a successful write.

    Usage:
        evaluator = CircuitBreakerEvaluator(store, dispatcher)

        # After each closed trade and on every scheduler tick
        result = evaluator.evaluate("acc-1")

        # Read-only status for the dashboard
        status = evaluator.evaluate("acc-1", user_id="user-7", check_only=True)
    """

    def __init__(
        self,
        store: AccountStateStore,
        dispatcher=None,
        config: Optional[BreakerConfig] = None,
    ):
        """
        Initialize the evaluator.

        Args:
            store: Account state store
            dispatcher: SideEffectDispatcher (audit-only dispatcher over
                ``store`` if None)
            config: Breaker configuration (uses defaults if None)
        """
        if dispatcher is None:
            # propguard.engine imports this module
            from propguard.engine.effects import SideEffectDispatcher
            dispatcher = SideEffectDispatcher(store)

        self.store = store
        self.dispatcher = dispatcher
        self.config = config or BreakerConfig()
        self._account_locks: Dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def _lock_for(self, account_id: str) -> threading.Lock:
        with self._guard:
            lock = self._account_locks.get(account_id)
            if lock is None:
                lock = threading.Lock()
                self._account_locks[account_id] = lock
            return lock

    def _load(self, account_id: str, user_id: Optional[str]) -> Account:
        account = self.store.load_account(account_id)
        if account is None:
            raise AccountNotFoundError(f"Account {account_id} not found", account_id=account_id)
        if user_id is not None and account.user_id is not None and account.user_id != user_id:
            raise AccountNotFoundError(
                f"Account {account_id} not found for user {user_id}", account_id=account_id
            )
        return account

    def evaluate(
        self,
        account_id: str,
        user_id: Optional[str] = None,
        check_only: bool = False,
        now: Optional[datetime] = None,
    ) -> CircuitBreakerResult:
        """
        Evaluate and, unless ``check_only``, enforce the account's lock state.

        Args:
            account_id: Account to evaluate
            user_id: Owner check (optional)
            check_only: Compute the state without writing, auditing or alerting
            now: Evaluation time (default: current UTC time)

        Returns:
            CircuitBreakerResult

        Raises:
            AccountNotFoundError: Unknown account or wrong owner
            LockConflictError: A concurrent writer changed the lock and the
                account is not locked afterwards
            DependencyUnavailableError: The store could not be reached
        """
        now = to_utc(now) if now is not None else get_utc_now()

        if check_only:
            return decide(self._load(account_id, user_id), now, self.config).result

        with self._lock_for(account_id):
            account = self._load(account_id, user_id)
            decision = decide(account, now, self.config)
            result = decision.result

            if decision.lock_update is None:
                if result.breaker_type == LockKind.SESSION_TIME:
                    risk_log.breaker_event(
                        account_id, result.breaker_type.value, result.lock_reason, persisted=False
                    )
                elif result.is_locked:
                    risk_log.lock_skipped(account_id, result.breaker_type.value, result.locked_until)
                return result

            committed = self.store.update_lock(
                account_id, decision.lock_update, account.trading_locked_until
            )
            if not committed:
                return self._resolve_conflict(account_id, user_id, now)

            risk_log.breaker_event(
                account_id,
                result.breaker_type.value,
                result.lock_reason,
                locked_until=result.locked_until,
                daily_loss_pct=result.daily_loss_pct,
                daily_profit_pct=result.daily_profit_pct,
            )

        self.dispatcher.run(decision.effects)
        return result

    def _resolve_conflict(
        self,
        account_id: str,
        user_id: Optional[str],
        now: datetime,
    ) -> CircuitBreakerResult:
        """Another writer won the CAS; adopt its lock if there is one."""
        account = self._load(account_id, user_id)
        if account.is_lock_active(now):
            logger.info(f"Lock on {account_id} written concurrently, returning persisted lock")
            return decide(account, now, self.config).result

        raise LockConflictError(
            f"Concurrent lock update on {account_id}, re-evaluate", account_id=account_id
        )

    def is_trading_allowed(self, account_id: str, now: Optional[datetime] = None) -> bool:
        """Check whether an account may place a trade right now (read-only)."""
        return not self.evaluate(account_id, check_only=True, now=now).is_locked
