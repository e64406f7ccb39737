"""
Public API of the risk engine.

RiskEngine wires the stores, the rule catalog and the alert dispatcher into
the three risk components and exposes the operations the signal service
calls:

- evaluate_circuit_breaker(account_id, user_id, check_only)
- compute_lot_size(request)
- detect_mistakes(trade, user_id)
- handle_trade_closed(trade): mistakes + breaker in one call
- check_lot_consistency(account_id, requested_lot_size): spike guard
- analyze_trade / weekly_summary / mistake_history / firm_risk_check

Every result has a ``to_dict()`` JSON shape.
"""

from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional, Union, Dict, Any, List
import logging
import threading

from propguard.accounts.models import Account, Trade
from propguard.accounts.stores import AccountStateStore, TradeHistorySource, MistakePatternStore
from propguard.engine.effects import SideEffectDispatcher
from propguard.lib.alerts import AlertDispatcher
from propguard.lib.config import EngineConfig
from propguard.lib.errors import AccountNotFoundError
from propguard.lib.time_utils import get_utc_now, to_utc
from propguard.risk.circuit_breakers import CircuitBreakerEvaluator, CircuitBreakerResult
from propguard.risk.lot_consistency import LotConsistencyChecker, LotConsistencyResult
from propguard.risk.mistake_analytics import (
    MistakeHistory,
    WeeklySummary,
    mistake_history,
    weekly_summary,
)
from propguard.risk.mistake_detection import MistakeDetector
from propguard.risk.position_sizing import LotSizeRequest, PositionSizer, RiskComputationResult
from propguard.risk.pre_trade import PreTradeAnalysis, analyze_trade
from propguard.risk.rule_catalog import RiskLimitCheck, RuleCatalog

logger = logging.getLogger(__name__)


class _PendingTags:
    """Cache slot for a trade id another thread is still processing."""

    def __init__(self):
        self.done = threading.Event()
        self.tags: Optional[tuple] = None


@dataclass
class TradeCloseOutcome:
    """Everything the engine did for one trade-closed event."""
    trade_id: str
    account_id: str
    mistakes: List[str] = field(default_factory=list)
    circuit_breaker: Optional[CircuitBreakerResult] = None
    duplicate: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "trade_id": self.trade_id,
            "account_id": self.account_id,
            "mistakes": list(self.mistakes),
            "circuit_breaker": self.circuit_breaker.to_dict() if self.circuit_breaker else None,
            "duplicate": self.duplicate,
        }


class RiskEngine:
    """
    Risk evaluation API.

    Usage:
        engine = RiskEngine(accounts, history, patterns=patterns, alerts=dispatcher)

        status = engine.evaluate_circuit_breaker("acc-1", user_id="u-1")
        sizing = engine.compute_lot_size({"account_balance": 20000,
                                          "risk_percentage_pct": 1,
                                          "stop_loss_distance_in_pips": 20})
        tags = engine.detect_mistakes(closed_trade)
    """

    def __init__(
        self,
        accounts: AccountStateStore,
        history: TradeHistorySource,
        patterns: Optional[MistakePatternStore] = None,
        alerts: Optional[AlertDispatcher] = None,
        catalog: Optional[RuleCatalog] = None,
        config: Optional[EngineConfig] = None,
    ):
        """
        Initialize the engine.

        Args:
            accounts: Account state store
            history: Trade history source
            patterns: Weekly mistake aggregates (optional)
            alerts: Notification dispatcher (optional)
            catalog: Firm rules and pip values (built-in tables if None)
            config: Engine configuration (defaults if None)
        """
        self.config = config or EngineConfig()
        self.accounts = accounts
        self.history = history
        self.patterns = patterns
        self.catalog = catalog or RuleCatalog()

        self.dispatcher = SideEffectDispatcher(accounts, alerts=alerts, patterns=patterns)
        self.sizer = PositionSizer(self.config.sizing, self.catalog)
        self.breaker = CircuitBreakerEvaluator(accounts, self.dispatcher, self.config.breaker)
        self.detector = MistakeDetector(accounts, history, self.dispatcher, self.config.detector)
        self.lot_checker = LotConsistencyChecker(history, self.dispatcher, self.config.detector)

        self._processed: "OrderedDict[str, Any]" = OrderedDict()
        self._processed_lock = threading.Lock()

    @classmethod
    def from_config(
        cls,
        config: EngineConfig,
        accounts: AccountStateStore,
        history: TradeHistorySource,
        patterns: Optional[MistakePatternStore] = None,
        alerts: Optional[AlertDispatcher] = None,
    ) -> "RiskEngine":
        """Build an engine, loading the rule catalog from ``config.rule_catalog_path`` if set."""
        catalog = RuleCatalog.from_yaml(config.rule_catalog_path) if config.rule_catalog_path else None
        return cls(accounts, history, patterns=patterns, alerts=alerts, catalog=catalog, config=config)

    # =========================================================================
    # Core operations
    # =========================================================================

    def evaluate_circuit_breaker(
        self,
        account_id: str,
        user_id: Optional[str] = None,
        check_only: bool = False,
        now: Optional[datetime] = None,
    ) -> CircuitBreakerResult:
        """Evaluate (and unless ``check_only``, enforce) an account's lock state."""
        return self.breaker.evaluate(account_id, user_id=user_id, check_only=check_only, now=now)

    def compute_lot_size(self, request: Union[LotSizeRequest, Dict[str, Any]]) -> RiskComputationResult:
        """Size a trade from a LotSizeRequest or its dict form; never raises."""
        if isinstance(request, dict):
            request = LotSizeRequest.from_dict(request)
        return self.sizer.compute_from_request(request)

    def detect_mistakes(
        self,
        trade: Union[Trade, Dict[str, Any]],
        user_id: Optional[str] = None,
    ) -> List[str]:
        """
        Tag a closed trade and aggregate its mistakes.

        Repeated calls for the same trade id return the first result without
        counting the trade again. A repeat that arrives while the first call
        is still running waits for its result.

        Args:
            trade: Closed trade (or its dict form)
            user_id: Owner check (optional)

        Returns:
            Sorted mistake tag values

        Raises:
            AccountNotFoundError: ``user_id`` given and the account is unknown
                or owned by someone else
        """
        if isinstance(trade, dict):
            trade = Trade.from_dict(trade)
        if user_id is not None:
            self._load_owned(trade.account_id, user_id)

        pending = None
        with self._processed_lock:
            cached = self._processed.get(trade.trade_id)
            if cached is None and trade.is_closed:
                pending = _PendingTags()
                self._processed[trade.trade_id] = pending

        if isinstance(cached, _PendingTags):
            logger.debug(f"Trade {trade.trade_id} already being processed, waiting")
            cached.done.wait()
            if cached.tags is None:
                # First attempt failed and released the slot
                return self.detect_mistakes(trade)
            return list(cached.tags)
        if cached is not None:
            logger.debug(f"Duplicate close event for trade {trade.trade_id} ignored")
            return list(cached)

        if pending is None:
            tags = self.detector.process_closed_trade(trade)
            return sorted(tag.value for tag in tags)

        try:
            tags = self.detector.process_closed_trade(trade)
            pending.tags = tuple(sorted(tag.value for tag in tags))
        finally:
            with self._processed_lock:
                if pending.tags is None:
                    self._processed.pop(trade.trade_id, None)
                else:
                    self._processed[trade.trade_id] = pending.tags
                    while len(self._processed) > self.config.detector.processed_trade_cache_size:
                        self._processed.popitem(last=False)
            pending.done.set()

        return list(pending.tags)

    def handle_trade_closed(
        self,
        trade: Union[Trade, Dict[str, Any]],
        user_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> TradeCloseOutcome:
        """
        React to a trade-closed event: tag mistakes, then re-evaluate the breaker.

        A duplicate event still re-evaluates the breaker (idempotent) but does
        not count the trade's mistakes twice.
        """
        if isinstance(trade, dict):
            trade = Trade.from_dict(trade)

        with self._processed_lock:
            duplicate = trade.trade_id in self._processed

        outcome = TradeCloseOutcome(trade_id=trade.trade_id, account_id=trade.account_id)
        outcome.mistakes = self.detect_mistakes(trade, user_id=user_id)
        outcome.duplicate = duplicate
        outcome.circuit_breaker = self.breaker.evaluate(trade.account_id, user_id=user_id, now=now)
        return outcome

    def check_lot_consistency(
        self,
        account_id: str,
        requested_lot_size: float,
        user_id: Optional[str] = None,
        hard_block: Optional[bool] = None,
    ) -> LotConsistencyResult:
        """
        Check a requested lot size against the recent average before placing it.

        Updates the account's running average lot size once a baseline exists
        and alerts the owner on a spike.

        Raises:
            AccountNotFoundError: Unknown account, or owned by someone else
            ValueError: ``requested_lot_size`` is not a positive number
        """
        self._load_owned(account_id, user_id)
        return self.lot_checker.check(account_id, requested_lot_size, hard_block=hard_block)

    # =========================================================================
    # Dashboard helpers
    # =========================================================================

    def analyze_trade(
        self,
        account_id: str,
        lot_size: float,
        user_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> PreTradeAnalysis:
        """Pre-trade warnings for a proposed lot size (read-only)."""
        now = to_utc(now) if now else get_utc_now()
        account = self._load_owned(account_id, user_id)
        breaker = self.breaker.evaluate(account_id, user_id=user_id, check_only=True, now=now)
        since = now - timedelta(hours=self.config.detector.history_window_hours)
        recent = self.history.recent_trades(account_id, since)
        return analyze_trade(account, lot_size, recent, now=now, breaker=breaker, config=self.config.detector)

    def weekly_summary(
        self,
        account_id: str,
        user_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> WeeklySummary:
        """This week's mistake totals for an account."""
        self._load_owned(account_id, user_id)
        return weekly_summary(self._require_patterns(), account_id, now=now)

    def mistake_history(
        self,
        account_id: str,
        user_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> MistakeHistory:
        """Mistakes grouped by week over the history window, with trend."""
        self._load_owned(account_id, user_id)
        return mistake_history(self._require_patterns(), account_id, now=now)

    def firm_risk_check(self, account_id: str, user_id: Optional[str] = None) -> RiskLimitCheck:
        """
        Compare the account's drawdown against its prop firm limits.

        Overall drawdown is measured from the starting balance, daily drawdown
        from the start-of-day equity; gains count as zero drawdown.
        """
        account = self._load_owned(account_id, user_id)
        total_dd = 0.0
        if account.starting_balance > 0:
            total_dd = max(0.0, account.starting_balance - account.current_equity) / account.starting_balance * 100
        daily_dd = 0.0
        if account.daily_starting_equity > 0:
            daily_dd = max(0.0, -account.daily_pnl) / account.daily_starting_equity * 100
        return self.catalog.is_within_risk_limits(account.prop_firm, total_dd, daily_dd)

    # =========================================================================
    # Internals
    # =========================================================================

    def _load_owned(self, account_id: str, user_id: Optional[str]) -> Account:
        account = self.accounts.load_account(account_id)
        if account is None:
            raise AccountNotFoundError(f"Account {account_id} not found", account_id=account_id)
        if user_id is not None and account.user_id is not None and account.user_id != user_id:
            raise AccountNotFoundError(
                f"Account {account_id} not found for user {user_id}", account_id=account_id
            )
        return account

    def _require_patterns(self) -> MistakePatternStore:
        if self.patterns is None:
            raise RuntimeError("RiskEngine was created without a MistakePatternStore")
        return self.patterns
