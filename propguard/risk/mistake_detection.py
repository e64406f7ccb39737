"""
Behavioral mistake detection on closed trades.

Tags each closed trade with the rule violations it shows:
- fomo: opened within 5 minutes after another trade closed
- revenge: opened within 10 minutes after a losing close
- oversized: lot size above 150% of the account's average lot size
- session_violation: opened outside the allowed trading hours

``detect`` is pure. ``MistakeDetector.process_closed_trade`` wraps it with the
store reads (account settings, 24h of history) and emits one weekly pattern
upsert per tag. Detection is advisory: any failure yields no tags and a
warning, never an exception.
"""

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Optional, List, FrozenSet, Iterable
import logging

from propguard.accounts.models import Account, MistakeTag, Trade, TradingHours
from propguard.accounts.stores import AccountStateStore, TradeHistorySource
from propguard.lib.config import DetectorConfig
from propguard.lib.logging_utils import RiskLogger
from propguard.lib.time_utils import week_start
from propguard.risk.effects import PatternEffect

logger = logging.getLogger(__name__)
risk_log = RiskLogger(__name__)


@dataclass(frozen=True)
class DetectionSettings:
    """Per-account inputs to the heuristics."""
    average_lot_size: Optional[float] = None
    allowed_trading_hours: Optional[TradingHours] = None

    @classmethod
    def from_account(cls, account: Account) -> "DetectionSettings":
        return cls(
            average_lot_size=account.average_lot_size,
            allowed_trading_hours=account.allowed_trading_hours,
        )


@dataclass
class MistakeReport:
    """Tags found on one closed trade plus the aggregate updates they imply."""
    trade_id: str
    account_id: str
    tags: FrozenSet[MistakeTag] = frozenset()
    effects: List[PatternEffect] = field(default_factory=list)

    @property
    def sorted_tags(self) -> List[str]:
        return sorted(tag.value for tag in self.tags)


def _prior_closes(trade: Trade, recent_trades: Iterable[Trade]) -> List[Trade]:
    """Other closed trades whose close is at or before this trade's open."""
    opened = trade.created_at
    return [
        t for t in recent_trades
        if t.trade_id != trade.trade_id and t.is_closed and t.closed_at <= opened
    ]


def detect(
    trade: Trade,
    recent_trades: Iterable[Trade],
    settings: DetectionSettings,
    config: Optional[DetectorConfig] = None,
) -> FrozenSet[MistakeTag]:
    """
    Tag a trade with behavioral mistakes.

    Args:
        trade: The trade to classify (its open time is what matters)
        recent_trades: The account's recent trades, any order
        settings: Average lot size and allowed trading hours
        config: Window lengths and oversize ratio (defaults if None)

    Returns:
        Frozen set of MistakeTag (possibly empty)
    """
    config = config or DetectorConfig()
    opened = trade.created_at
    tags = set()

    prior = _prior_closes(trade, recent_trades)

    fomo_start = opened - timedelta(minutes=config.fomo_window_minutes)
    if any(t.closed_at > fomo_start for t in prior):
        tags.add(MistakeTag.FOMO)

    if prior:
        latest = max(prior, key=lambda t: t.closed_at)
        since_close = opened - latest.closed_at
        if latest.is_loss and since_close < timedelta(minutes=config.revenge_window_minutes):
            tags.add(MistakeTag.REVENGE)

    average = settings.average_lot_size
    if average is not None and average > 0 and trade.lot_size > average * config.oversize_ratio:
        tags.add(MistakeTag.OVERSIZED)

    hours = settings.allowed_trading_hours
    if hours is not None and hours.enabled and not hours.contains_time(opened):
        tags.add(MistakeTag.SESSION_VIOLATION)

    return frozenset(tags)


def pattern_effects(trade: Trade, tags: Iterable[MistakeTag]) -> List[PatternEffect]:
    """One weekly aggregate update per tag, in the week the trade closed."""
    week = week_start(trade.closed_at or trade.created_at)
    pnl = trade.pnl if trade.pnl is not None else 0.0
    return [
        PatternEffect(
            account_id=trade.account_id,
            week_start=week,
            mistake_type=tag,
            delta_count=1,
            delta_pnl=pnl,
        )
        for tag in sorted(tags, key=lambda t: t.value)
    ]


class MistakeDetector:
    """
    Trade-close pipeline around ``detect``.

    Usage:
        detector = MistakeDetector(store, history, dispatcher)
        tags = detector.process_closed_trade(closed_trade)
    """

    def __init__(
        self,
        accounts: AccountStateStore,
        history: TradeHistorySource,
        dispatcher=None,
        config: Optional[DetectorConfig] = None,
    ):
        """
        Initialize the detector.

        Args:
            accounts: Source of per-account settings
            history: Source of recent trades
            dispatcher: SideEffectDispatcher for pattern upserts (None
                computes tags without aggregating them)
            config: Detector configuration (uses defaults if None)
        """
        self.accounts = accounts
        self.history = history
        self.dispatcher = dispatcher
        self.config = config or DetectorConfig()

    def analyze_closed_trade(self, trade: Trade) -> MistakeReport:
        """
        Load settings and history and tag a closed trade, without writing.

        Never raises; failures give an empty report and a warning.
        """
        report = MistakeReport(trade_id=trade.trade_id, account_id=trade.account_id)

        if not trade.is_closed:
            logger.warning(f"Trade {trade.trade_id} is still open, skipping mistake detection")
            return report

        try:
            account = self.accounts.load_account(trade.account_id)
            settings = DetectionSettings.from_account(account) if account else DetectionSettings()
            since = trade.created_at - timedelta(hours=self.config.history_window_hours)
            recent = self.history.recent_trades(trade.account_id, since)
            tags = detect(trade, recent, settings, self.config)
        except Exception as e:
            logger.warning(f"Mistake detection failed for trade {trade.trade_id}: {e}")
            return report

        report.tags = tags
        report.effects = pattern_effects(trade, tags)
        return report

    def process_closed_trade(self, trade: Trade) -> FrozenSet[MistakeTag]:
        """
        Tag a closed trade and aggregate its mistakes into weekly patterns.

        Returns:
            The tags found (empty on any failure)
        """
        report = self.analyze_closed_trade(trade)
        if not report.tags:
            return report.tags

        risk_log.mistakes_detected(
            trade.account_id,
            trade.trade_id,
            report.sorted_tags,
            pnl=trade.pnl,
        )

        if self.dispatcher is not None:
            self.dispatcher.run(report.effects)

        return report.tags
