"""
Pre-trade check shown before a trader submits an order.

Looks at the proposed lot size, the account's recent closes and the current
circuit breaker state and returns plain-language warnings with a risk level
(more than 2 warnings = high, any warning = medium, none = low).
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional, List, Dict, Any, Iterable
import math

from propguard.accounts.models import Account, Trade
from propguard.lib.config import DetectorConfig
from propguard.lib.constants import LOSING_STREAK_WARNING
from propguard.lib.time_utils import get_utc_now, to_utc, get_trading_session
from propguard.risk.circuit_breakers import CircuitBreakerResult

RECENT_CLOSE_WARNING = (
    "You just closed a trade. Taking a moment to review before entering again "
    "can improve decision quality."
)
REVENGE_WARNING = "⚠️ Your last trade was a loss. This new entry may be revenge trading."
LOSING_STREAK_MESSAGE = "You are on a losing streak. Consider taking a break."


@dataclass
class PreTradeAnalysis:
    """Warnings for a proposed trade."""
    warnings: List[str] = field(default_factory=list)
    risk_level: str = "low"
    trading_allowed: bool = True
    session: Optional[str] = None
    losing_streak: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "warnings": list(self.warnings),
            "risk_level": self.risk_level,
            "trading_allowed": self.trading_allowed,
            "session": self.session,
            "losing_streak": self.losing_streak,
        }


def losing_streak(recent_trades: Iterable[Trade]) -> int:
    """Number of consecutive losing closes, most recent first."""
    closed = sorted((t for t in recent_trades if t.is_closed), key=lambda t: t.closed_at, reverse=True)
    streak = 0
    for trade in closed:
        if not trade.is_loss:
            break
        streak += 1
    return streak


def risk_level_for(warning_count: int) -> str:
    if warning_count > 2:
        return "high"
    if warning_count > 0:
        return "medium"
    return "low"


def analyze_trade(
    account: Account,
    lot_size: float,
    recent_trades: Iterable[Trade],
    now: Optional[datetime] = None,
    breaker: Optional[CircuitBreakerResult] = None,
    config: Optional[DetectorConfig] = None,
) -> PreTradeAnalysis:
    """
    Check a proposed trade for likely mistakes before it is placed.

    Args:
        account: Account the trade would be placed on
        lot_size: Proposed lot size
        recent_trades: The account's recent trades
        now: Intended entry time (default: current UTC time)
        breaker: Current circuit breaker state, if already evaluated
        config: Detector windows and oversize ratio (defaults if None)

    Returns:
        PreTradeAnalysis
    """
    config = config or DetectorConfig()
    now = to_utc(now) if now else get_utc_now()
    trades = list(recent_trades)
    analysis = PreTradeAnalysis(session=get_trading_session(now))

    if breaker is not None and breaker.is_locked:
        analysis.trading_allowed = False
        analysis.warnings.append(f"Trading is locked: {breaker.lock_reason}")

    average = account.average_lot_size
    if average and average > 0 and lot_size > average * config.oversize_ratio:
        larger_pct = int(math.floor((lot_size / average - 1) * 100 + 0.5))
        analysis.warnings.append(
            f"Position size {lot_size:g} is {larger_pct}% larger than your average"
        )

    analysis.losing_streak = losing_streak(trades)
    if analysis.losing_streak >= LOSING_STREAK_WARNING:
        analysis.warnings.append(LOSING_STREAK_MESSAGE)

    window_start = now - timedelta(minutes=config.fomo_window_minutes)
    just_closed = [t for t in trades if t.is_closed and window_start <= t.closed_at <= now]
    if just_closed:
        analysis.warnings.append(RECENT_CLOSE_WARNING)
        latest = max(just_closed, key=lambda t: t.closed_at)
        if latest.is_loss:
            analysis.warnings.append(REVENGE_WARNING)

    analysis.risk_level = risk_level_for(len(analysis.warnings))
    return analysis
