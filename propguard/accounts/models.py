"""
Account and trade data model for the risk engine.

Defines the value types that flow between the stores, the circuit breaker
and the mistake detector:
- Account: one funded/challenge account with its lock fields
- TradingHours: validated allowed-trading window (UTC minutes of day)
- Trade: one open or closed position
- MistakeTag / MistakePattern: behavioral labels and their weekly aggregate
- LockUpdate / AuditEntry: what the circuit breaker persists

All timestamps are timezone-aware UTC. ``from_dict``/``to_dict`` give the
JSON shape used at the store boundary, which is also where trading hours are
validated.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, date
from enum import Enum
from typing import Optional, Dict, Any

from propguard.lib.constants import (
    DEFAULT_PERSONAL_DAILY_LOSS_LIMIT_PCT,
    DEFAULT_WINDOW_START,
    DEFAULT_WINDOW_END,
)
from propguard.lib.time_utils import (
    parse_hhmm,
    format_hhmm,
    is_within_window,
    minute_of_day,
    parse_timestamp,
    format_timestamp,
    get_utc_now,
)


class LockKind(Enum):
    """Why an account is locked out of trading."""
    NONE = "none"
    DAILY_LOSS = "daily_loss"
    PROFIT_LOCK = "profit_lock"
    SESSION_TIME = "session_time"  # Derived from the clock, never persisted
    MANUAL = "manual"


class Direction(Enum):
    """Trade direction."""
    BUY = "buy"
    SELL = "sell"

    @classmethod
    def parse(cls, value) -> "Direction":
        if isinstance(value, cls):
            return value
        return cls(str(value).lower())


class MistakeTag(Enum):
    """Behavioral violations tagged on a closed trade."""
    FOMO = "fomo"
    REVENGE = "revenge"
    OVERSIZED = "oversized"
    SESSION_VIOLATION = "session_violation"


@dataclass(frozen=True)
class TradingHours:
    """
    Allowed trading window in UTC minutes of day.

    A window with ``start_minute > end_minute`` crosses midnight
    (e.g. 22:00-02:00).
    """
    start_minute: int
    end_minute: int
    enabled: bool = True

    def __post_init__(self):
        for name in ("start_minute", "end_minute"):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool) or not (0 <= value < 1440):
                raise ValueError(f"{name} must be an int in [0, 1440), got {value!r}")
        if self.start_minute == self.end_minute:
            raise ValueError("Trading window start and end must differ")

    @property
    def crosses_midnight(self) -> bool:
        return self.start_minute > self.end_minute

    def contains(self, minute: int) -> bool:
        """Check whether a minute of day is inside the window."""
        return is_within_window(minute, self.start_minute, self.end_minute)

    def contains_time(self, dt: datetime) -> bool:
        """Check whether a timestamp's UTC minute is inside the window."""
        return self.contains(minute_of_day(dt))

    def label(self) -> str:
        return f"{format_hhmm(self.start_minute)} - {format_hhmm(self.end_minute)}"

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["TradingHours"]:
        """
        Parse ``{"start": "HH:MM", "end": "HH:MM", "enabled": bool}``.

        Missing start/end fall back to 08:00/17:00; a missing ``enabled`` flag
        means the window is enforced.

        Raises:
            ValueError: If the times are malformed or the window is empty
        """
        if not data:
            return None
        start = data.get("start") or DEFAULT_WINDOW_START.strftime("%H:%M")
        end = data.get("end") or DEFAULT_WINDOW_END.strftime("%H:%M")
        return cls(
            start_minute=parse_hhmm(start),
            end_minute=parse_hhmm(end),
            enabled=bool(data.get("enabled", True)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "start": format_hhmm(self.start_minute),
            "end": format_hhmm(self.end_minute),
            "enabled": self.enabled,
        }


@dataclass
class Account:
    """
    One funded or challenge trading account.

    Lock fields (``trading_locked_until``, ``lock_reason``, ``lock_kind``) are
    only ever written by the circuit breaker through the store's conditional
    update. ``daily_starting_equity`` is reset at UTC midnight by an external
    job.
    """
    account_id: str
    starting_balance: float
    current_equity: float
    daily_starting_equity: float
    user_id: Optional[str] = None
    personal_daily_loss_limit_pct: Optional[float] = DEFAULT_PERSONAL_DAILY_LOSS_LIMIT_PCT
    daily_profit_target: Optional[float] = None
    lock_after_target_reached: bool = False
    allowed_trading_hours: Optional[TradingHours] = None
    average_lot_size: Optional[float] = None
    trading_locked_until: Optional[datetime] = None
    lock_reason: Optional[str] = None
    lock_kind: LockKind = LockKind.NONE
    prop_firm: Optional[str] = None

    @property
    def daily_pnl(self) -> float:
        """Today's P&L relative to the start-of-day equity."""
        return self.current_equity - self.daily_starting_equity

    @property
    def effective_daily_loss_limit_pct(self) -> float:
        """Personal loss limit, defaulting to 3% when unset or non-positive."""
        limit = self.personal_daily_loss_limit_pct
        if limit is None or limit <= 0:
            return DEFAULT_PERSONAL_DAILY_LOSS_LIMIT_PCT
        return limit

    def is_lock_active(self, now: Optional[datetime] = None) -> bool:
        """True while a persisted lock has not yet expired."""
        if self.trading_locked_until is None:
            return False
        return self.trading_locked_until > (now or get_utc_now())

    def with_lock(self, update: "LockUpdate") -> "Account":
        """Return a copy with the lock fields replaced."""
        return replace(
            self,
            trading_locked_until=update.locked_until,
            lock_reason=update.reason,
            lock_kind=update.kind,
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Account":
        """Create an Account from its JSON representation."""
        return cls(
            account_id=str(data["account_id"]),
            user_id=data.get("user_id"),
            starting_balance=float(data.get("starting_balance", 0.0)),
            current_equity=float(data.get("current_equity", 0.0)),
            daily_starting_equity=float(data.get("daily_starting_equity", 0.0)),
            personal_daily_loss_limit_pct=data.get(
                "personal_daily_loss_limit_pct", DEFAULT_PERSONAL_DAILY_LOSS_LIMIT_PCT
            ),
            daily_profit_target=data.get("daily_profit_target"),
            lock_after_target_reached=bool(data.get("lock_after_target_reached", False)),
            allowed_trading_hours=TradingHours.from_dict(data.get("allowed_trading_hours")),
            average_lot_size=data.get("average_lot_size"),
            trading_locked_until=parse_timestamp(data.get("trading_locked_until")),
            lock_reason=data.get("lock_reason"),
            lock_kind=LockKind(data.get("lock_kind") or LockKind.NONE.value),
            prop_firm=data.get("prop_firm"),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "account_id": self.account_id,
            "user_id": self.user_id,
            "starting_balance": self.starting_balance,
            "current_equity": self.current_equity,
            "daily_starting_equity": self.daily_starting_equity,
            "personal_daily_loss_limit_pct": self.personal_daily_loss_limit_pct,
            "daily_profit_target": self.daily_profit_target,
            "lock_after_target_reached": self.lock_after_target_reached,
            "allowed_trading_hours": (
                self.allowed_trading_hours.to_dict() if self.allowed_trading_hours else None
            ),
            "average_lot_size": self.average_lot_size,
            "trading_locked_until": format_timestamp(self.trading_locked_until),
            "lock_reason": self.lock_reason,
            "lock_kind": self.lock_kind.value,
            "prop_firm": self.prop_firm,
        }


@dataclass(frozen=True)
class Trade:
    """
    One position. ``exit_price``, ``pnl`` and ``closed_at`` are set together,
    exactly once, when the position closes.
    """
    trade_id: str
    account_id: str
    symbol: str
    direction: Direction
    lot_size: float
    entry_price: float
    created_at: datetime
    exit_price: Optional[float] = None
    pnl: Optional[float] = None
    closed_at: Optional[datetime] = None

    def __post_init__(self):
        if self.closed_at is None and self.pnl is not None:
            raise ValueError(f"Trade {self.trade_id}: pnl is only defined once closed")

    @property
    def is_closed(self) -> bool:
        return self.closed_at is not None

    @property
    def is_loss(self) -> bool:
        return self.is_closed and self.pnl is not None and self.pnl < 0

    def close(self, exit_price: float, pnl: float, closed_at: datetime) -> "Trade":
        """Return the closed version of this trade."""
        if self.is_closed:
            raise ValueError(f"Trade {self.trade_id} is already closed")
        return replace(self, exit_price=exit_price, pnl=pnl, closed_at=closed_at)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Trade":
        """Create Trade from dictionary."""
        return cls(
            trade_id=str(data["trade_id"]),
            account_id=str(data["account_id"]),
            symbol=data.get("symbol", "UNKNOWN"),
            direction=Direction.parse(data.get("direction", "buy")),
            lot_size=float(data.get("lot_size", 0.0)),
            entry_price=float(data.get("entry_price", 0.0)),
            created_at=parse_timestamp(data["created_at"]),
            exit_price=data.get("exit_price"),
            pnl=data.get("pnl"),
            closed_at=parse_timestamp(data.get("closed_at")),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "trade_id": self.trade_id,
            "account_id": self.account_id,
            "symbol": self.symbol,
            "direction": self.direction.value,
            "lot_size": self.lot_size,
            "entry_price": self.entry_price,
            "exit_price": self.exit_price,
            "pnl": round(self.pnl, 2) if self.pnl is not None else None,
            "created_at": format_timestamp(self.created_at),
            "closed_at": format_timestamp(self.closed_at),
        }


@dataclass
class MistakePattern:
    """Weekly aggregate of one mistake type for one account."""
    account_id: str
    week_start: date
    mistake_type: MistakeTag
    count: int = 0
    total_pnl_impact: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "account_id": self.account_id,
            "week_start": self.week_start.isoformat(),
            "mistake_type": self.mistake_type.value,
            "count": self.count,
            "total_pnl_impact": round(self.total_pnl_impact, 2),
        }


@dataclass(frozen=True)
class LockUpdate:
    """Lock fields written atomically by the circuit breaker."""
    locked_until: Optional[datetime]
    reason: Optional[str]
    kind: LockKind


@dataclass(frozen=True)
class AuditEntry:
    """Immutable record of a circuit breaker transition."""
    account_id: str
    breaker_type: LockKind
    trigger_value: float
    threshold_value: float
    reason: str
    locked_until: Optional[datetime]
    user_id: Optional[str] = None
    created_at: datetime = field(default_factory=get_utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "account_id": self.account_id,
            "user_id": self.user_id,
            "breaker_type": self.breaker_type.value,
            "trigger_value": round(self.trigger_value, 4),
            "threshold_value": self.threshold_value,
            "reason": self.reason,
            "locked_until": format_timestamp(self.locked_until),
            "created_at": format_timestamp(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AuditEntry":
        """Create an AuditEntry from its JSON representation."""
        created_at = parse_timestamp(data.get("created_at"))
        return cls(
            account_id=str(data["account_id"]),
            breaker_type=LockKind(data["breaker_type"]),
            trigger_value=float(data.get("trigger_value", 0.0)),
            threshold_value=float(data.get("threshold_value", 0.0)),
            reason=data.get("reason", ""),
            locked_until=parse_timestamp(data.get("locked_until")),
            user_id=data.get("user_id"),
            created_at=created_at or get_utc_now(),
        )
