"""
Lot size consistency check run before an order is placed.

Compares the requested lot size with the average of the account's most
recent lot sizes. A request above ``lot_spike_ratio`` times that average is a
spike: the trader gets a warning and a recommended maximum, and with hard
blocking enabled the order is refused. Once a baseline exists, every checked
request (spike or not) also moves the account's running average lot size,
which the oversize heuristics read.

Accounts with fewer than ``lot_baseline_min_trades`` trades are still building
a baseline and are always allowed.
"""

from dataclasses import dataclass, field
from typing import Optional, List, Dict, Any, Sequence
import logging
import math

from propguard.accounts.stores import TradeHistorySource
from propguard.lib.alerts import AlertKind, AlertPayload
from propguard.lib.config import DetectorConfig
from propguard.risk.effects import AlertEffect, LotAverageEffect, SideEffect

logger = logging.getLogger(__name__)


@dataclass
class LotConsistencyResult:
    """Outcome of one lot size consistency check."""
    account_id: str
    requested_lot_size: float
    allowed: bool = True
    is_spike: bool = False
    avg_lot_size: float = 0.0
    max_allowed_lot_size: float = 0.0
    spike_percentage: int = 0
    baseline_trades: int = 0
    message: Optional[str] = None
    recommendation: Optional[str] = None
    effects: List[SideEffect] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "account_id": self.account_id,
            "allowed": self.allowed,
            "is_spike": self.is_spike,
            "requested_lot_size": self.requested_lot_size,
            "avg_lot_size": self.avg_lot_size,
            "max_allowed_lot_size": self.max_allowed_lot_size,
            "spike_percentage": self.spike_percentage,
            "baseline_trades": self.baseline_trades,
            "message": self.message,
            "recommendation": self.recommendation,
        }


def _validate_lot_size(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"requested_lot_size must be a number, got {value!r}")
    if not math.isfinite(value) or value <= 0:
        raise ValueError(f"requested_lot_size must be positive, got {value!r}")
    return float(value)


def check_lot_consistency(
    account_id: str,
    requested_lot_size: float,
    recent_lot_sizes: Sequence[float],
    hard_block: bool = False,
    config: Optional[DetectorConfig] = None,
) -> LotConsistencyResult:
    """
    Compare a requested lot size with the recent baseline.

    Pure: the running average update and the spike alert are returned in
    ``result.effects`` for the caller to dispatch.

    Args:
        account_id: Account the order is for
        requested_lot_size: Lots the trader wants to place
        recent_lot_sizes: Latest lot sizes, newest first (only the first
            ``lot_baseline_trades`` are used)
        hard_block: Refuse spikes instead of only warning
        config: Spike ratio and baseline sizes (defaults if None)

    Returns:
        LotConsistencyResult

    Raises:
        ValueError: If ``requested_lot_size`` is not a positive number
    """
    config = config or DetectorConfig()
    requested = _validate_lot_size(requested_lot_size)
    baseline = [float(size) for size in recent_lot_sizes[:config.lot_baseline_trades] if size]

    result = LotConsistencyResult(
        account_id=account_id,
        requested_lot_size=requested,
        max_allowed_lot_size=requested,
        baseline_trades=len(baseline),
    )

    if len(baseline) < config.lot_baseline_min_trades:
        result.message = (
            f"Building baseline: {len(baseline)}/{config.lot_baseline_min_trades} trades recorded"
        )
        return result

    average = sum(baseline) / len(baseline)
    max_allowed = average * config.lot_spike_ratio

    result.avg_lot_size = round(average, 2)
    result.max_allowed_lot_size = round(max_allowed, 2)
    result.spike_percentage = int(math.floor(requested / average * 100 + 0.5)) if average > 0 else 0

    if requested > max_allowed:
        result.is_spike = True
        result.allowed = not hard_block
        result.message = (
            f"Lot size spike detected: {requested:g} lots is {result.spike_percentage}% "
            f"of your average ({result.avg_lot_size:g})"
        )
        result.recommendation = f"Consider reducing to {result.max_allowed_lot_size:g} lots or less"
        result.effects.append(AlertEffect(
            account_id,
            AlertPayload(
                title="Lot size blocked" if hard_block else "Lot size spike",
                body=result.message,
                kind=AlertKind.LOT_SPIKE,
                details={
                    "requested_lot_size": requested,
                    "avg_lot_size": result.avg_lot_size,
                    "threshold_pct": config.lot_spike_ratio * 100,
                    "blocked": hard_block,
                },
            ),
        ))

    new_average = (average * len(baseline) + requested) / (len(baseline) + 1)
    result.effects.append(LotAverageEffect(account_id, round(new_average, 4)))
    return result


class LotConsistencyChecker:
    """
    Runs the consistency check against the stores and dispatches its effects.

    Usage:
        checker = LotConsistencyChecker(history, dispatcher)
        result = checker.check("acc-1", 2.5)
        if not result.allowed:
            reject(result.message)
    """

    def __init__(
        self,
        history: TradeHistorySource,
        dispatcher=None,
        config: Optional[DetectorConfig] = None,
    ):
        self.history = history
        self.dispatcher = dispatcher
        self.config = config or DetectorConfig()

    def check(
        self,
        account_id: str,
        requested_lot_size: float,
        hard_block: Optional[bool] = None,
    ) -> LotConsistencyResult:
        """
        Check a requested lot size and record it in the running average.

        A failed history read is treated as an empty baseline.

        Args:
            account_id: Account the order is for
            requested_lot_size: Lots the trader wants to place
            hard_block: Override ``config.lot_spike_hard_block``
        """
        if hard_block is None:
            hard_block = self.config.lot_spike_hard_block

        try:
            sizes = self.history.recent_lot_sizes(account_id, self.config.lot_baseline_trades)
        except Exception as e:
            logger.error(f"Failed to load lot sizes for {account_id}: {e}")
            sizes = []

        result = check_lot_consistency(account_id, requested_lot_size, sizes, hard_block, self.config)

        if result.is_spike:
            logger.warning(
                f"LOT SPIKE {account_id}: {result.requested_lot_size:g} lots vs average "
                f"{result.avg_lot_size:g}{' (blocked)' if not result.allowed else ''}"
            )
        if self.dispatcher is not None and result.effects:
            self.dispatcher.run(result.effects)
        return result
