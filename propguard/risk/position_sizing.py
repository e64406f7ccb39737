"""
Position Sizing Module for prop firm accounts.

Converts account balance, risk percentage and stop distance into a lot size:

    risk_amount   = balance * risk_pct / 100
    standard_lots = risk_amount / (stop_pips * pip_value)

Key Rules:
- Pip value comes from the caller, else the RuleCatalog table, else the
  documented 10 USD/standard-lot fallback
- Stop distance per instrument class: crypto = % of price, metals = delta x 10,
  JPY pairs = delta x 100, other forex = delta x 10000; minimum 1 pip
- Lot size is floor-rounded to 0.01 and never below 0.01
- Final size = min(computed, firm cap), where the firm cap is
  (balance / 10k) * (max_position_size / 100)

This function gates real order submission, so it never raises: any invalid or
missing input resolves to the minimum lot size with ``degraded=True``.
"""

from dataclasses import dataclass, asdict
from typing import Optional, Dict, Any
import logging
import math

from propguard.lib.config import SizingConfig
from propguard.lib.logging_utils import RiskLogger
from propguard.lib.constants import (
    LOT_DECIMALS,
    MINI_LOTS_PER_STANDARD,
    MICRO_LOTS_PER_STANDARD,
    InstrumentClass,
)
from propguard.risk.rule_catalog import RuleCatalog, classify_symbol, normalize_symbol

logger = logging.getLogger(__name__)
risk_log = RiskLogger(__name__)


@dataclass
class RiskComputationResult:
    """
    Result of a lot size calculation.

    Contains the final lot size along with every intermediate value so the
    dashboard can show how the number was derived.
    """
    lot_size: float  # Final, bounded order size
    risk_amount: float  # Account currency at risk
    pip_value: float  # USD per pip per standard lot used
    micro_lots: int  # Unbounded size in micro lots (floored)
    mini_lots: float  # Unbounded size in mini lots (floored to 0.1)
    standard_lots: float  # Unbounded size in standard lots (floored to 0.01)
    stop_loss_pips: float  # Stop distance after the minimum bound
    firm_max_lots: Optional[float]  # Firm cap applied (None if no cap)
    capped: bool  # True if the firm cap reduced the size
    degraded: bool  # True if inputs were invalid and the minimum was returned
    pip_value_fallback: bool  # True if the symbol was missing from the table
    reason: str  # Explanation of the sizing decision

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return asdict(self)


@dataclass
class LotSizeRequest:
    """Input for ``PositionSizer.compute_lot_size`` as a JSON-friendly value."""
    account_balance: Any
    risk_percentage_pct: Any
    stop_loss_distance_in_pips: Any
    instrument_pip_value_usd: Any = None
    symbol: Optional[str] = None
    prop_firm: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LotSizeRequest":
        return cls(
            account_balance=data.get("account_balance"),
            risk_percentage_pct=data.get("risk_percentage_pct"),
            stop_loss_distance_in_pips=data.get("stop_loss_distance_in_pips"),
            instrument_pip_value_usd=data.get("instrument_pip_value_usd"),
            symbol=data.get("symbol"),
            prop_firm=data.get("prop_firm"),
        )


def floor_lots(value: float, decimals: int = LOT_DECIMALS) -> float:
    """
    Floor a lot size to ``decimals`` places.

    The product is rounded to 9 places before flooring so values such as
    0.29 (28.999999... micro lots in binary) floor to 0.29, not 0.28.
    """
    factor = 10 ** decimals
    return math.floor(round(value * factor, 9)) / factor


def _positive_number(value: Any) -> Optional[float]:
    """Return value as a finite positive float, or None if it is not one."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number) or number <= 0:
        return None
    return number


class PositionSizer:
    """
    Lot size calculator for forex, metals and crypto.

    Usage:
        sizer = PositionSizer()
        result = sizer.compute_lot_size(
            account_balance=20_000,
            risk_percentage_pct=1,
            stop_loss_distance_in_pips=20,
            instrument_pip_value_usd=10,
        )
        print(f"Trade {result.lot_size} lots, risk ${result.risk_amount}")
    """

    def __init__(
        self,
        config: Optional[SizingConfig] = None,
        catalog: Optional[RuleCatalog] = None,
    ):
        """
        Initialize position sizer.

        Args:
            config: Sizing configuration (uses defaults if None)
            catalog: Firm rules and pip values (uses built-in tables if None)
        """
        self.config = config or SizingConfig()
        self.catalog = catalog or RuleCatalog()

    def compute_lot_size(
        self,
        account_balance: Any,
        risk_percentage_pct: Any,
        stop_loss_distance_in_pips: Any,
        instrument_pip_value_usd: Any = None,
        symbol: Optional[str] = None,
        prop_firm: Optional[str] = None,
    ) -> RiskComputationResult:
        """
        Calculate the bounded lot size for a trade.

        Args:
            account_balance: Account balance in account currency
            risk_percentage_pct: Risk per trade in percent (1 = 1%)
            stop_loss_distance_in_pips: Stop distance in pips
            instrument_pip_value_usd: Pip value per standard lot (optional)
            symbol: Instrument, used for the pip value lookup (optional)
            prop_firm: Firm whose position cap applies (default firm if None)

        Returns:
            RiskComputationResult; never raises
        """
        try:
            result = self._compute(
                account_balance,
                risk_percentage_pct,
                stop_loss_distance_in_pips,
                instrument_pip_value_usd,
                symbol,
                prop_firm,
            )
        except Exception as e:
            # Sizing must never break order submission
            logger.exception(f"Lot size computation failed, using minimum: {e}")
            result = self._degraded_result(f"Internal sizing error: {e}")

        risk_log.sizing(
            result.lot_size,
            result.risk_amount,
            result.degraded,
            result.reason,
            symbol=normalize_symbol(symbol) or None,
            prop_firm=prop_firm,
        )
        return result

    def _compute(
        self,
        account_balance: Any,
        risk_percentage_pct: Any,
        stop_loss_distance_in_pips: Any,
        instrument_pip_value_usd: Any,
        symbol: Optional[str],
        prop_firm: Optional[str],
    ) -> RiskComputationResult:
        balance = _positive_number(account_balance)
        if balance is None:
            return self._degraded_result(f"Invalid account balance {account_balance!r}")

        risk_pct = _positive_number(risk_percentage_pct)
        if risk_pct is None:
            return self._degraded_result(f"Invalid risk percentage {risk_percentage_pct!r}")

        stop_pips = _positive_number(stop_loss_distance_in_pips)
        if stop_pips is None:
            return self._degraded_result(
                f"Invalid stop loss distance {stop_loss_distance_in_pips!r}"
            )
        stop_pips = max(self.config.min_stop_distance_pips, stop_pips)

        pip_value_fallback = False
        if instrument_pip_value_usd is not None:
            pip_value = _positive_number(instrument_pip_value_usd)
            if pip_value is None:
                return self._degraded_result(f"Invalid pip value {instrument_pip_value_usd!r}")
        else:
            pip_value, pip_value_fallback = self.catalog.pip_value_for(symbol)
            if pip_value_fallback and symbol:
                logger.info(
                    f"No pip value for {normalize_symbol(symbol)}, "
                    f"using default ${pip_value:.2f}/lot"
                )

        risk_amount = balance * risk_pct / 100
        standard_lots = risk_amount / (stop_pips * pip_value)
        micro_lots = standard_lots * MICRO_LOTS_PER_STANDARD
        mini_lots = standard_lots * MINI_LOTS_PER_STANDARD

        lot_size = max(self.config.min_lot_size, floor_lots(standard_lots, self.config.lot_decimals))

        firm_max = None
        capped = False
        if self.config.apply_firm_cap:
            firm_max = max(
                self.config.min_lot_size,
                floor_lots(self.catalog.max_lots_for(prop_firm, balance), self.config.lot_decimals),
            )
            if lot_size > firm_max:
                lot_size = firm_max
                capped = True

        reason = (
            f"Risking ${risk_amount:.2f} ({risk_pct:g}% of ${balance:,.2f}) over "
            f"{stop_pips:g} pips at ${pip_value:g}/pip = {lot_size:.2f} lots"
        )
        if capped:
            reason += f" (capped at firm max {firm_max:.2f})"

        return RiskComputationResult(
            lot_size=lot_size,
            risk_amount=risk_amount,
            pip_value=pip_value,
            micro_lots=int(math.floor(round(micro_lots, 9))),
            mini_lots=floor_lots(mini_lots, 1),
            standard_lots=floor_lots(standard_lots, self.config.lot_decimals),
            stop_loss_pips=stop_pips,
            firm_max_lots=firm_max,
            capped=capped,
            degraded=False,
            pip_value_fallback=pip_value_fallback,
            reason=reason,
        )

    def compute_from_request(self, request: LotSizeRequest) -> RiskComputationResult:
        """Calculate the lot size for a ``LotSizeRequest``."""
        return self.compute_lot_size(
            account_balance=request.account_balance,
            risk_percentage_pct=request.risk_percentage_pct,
            stop_loss_distance_in_pips=request.stop_loss_distance_in_pips,
            instrument_pip_value_usd=request.instrument_pip_value_usd,
            symbol=request.symbol,
            prop_firm=request.prop_firm,
        )

    def stop_distance_pips(self, symbol: str, entry_price: float, stop_price: float) -> float:
        """
        Convert an entry/stop pair into a stop distance in pips.

        Args:
            symbol: Instrument symbol ("EURUSD", "USDJPY", "XAUUSD", "BTCUSD")
            entry_price: Entry price
            stop_price: Stop loss price

        Returns:
            Stop distance in pips, at least the configured minimum
        """
        convention = self.catalog.pip_convention_for(symbol)
        entry = _positive_number(entry_price)
        stop = _positive_number(stop_price)
        if entry is None or stop is None:
            return self.config.min_stop_distance_pips
        return max(self.config.min_stop_distance_pips, convention.distance_to_pips(entry, stop))

    def compute_signal_lot_size(
        self,
        symbol: str,
        entry_price: float,
        stop_price: float,
        account_balance: Any,
        risk_percentage_pct: Any,
        prop_firm: Optional[str] = None,
    ) -> RiskComputationResult:
        """
        Size a signal from its entry and stop prices.

        Args:
            symbol: Instrument symbol
            entry_price: Signal entry price
            stop_price: Signal stop loss price
            account_balance: Account balance
            risk_percentage_pct: Risk per trade in percent
            prop_firm: Firm whose cap applies

        Returns:
            RiskComputationResult for the signal
        """
        stop_pips = self.stop_distance_pips(symbol, entry_price, stop_price)
        return self.compute_lot_size(
            account_balance=account_balance,
            risk_percentage_pct=risk_percentage_pct,
            stop_loss_distance_in_pips=stop_pips,
            symbol=symbol,
            prop_firm=prop_firm,
        )

    def _degraded_result(self, reason: str) -> RiskComputationResult:
        """Minimum-size result used for any invalid input."""
        return RiskComputationResult(
            lot_size=self.config.min_lot_size,
            risk_amount=0.0,
            pip_value=self.catalog.default_pip_value,
            micro_lots=0,
            mini_lots=0.0,
            standard_lots=0.0,
            stop_loss_pips=0.0,
            firm_max_lots=None,
            capped=False,
            degraded=True,
            pip_value_fallback=False,
            reason=reason,
        )


def compute_lot_size(
    account_balance: Any,
    risk_percentage_pct: Any,
    stop_loss_distance_in_pips: Any,
    instrument_pip_value_usd: Any = None,
    symbol: Optional[str] = None,
    prop_firm: Optional[str] = None,
) -> RiskComputationResult:
    """
    Simple lot size calculation with the built-in rule tables.

    For quick calculations without instantiating PositionSizer.
    """
    return PositionSizer().compute_lot_size(
        account_balance,
        risk_percentage_pct,
        stop_loss_distance_in_pips,
        instrument_pip_value_usd,
        symbol,
        prop_firm,
    )


def calculate_pnl(
    entry_price: float,
    exit_price: float,
    direction: str,
    lot_size: float,
    symbol: str,
    catalog: Optional[RuleCatalog] = None,
) -> float:
    """
    Estimate a trade's P&L in USD.

    Args:
        entry_price: Entry price
        exit_price: Exit price
        direction: "buy" or "sell"
        lot_size: Position size in standard lots
        symbol: Instrument symbol
        catalog: Pip value source (built-in table if None)

    Returns:
        Signed P&L in USD
    """
    catalog = catalog or RuleCatalog()
    price_diff = exit_price - entry_price
    if str(direction).lower() == "sell":
        price_diff = -price_diff

    convention = catalog.pip_convention_for(symbol)
    if convention.percentage_of_price:
        pips = price_diff / entry_price * 100 if entry_price else 0.0
    else:
        pips = price_diff * convention.multiplier

    pip_value, _ = catalog.pip_value_for(symbol)
    return pips * pip_value * lot_size


def calculate_risk_reward(
    entry_price: float,
    stop_loss: float,
    take_profit: float,
    direction: str,
) -> Dict[str, Any]:
    """
    Risk, reward and their ratio for a planned trade.

    Returns:
        Dict with ``risk``, ``reward`` (absolute price distances) and
        ``ratio`` formatted as "1:2.00" ("1:0.00" when risk is zero)
    """
    if str(direction).lower() == "buy":
        risk = entry_price - stop_loss
        reward = take_profit - entry_price
    else:
        risk = stop_loss - entry_price
        reward = entry_price - take_profit

    ratio = abs(reward / risk) if risk else 0.0
    return {
        "risk": abs(risk),
        "reward": abs(reward),
        "ratio": f"1:{ratio:.2f}",
    }


def is_crypto(symbol: str) -> bool:
    """True if the symbol is sized as a percentage-of-price instrument."""
    return classify_symbol(symbol) == InstrumentClass.CRYPTO
