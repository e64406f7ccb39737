"""
Prop firm rule tables and instrument defaults.

The catalog is an explicit value passed to the position sizer and the
pre-trade checks; nothing reads firm rules from global state. Every fallback
(unknown firm -> FTMO rules, unknown symbol -> 10 USD pip value) is a named
entry here so callers and tests can enumerate them.
"""

from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Dict, Optional, Tuple, List, Any
import logging

import yaml

from propguard.lib.constants import (
    PIP_VALUES,
    DEFAULT_PIP_VALUE,
    DEFAULT_PROP_FIRM,
    FIRM_CAP_ACCOUNT_UNIT,
    RISK_LIMIT_WARNING_RATIO,
    InstrumentClass,
    PipConvention,
    PIP_CONVENTIONS,
    CRYPTO_MARKERS,
    METAL_MARKERS,
    JPY_MARKER,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PropFirmRules:
    """
    Trading rules of one prop firm.

    Attributes:
        max_daily_drawdown_pct: Daily loss limit (% of start-of-day equity)
        max_total_drawdown_pct: Overall drawdown limit (% of starting balance)
        profit_target_pct: Challenge profit target
        min_trading_days: Minimum days traded before payout
        max_position_size: Position cap in % of one standard lot per 10k
        news_restriction: Trading around news is prohibited
        weekend_holding: Positions may be held over the weekend
    """
    max_daily_drawdown_pct: float
    max_total_drawdown_pct: float
    profit_target_pct: float
    min_trading_days: int
    max_position_size: float
    news_restriction: bool
    weekend_holding: bool

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


DEFAULT_FIRM_RULES: Dict[str, PropFirmRules] = {
    "FTMO": PropFirmRules(5, 10, 10, 4, 100, True, True),
    "Funded Next": PropFirmRules(5, 10, 10, 0, 100, False, True),
    "My Forex Funds": PropFirmRules(5, 12, 8, 5, 100, True, False),
    "The5ers": PropFirmRules(4, 6, 8, 3, 100, False, True),
    "True Forex Funds": PropFirmRules(5, 10, 8, 5, 100, True, True),
}


@dataclass(frozen=True)
class RiskLimitCheck:
    """Outcome of checking drawdown figures against firm limits."""
    safe: bool
    warnings: List[str] = field(default_factory=list)


def normalize_symbol(symbol: Optional[str]) -> str:
    """Strip separators and upper-case a symbol ("eur/usd" -> "EURUSD")."""
    if not symbol:
        return ""
    return str(symbol).replace("/", "").replace("-", "").replace("_", "").strip().upper()


def classify_symbol(symbol: Optional[str]) -> InstrumentClass:
    """Determine which pip convention a symbol follows."""
    normalized = normalize_symbol(symbol)
    if any(marker in normalized for marker in CRYPTO_MARKERS):
        return InstrumentClass.CRYPTO
    if any(marker in normalized for marker in METAL_MARKERS):
        return InstrumentClass.METAL
    if JPY_MARKER in normalized:
        return InstrumentClass.JPY_PAIR
    return InstrumentClass.FOREX


class RuleCatalog:
    """
    Static per-firm rule tables plus the pip value table.

    Usage:
        catalog = RuleCatalog()
        rules = catalog.rules_for("The5ers")
        pip_value, is_fallback = catalog.pip_value_for("GBPJPY")
        cap = catalog.max_lots_for("FTMO", account_size=50_000)  # 5.0
    """

    def __init__(
        self,
        firm_rules: Optional[Dict[str, PropFirmRules]] = None,
        pip_values: Optional[Dict[str, float]] = None,
        default_firm: str = DEFAULT_PROP_FIRM,
        default_pip_value: float = DEFAULT_PIP_VALUE,
    ):
        self.firm_rules = dict(firm_rules if firm_rules is not None else DEFAULT_FIRM_RULES)
        self.pip_values = {
            normalize_symbol(k): float(v)
            for k, v in (pip_values if pip_values is not None else PIP_VALUES).items()
        }
        self.default_firm = default_firm
        self.default_pip_value = default_pip_value

        if self.default_firm not in self.firm_rules:
            raise ValueError(f"Default firm {default_firm!r} missing from rule table")

    @property
    def firms(self) -> List[str]:
        return sorted(self.firm_rules)

    def rules_for(self, firm: Optional[str]) -> PropFirmRules:
        """Rules for a firm; unknown or missing firms get the default firm's rules."""
        if firm and firm in self.firm_rules:
            return self.firm_rules[firm]
        if firm:
            logger.debug(f"Unknown prop firm {firm!r}, using {self.default_firm} rules")
        return self.firm_rules[self.default_firm]

    def pip_value_for(self, symbol: Optional[str]) -> Tuple[float, bool]:
        """
        Pip value in USD per standard lot.

        Returns:
            Tuple of (pip_value, is_fallback)
        """
        normalized = normalize_symbol(symbol)
        if normalized in self.pip_values:
            return self.pip_values[normalized], False
        return self.default_pip_value, True

    def pip_convention_for(self, symbol: Optional[str]) -> PipConvention:
        return PIP_CONVENTIONS[classify_symbol(symbol)]

    def max_lots_for(self, firm: Optional[str], account_size: float) -> float:
        """
        Firm position cap in lots, scaled by account size.

        ``max_position_size`` is the % of one standard lot allowed per 10k of
        account size.
        """
        rules = self.rules_for(firm)
        return (account_size / FIRM_CAP_ACCOUNT_UNIT) * (rules.max_position_size / 100)

    def is_within_risk_limits(
        self,
        firm: Optional[str],
        current_drawdown_pct: float,
        daily_pnl_pct: float,
    ) -> RiskLimitCheck:
        """
        Check drawdown figures against the firm's limits.

        Warns once 80% of either limit is used; unsafe once a limit is reached.

        Args:
            firm: Prop firm name
            current_drawdown_pct: Overall drawdown in % (sign ignored)
            daily_pnl_pct: Today's P&L in % (sign ignored)
        """
        rules = self.rules_for(firm)
        warnings = []

        if abs(current_drawdown_pct) >= rules.max_total_drawdown_pct * RISK_LIMIT_WARNING_RATIO:
            warnings.append(f"Approaching max drawdown limit ({rules.max_total_drawdown_pct}%)")

        if abs(daily_pnl_pct) >= rules.max_daily_drawdown_pct * RISK_LIMIT_WARNING_RATIO:
            warnings.append(f"Approaching daily loss limit ({rules.max_daily_drawdown_pct}%)")

        safe = (
            abs(current_drawdown_pct) < rules.max_total_drawdown_pct
            and abs(daily_pnl_pct) < rules.max_daily_drawdown_pct
        )
        return RiskLimitCheck(safe=safe, warnings=warnings)

    @classmethod
    def from_yaml(cls, path: str) -> "RuleCatalog":
        """
        Load a catalog from YAML.

        Expected layout (every section optional, missing sections keep the
        built-in tables)::

            default_firm: FTMO
            default_pip_value: 10
            firms:
              FTMO: {max_daily_drawdown_pct: 5, ...}
            pip_values:
              EURUSD: 10
        """
        config_path = Path(path)
        if not config_path.exists():
            raise FileNotFoundError(f"Rule catalog not found: {path}")

        with open(config_path) as f:
            data = yaml.safe_load(f) or {}

        firm_rules = dict(DEFAULT_FIRM_RULES)
        for name, values in (data.get("firms") or {}).items():
            base = firm_rules.get(name, DEFAULT_FIRM_RULES[DEFAULT_PROP_FIRM])
            merged = {**base.to_dict(), **(values or {})}
            firm_rules[name] = PropFirmRules(**merged)

        pip_values = dict(PIP_VALUES)
        pip_values.update(data.get("pip_values") or {})

        return cls(
            firm_rules=firm_rules,
            pip_values=pip_values,
            default_firm=data.get("default_firm", DEFAULT_PROP_FIRM),
            default_pip_value=float(data.get("default_pip_value", DEFAULT_PIP_VALUE)),
        )
