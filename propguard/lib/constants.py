"""
Risk engine constants and instrument specifications.

This module defines all constants used throughout the risk engine:
- Timezone (every lock, window and week boundary is UTC)
- Lot size units and rounding bounds
- Pip values per standard lot for the supported instruments
- Circuit breaker and mistake detection defaults

Values mirror the live signal service so that lot sizes and lock decisions
match what traders see in the dashboard.
"""

from dataclasses import dataclass
from datetime import time
from enum import Enum
from zoneinfo import ZoneInfo


# =============================================================================
# Timezone
# =============================================================================

UTC_TIMEZONE = ZoneInfo("UTC")
MINUTES_PER_DAY = 24 * 60


# =============================================================================
# Lot Size Units
# =============================================================================

MIN_LOT_SIZE = 0.01  # Smallest order size accepted by MT4/MT5 brokers
LOT_DECIMALS = 2  # Lots are floor-rounded to 0.01
MINI_LOTS_PER_STANDARD = 10
MICRO_LOTS_PER_STANDARD = 100

# Minimum stop distance in pips (avoids division blow-up on tiny stops)
MIN_STOP_DISTANCE_PIPS = 1.0

# Firm position cap is expressed per 10k of account size
FIRM_CAP_ACCOUNT_UNIT = 10_000.0


# =============================================================================
# Pip Values (USD per pip per standard lot)
# =============================================================================

DEFAULT_PIP_VALUE = 10.0  # Used for any symbol missing from the table

PIP_VALUES = {
    "EURUSD": 10.0,
    "GBPUSD": 10.0,
    "AUDUSD": 10.0,
    "NZDUSD": 10.0,
    "USDJPY": 9.09,
    "USDCHF": 10.75,
    "USDCAD": 7.35,
    "EURJPY": 9.09,
    "GBPJPY": 9.09,
    "EURGBP": 12.50,
    "XAUUSD": 10.0,
    "BTCUSD": 1.0,
    "ETHUSD": 1.0,
}


class InstrumentClass(Enum):
    """Instrument families with distinct pip conventions."""
    CRYPTO = "crypto"
    METAL = "metal"
    JPY_PAIR = "jpy_pair"
    FOREX = "forex"


@dataclass(frozen=True)
class PipConvention:
    """
    How a raw price distance converts into pips.

    Attributes:
        instrument_class: Family the convention applies to
        multiplier: Price delta multiplier (ignored for percentage mode)
        percentage_of_price: Measure the distance as % of entry price
    """
    instrument_class: InstrumentClass
    multiplier: float
    percentage_of_price: bool = False

    def distance_to_pips(self, entry_price: float, stop_price: float) -> float:
        """Convert an entry/stop distance to pips (before the minimum bound)."""
        delta = abs(entry_price - stop_price)
        if self.percentage_of_price:
            if entry_price == 0:
                return 0.0
            return delta / abs(entry_price) * 100
        return delta * self.multiplier


PIP_CONVENTIONS = {
    InstrumentClass.CRYPTO: PipConvention(InstrumentClass.CRYPTO, 1.0, percentage_of_price=True),
    InstrumentClass.METAL: PipConvention(InstrumentClass.METAL, 10.0),  # Gold: 1 pip = $0.10
    InstrumentClass.JPY_PAIR: PipConvention(InstrumentClass.JPY_PAIR, 100.0),  # 1 pip = 0.01
    InstrumentClass.FOREX: PipConvention(InstrumentClass.FOREX, 10_000.0),  # 1 pip = 0.0001
}

CRYPTO_MARKERS = ("BTC", "ETH")
METAL_MARKERS = ("XAU", "XAG")
JPY_MARKER = "JPY"


# =============================================================================
# Prop Firm Defaults
# =============================================================================

DEFAULT_PROP_FIRM = "FTMO"
RISK_LIMIT_WARNING_RATIO = 0.8  # Warn when 80% of a firm limit is used


# =============================================================================
# Circuit Breaker Defaults
# =============================================================================

DEFAULT_PERSONAL_DAILY_LOSS_LIMIT_PCT = 3.0
DEFAULT_WINDOW_START = time(8, 0)
DEFAULT_WINDOW_END = time(17, 0)


# =============================================================================
# Mistake Detection Defaults
# =============================================================================

FOMO_WINDOW_MINUTES = 5  # Re-entry this soon after any close is FOMO
REVENGE_WINDOW_MINUTES = 10  # Re-entry this soon after a loss is revenge
OVERSIZE_RATIO = 1.5  # Lot size above 150% of the average is oversized
HISTORY_WINDOW_HOURS = 24  # Trade history considered per detection
LOSING_STREAK_WARNING = 3  # Consecutive losses before the pre-trade warning
PATTERN_HISTORY_WEEKS = 8

# Lot size consistency
LOT_SPIKE_RATIO = 1.5  # Requested lots above 150% of the recent average are a spike
LOT_BASELINE_MIN_TRADES = 5  # Trades needed before spikes are checked
LOT_BASELINE_TRADES = 20  # Most recent lot sizes in the baseline average


# =============================================================================
# Trading Sessions (UTC hour ranges)
# =============================================================================

TRADING_SESSIONS = (
    ("asian", 0, 8),
    ("london", 8, 13),
    ("overlap", 13, 16),
    ("new_york", 16, 21),
)
AFTER_HOURS_SESSION = "after_hours"


# =============================================================================
# Scheduler
# =============================================================================

DEFAULT_SWEEP_INTERVAL_SECONDS = 180.0
DEFAULT_SWEEP_TIMEOUT_SECONDS = 30.0
DEFAULT_SWEEP_WORKERS = 8
