"""
Risk Control Module for prop firm trading accounts.

This module provides the risk controls that sit in front of every signal:
- Position sizing from balance, risk % and stop distance, capped by firm rules
- Daily circuit breaker (loss limit, profit lock, allowed trading hours)
- Behavioral mistake detection (FOMO, revenge, oversized, session violations)
- Weekly mistake analytics and pre-trade warnings
- Lot size consistency against the recent average

Locks are all-or-nothing; sizing never raises and degrades to the minimum lot.
"""

from .rule_catalog import RuleCatalog, PropFirmRules, RiskLimitCheck, DEFAULT_FIRM_RULES
from .position_sizing import (
    PositionSizer,
    RiskComputationResult,
    LotSizeRequest,
    compute_lot_size,
    calculate_pnl,
    calculate_risk_reward,
)
from .effects import AuditEffect, AlertEffect, PatternEffect, LotAverageEffect, SideEffect
from .circuit_breakers import (
    CircuitBreakerEvaluator,
    CircuitBreakerResult,
    BreakerDecision,
    decide,
)
from .mistake_detection import MistakeDetector, MistakeReport, DetectionSettings, detect
from .mistake_analytics import WeeklySummary, MistakeHistory, weekly_summary, mistake_history
from .pre_trade import PreTradeAnalysis, analyze_trade
from .lot_consistency import LotConsistencyChecker, LotConsistencyResult, check_lot_consistency

__all__ = [
    # Firm rules
    'RuleCatalog',
    'PropFirmRules',
    'RiskLimitCheck',
    'DEFAULT_FIRM_RULES',
    # Position sizing
    'PositionSizer',
    'RiskComputationResult',
    'LotSizeRequest',
    'compute_lot_size',
    'calculate_pnl',
    'calculate_risk_reward',
    # Side effects
    'AuditEffect',
    'AlertEffect',
    'PatternEffect',
    'LotAverageEffect',
    'SideEffect',
    # Circuit breaker
    'CircuitBreakerEvaluator',
    'CircuitBreakerResult',
    'BreakerDecision',
    'decide',
    # Mistake detection
    'MistakeDetector',
    'MistakeReport',
    'DetectionSettings',
    'detect',
    # Analytics and pre-trade
    'WeeklySummary',
    'MistakeHistory',
    'weekly_summary',
    'mistake_history',
    'PreTradeAnalysis',
    'analyze_trade',
    # Lot size consistency
    'LotConsistencyChecker',
    'LotConsistencyResult',
    'check_lot_consistency',
]
