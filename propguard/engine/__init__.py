"""
Engine wiring: side-effect dispatch, the public RiskEngine API and the
periodic breaker sweep.
"""

from .effects import SideEffectDispatcher, DispatchReport
from .api import RiskEngine, TradeCloseOutcome
from .scheduler import BreakerSweep, SweepSummary

__all__ = [
    'SideEffectDispatcher',
    'DispatchReport',
    'RiskEngine',
    'TradeCloseOutcome',
    'BreakerSweep',
    'SweepSummary',
]
