"""
Pytest fixtures for risk engine tests.

This module provides:
- A fixed evaluation clock (Wednesday 2024-03-13 14:00 UTC)
- Account and trade factories
- In-memory stores, a recording alert dispatcher and a wired RiskEngine
"""

import logging
from datetime import datetime, timedelta

import pytest

from propguard.accounts.models import Account, Direction, Trade, TradingHours
from propguard.accounts.stores import (
    InMemoryAccountStore,
    InMemoryMistakePatternStore,
    InMemoryTradeHistory,
)
from propguard.engine.api import RiskEngine
from propguard.engine.effects import SideEffectDispatcher
from propguard.lib.alerts import RecordingAlertDispatcher
from propguard.lib.constants import UTC_TIMEZONE


@pytest.fixture
def now():
    """Fixed evaluation time: Wednesday 14:00 UTC."""
    return datetime(2024, 3, 13, 14, 0, tzinfo=UTC_TIMEZONE)


@pytest.fixture
def make_account():
    """Factory for accounts with a flat day on a 10k balance."""
    def _make(account_id="acc-1", **overrides):
        values = dict(
            account_id=account_id,
            user_id="user-1",
            starting_balance=10_000.0,
            current_equity=10_000.0,
            daily_starting_equity=10_000.0,
        )
        values.update(overrides)
        return Account(**values)
    return _make


@pytest.fixture
def make_trade(now):
    """
    Factory for trades.

    ``opened`` and ``closed`` are minute offsets from ``now``; ``closed=None``
    gives an open trade.
    """
    counter = {"n": 0}

    def _make(opened=0, closed=None, pnl=None, lot_size=0.5, account_id="acc-1",
              trade_id=None, symbol="EURUSD"):
        counter["n"] += 1
        created_at = now + timedelta(minutes=opened)
        closed_at = now + timedelta(minutes=closed) if closed is not None else None
        if closed_at is not None and pnl is None:
            pnl = 0.0
        return Trade(
            trade_id=trade_id or f"t-{counter['n']}",
            account_id=account_id,
            symbol=symbol,
            direction=Direction.BUY,
            lot_size=lot_size,
            entry_price=1.1000,
            created_at=created_at,
            exit_price=1.1010 if closed_at is not None else None,
            pnl=pnl,
            closed_at=closed_at,
        )
    return _make


@pytest.fixture
def trading_hours():
    """Overnight window 22:00-02:00 UTC."""
    return TradingHours.from_dict({"start": "22:00", "end": "02:00", "enabled": True})


@pytest.fixture
def account_store(make_account):
    return InMemoryAccountStore([make_account()])


@pytest.fixture
def trade_history():
    return InMemoryTradeHistory()


@pytest.fixture
def pattern_store():
    return InMemoryMistakePatternStore()


@pytest.fixture
def recording_alerts():
    return RecordingAlertDispatcher()


@pytest.fixture
def dispatcher(account_store, recording_alerts, pattern_store):
    return SideEffectDispatcher(account_store, alerts=recording_alerts, patterns=pattern_store)


@pytest.fixture
def engine(account_store, trade_history, pattern_store, recording_alerts):
    return RiskEngine(
        account_store,
        trade_history,
        patterns=pattern_store,
        alerts=recording_alerts,
    )


@pytest.fixture
def restore_root_logger():
    """Undo setup_logging() changes to the root logger."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield root
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)
