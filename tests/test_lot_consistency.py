"""
Tests for the lot size consistency check.

Tests cover:
- Baseline building below the minimum trade count
- Spike detection at 150% of the recent average
- Hard blocking and the spike alert
- Running average updates feeding the oversize heuristics
- Engine wiring, ownership and failure handling
"""

import math
from unittest.mock import MagicMock

import pytest

from propguard.accounts.models import MistakeTag
from propguard.accounts.stores import InMemoryAccountStore
from propguard.engine.api import RiskEngine
from propguard.engine.effects import SideEffectDispatcher
from propguard.lib.alerts import AlertKind
from propguard.lib.config import DetectorConfig, EngineConfig
from propguard.lib.errors import AccountNotFoundError
from propguard.risk.effects import AlertEffect, LotAverageEffect
from propguard.risk.lot_consistency import LotConsistencyChecker, check_lot_consistency


# =============================================================================
# Pure check
# =============================================================================

class TestBaseline:
    """Accounts without enough history are always allowed."""

    def test_building_baseline(self):
        result = check_lot_consistency("acc-1", 10.0, [1.0] * 4)

        assert result.allowed is True
        assert result.is_spike is False
        assert result.message == "Building baseline: 4/5 trades recorded"
        assert result.max_allowed_lot_size == 10.0
        assert result.effects == []

    def test_no_history(self):
        result = check_lot_consistency("acc-1", 0.5, [])

        assert result.baseline_trades == 0
        assert result.message == "Building baseline: 0/5 trades recorded"

    def test_configurable_minimum(self):
        config = DetectorConfig(lot_baseline_min_trades=2)
        result = check_lot_consistency("acc-1", 5.0, [1.0, 1.0], config=config)

        assert result.is_spike is True


class TestSpikeDetection:
    """Requests above 150% of the recent average."""

    def test_spike(self):
        result = check_lot_consistency("acc-1", 2.0, [1.0] * 5)

        assert result.is_spike is True
        assert result.allowed is True
        assert result.avg_lot_size == 1.0
        assert result.max_allowed_lot_size == 1.5
        assert result.spike_percentage == 200
        assert result.message == "Lot size spike detected: 2 lots is 200% of your average (1)"
        assert result.recommendation == "Consider reducing to 1.5 lots or less"

    def test_exactly_at_threshold_is_not_spike(self):
        result = check_lot_consistency("acc-1", 1.5, [1.0] * 5)

        assert result.is_spike is False
        assert result.message is None
        assert result.spike_percentage == 150

    def test_only_latest_twenty_count(self):
        sizes = [1.0] * 20 + [10.0] * 5

        result = check_lot_consistency("acc-1", 2.0, sizes)

        assert result.avg_lot_size == 1.0
        assert result.baseline_trades == 20
        assert result.is_spike is True

    def test_hard_block(self):
        result = check_lot_consistency("acc-1", 3.0, [1.0] * 5, hard_block=True)

        assert result.allowed is False
        alert = next(e for e in result.effects if isinstance(e, AlertEffect))
        assert alert.payload.kind == AlertKind.LOT_SPIKE
        assert alert.payload.title == "Lot size blocked"
        assert alert.payload.details["blocked"] is True

    def test_hard_block_does_not_affect_normal_sizes(self):
        result = check_lot_consistency("acc-1", 1.2, [1.0] * 5, hard_block=True)

        assert result.allowed is True
        assert not any(isinstance(e, AlertEffect) for e in result.effects)

    @pytest.mark.parametrize("value", [0, -1.0, math.nan, math.inf, True, "2"])
    def test_invalid_request_rejected(self, value):
        with pytest.raises(ValueError):
            check_lot_consistency("acc-1", value, [1.0] * 5)


class TestRunningAverage:
    """The running average moves with every checked request."""

    def test_average_effect(self):
        result = check_lot_consistency("acc-1", 2.0, [1.0] * 5)

        averages = [e for e in result.effects if isinstance(e, LotAverageEffect)]
        assert averages == [LotAverageEffect("acc-1", 1.1667)]

    def test_average_moves_without_spike(self):
        result = check_lot_consistency("acc-1", 1.5, [1.0] * 5)

        assert result.effects == [LotAverageEffect("acc-1", 1.0833)]

    def test_to_dict_omits_effects(self):
        data = check_lot_consistency("acc-1", 2.0, [1.0] * 5).to_dict()

        assert "effects" not in data
        assert data["is_spike"] is True
        assert data["max_allowed_lot_size"] == 1.5


# =============================================================================
# Store-backed checker and engine
# =============================================================================

class TestLotConsistencyChecker:
    """Tests for the checker wired to stores."""

    def record_baseline(self, history, make_trade, count=5, lot_size=1.0):
        for i in range(count):
            history.record(make_trade(opened=-60 * (i + 1), closed=-60 * (i + 1) + 5, lot_size=lot_size))

    def test_engine_updates_average_and_alerts(self, engine, account_store, trade_history,
                                               recording_alerts, make_trade):
        self.record_baseline(trade_history, make_trade)

        result = engine.check_lot_consistency("acc-1", 2.0, user_id="user-1")

        assert result.is_spike is True
        assert account_store.load_account("acc-1").average_lot_size == 1.1667
        assert len(recording_alerts.sent) == 1
        account_id, payload = recording_alerts.sent[0]
        assert account_id == "acc-1"
        assert payload.kind == AlertKind.LOT_SPIKE

    def test_updated_average_drives_oversize_tag(self, engine, trade_history, make_trade):
        self.record_baseline(trade_history, make_trade)
        engine.check_lot_consistency("acc-1", 1.0)

        trade = make_trade(opened=0, closed=30, pnl=-10.0, lot_size=2.0)

        assert MistakeTag.OVERSIZED.value in engine.detect_mistakes(trade)

    def test_engine_hard_block_from_config(self, account_store, trade_history, make_trade):
        config = EngineConfig()
        config.detector.lot_spike_hard_block = True
        engine = RiskEngine(account_store, trade_history, config=config)
        self.record_baseline(trade_history, make_trade)

        assert engine.check_lot_consistency("acc-1", 5.0).allowed is False
        assert engine.check_lot_consistency("acc-1", 5.0, hard_block=False).allowed is True

    def test_wrong_owner(self, engine):
        with pytest.raises(AccountNotFoundError):
            engine.check_lot_consistency("acc-1", 1.0, user_id="intruder")

    def test_history_failure_is_empty_baseline(self, make_account, caplog):
        history = MagicMock()
        history.recent_lot_sizes.side_effect = ConnectionError("replica down")
        store = InMemoryAccountStore([make_account(average_lot_size=0.7)])
        checker = LotConsistencyChecker(history, SideEffectDispatcher(store))

        with caplog.at_level("ERROR"):
            result = checker.check("acc-1", 9.0)

        assert result.allowed is True
        assert result.baseline_trades == 0
        assert store.load_account("acc-1").average_lot_size == 0.7
        assert any("replica down" in r.getMessage() for r in caplog.records)
