"""
Tests for the Position Sizing Module.

Tests cover:
- Core formula: risk amount / (stop pips x pip value)
- Floor rounding to 0.01 and the 0.01 minimum
- Firm position cap
- Degraded results for invalid input (never raises)
- Stop distance conversion per instrument class
- P&L and risk/reward helpers
"""

import math

import pytest

from propguard.lib.config import SizingConfig
from propguard.risk.position_sizing import (
    LotSizeRequest,
    PositionSizer,
    RiskComputationResult,
    calculate_pnl,
    calculate_risk_reward,
    compute_lot_size,
    floor_lots,
    is_crypto,
)


@pytest.fixture
def sizer():
    return PositionSizer()


class TestCoreFormula:
    """Tests for the basic lot size computation."""

    def test_one_percent_of_20k_over_20_pips(self, sizer):
        """20k balance, 1% risk, 20 pip stop, $10/pip -> 1.0 lot."""
        result = sizer.compute_lot_size(20_000, 1, 20, 10)

        assert result.lot_size == 1.0
        assert result.risk_amount == pytest.approx(200.0)
        assert result.micro_lots == 100
        assert result.mini_lots == 10.0
        assert result.standard_lots == 1.0
        assert result.degraded is False
        assert result.capped is False

    def test_floor_rounds_down(self, sizer):
        """10k, 1%, 30 pips -> 0.333 lots floors to 0.33."""
        result = sizer.compute_lot_size(10_000, 1, 30, 10)
        assert result.lot_size == 0.33

    def test_floor_tolerates_binary_representation(self, sizer):
        """2900 x 1% / (10 x 10) is 0.29 and must not floor to 0.28."""
        result = sizer.compute_lot_size(2_900, 1, 10, 10)
        assert result.lot_size == 0.29
        assert floor_lots(0.29) == 0.29

    def test_minimum_lot_size(self, sizer):
        """Tiny computed sizes are raised to 0.01."""
        result = sizer.compute_lot_size(100, 1, 50, 10)
        assert result.lot_size == 0.01
        assert result.degraded is False

    def test_stop_below_one_pip_is_bounded(self):
        """A 0.5 pip stop is treated as 1 pip."""
        sizer = PositionSizer(SizingConfig(apply_firm_cap=False))
        result = sizer.compute_lot_size(10_000, 1, 0.5, 10)

        assert result.stop_loss_pips == 1.0
        assert result.lot_size == 10.0

    def test_pip_value_from_table(self, sizer):
        result = sizer.compute_lot_size(10_000, 1, 10, symbol="USDCAD")

        assert result.pip_value == 7.35
        assert result.pip_value_fallback is False

    def test_unknown_symbol_uses_default_pip_value(self, sizer):
        result = sizer.compute_lot_size(10_000, 1, 10, symbol="FOOBAR")

        assert result.pip_value == 10.0
        assert result.pip_value_fallback is True
        assert result.lot_size == 1.0


class TestFirmCap:
    """Tests for the prop firm position cap."""

    def test_cap_applied(self, sizer):
        """10k account: FTMO cap is 1.0 lot."""
        result = sizer.compute_lot_size(10_000, 1, 0.5, 10)

        assert result.firm_max_lots == 1.0
        assert result.lot_size == 1.0
        assert result.capped is True
        assert "capped" in result.reason

    def test_unknown_firm_uses_default_rules(self, sizer):
        result = sizer.compute_lot_size(10_000, 1, 0.5, 10, prop_firm="Nobody Funded")
        assert result.firm_max_lots == 1.0

    def test_cap_scales_with_balance(self, sizer):
        result = sizer.compute_lot_size(50_000, 1, 5, 10, prop_firm="The5ers")

        assert result.firm_max_lots == 5.0
        assert result.lot_size == 5.0

    def test_cap_disabled(self):
        sizer = PositionSizer(SizingConfig(apply_firm_cap=False))
        result = sizer.compute_lot_size(10_000, 1, 0.5, 10)

        assert result.firm_max_lots is None
        assert result.capped is False


class TestDegradedInput:
    """Invalid input never raises; it returns the minimum lot, degraded."""

    @pytest.mark.parametrize("balance", [0, -500, None, "abc", float("nan"), float("inf"), True])
    def test_invalid_balance(self, sizer, balance):
        result = sizer.compute_lot_size(balance, 1, 20, 10)

        assert result.lot_size == 0.01
        assert result.degraded is True
        assert result.risk_amount == 0.0

    @pytest.mark.parametrize("risk", [0, -1, None, "1%"])
    def test_invalid_risk(self, sizer, risk):
        assert sizer.compute_lot_size(10_000, risk, 20, 10).degraded is True

    @pytest.mark.parametrize("stop", [0, -5, None, float("nan")])
    def test_invalid_stop(self, sizer, stop):
        assert sizer.compute_lot_size(10_000, 1, stop, 10).degraded is True

    def test_invalid_explicit_pip_value(self, sizer):
        result = sizer.compute_lot_size(10_000, 1, 20, -10)

        assert result.degraded is True
        assert "pip value" in result.reason

    def test_degraded_is_logged(self, sizer, caplog):
        with caplog.at_level("WARNING"):
            sizer.compute_lot_size(None, 1, 20, 10)
        assert any("SIZING degraded" in r.getMessage() for r in caplog.records)

    def test_internal_error_degrades(self, sizer, monkeypatch):
        def boom(symbol):
            raise RuntimeError("catalog offline")

        monkeypatch.setattr(sizer.catalog, "pip_value_for", boom)
        result = sizer.compute_lot_size(10_000, 1, 20, symbol="EURUSD")

        assert result.degraded is True
        assert result.lot_size == 0.01
        assert "catalog offline" in result.reason


class TestRequests:
    """Tests for the request-shaped entry points."""

    def test_from_dict(self, sizer):
        request = LotSizeRequest.from_dict({
            "account_balance": "20000",
            "risk_percentage_pct": "1",
            "stop_loss_distance_in_pips": 20,
            "instrument_pip_value_usd": 10,
        })
        result = sizer.compute_from_request(request)

        assert result.lot_size == 1.0

    def test_module_function(self):
        result = compute_lot_size(20_000, 1, 20, 10)

        assert isinstance(result, RiskComputationResult)
        assert result.lot_size == 1.0

    def test_to_dict(self, sizer):
        data = sizer.compute_lot_size(20_000, 1, 20, 10).to_dict()

        assert data["lot_size"] == 1.0
        assert data["degraded"] is False
        assert set(data) >= {"risk_amount", "pip_value", "micro_lots", "mini_lots", "reason"}


class TestStopDistance:
    """Tests for price distance to pips conversion."""

    def test_forex(self, sizer):
        assert sizer.stop_distance_pips("EURUSD", 1.1000, 1.0980) == pytest.approx(20.0)

    def test_jpy_pair(self, sizer):
        assert sizer.stop_distance_pips("USDJPY", 150.00, 149.50) == pytest.approx(50.0)

    def test_metal(self, sizer):
        assert sizer.stop_distance_pips("XAUUSD", 2350.0, 2340.0) == pytest.approx(100.0)

    def test_crypto_is_percentage(self, sizer):
        assert sizer.stop_distance_pips("BTCUSD", 50_000.0, 49_000.0) == pytest.approx(2.0)

    def test_minimum_distance(self, sizer):
        assert sizer.stop_distance_pips("EURUSD", 1.1000, 1.1000) == 1.0

    def test_invalid_prices(self, sizer):
        assert sizer.stop_distance_pips("EURUSD", 0, 1.1) == 1.0

    def test_signal_sizing(self, sizer):
        result = sizer.compute_signal_lot_size("EURUSD", 1.1000, 1.0980, 20_000, 1)

        assert result.stop_loss_pips == pytest.approx(20.0)
        assert result.lot_size == pytest.approx(1.0, abs=0.01)


class TestHelpers:
    """Tests for P&L and risk/reward helpers."""

    def test_pnl_buy(self):
        assert calculate_pnl(1.1000, 1.1050, "buy", 1.0, "EURUSD") == pytest.approx(500.0)

    def test_pnl_sell(self):
        assert calculate_pnl(1.1000, 1.1050, "SELL", 1.0, "EURUSD") == pytest.approx(-500.0)

    def test_pnl_crypto(self):
        # 1% move x $1/pip x 2 lots
        assert calculate_pnl(50_000, 50_500, "buy", 2.0, "BTCUSD") == pytest.approx(2.0)

    def test_risk_reward(self):
        rr = calculate_risk_reward(1.1000, 1.0950, 1.1100, "buy")

        assert rr["risk"] == pytest.approx(0.005)
        assert rr["reward"] == pytest.approx(0.01)
        assert rr["ratio"] == "1:2.00"

    def test_risk_reward_sell(self):
        rr = calculate_risk_reward(1.1000, 1.1050, 1.0900, "sell")
        assert rr["ratio"] == "1:2.00"

    def test_risk_reward_zero_risk(self):
        assert calculate_risk_reward(1.1, 1.1, 1.2, "buy")["ratio"] == "1:0.00"

    def test_is_crypto(self):
        assert is_crypto("btc/usd")
        assert not is_crypto("EURUSD")

    def test_floor_lots_decimals(self):
        assert floor_lots(1.239, 1) == 1.2
        assert math.isclose(floor_lots(0.999), 0.99)
