"""
Tests for prop firm rule tables and symbol classification.
"""

import pytest
import yaml

from propguard.lib.constants import InstrumentClass
from propguard.risk.rule_catalog import (
    DEFAULT_FIRM_RULES,
    PropFirmRules,
    RuleCatalog,
    classify_symbol,
    normalize_symbol,
)


@pytest.fixture
def catalog():
    return RuleCatalog()


class TestFirmRules:
    """Tests for per-firm rule lookup."""

    def test_all_firms_present(self, catalog):
        assert catalog.firms == sorted(
            ["FTMO", "Funded Next", "My Forex Funds", "The5ers", "True Forex Funds"]
        )

    def test_rules_for_known_firm(self, catalog):
        rules = catalog.rules_for("The5ers")

        assert rules.max_daily_drawdown_pct == 4
        assert rules.max_total_drawdown_pct == 6

    def test_unknown_firm_falls_back_to_ftmo(self, catalog):
        assert catalog.rules_for("Unknown Capital") == DEFAULT_FIRM_RULES["FTMO"]
        assert catalog.rules_for(None) == DEFAULT_FIRM_RULES["FTMO"]

    def test_max_lots_for(self, catalog):
        assert catalog.max_lots_for("FTMO", 50_000) == pytest.approx(5.0)

    def test_default_firm_must_exist(self):
        with pytest.raises(ValueError):
            RuleCatalog(firm_rules={}, default_firm="FTMO")


class TestRiskLimits:
    """Tests for is_within_risk_limits."""

    def test_safe_without_warnings(self, catalog):
        check = catalog.is_within_risk_limits("FTMO", 2.0, 1.0)

        assert check.safe is True
        assert check.warnings == []

    def test_warns_at_80_percent_of_total(self, catalog):
        check = catalog.is_within_risk_limits("FTMO", 8.5, 1.0)

        assert check.safe is True
        assert check.warnings == ["Approaching max drawdown limit (10%)"]

    def test_warns_at_80_percent_of_daily(self, catalog):
        check = catalog.is_within_risk_limits("FTMO", 0.0, -4.0)

        assert check.safe is True
        assert len(check.warnings) == 1
        assert "daily loss limit" in check.warnings[0]

    def test_unsafe_at_limit(self, catalog):
        check = catalog.is_within_risk_limits("FTMO", 10.0, 0.0)

        assert check.safe is False
        assert len(check.warnings) == 1

    def test_firm_specific_limits(self, catalog):
        assert catalog.is_within_risk_limits("The5ers", 6.0, 0.0).safe is False
        assert catalog.is_within_risk_limits("My Forex Funds", 6.0, 0.0).safe is True


class TestPipValues:
    """Tests for pip value lookup."""

    def test_known_symbol(self, catalog):
        assert catalog.pip_value_for("eur/usd") == (10.0, False)
        assert catalog.pip_value_for("GBPJPY") == (9.09, False)

    def test_fallback(self, catalog):
        assert catalog.pip_value_for("NOPE") == (10.0, True)
        assert catalog.pip_value_for(None) == (10.0, True)

    def test_custom_default(self):
        catalog = RuleCatalog(pip_values={}, default_pip_value=5.0)
        assert catalog.pip_value_for("EURUSD") == (5.0, True)


class TestSymbols:
    """Tests for symbol normalization and classification."""

    def test_normalize(self):
        assert normalize_symbol(" eur/usd ") == "EURUSD"
        assert normalize_symbol("btc-usd") == "BTCUSD"
        assert normalize_symbol(None) == ""

    @pytest.mark.parametrize("symbol,expected", [
        ("BTCUSD", InstrumentClass.CRYPTO),
        ("ETH/USD", InstrumentClass.CRYPTO),
        ("XAUUSD", InstrumentClass.METAL),
        ("XAGUSD", InstrumentClass.METAL),
        ("USDJPY", InstrumentClass.JPY_PAIR),
        ("EURUSD", InstrumentClass.FOREX),
        ("", InstrumentClass.FOREX),
    ])
    def test_classify(self, symbol, expected):
        assert classify_symbol(symbol) == expected


class TestYamlCatalog:
    """Tests for loading a catalog from YAML."""

    def test_from_yaml_merges_with_defaults(self, tmp_path):
        path = tmp_path / "rules.yaml"
        path.write_text(yaml.safe_dump({
            "firms": {
                "Custom Funding": {"max_daily_drawdown_pct": 3},
                "FTMO": {"max_position_size": 50},
            },
            "pip_values": {"XAGUSD": 50},
        }))

        catalog = RuleCatalog.from_yaml(str(path))

        custom = catalog.rules_for("Custom Funding")
        assert isinstance(custom, PropFirmRules)
        assert custom.max_daily_drawdown_pct == 3
        assert custom.max_total_drawdown_pct == 10
        assert catalog.max_lots_for("FTMO", 10_000) == pytest.approx(0.5)
        assert catalog.pip_value_for("XAGUSD") == (50.0, False)
        assert catalog.pip_value_for("EURUSD") == (10.0, False)

    def test_empty_yaml_keeps_defaults(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")

        catalog = RuleCatalog.from_yaml(str(path))
        assert catalog.firms == RuleCatalog().firms

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            RuleCatalog.from_yaml(str(tmp_path / "missing.yaml"))
