"""
Tests for shared library code and the account data model.

Tests cover:
- UTC time helpers (midnight, windows, weeks, sessions)
- TradingHours validation and Account/Trade serialization
- In-memory stores (conditional lock update, state file reload)
- Error taxonomy
- YAML/env configuration and validation
- Log formatting and the RiskLogger helpers
"""

import json
import logging
from datetime import date, datetime, timedelta, timezone

import pytest
import yaml

from propguard.accounts.models import (
    Account,
    AuditEntry,
    Direction,
    LockKind,
    LockUpdate,
    Trade,
    TradingHours,
)
from propguard.accounts.stores import InMemoryAccountStore, InMemoryTradeHistory
from propguard.lib.config import (
    ConfigValidationError,
    EngineConfig,
    load_config,
    save_config,
    validate_config,
)
from propguard.lib.constants import UTC_TIMEZONE
from propguard.lib.errors import (
    AccountNotFoundError,
    DependencyUnavailableError,
    LockConflictError,
)
from propguard.lib.logging_utils import RiskFormatter, RiskLogger, setup_logging
from propguard.lib.time_utils import (
    format_hhmm,
    get_trading_session,
    is_within_window,
    next_utc_midnight,
    parse_hhmm,
    parse_timestamp,
    to_utc,
    week_start,
)


# =============================================================================
# Time utilities
# =============================================================================

class TestTimeUtils:
    """Tests for UTC helpers."""

    def test_naive_is_treated_as_utc(self):
        assert to_utc(datetime(2024, 3, 13, 14, 0)).tzinfo == UTC_TIMEZONE

    def test_aware_is_converted(self):
        plus_two = timezone(timedelta(hours=2))
        assert to_utc(datetime(2024, 3, 13, 16, 0, tzinfo=plus_two)).hour == 14

    def test_parse_timestamp_z_suffix(self):
        assert parse_timestamp("2024-03-13T14:00:00Z") == datetime(2024, 3, 13, 14, 0, tzinfo=UTC_TIMEZONE)
        assert parse_timestamp(None) is None
        assert parse_timestamp("") is None

    def test_next_midnight(self, now):
        assert next_utc_midnight(now) == datetime(2024, 3, 14, tzinfo=UTC_TIMEZONE)

    def test_next_midnight_at_midnight(self):
        midnight = datetime(2024, 3, 14, tzinfo=UTC_TIMEZONE)
        assert next_utc_midnight(midnight) == datetime(2024, 3, 15, tzinfo=UTC_TIMEZONE)

    @pytest.mark.parametrize("value,minute", [("00:00", 0), ("08:30", 510), ("23:59", 1439)])
    def test_parse_hhmm(self, value, minute):
        assert parse_hhmm(value) == minute
        assert format_hhmm(minute) == value

    @pytest.mark.parametrize("value", ["24:00", "8", "ab:cd", "12:60", None])
    def test_parse_hhmm_invalid(self, value):
        with pytest.raises(ValueError):
            parse_hhmm(value)

    def test_regular_window_is_half_open(self):
        assert is_within_window(480, 480, 1020)
        assert is_within_window(1019, 480, 1020)
        assert not is_within_window(1020, 480, 1020)

    def test_wrapping_window(self):
        start, end = 22 * 60, 2 * 60
        assert is_within_window(23 * 60, start, end)
        assert is_within_window(60, start, end)
        assert is_within_window(end, start, end)
        assert not is_within_window(14 * 60, start, end)

    def test_week_start_is_monday(self, now):
        assert week_start(now) == date(2024, 3, 11)
        assert week_start(datetime(2024, 3, 17, 23, 59)) == date(2024, 3, 11)
        assert week_start(datetime(2024, 3, 18, 0, 0)) == date(2024, 3, 18)

    @pytest.mark.parametrize("hour,session", [
        (3, "asian"), (9, "london"), (14, "overlap"), (18, "new_york"), (22, "after_hours"),
    ])
    def test_trading_session(self, hour, session):
        assert get_trading_session(datetime(2024, 3, 13, hour, 0)) == session


# =============================================================================
# Models
# =============================================================================

class TestTradingHours:
    """Tests for trading window parsing."""

    def test_from_dict(self, trading_hours):
        assert trading_hours.start_minute == 22 * 60
        assert trading_hours.crosses_midnight is True
        assert trading_hours.label() == "22:00 - 02:00"

    def test_enabled_defaults_to_true(self):
        assert TradingHours.from_dict({"start": "09:00", "end": "17:00"}).enabled is True

    def test_missing_times_use_defaults(self):
        hours = TradingHours.from_dict({"enabled": True})
        assert hours.to_dict() == {"start": "08:00", "end": "17:00", "enabled": True}

    def test_empty_window_rejected(self):
        with pytest.raises(ValueError):
            TradingHours.from_dict({"start": "09:00", "end": "09:00"})

    def test_out_of_range_minute_rejected(self):
        with pytest.raises(ValueError):
            TradingHours(start_minute=0, end_minute=1440)

    def test_none(self):
        assert TradingHours.from_dict(None) is None

    def test_contains_time(self, trading_hours):
        assert trading_hours.contains_time(datetime(2024, 3, 13, 23, 30))
        assert not trading_hours.contains_time(datetime(2024, 3, 13, 14, 0))


class TestAccount:
    """Tests for Account helpers and serialization."""

    def test_daily_pnl(self, make_account):
        assert make_account(current_equity=9_700.0).daily_pnl == -300.0

    @pytest.mark.parametrize("limit,expected", [(None, 3.0), (0, 3.0), (-1, 3.0), (2.5, 2.5)])
    def test_effective_limit(self, make_account, limit, expected):
        account = make_account(personal_daily_loss_limit_pct=limit)
        assert account.effective_daily_loss_limit_pct == expected

    def test_lock_active(self, make_account, now):
        account = make_account(trading_locked_until=now + timedelta(hours=1))

        assert account.is_lock_active(now)
        assert not account.is_lock_active(now + timedelta(hours=1))

    def test_dict_round_trip(self, make_account, trading_hours, now):
        account = make_account(
            allowed_trading_hours=trading_hours,
            trading_locked_until=now,
            lock_reason="Daily loss limit hit",
            lock_kind=LockKind.DAILY_LOSS,
            prop_firm="The5ers",
        )

        assert Account.from_dict(json.loads(json.dumps(account.to_dict()))) == account

    def test_from_dict_defaults(self):
        account = Account.from_dict({"account_id": "acc-9"})

        assert account.personal_daily_loss_limit_pct == 3.0
        assert account.lock_kind == LockKind.NONE
        assert account.allowed_trading_hours is None


class TestTrade:
    """Tests for Trade invariants."""

    def test_pnl_requires_close(self, now):
        with pytest.raises(ValueError):
            Trade("t-1", "acc-1", "EURUSD", Direction.BUY, 1.0, 1.1, now, pnl=10.0)

    def test_close_once(self, make_trade, now):
        trade = make_trade(opened=0)
        closed = trade.close(1.2, -15.0, now + timedelta(minutes=5))

        assert closed.is_loss
        with pytest.raises(ValueError):
            closed.close(1.3, 5.0, now)

    def test_direction_parse(self):
        assert Direction.parse("SELL") == Direction.SELL
        assert Direction.parse(Direction.BUY) == Direction.BUY


# =============================================================================
# Stores
# =============================================================================

class TestAccountStore:
    """Tests for the in-memory account store."""

    def test_load_returns_copy(self, account_store):
        account = account_store.load_account("acc-1")
        account.current_equity = 1.0

        assert account_store.load_account("acc-1").current_equity == 10_000.0

    def test_update_lock_compare_and_set(self, account_store, now):
        update = LockUpdate(now + timedelta(hours=1), "locked", LockKind.DAILY_LOSS)

        assert account_store.update_lock("acc-1", update, None) is True
        assert account_store.update_lock("acc-1", update, None) is False
        assert account_store.load_account("acc-1").lock_kind == LockKind.DAILY_LOSS

    def test_update_lock_unknown_account(self, account_store, now):
        update = LockUpdate(now, "locked", LockKind.DAILY_LOSS)
        assert account_store.update_lock("missing", update, None) is False

    def test_realized_pnl_and_daily_reset(self, account_store):
        account_store.apply_realized_pnl("acc-1", -250.0)
        account = account_store.reset_daily_equity("acc-1")

        assert account.current_equity == 9_750.0
        assert account.daily_starting_equity == 9_750.0

    def test_state_file_reload(self, tmp_path, make_account, now):
        path = tmp_path / "state.json"
        store = InMemoryAccountStore(state_file=path)
        store.save_account(make_account())
        store.update_lock("acc-1", LockUpdate(now, "locked", LockKind.PROFIT_LOCK), None)
        store.append_audit_entry(AuditEntry("acc-1", LockKind.PROFIT_LOCK, 2.0, 1.5, "locked", now))

        reloaded = InMemoryAccountStore(state_file=path)
        account = reloaded.load_account("acc-1")

        assert account.lock_kind == LockKind.PROFIT_LOCK
        assert account.trading_locked_until == now
        assert len(json.loads(path.read_text())["audit"]) == 1

    def test_audit_trail_survives_reload_and_next_write(self, tmp_path, make_account, now):
        path = tmp_path / "state.json"
        store = InMemoryAccountStore(state_file=path)
        store.save_account(make_account())
        store.append_audit_entry(
            AuditEntry("acc-1", LockKind.DAILY_LOSS, 3.5, 3.0, "Daily loss limit hit", now, user_id="user-1")
        )

        reloaded = InMemoryAccountStore(state_file=path)
        reloaded.update_lock("acc-1", LockUpdate(now, "locked", LockKind.DAILY_LOSS), None)
        reloaded.append_audit_entry(AuditEntry("acc-1", LockKind.SESSION_TIME, 0.0, 0.0, "outside hours", None))

        trail = reloaded.get_audit_trail("acc-1")
        assert [e.breaker_type for e in trail] == [LockKind.DAILY_LOSS, LockKind.SESSION_TIME]
        assert trail[0].user_id == "user-1"
        assert trail[0].locked_until == now
        assert trail[0].trigger_value == 3.5
        assert len(json.loads(path.read_text())["audit"]) == 2

    def test_update_average_lot_size(self, tmp_path, make_account):
        path = tmp_path / "state.json"
        store = InMemoryAccountStore([make_account()], state_file=path)

        store.update_average_lot_size("acc-1", 0.75)

        assert store.load_account("acc-1").average_lot_size == 0.75
        assert InMemoryAccountStore(state_file=path).load_account("acc-1").average_lot_size == 0.75
        with pytest.raises(KeyError):
            store.update_average_lot_size("missing", 1.0)

    def test_corrupt_state_file(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text("{not json")

        with pytest.raises(DependencyUnavailableError):
            InMemoryAccountStore(state_file=path)


class TestTradeHistory:
    """Tests for the in-memory trade history."""

    def test_recent_trades_order(self, make_trade, now):
        old_close = make_trade(opened=-60, closed=-50, pnl=1.0)
        new_close = make_trade(opened=-40, closed=-10, pnl=1.0)
        still_open = make_trade(opened=-5)
        history = InMemoryTradeHistory([old_close, still_open, new_close])

        trades = history.recent_trades("acc-1", now - timedelta(hours=1))

        assert [t.trade_id for t in trades] == [new_close.trade_id, old_close.trade_id, still_open.trade_id]

    def test_since_filters_closed_trades_on_close_time(self, make_trade, now):
        long_held = make_trade(opened=-120, closed=-1, trade_id="t-long")
        closed_early = make_trade(opened=-120, closed=-90, trade_id="t-early")
        history = InMemoryTradeHistory([long_held, closed_early])

        trades = history.recent_trades("acc-1", now - timedelta(hours=1))

        assert [t.trade_id for t in trades] == ["t-long"]

    def test_since_filters_open_trades_on_open_time(self, make_trade, now):
        history = InMemoryTradeHistory([make_trade(opened=-120, trade_id="t-stale")])
        assert history.recent_trades("acc-1", now - timedelta(hours=1)) == []

    def test_recent_lot_sizes_newest_open_first(self, make_trade):
        history = InMemoryTradeHistory([
            make_trade(opened=-90, closed=-80, lot_size=0.3),
            make_trade(opened=-10, lot_size=0.9),
            make_trade(opened=-50, closed=-5, lot_size=0.6),
            make_trade(opened=-20, lot_size=2.0, account_id="acc-2"),
        ])

        assert history.recent_lot_sizes("acc-1", 20) == [0.9, 0.6, 0.3]
        assert history.recent_lot_sizes("acc-1", 2) == [0.9, 0.6]

    def test_closed_trade_is_immutable(self, make_trade):
        history = InMemoryTradeHistory()
        trade = make_trade(opened=0, closed=5, trade_id="t-x")
        history.record(trade)

        with pytest.raises(ValueError):
            history.record(trade)


# =============================================================================
# Errors
# =============================================================================

class TestErrors:
    """Tests for the error taxonomy."""

    def test_to_dict(self):
        data = LockConflictError("raced", account_id="acc-1").to_dict()

        assert data == {
            "error": "raced",
            "category": "conflict",
            "account_id": "acc-1",
            "retryable": True,
        }

    def test_not_found_is_not_retryable(self):
        assert AccountNotFoundError("gone").retryable is False
        assert DependencyUnavailableError("down").retryable is True


# =============================================================================
# Configuration
# =============================================================================

class TestConfig:
    """Tests for loading and validating configuration."""

    def test_defaults_validate_cleanly(self):
        assert validate_config(EngineConfig()) == []

    def test_load_yaml(self, tmp_path):
        path = tmp_path / "propguard.yaml"
        path.write_text(yaml.safe_dump({
            "breaker": {"default_daily_loss_limit_pct": 2.0},
            "detector": {"oversize-ratio": 2.0},
            "rule_catalog_path": "rules.yaml",
        }))

        config = load_config(str(path), override_env=False)

        assert config.breaker.default_daily_loss_limit_pct == 2.0
        assert config.detector.oversize_ratio == 2.0
        assert config.rule_catalog_path == "rules.yaml"

    def test_missing_file(self):
        with pytest.raises(FileNotFoundError):
            load_config("/nonexistent/propguard.yaml")

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("PROPGUARD_DAILY_LOSS_LIMIT_PCT", "4")
        monkeypatch.setenv("PROPGUARD_ENFORCE_TRADING_HOURS", "false")
        monkeypatch.setenv("PROPGUARD_SWEEP_WORKERS", "2")
        monkeypatch.setenv("PROPGUARD_LOG_LEVEL", "debug")

        config = load_config()

        assert config.breaker.default_daily_loss_limit_pct == 4.0
        assert config.breaker.enforce_trading_hours is False
        assert config.sweep.max_workers == 2
        assert config.output.log_level == "DEBUG"

    def test_invalid_values_raise(self):
        config = EngineConfig()
        config.detector.oversize_ratio = 1.0
        config.sweep.max_workers = 0

        with pytest.raises(ConfigValidationError) as exc_info:
            validate_config(config)

        assert "oversize_ratio" in str(exc_info.value)
        assert "max_workers" in str(exc_info.value)

    def test_invalid_lot_consistency_settings(self):
        config = EngineConfig()
        config.detector.lot_spike_ratio = 0.9
        config.detector.lot_baseline_min_trades = 30

        with pytest.raises(ConfigValidationError) as exc_info:
            validate_config(config)

        assert "lot_spike_ratio" in str(exc_info.value)
        assert "lot_baseline_min_trades" in str(exc_info.value)

    def test_lot_hard_block_env_override(self, monkeypatch):
        monkeypatch.setenv("PROPGUARD_LOT_SPIKE_HARD_BLOCK", "true")

        assert load_config().detector.lot_spike_hard_block is True

    def test_warnings(self):
        config = EngineConfig()
        config.breaker.default_daily_loss_limit_pct = 8.0
        config.sizing.apply_firm_cap = False

        warnings = validate_config(config)

        assert len(warnings) == 2

    def test_save_and_reload(self, tmp_path):
        config = EngineConfig()
        config.sweep.interval_seconds = 60.0
        path = tmp_path / "saved.yaml"

        save_config(config, str(path))
        reloaded = load_config(str(path), override_env=False)

        assert reloaded.sweep.interval_seconds == 60.0
        assert reloaded.alerts.slack_channel == "#risk-alerts"


# =============================================================================
# Logging
# =============================================================================

class TestLogging:
    """Tests for formatting and setup."""

    def test_formatter_appends_extras(self):
        record = logging.LogRecord("propguard.risk", logging.INFO, __file__, 1, "Locked", (), None)
        record.account_id = "acc-1"
        record.daily_loss_pct = 3.456789

        text = RiskFormatter(use_colors=False).format(record)

        assert "[INFO    ] propguard.risk - Locked" in text
        assert text.endswith("[account_id=acc-1 daily_loss_pct=3.457]")

    def test_formatter_without_extras(self):
        record = logging.LogRecord("propguard", logging.WARNING, __file__, 1, "plain", (), None)
        record.account_id = "acc-1"

        text = RiskFormatter(use_colors=False, include_extras=False).format(record)

        assert text.endswith("propguard - plain")

    def test_setup_logging_writes_file(self, tmp_path, restore_root_logger):
        setup_logging(level="INFO", log_dir=str(tmp_path), log_file="risk.log", use_colors=False)

        logging.getLogger("propguard.test").info("sweep started")
        for handler in logging.getLogger().handlers:
            handler.flush()

        assert "sweep started" in (tmp_path / "risk.log").read_text()

    def test_risk_logger_levels(self, caplog):
        risk_log = RiskLogger("propguard.test.risk")

        with caplog.at_level(logging.DEBUG, logger="propguard.test.risk"):
            risk_log.breaker_event("acc-1", "daily_loss", "limit hit")
            risk_log.breaker_event("acc-1", "session_time", "outside hours", persisted=False)
            risk_log.sizing(0.01, 0.0, True, "bad balance")
            risk_log.mistakes_detected("acc-1", "t-1", ["revenge", "fomo"])

        levels = [r.levelname for r in caplog.records]
        assert levels == ["ERROR", "INFO", "WARNING", "INFO"]
        assert caplog.records[0].account_id == "acc-1"
        assert caplog.records[3].getMessage() == "MISTAKES acc-1/t-1: fomo, revenge"
