"""
Shared utilities library for the risk engine.

This module provides common utilities used across the codebase:
- constants: Lot units, pip values, breaker and detector defaults
- time_utils: UTC handling, lock expiry, trading windows, ISO weeks
- config: Unified configuration loading from YAML and environment variables
- logging_utils: Structured logging with rotation and formatting
- errors: Error taxonomy seen by callers
- alerts: Multi-channel notifications and the engine-facing dispatcher
"""

from propguard.lib.constants import (
    MIN_LOT_SIZE,
    DEFAULT_PIP_VALUE,
    PIP_VALUES,
    DEFAULT_PROP_FIRM,
    UTC_TIMEZONE,
    InstrumentClass,
    PipConvention,
)

from propguard.lib.time_utils import (
    get_utc_now,
    to_utc,
    parse_timestamp,
    format_timestamp,
    next_utc_midnight,
    minute_of_day,
    parse_hhmm,
    format_hhmm,
    is_within_window,
    week_start,
    get_trading_session,
)

from propguard.lib.config import (
    EngineConfig,
    SizingConfig,
    BreakerConfig,
    DetectorConfig,
    SweepConfig,
    AlertSettings,
    OutputConfig,
    ConfigValidationError,
    load_config,
    load_config_from_env,
    validate_config,
    save_config,
)

from propguard.lib.logging_utils import (
    setup_logging,
    get_logger,
    RiskLogger,
    RiskFormatter,
)

from propguard.lib.errors import (
    ErrorCategory,
    RiskEngineError,
    AccountNotFoundError,
    LockConflictError,
    DependencyUnavailableError,
)

from propguard.lib.alerts import (
    AlertChannel,
    AlertPriority,
    AlertKind,
    AlertPayload,
    Alert,
    AlertConfig,
    AlertSender,
    ConsoleAlertSender,
    EmailAlertSender,
    SlackAlertSender,
    WebhookAlertSender,
    AlertManager,
    AlertDispatcher,
    AlertManagerDispatcher,
    RecordingAlertDispatcher,
    create_alert_manager_from_env,
)

__all__ = [
    # Constants
    "MIN_LOT_SIZE",
    "DEFAULT_PIP_VALUE",
    "PIP_VALUES",
    "DEFAULT_PROP_FIRM",
    "UTC_TIMEZONE",
    "InstrumentClass",
    "PipConvention",
    # Time utilities
    "get_utc_now",
    "to_utc",
    "parse_timestamp",
    "format_timestamp",
    "next_utc_midnight",
    "minute_of_day",
    "parse_hhmm",
    "format_hhmm",
    "is_within_window",
    "week_start",
    "get_trading_session",
    # Config
    "EngineConfig",
    "SizingConfig",
    "BreakerConfig",
    "DetectorConfig",
    "SweepConfig",
    "AlertSettings",
    "OutputConfig",
    "ConfigValidationError",
    "load_config",
    "load_config_from_env",
    "validate_config",
    "save_config",
    # Logging
    "setup_logging",
    "get_logger",
    "RiskLogger",
    "RiskFormatter",
    # Errors
    "ErrorCategory",
    "RiskEngineError",
    "AccountNotFoundError",
    "LockConflictError",
    "DependencyUnavailableError",
    # Alerts
    "AlertChannel",
    "AlertPriority",
    "AlertKind",
    "AlertPayload",
    "Alert",
    "AlertConfig",
    "AlertSender",
    "ConsoleAlertSender",
    "EmailAlertSender",
    "SlackAlertSender",
    "WebhookAlertSender",
    "AlertManager",
    "AlertDispatcher",
    "AlertManagerDispatcher",
    "RecordingAlertDispatcher",
    "create_alert_manager_from_env",
]
