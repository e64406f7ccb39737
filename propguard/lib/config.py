"""
Unified configuration management.

This module provides a centralized way to load, validate, and access
configuration for the risk engine. It supports:
- YAML file loading
- Environment variable overrides
- Type validation via dataclasses
- Default values from constants

Configuration Hierarchy (highest to lowest priority):
1. Environment variables (PROPGUARD_*)
2. User-provided config file
3. Default values from constants.py

Example usage:
    config = load_config("config/propguard.yaml")

    print(config.breaker.default_daily_loss_limit_pct)
    print(config.detector.oversize_ratio)
"""

import os
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Any, Optional

import yaml

from propguard.lib.constants import (
    MIN_LOT_SIZE,
    LOT_DECIMALS,
    MIN_STOP_DISTANCE_PIPS,
    DEFAULT_PERSONAL_DAILY_LOSS_LIMIT_PCT,
    FOMO_WINDOW_MINUTES,
    REVENGE_WINDOW_MINUTES,
    OVERSIZE_RATIO,
    HISTORY_WINDOW_HOURS,
    LOT_SPIKE_RATIO,
    LOT_BASELINE_MIN_TRADES,
    LOT_BASELINE_TRADES,
    DEFAULT_SWEEP_INTERVAL_SECONDS,
    DEFAULT_SWEEP_TIMEOUT_SECONDS,
    DEFAULT_SWEEP_WORKERS,
)


# =============================================================================
# Configuration Dataclasses
# =============================================================================

@dataclass
class SizingConfig:
    """Configuration for position sizing."""
    min_lot_size: float = MIN_LOT_SIZE
    lot_decimals: int = LOT_DECIMALS
    min_stop_distance_pips: float = MIN_STOP_DISTANCE_PIPS
    # Clamp to the prop firm's position cap
    apply_firm_cap: bool = True


@dataclass
class BreakerConfig:
    """Configuration for the daily circuit breaker."""
    # Used when an account has no (or a non-positive) personal limit
    default_daily_loss_limit_pct: float = DEFAULT_PERSONAL_DAILY_LOSS_LIMIT_PCT
    # Session-time locks from allowed trading hours
    enforce_trading_hours: bool = True
    # Send loss/profit notifications
    alerts_enabled: bool = True


@dataclass
class DetectorConfig:
    """Configuration for behavioral mistake detection."""
    fomo_window_minutes: float = FOMO_WINDOW_MINUTES
    revenge_window_minutes: float = REVENGE_WINDOW_MINUTES
    oversize_ratio: float = OVERSIZE_RATIO
    history_window_hours: float = HISTORY_WINDOW_HOURS
    # Trade ids remembered to ignore duplicate close events
    processed_trade_cache_size: int = 10_000
    # Lot size consistency against the recent average
    lot_spike_ratio: float = LOT_SPIKE_RATIO
    lot_baseline_min_trades: int = LOT_BASELINE_MIN_TRADES
    lot_baseline_trades: int = LOT_BASELINE_TRADES
    # Reject spikes instead of only warning
    lot_spike_hard_block: bool = False


@dataclass
class SweepConfig:
    """Configuration for the scheduled breaker sweep."""
    interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS
    timeout_seconds: float = DEFAULT_SWEEP_TIMEOUT_SECONDS
    max_workers: int = DEFAULT_SWEEP_WORKERS
    # JSON account state file used by the sweep script
    state_file: Optional[str] = None


@dataclass
class AlertSettings:
    """Which alert channels the engine enables (secrets come from env)."""
    console_enabled: bool = True
    email_enabled: bool = False
    slack_enabled: bool = False
    webhook_enabled: bool = False
    email_to: list[str] = field(default_factory=list)
    slack_channel: str = "#risk-alerts"
    cooldown_seconds: float = 5.0


@dataclass
class OutputConfig:
    """Configuration for output and logging."""
    logs_dir: Optional[str] = None
    log_level: str = "INFO"
    verbose: bool = False


@dataclass
class EngineConfig:
    """Main configuration container."""
    sizing: SizingConfig = field(default_factory=SizingConfig)
    breaker: BreakerConfig = field(default_factory=BreakerConfig)
    detector: DetectorConfig = field(default_factory=DetectorConfig)
    sweep: SweepConfig = field(default_factory=SweepConfig)
    alerts: AlertSettings = field(default_factory=AlertSettings)
    output: OutputConfig = field(default_factory=OutputConfig)
    # Optional YAML with firm rules and pip values
    rule_catalog_path: Optional[str] = None


# =============================================================================
# Configuration Loading
# =============================================================================

_SECTIONS = ("sizing", "breaker", "detector", "sweep", "alerts", "output")


def load_config(
    config_path: Optional[str] = None,
    override_env: bool = True
) -> EngineConfig:
    """
    Load configuration from YAML file with optional environment overrides.

    Args:
        config_path: Path to YAML config file (optional)
        override_env: If True, apply environment variable overrides

    Returns:
        EngineConfig instance
    """
    config = EngineConfig()

    if config_path:
        config = _load_from_yaml(config_path, config)

    if override_env:
        config = _apply_env_overrides(config)

    return config


def _load_from_yaml(config_path: str, base_config: EngineConfig) -> EngineConfig:
    """Load configuration from YAML file."""
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(path) as f:
        yaml_data = yaml.safe_load(f)

    if yaml_data is None:
        return base_config

    for section in _SECTIONS:
        if section in yaml_data:
            setattr(
                base_config,
                section,
                _update_dataclass(getattr(base_config, section), yaml_data[section]),
            )

    if "rule_catalog_path" in yaml_data:
        base_config.rule_catalog_path = yaml_data["rule_catalog_path"]

    return base_config


def _update_dataclass(instance: Any, data: dict) -> Any:
    """Update dataclass fields from dictionary."""
    if not data:
        return instance

    field_names = {f.name for f in instance.__dataclass_fields__.values()}

    for key, value in data.items():
        normalized_key = key.replace(".", "_").replace("-", "_")
        if normalized_key in field_names:
            setattr(instance, normalized_key, value)

    return instance


def _env_flag(value: str) -> bool:
    return value.lower() in ("true", "1", "yes")


def _apply_env_overrides(config: EngineConfig) -> EngineConfig:
    """Apply environment variable overrides to config."""

    if env_val := os.getenv("PROPGUARD_DAILY_LOSS_LIMIT_PCT"):
        config.breaker.default_daily_loss_limit_pct = float(env_val)

    if env_val := os.getenv("PROPGUARD_ENFORCE_TRADING_HOURS"):
        config.breaker.enforce_trading_hours = _env_flag(env_val)

    if env_val := os.getenv("PROPGUARD_OVERSIZE_RATIO"):
        config.detector.oversize_ratio = float(env_val)

    if env_val := os.getenv("PROPGUARD_LOT_SPIKE_HARD_BLOCK"):
        config.detector.lot_spike_hard_block = _env_flag(env_val)

    if env_val := os.getenv("PROPGUARD_SWEEP_INTERVAL_SECONDS"):
        config.sweep.interval_seconds = float(env_val)

    if env_val := os.getenv("PROPGUARD_SWEEP_WORKERS"):
        config.sweep.max_workers = int(env_val)

    if env_val := os.getenv("PROPGUARD_STATE_FILE"):
        config.sweep.state_file = env_val

    if env_val := os.getenv("PROPGUARD_RULE_CATALOG"):
        config.rule_catalog_path = env_val

    if env_val := os.getenv("PROPGUARD_LOGS_DIR"):
        config.output.logs_dir = env_val

    if env_val := os.getenv("PROPGUARD_LOG_LEVEL"):
        config.output.log_level = env_val.upper()

    return config


def load_config_from_env() -> EngineConfig:
    """
    Load configuration purely from environment variables.

    Useful for containerized deployments where config files aren't available.
    """
    return load_config(config_path=None, override_env=True)


# =============================================================================
# Configuration Validation
# =============================================================================

class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""
    pass


def validate_config(config: EngineConfig) -> list[str]:
    """
    Validate configuration values.

    Args:
        config: EngineConfig to validate

    Returns:
        List of validation warnings (empty if valid)

    Raises:
        ConfigValidationError: If critical validation fails
    """
    warnings = []
    errors = []

    # Sizing
    if config.sizing.min_lot_size <= 0:
        errors.append("min_lot_size must be positive")

    if config.sizing.lot_decimals < 0:
        errors.append("lot_decimals cannot be negative")

    if config.sizing.min_stop_distance_pips <= 0:
        errors.append("min_stop_distance_pips must be positive")

    if not config.sizing.apply_firm_cap:
        warnings.append("apply_firm_cap is off - lot sizes may exceed prop firm limits")

    # Breaker
    limit = config.breaker.default_daily_loss_limit_pct
    if limit <= 0 or limit > 100:
        errors.append(f"default_daily_loss_limit_pct ({limit}) must be in (0, 100]")
    elif limit > 5:
        warnings.append(
            f"default_daily_loss_limit_pct ({limit}) exceeds the typical 5% prop firm "
            f"daily drawdown - accounts may breach firm rules before locking"
        )

    # Detector
    if config.detector.oversize_ratio <= 1:
        errors.append(
            f"oversize_ratio ({config.detector.oversize_ratio}) must be > 1"
        )

    if config.detector.fomo_window_minutes <= 0 or config.detector.revenge_window_minutes <= 0:
        errors.append("detector windows must be positive")

    if config.detector.history_window_hours * 60 < config.detector.revenge_window_minutes:
        errors.append("history_window_hours must cover the revenge window")

    if config.detector.lot_spike_ratio <= 1:
        errors.append(f"lot_spike_ratio ({config.detector.lot_spike_ratio}) must be > 1")

    if not 1 <= config.detector.lot_baseline_min_trades <= config.detector.lot_baseline_trades:
        errors.append("lot_baseline_min_trades must be between 1 and lot_baseline_trades")

    # Sweep
    if config.sweep.max_workers < 1:
        errors.append("sweep max_workers must be >= 1")

    if config.sweep.timeout_seconds <= 0:
        errors.append("sweep timeout_seconds must be positive")

    if config.sweep.timeout_seconds > config.sweep.interval_seconds:
        warnings.append(
            f"sweep timeout ({config.sweep.timeout_seconds}s) is longer than the "
            f"interval ({config.sweep.interval_seconds}s) - ticks may overlap"
        )

    # Alerts
    if config.alerts.email_enabled and not config.alerts.email_to:
        warnings.append("email alerts enabled without recipients")

    if errors:
        raise ConfigValidationError("Configuration validation failed:\n" +
                                    "\n".join(f"  - {e}" for e in errors))

    return warnings


# =============================================================================
# Configuration Export
# =============================================================================

def config_to_dict(config: EngineConfig) -> dict:
    """
    Convert EngineConfig to dictionary for serialization.

    Returns:
        Dictionary representation (YAML-safe)
    """
    return asdict(config)


def save_config(config: EngineConfig, path: str) -> None:
    """
    Save configuration to YAML file.

    Args:
        config: Configuration to save
        path: Output file path
    """
    data = config_to_dict(config)

    with open(path, "w") as f:
        yaml.dump(data, f, default_flow_style=False, sort_keys=False)
