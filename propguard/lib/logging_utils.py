"""
Structured logging utilities for risk operations.

This module provides:
- Configured logging with rotation and formatting
- A UTC formatter that appends structured ``extra`` fields
- RiskLogger with helpers for breaker, detector and sizing events

Log Format:
    YYYY-MM-DD HH:MM:SS.mmm [LEVEL] module - message [key=value ...]

Example usage:
    from propguard.lib.logging_utils import setup_logging, get_logger

    setup_logging(level="INFO", log_dir="./logs")

    logger = get_logger(__name__)
    logger.info("Account locked", extra={"account_id": "acc-1"})
"""

import logging
import sys
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional, Iterable

from propguard.lib.constants import UTC_TIMEZONE
from propguard.lib.time_utils import get_utc_now, format_timestamp

# Attributes every LogRecord carries; anything else came in through ``extra``
_RESERVED_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {
    "message", "asctime", "taskName",
}


# =============================================================================
# Log Formatting
# =============================================================================

class RiskFormatter(logging.Formatter):
    """
    Formatter for risk engine logs.

    Features:
    - Millisecond precision UTC timestamps (record creation time)
    - Colored output for terminal (optional)
    - Structured extras appended as key=value
    """

    COLORS = {
        logging.DEBUG: "\033[36m",     # Cyan
        logging.INFO: "\033[32m",      # Green
        logging.WARNING: "\033[33m",   # Yellow
        logging.ERROR: "\033[31m",     # Red
        logging.CRITICAL: "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def __init__(self, use_colors: bool = False, include_extras: bool = True):
        """
        Initialize formatter.

        Args:
            use_colors: Enable ANSI colors for terminal output
            include_extras: Include extra fields in output
        """
        self.use_colors = use_colors
        self.include_extras = include_extras
        super().__init__("[%(levelname)-8s] %(name)s - %(message)s")

    def formatTime(self, record: logging.LogRecord, datefmt: Optional[str] = None) -> str:
        created = datetime.fromtimestamp(record.created, tz=UTC_TIMEZONE)
        return created.strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]

    def format(self, record: logging.LogRecord) -> str:
        """Format log record with timestamp and optional colors."""
        message = super().format(record)

        if self.include_extras:
            extras = {
                k: v for k, v in record.__dict__.items()
                if k not in _RESERVED_ATTRS and not k.startswith("_")
            }
            if extras:
                extras_str = " ".join(f"{k}={_format_value(v)}" for k, v in extras.items())
                message = f"{message} [{extras_str}]"

        full_message = f"{self.formatTime(record)} {message}"

        if self.use_colors and sys.stderr.isatty():
            color = self.COLORS.get(record.levelno, "")
            return f"{color}{full_message}{self.RESET}"

        return full_message


def _format_value(value: Any) -> str:
    if isinstance(value, datetime):
        return format_timestamp(value)
    if isinstance(value, float):
        return f"{value:.4g}"
    return str(value)


# =============================================================================
# Logging Setup
# =============================================================================

def setup_logging(
    level: str = "INFO",
    log_dir: Optional[str] = None,
    log_file: Optional[str] = None,
    use_colors: bool = True,
    max_bytes: int = 10 * 1024 * 1024,  # 10 MB
    backup_count: int = 5
) -> logging.Logger:
    """
    Setup application-wide logging configuration.

    Creates handlers for:
    - Console output (with colors if terminal)
    - File output with rotation (if log_dir provided)

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_dir: Directory for log files (optional)
        log_file: Specific log file name (default: propguard_YYYY-MM-DD.log)
        use_colors: Enable colored console output
        max_bytes: Max size per log file before rotation
        backup_count: Number of backup files to keep

    Returns:
        Root logger
    """
    root_logger = logging.getLogger()

    log_level = getattr(logging, level.upper(), logging.INFO)
    root_logger.setLevel(log_level)

    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(RiskFormatter(use_colors=use_colors))
    root_logger.addHandler(console_handler)

    if log_dir:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)

        if not log_file:
            log_file = f"propguard_{get_utc_now().strftime('%Y-%m-%d')}.log"

        file_handler = RotatingFileHandler(
            log_path / log_file,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8"
        )
        file_handler.setLevel(log_level)
        file_handler.setFormatter(RiskFormatter(use_colors=False))
        root_logger.addHandler(file_handler)

    return root_logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger for the given module name."""
    return logging.getLogger(name)


# =============================================================================
# Risk Logger
# =============================================================================

class RiskLogger:
    """
    Specialized logger for risk events.

    Breaches are logged at ERROR, session locks and already-locked skips at
    INFO, degraded sizing at WARNING. All methods accept extra fields as
    kwargs for structured logging.
    """

    def __init__(self, name: str = "propguard.risk"):
        self._logger = logging.getLogger(name)

    def breaker_event(
        self,
        account_id: str,
        breaker_type: str,
        reason: str,
        locked_until: Optional[datetime] = None,
        persisted: bool = True,
        **kwargs: Any
    ) -> None:
        """
        Log a circuit breaker trip.

        Args:
            account_id: Locked account
            breaker_type: daily_loss, profit_lock or session_time
            reason: Human-readable lock reason
            locked_until: Lock expiry (None for derived session locks)
            persisted: False for session locks, which are never stored
            **kwargs: Additional fields
        """
        level = logging.ERROR if persisted else logging.INFO
        self._logger.log(
            level,
            f"CIRCUIT BREAKER [{breaker_type}] {account_id}: {reason}",
            extra={"account_id": account_id, "breaker_type": breaker_type,
                   "locked_until": locked_until, **kwargs}
        )

    def lock_skipped(self, account_id: str, lock_kind: str, locked_until: Optional[datetime], **kwargs: Any) -> None:
        """Log an evaluation that found an existing, unexpired lock."""
        self._logger.info(
            f"Account {account_id} already locked ({lock_kind})",
            extra={"account_id": account_id, "locked_until": locked_until, **kwargs}
        )

    def mistakes_detected(self, account_id: str, trade_id: str, tags: Iterable[str], **kwargs: Any) -> None:
        """Log the mistakes tagged on a closed trade."""
        tag_list = sorted(tags)
        self._logger.info(
            f"MISTAKES {account_id}/{trade_id}: {', '.join(tag_list)}",
            extra={"account_id": account_id, "trade_id": trade_id, **kwargs}
        )

    def sizing(self, lot_size: float, risk_amount: float, degraded: bool, reason: str, **kwargs: Any) -> None:
        """Log a lot size computation."""
        if degraded:
            self._logger.warning(
                f"SIZING degraded to {lot_size:.2f} lots: {reason}",
                extra={"lot_size": lot_size, **kwargs}
            )
        else:
            self._logger.debug(
                f"SIZING {lot_size:.2f} lots risking ${risk_amount:.2f}",
                extra={"lot_size": lot_size, "risk_amount": risk_amount, **kwargs}
            )

    def side_effect_failed(self, effect: str, account_id: str, error: BaseException, **kwargs: Any) -> None:
        """Log a swallowed post-commit side effect failure."""
        self._logger.warning(
            f"Side effect {effect} failed for {account_id}: {error}",
            extra={"account_id": account_id, "effect": effect, **kwargs}
        )
