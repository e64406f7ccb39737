"""
Alert System Module for circuit breaker notifications.

Provides multi-channel alerting for account lock events:
- Email notifications via SMTP
- Slack webhook integration
- Generic webhook support (push gateway, dashboard backend, etc.)
- Console/logging output

The risk engine only sees the narrow ``AlertDispatcher.notify(account_id,
payload)`` contract. ``AlertManagerDispatcher`` adapts that contract onto the
async ``AlertManager`` and runs every send on a background worker, so a slow
or failing channel never blocks or rolls back a lock.
"""

import asyncio
import aiohttp
import html
import logging
import os
import smtplib
import threading
from abc import ABC, abstractmethod
from collections import Counter, deque
from concurrent.futures import ThreadPoolExecutor, Future, wait
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from email.message import EmailMessage
from enum import Enum
from typing import Optional, Dict, Any, List, Tuple

from propguard.lib.config import AlertSettings
from propguard.lib.time_utils import get_utc_now

logger = logging.getLogger(__name__)


class AlertChannel(Enum):
    """Available alert channels."""
    CONSOLE = "console"
    EMAIL = "email"
    SLACK = "slack"
    WEBHOOK = "webhook"


class AlertPriority(Enum):
    """Alert priority levels, ordered by urgency."""
    LOW = 1         # Informational
    MEDIUM = 2      # Good-news locks (profit target reached)
    HIGH = 3        # Loss locks
    CRITICAL = 4    # Engine failures, every channel

    @property
    def label(self) -> str:
        return self.name.lower()


class AlertKind(Enum):
    """What kind of account event an alert reports."""
    LOSS_LOCK = "loss_lock"
    PROFIT_LOCK = "profit_lock"
    LOT_SPIKE = "lot_spike"
    INFO = "info"


# Loss locks are urgent for the trader; a reached target is good news
KIND_PRIORITY = {
    AlertKind.LOSS_LOCK: AlertPriority.HIGH,
    AlertKind.PROFIT_LOCK: AlertPriority.MEDIUM,
    AlertKind.LOT_SPIKE: AlertPriority.MEDIUM,
    AlertKind.INFO: AlertPriority.LOW,
}

PRIORITY_COLORS = {
    AlertPriority.LOW: "#6c757d",
    AlertPriority.MEDIUM: "#2eb886",
    AlertPriority.HIGH: "#dc3545",
    AlertPriority.CRITICAL: "#dc3545",
}


@dataclass(frozen=True)
class AlertPayload:
    """
    Notification content produced by the circuit breaker and the lot
    consistency check.

    ``push_title`` is the short title used by mobile push channels;
    ``title``/``body`` are the in-app notification.
    """
    title: str
    body: str
    kind: AlertKind
    push_title: Optional[str] = None
    details: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "body": self.body,
            "kind": self.kind.value,
            "push_title": self.push_title,
            "details": self.details,
        }


@dataclass
class Alert:
    """One notification about one account, as delivered to the channels."""
    timestamp: datetime
    priority: AlertPriority
    title: str
    message: str
    category: str = "risk"  # risk, system
    account_id: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    source: str = "propguard"

    @property
    def time_label(self) -> str:
        return self.timestamp.strftime("%Y-%m-%d %H:%M:%S")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "priority": self.priority.label,
            "title": self.title,
            "message": self.message,
            "category": self.category,
            "account_id": self.account_id,
            "details": self.details,
            "source": self.source,
        }

    def detail_lines(self) -> List[str]:
        """``key: value`` lines for the details, sorted by key."""
        return [f"{key}: {value}" for key, value in sorted((self.details or {}).items())]

    def format_text(self) -> str:
        """Plain-text body for email and logs."""
        lines = [
            f"[{self.priority.label.upper()}] {self.title}",
            f"Account: {self.account_id or '-'}",
            f"Time: {self.time_label} UTC",
            "",
            self.message,
        ]
        details = self.detail_lines()
        if details:
            lines += ["", *details]
        return "\n".join(lines)

    def format_html(self) -> str:
        """HTML body for email."""
        rows = [("Account", self.account_id or "-"), ("Time", f"{self.time_label} UTC")]
        rows += sorted((self.details or {}).items())
        table = "".join(
            f"<tr><td><strong>{html.escape(str(k))}:</strong></td><td>{html.escape(str(v))}</td></tr>"
            for k, v in rows
        )
        color = PRIORITY_COLORS.get(self.priority, "#6c757d")
        return (
            f'<div style="font-family: Arial, sans-serif; max-width: 600px;">'
            f'<h3 style="color: {color};"><strong>{html.escape(self.title)}</strong></h3>'
            f"<p>{html.escape(self.message)}</p>"
            f"<table>{table}</table>"
            f"</div>"
        )


@dataclass
class AlertConfig:
    """Channel settings, credentials and throttling for AlertManager."""
    console_enabled: bool = True
    email_enabled: bool = False
    slack_enabled: bool = False
    webhook_enabled: bool = False

    # SMTP
    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = True
    email_from: str = ""
    email_to: List[str] = field(default_factory=list)

    # Slack
    slack_webhook_url: str = ""
    slack_channel: str = "#risk-alerts"

    # Generic webhook
    webhook_url: str = ""
    webhook_headers: Dict[str, str] = field(default_factory=dict)

    # Throttling: a global rate cap plus a per-account cooldown per title
    throttle_window_seconds: float = 60.0
    max_alerts_per_window: int = 50
    cooldown_seconds: float = 5.0

    # Lowest priority each channel receives (console gets everything)
    min_priority_for_email: AlertPriority = AlertPriority.HIGH
    min_priority_for_slack: AlertPriority = AlertPriority.MEDIUM
    min_priority_for_webhook: AlertPriority = AlertPriority.LOW

    def min_priority(self, channel: AlertChannel) -> AlertPriority:
        return {
            AlertChannel.EMAIL: self.min_priority_for_email,
            AlertChannel.SLACK: self.min_priority_for_slack,
            AlertChannel.WEBHOOK: self.min_priority_for_webhook,
        }.get(channel, AlertPriority.LOW)


# =============================================================================
# Senders
# =============================================================================

class AlertSender(ABC):
    """Delivers an Alert over one channel."""

    channel: AlertChannel

    @abstractmethod
    async def send(self, alert: Alert) -> bool:
        """Send an alert. Returns True if the channel accepted it."""


class ConsoleAlertSender(AlertSender):
    """Write alerts to the log at a level matching their priority."""

    channel = AlertChannel.CONSOLE

    LEVELS = {
        AlertPriority.LOW: logging.INFO,
        AlertPriority.MEDIUM: logging.WARNING,
        AlertPriority.HIGH: logging.ERROR,
        AlertPriority.CRITICAL: logging.CRITICAL,
    }

    async def send(self, alert: Alert) -> bool:
        level = self.LEVELS.get(alert.priority, logging.WARNING)
        logger.log(level, f"ALERT [{alert.account_id}]: {alert.title} - {alert.message}")
        return True


class EmailAlertSender(AlertSender):
    """Send alerts via SMTP on the default executor."""

    channel = AlertChannel.EMAIL

    def __init__(self, config: AlertConfig):
        self.config = config

    def build_message(self, alert: Alert) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = f"[PropGuard] {alert.title}"
        msg["From"] = self.config.email_from or self.config.smtp_username
        msg["To"] = ", ".join(self.config.email_to)
        msg.set_content(alert.format_text())
        msg.add_alternative(alert.format_html(), subtype="html")
        return msg

    async def send(self, alert: Alert) -> bool:
        if not self.config.email_to:
            logger.warning("No email recipients configured")
            return False

        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._deliver, self.build_message(alert))

    def _deliver(self, msg: EmailMessage) -> bool:
        try:
            with smtplib.SMTP(self.config.smtp_host, self.config.smtp_port, timeout=10) as server:
                if self.config.smtp_use_tls:
                    server.starttls()
                if self.config.smtp_username and self.config.smtp_password:
                    server.login(self.config.smtp_username, self.config.smtp_password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send email alert to {msg['To']}: {e}")
            return False

        logger.debug(f"Email alert sent to {msg['To']}")
        return True


class HttpAlertSender(AlertSender):
    """
    Base for channels that POST a JSON document.

    Subclasses provide the target URL and the document; any 2xx status in
    ``accepted_statuses`` counts as delivered.
    """

    accepted_statuses: Tuple[int, ...] = (200,)
    timeout_seconds: float = 10.0

    def __init__(self, config: AlertConfig):
        self.config = config

    @property
    @abstractmethod
    def url(self) -> str:
        """Endpoint to POST to (empty when unconfigured)."""

    @abstractmethod
    def build_payload(self, alert: Alert) -> Dict[str, Any]:
        """JSON document for one alert."""

    def headers(self) -> Dict[str, str]:
        return {"Content-Type": "application/json"}

    async def send(self, alert: Alert) -> bool:
        name = self.channel.value
        if not self.url:
            logger.warning(f"No {name} URL configured")
            return False

        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    self.url,
                    json=self.build_payload(alert),
                    headers=self.headers(),
                    timeout=aiohttp.ClientTimeout(total=self.timeout_seconds),
                ) as response:
                    if response.status in self.accepted_statuses:
                        logger.debug(f"{name} alert delivered for {alert.account_id}")
                        return True
                    logger.error(f"{name} alert rejected with status {response.status}")
                    return False
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Failed to send {name} alert: {e}")
            return False


class SlackAlertSender(HttpAlertSender):
    """Slack incoming webhook."""

    channel = AlertChannel.SLACK

    @property
    def url(self) -> str:
        return self.config.slack_webhook_url

    def build_payload(self, alert: Alert) -> Dict[str, Any]:
        fields = [
            {"title": "Account", "value": alert.account_id or "-", "short": True},
            {"title": "Priority", "value": alert.priority.label.upper(), "short": True},
        ]
        return {
            "channel": self.config.slack_channel,
            "username": "PropGuard",
            "attachments": [{
                "color": PRIORITY_COLORS.get(alert.priority, "#6c757d"),
                "title": alert.title,
                "text": alert.message,
                "fields": fields,
                "footer": alert.source,
                "ts": int(alert.timestamp.timestamp()),
            }],
        }


class WebhookAlertSender(HttpAlertSender):
    """Generic JSON webhook (push gateway, dashboard backend)."""

    channel = AlertChannel.WEBHOOK
    accepted_statuses = (200, 201, 202, 204)

    @property
    def url(self) -> str:
        return self.config.webhook_url

    def build_payload(self, alert: Alert) -> Dict[str, Any]:
        return alert.to_dict()

    def headers(self) -> Dict[str, str]:
        return {**super().headers(), **self.config.webhook_headers}


# =============================================================================
# Alert manager
# =============================================================================

class AlertManager:
    """
    Routes alerts to the enabled channels.

    - CRITICAL alerts go to every channel and skip throttling.
    - Other alerts go to each channel whose minimum priority they meet.
    - At most ``max_alerts_per_window`` alerts are sent per window overall.
    - The same title for the same account is suppressed for
      ``cooldown_seconds``; two accounts locking together both get notified.
    """

    def __init__(self, config: Optional[AlertConfig] = None):
        self.config = config or AlertConfig()
        self._senders: Dict[AlertChannel, AlertSender] = {}
        self._history: deque = deque(maxlen=1000)
        self._last_sent: Dict[Tuple[Optional[str], str, str], datetime] = {}
        self._window: deque = deque()
        self._lock = threading.Lock()

        enabled = (
            (self.config.console_enabled, ConsoleAlertSender),
            (self.config.email_enabled, EmailAlertSender),
            (self.config.slack_enabled, SlackAlertSender),
            (self.config.webhook_enabled, WebhookAlertSender),
        )
        for is_enabled, sender_cls in enabled:
            if is_enabled:
                sender = sender_cls() if sender_cls is ConsoleAlertSender else sender_cls(self.config)
                self._senders[sender.channel] = sender

    @property
    def enabled_channels(self) -> List[AlertChannel]:
        return list(self._senders)

    def _channels_for(self, priority: AlertPriority) -> List[AlertChannel]:
        if priority == AlertPriority.CRITICAL:
            return list(self._senders)
        return [
            channel for channel in self._senders
            if priority.value >= self.config.min_priority(channel).value
        ]

    def _suppression_reason(self, alert: Alert, now: datetime) -> Optional[str]:
        """Why an alert must not be sent now, or None. Caller holds the lock."""
        horizon = now - timedelta(seconds=self.config.throttle_window_seconds)
        while self._window and self._window[0] < horizon:
            self._window.popleft()
        if len(self._window) >= self.config.max_alerts_per_window:
            return "throttled"

        last = self._last_sent.get((alert.account_id, alert.category, alert.title))
        if last is not None and (now - last).total_seconds() < self.config.cooldown_seconds:
            return "duplicate"
        return None

    async def send_alert(
        self,
        title: str,
        message: str,
        priority: AlertPriority = AlertPriority.MEDIUM,
        category: str = "risk",
        account_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        force: bool = False,
    ) -> bool:
        """
        Send an alert through the channels its priority selects.

        Args:
            title: Alert title
            message: Alert message
            priority: Alert priority level
            category: Alert category (risk, system)
            account_id: Account the alert is about
            details: Additional key/value details
            force: Skip throttling and the per-account cooldown

        Returns:
            True if at least one channel accepted the alert
        """
        now = get_utc_now()
        alert = Alert(now, priority, title, message, category, account_id, details)

        with self._lock:
            if not force and priority != AlertPriority.CRITICAL:
                reason = self._suppression_reason(alert, now)
                if reason == "throttled":
                    logger.warning(f"Alert throttled: {title} ({account_id})")
                    return False
                if reason == "duplicate":
                    logger.debug(f"Duplicate alert suppressed: {title} ({account_id})")
                    return False
            channels = self._channels_for(priority)

        if not channels:
            logger.warning(f"No channels configured for alert: {title}")
            return False

        results = await asyncio.gather(
            *(self._senders[channel].send(alert) for channel in channels),
            return_exceptions=True,
        )
        for channel, result in zip(channels, results):
            if isinstance(result, Exception):
                logger.error(f"Alert channel {channel.value} raised: {result}")

        delivered = any(result is True for result in results)
        if delivered:
            with self._lock:
                self._last_sent[(account_id, category, title)] = now
                self._window.append(now)
                self._history.append(alert)
        return delivered

    async def send_risk_alert(self, account_id: str, payload: AlertPayload) -> bool:
        """Send a circuit breaker alert for one account."""
        details = dict(payload.details or {})
        details["kind"] = payload.kind.value
        if payload.push_title:
            details["push_title"] = payload.push_title
        return await self.send_alert(
            title=payload.title,
            message=payload.body,
            priority=KIND_PRIORITY.get(payload.kind, AlertPriority.MEDIUM),
            category="risk",
            account_id=account_id,
            details=details,
        )

    def get_alert_history(self, limit: int = 100) -> List[Alert]:
        """Most recent delivered alerts, oldest first."""
        with self._lock:
            return list(self._history)[-limit:]

    def get_stats(self) -> Dict[str, Any]:
        """Delivered alert counts by priority and account."""
        with self._lock:
            history = list(self._history)
        return {
            "total_alerts": len(history),
            "throttle_limit": self.config.max_alerts_per_window,
            "enabled_channels": [channel.value for channel in self._senders],
            "by_priority": dict(Counter(alert.priority.label for alert in history)),
            "by_account": dict(Counter(alert.account_id or "-" for alert in history)),
        }


# =============================================================================
# Engine-facing dispatch
# =============================================================================

class AlertDispatcher(ABC):
    """Notification contract used by the risk engine."""

    @abstractmethod
    def notify(self, account_id: str, payload: AlertPayload) -> None:
        """Deliver a notification; must not block on slow channels."""


class AlertManagerDispatcher(AlertDispatcher):
    """
    Fire-and-forget adapter from ``notify`` onto ``AlertManager``.

    Every send runs on a single background worker in its own event loop, so
    callers in worker threads (the breaker sweep) never wait on SMTP or HTTP.

    Usage:
        dispatcher = AlertManagerDispatcher(create_alert_manager_from_env())
        dispatcher.notify("acc-1", payload)
        dispatcher.close()  # drains pending sends
    """

    def __init__(self, alert_manager: Optional[AlertManager] = None):
        self.alert_manager = alert_manager or AlertManager()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="alerts")
        self._pending: List[Future] = []
        self._pending_lock = threading.Lock()

    def notify(self, account_id: str, payload: AlertPayload) -> None:
        future = self._executor.submit(self._send, account_id, payload)
        with self._pending_lock:
            self._pending = [f for f in self._pending if not f.done()]
            self._pending.append(future)

    def _send(self, account_id: str, payload: AlertPayload) -> bool:
        try:
            return asyncio.run(self.alert_manager.send_risk_alert(account_id, payload))
        except Exception as e:
            logger.error(f"Alert delivery failed for {account_id}: {e}")
            return False

    def flush(self, timeout: Optional[float] = None) -> None:
        """Wait for queued sends to finish."""
        with self._pending_lock:
            pending = list(self._pending)
        if pending:
            wait(pending, timeout=timeout)

    def close(self) -> None:
        """Drain pending sends and stop the worker."""
        self._executor.shutdown(wait=True)


class RecordingAlertDispatcher(AlertDispatcher):
    """Keeps notifications in memory; used for dry runs and tests."""

    def __init__(self):
        self._lock = threading.Lock()
        self.sent: List[tuple] = []

    def notify(self, account_id: str, payload: AlertPayload) -> None:
        with self._lock:
            self.sent.append((account_id, payload))


def create_alert_manager_from_env(settings: Optional[AlertSettings] = None) -> AlertManager:
    """
    Create AlertManager with configuration from environment variables.

    Channel switches come from ``settings`` (the engine config) unless the
    environment enables them; credentials and URLs only come from the
    environment.

    Environment variables:
        PROPGUARD_ALERT_EMAIL_ENABLED: "true" to enable email
        PROPGUARD_ALERT_SMTP_HOST: SMTP server host
        PROPGUARD_ALERT_SMTP_PORT: SMTP server port
        PROPGUARD_ALERT_SMTP_USERNAME: SMTP username
        PROPGUARD_ALERT_SMTP_PASSWORD: SMTP password
        PROPGUARD_ALERT_EMAIL_TO: Comma-separated list of recipients
        PROPGUARD_ALERT_SLACK_ENABLED: "true" to enable Slack
        PROPGUARD_ALERT_SLACK_WEBHOOK_URL: Slack webhook URL
        PROPGUARD_ALERT_SLACK_CHANNEL: Slack channel (default: #risk-alerts)
        PROPGUARD_ALERT_WEBHOOK_ENABLED: "true" to enable generic webhook
        PROPGUARD_ALERT_WEBHOOK_URL: Generic webhook URL
    """
    settings = settings or AlertSettings()
    email_to = [e.strip() for e in os.getenv("PROPGUARD_ALERT_EMAIL_TO", "").split(",") if e.strip()]

    config = AlertConfig(
        console_enabled=settings.console_enabled,
        cooldown_seconds=settings.cooldown_seconds,

        email_enabled=settings.email_enabled or _env_enabled("PROPGUARD_ALERT_EMAIL_ENABLED"),
        smtp_host=os.getenv("PROPGUARD_ALERT_SMTP_HOST", "smtp.gmail.com"),
        smtp_port=int(os.getenv("PROPGUARD_ALERT_SMTP_PORT", "587")),
        smtp_username=os.getenv("PROPGUARD_ALERT_SMTP_USERNAME", ""),
        smtp_password=os.getenv("PROPGUARD_ALERT_SMTP_PASSWORD", ""),
        email_to=email_to or list(settings.email_to),

        slack_enabled=settings.slack_enabled or _env_enabled("PROPGUARD_ALERT_SLACK_ENABLED"),
        slack_webhook_url=os.getenv("PROPGUARD_ALERT_SLACK_WEBHOOK_URL", ""),
        slack_channel=os.getenv("PROPGUARD_ALERT_SLACK_CHANNEL", settings.slack_channel),

        webhook_enabled=settings.webhook_enabled or _env_enabled("PROPGUARD_ALERT_WEBHOOK_ENABLED"),
        webhook_url=os.getenv("PROPGUARD_ALERT_WEBHOOK_URL", ""),
    )

    return AlertManager(config)


def _env_enabled(name: str) -> bool:
    return os.getenv(name, "").lower() == "true"
