"""
Webhook alerting for operator-facing events.

- Send alerts to webhooks (Slack, Discord, generic HTTP)
- Rate limiting per alert type to prevent alert storms
- Alert batching for events raised close together
- ThrottledNotifier: at most one notification per key per interval,
  plain log lines in between
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Callable, Dict, List, Optional

import aiohttp

logger = logging.getLogger("mmbot")


class AlertSeverity(Enum):
    """Alert severity levels."""
    CRITICAL = auto()  # Immediate attention required
    WARNING = auto()   # Potential issue
    INFO = auto()      # Informational


class AlertType(Enum):
    STARTUP = auto()
    SHUTDOWN = auto()
    CUSTOM = auto()  # strategy notifications, throttled by ThrottledNotifier


_LEVELS = {
    "error": AlertSeverity.CRITICAL,
    "critical": AlertSeverity.CRITICAL,
    "warning": AlertSeverity.WARNING,
    "warn": AlertSeverity.WARNING,
    "info": AlertSeverity.INFO,
    "log": AlertSeverity.INFO,
}


@dataclass
class Alert:
    """An alert to be sent."""
    alert_type: AlertType
    severity: AlertSeverity
    title: str
    message: str
    timestamp_ms: int = field(default_factory=lambda: int(time.time() * 1000))
    details: Dict[str, Any] = field(default_factory=dict)
    pair: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.alert_type.name,
            "severity": self.severity.name,
            "title": self.title,
            "message": self.message,
            "timestamp_ms": self.timestamp_ms,
            "timestamp_iso": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(self.timestamp_ms / 1000)),
            "details": self.details,
            "pair": self.pair,
        }


@dataclass
class AlertConfig:
    """Configuration for alerting."""
    webhook_url: Optional[str] = None
    webhook_type: str = "generic"  # generic, slack, discord
    min_severity: AlertSeverity = AlertSeverity.WARNING
    rate_limit_seconds: int = 60  # Min seconds between same alert type
    batch_window_ms: int = 5000
    enabled: bool = True
    include_details: bool = True
    bot_name: str = "MMBot"


class WebhookFormatter:
    """Formats alerts for different webhook types."""

    @staticmethod
    def format_generic(alert: Alert, config: AlertConfig) -> Dict[str, Any]:
        return alert.to_dict()

    @staticmethod
    def format_slack(alert: Alert, config: AlertConfig) -> Dict[str, Any]:
        color = {
            AlertSeverity.CRITICAL: "#FF0000",
            AlertSeverity.WARNING: "#FFA500",
            AlertSeverity.INFO: "#0000FF",
        }.get(alert.severity, "#808080")

        fields = []
        if alert.pair:
            fields.append({"title": "Pair", "value": alert.pair, "short": True})
        if config.include_details:
            for key, value in list(alert.details.items())[:5]:
                fields.append({"title": key, "value": str(value), "short": True})

        return {
            "username": config.bot_name,
            "attachments": [{
                "color": color,
                "title": alert.title,
                "text": alert.message,
                "fields": fields,
                "footer": f"{config.bot_name} | {alert.severity.name}",
                "ts": alert.timestamp_ms // 1000,
            }]
        }

    @staticmethod
    def format_discord(alert: Alert, config: AlertConfig) -> Dict[str, Any]:
        color = {
            AlertSeverity.CRITICAL: 0xFF0000,
            AlertSeverity.WARNING: 0xFFA500,
            AlertSeverity.INFO: 0x0000FF,
        }.get(alert.severity, 0x808080)

        fields = []
        if alert.pair:
            fields.append({"name": "Pair", "value": alert.pair, "inline": True})
        if config.include_details:
            for key, value in list(alert.details.items())[:5]:
                fields.append({"name": key, "value": str(value), "inline": True})

        return {
            "username": config.bot_name,
            "embeds": [{
                "title": alert.title,
                "description": alert.message,
                "color": color,
                "fields": fields,
                "footer": {"text": f"{config.bot_name} | {alert.severity.name}"},
            }]
        }


class AlertManager:
    """
    Delivers alerts to a webhook with per-type rate limiting and batching.

    Also satisfies the Notifier interface through ``notify``.
    """

    def __init__(self, config: Optional[AlertConfig] = None, pair: Optional[str] = None) -> None:
        self.config = config or AlertConfig()
        self.pair = pair
        self._last_alert_times: Dict[AlertType, int] = {}
        self._pending_alerts: List[Alert] = []
        self._batch_task: Optional[asyncio.Task] = None
        self._lock = asyncio.Lock()

    async def send_alert(self, alert: Alert) -> bool:
        """
        Queue an alert for delivery.

        Returns:
            True if alert was queued, False if rate limited or disabled
        """
        if not self.config.enabled or not self.config.webhook_url:
            logger.debug(f"Alert not sent (disabled or no webhook): {alert.title}")
            return False

        if alert.severity.value > self.config.min_severity.value:
            return False

        # CUSTOM alerts are throttled by their callers
        now_ms = int(time.time() * 1000)
        if alert.alert_type is not AlertType.CUSTOM:
            last_time = self._last_alert_times.get(alert.alert_type, 0)
            if now_ms - last_time < self.config.rate_limit_seconds * 1000:
                logger.debug(f"Alert rate limited: {alert.alert_type.name}")
                return False

        async with self._lock:
            self._pending_alerts.append(alert)
            self._last_alert_times[alert.alert_type] = now_ms
            if self._batch_task is None or self._batch_task.done():
                self._batch_task = asyncio.create_task(self._batch_deliver())
        return True

    async def notify(self, message: str, level: str = "warning") -> None:
        await self.send_alert(Alert(
            alert_type=AlertType.CUSTOM,
            severity=_LEVELS.get(level, AlertSeverity.WARNING),
            title=f"{self.config.bot_name} {level}",
            message=message,
            pair=self.pair,
        ))

    async def flush(self) -> None:
        """Wait for the pending batch, if any."""
        if self._batch_task is not None:
            await asyncio.gather(self._batch_task, return_exceptions=True)

    async def _batch_deliver(self) -> None:
        await asyncio.sleep(self.config.batch_window_ms / 1000)

        async with self._lock:
            alerts = self._pending_alerts.copy()
            self._pending_alerts.clear()

        if not alerts:
            return
        if len(alerts) == 1:
            await self._http_post(self._format_alert(alerts[0]))
        else:
            await self._http_post(self._format_batch(alerts))

    def _format_batch(self, alerts: List[Alert]) -> Dict[str, Any]:
        if self.config.webhook_type in ("slack", "discord"):
            key = "attachments" if self.config.webhook_type == "slack" else "embeds"
            payload = self._format_alert(alerts[0])
            for alert in alerts[1:]:
                payload[key].extend(self._format_alert(alert)[key])
            return payload
        return {"alerts": [alert.to_dict() for alert in alerts]}

    def _format_alert(self, alert: Alert) -> Dict[str, Any]:
        formatters = {
            "generic": WebhookFormatter.format_generic,
            "slack": WebhookFormatter.format_slack,
            "discord": WebhookFormatter.format_discord,
        }
        formatter = formatters.get(self.config.webhook_type, WebhookFormatter.format_generic)
        return formatter(alert, self.config)

    async def _http_post(self, payload: Dict[str, Any], retries: int = 2) -> bool:
        """Send HTTP POST to webhook URL."""
        if not self.config.webhook_url:
            return False

        async with aiohttp.ClientSession() as session:
            for attempt in range(retries + 1):
                try:
                    async with session.post(
                        self.config.webhook_url,
                        json=payload,
                        timeout=aiohttp.ClientTimeout(total=10),
                    ) as resp:
                        if resp.status < 300:
                            return True
                        logger.warning(f"Alert delivery failed: HTTP {resp.status}")
                except asyncio.TimeoutError:
                    logger.warning(f"Alert delivery timeout (attempt {attempt + 1})")
                except aiohttp.ClientError as e:
                    logger.warning(f"Alert delivery error: {e}")

                if attempt < retries:
                    await asyncio.sleep(1 * (attempt + 1))
        return False

    async def alert_startup(self, pair: str, **details) -> bool:
        return await self.send_alert(Alert(
            alert_type=AlertType.STARTUP,
            severity=AlertSeverity.INFO,
            title="Bot Started",
            message=f"{self.config.bot_name} started market making on {pair}",
            pair=pair,
            details=details,
        ))

    async def alert_shutdown(self, reason: str = "normal", **details) -> bool:
        severity = AlertSeverity.INFO if reason == "normal" else AlertSeverity.WARNING
        return await self.send_alert(Alert(
            alert_type=AlertType.SHUTDOWN,
            severity=severity,
            title="Bot Shutdown",
            message=f"{self.config.bot_name} shutting down: {reason}",
            pair=self.pair,
            details=details,
        ))


class ThrottledNotifier:
    """
    Sends at most one notification per key per interval.

    Between notifications the message is only logged, so a condition that
    persists across many cycles (stale price source, low balance) does not
    flood the operator.
    """

    def __init__(
        self,
        notifier: Optional[Any] = None,
        interval_sec: float = 3600.0,
        clock: Callable[[], float] = time.time,
        log_event: Optional[Callable[..., None]] = None,
    ) -> None:
        self.notifier = notifier
        self.interval_sec = interval_sec
        self._clock = clock
        self._last_sent: Dict[str, float] = {}
        self._log_event = log_event or self._default_log

    def _default_log(self, event: str, **kwargs: Any) -> None:
        logger.warning(json.dumps({"event": event, **kwargs}))

    def allow(self, key: str) -> bool:
        now = self._clock()
        last = self._last_sent.get(key)
        if last is not None and now - last < self.interval_sec:
            return False
        self._last_sent[key] = now
        return True

    def reset(self, key: str) -> None:
        self._last_sent.pop(key, None)

    async def notify(self, key: str, message: str, level: str = "warning") -> bool:
        """Returns True when the notification was sent rather than only logged."""
        if not self.allow(key):
            self._log_event("alert_throttled", key=key, msg=message)
            return False
        self._log_event("alert", key=key, level=level, msg=message)
        if self.notifier is not None:
            await self.notifier.notify(message, level)
        return True
