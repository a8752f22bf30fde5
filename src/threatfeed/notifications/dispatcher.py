"""
Notification dispatchers - hand threat feed events to external channels.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

import requests

from ..core.config import NotificationConfig
from .breaker import CircuitBreaker

logger = logging.getLogger(__name__)


class NotificationDispatcher(ABC):
    """Base class for notification dispatchers."""

    @abstractmethod
    def notify(self, event: str, payload: Dict[str, Any]) -> bool:
        """
        Deliver an event, best-effort.

        Implementations never raise; failures are logged.

        Args:
            event: Event name (e.g. "threat_added", "pattern_matched")
            payload: JSON-serializable event data

        Returns:
            True if the event was delivered, False otherwise
        """
        pass


class LoggingDispatcher(NotificationDispatcher):
    """Writes events to the application log."""

    def __init__(self, level: int = logging.INFO):
        self.level = level

    def notify(self, event: str, payload: Dict[str, Any]) -> bool:
        logger.log(self.level, f"Notification {event}: {payload}")
        return True


class WebhookDispatcher(NotificationDispatcher):
    """
    Sends events as JSON POST requests to a webhook URL.

    Requests are guarded by a circuit breaker so an unreachable endpoint is
    not hammered on every ingestion.
    """

    def __init__(
        self,
        webhook_url: str,
        webhook_token: Optional[str] = None,
        timeout: float = 10.0,
        breaker: Optional[CircuitBreaker] = None,
    ):
        """
        Initialize webhook dispatcher.

        Args:
            webhook_url: Webhook endpoint URL
            webhook_token: Optional authentication token (Bearer)
            timeout: Request timeout in seconds
            breaker: Circuit breaker (default thresholds if omitted)
        """
        self.webhook_url = webhook_url
        self.webhook_token = webhook_token
        self.timeout = timeout
        self.breaker = breaker or CircuitBreaker()
        logger.info(f"WebhookDispatcher configured: {self.webhook_url}")

    def notify(self, event: str, payload: Dict[str, Any]) -> bool:
        if not self.breaker.allow_request():
            logger.warning(f"Circuit open, dropping {event} notification")
            return False

        headers = {
            "Content-Type": "application/json",
            "User-Agent": "threatfeed/0.1",
        }
        if self.webhook_token:
            headers["Authorization"] = f"Bearer {self.webhook_token}"

        body = {
            "event": event,
            "timestamp": datetime.utcnow().isoformat(),
            "payload": payload,
        }

        try:
            response = requests.post(
                self.webhook_url,
                json=body,
                headers=headers,
                timeout=self.timeout,
            )
            response.raise_for_status()
        except Exception as e:
            self.breaker.record_failure()
            logger.error(f"Failed to send {event} webhook notification: {e}")
            return False

        self.breaker.record_success()
        logger.info(f"Sent {event} webhook notification")
        return True


class CompositeDispatcher(NotificationDispatcher):
    """Fans an event out to several dispatchers."""

    def __init__(self, dispatchers: List[NotificationDispatcher]):
        self.dispatchers = dispatchers
        names = [d.__class__.__name__ for d in dispatchers]
        logger.info(f"CompositeDispatcher initialized with dispatchers: {names}")

    def notify(self, event: str, payload: Dict[str, Any]) -> bool:
        """
        Send via all dispatchers.

        Returns:
            True if at least one dispatcher delivered the event
        """
        delivered = 0
        for dispatcher in self.dispatchers:
            try:
                if dispatcher.notify(event, payload):
                    delivered += 1
            except Exception as e:
                logger.error(
                    f"Dispatcher {dispatcher.__class__.__name__} failed: {e}",
                    exc_info=True,
                )
        return delivered > 0


def build_dispatcher(config: Optional[NotificationConfig] = None) -> NotificationDispatcher:
    """Build the dispatcher described by configuration (log always, webhook when set)."""
    config = config or NotificationConfig()
    dispatchers: List[NotificationDispatcher] = [LoggingDispatcher()]
    if config.webhook_url:
        dispatchers.append(
            WebhookDispatcher(
                config.webhook_url,
                webhook_token=config.webhook_token,
                timeout=config.timeout,
                breaker=CircuitBreaker(
                    failure_threshold=config.failure_threshold,
                    reset_timeout=config.reset_timeout_seconds,
                ),
            )
        )
    return CompositeDispatcher(dispatchers)
