"""
Notification dispatchers for threat feed events.

Dispatchers are best-effort: ``notify`` never raises.
"""

from .breaker import CircuitBreaker, CircuitState
from .dispatcher import (
    CompositeDispatcher,
    LoggingDispatcher,
    NotificationDispatcher,
    WebhookDispatcher,
    build_dispatcher,
)

__all__ = [
    "CircuitBreaker",
    "CircuitState",
    "CompositeDispatcher",
    "LoggingDispatcher",
    "NotificationDispatcher",
    "WebhookDispatcher",
    "build_dispatcher",
]
