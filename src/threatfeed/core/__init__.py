"""
Shared configuration and error types.
"""

from .config import AppConfig, get_config, reload_config
from .errors import (
    ActionFailure,
    CorrelationPersistenceError,
    InvalidStatusTransition,
    MalformedRegex,
    RecordNotFound,
    StoreUnavailable,
    ThreatFeedError,
)

__all__ = [
    "AppConfig",
    "get_config",
    "reload_config",
    "ThreatFeedError",
    "StoreUnavailable",
    "RecordNotFound",
    "CorrelationPersistenceError",
    "InvalidStatusTransition",
    "ActionFailure",
    "MalformedRegex",
]
