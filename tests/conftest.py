"""
Shared fixtures for the threat feed test suite.
"""

from datetime import datetime
from typing import Any, Dict, List, Tuple

import pytest

from threatfeed.core.config import AppConfig
from threatfeed.feed.models import ThreatRecord
from threatfeed.feed.store import InMemoryRecordStore, RecordStore
from threatfeed.notifications.dispatcher import NotificationDispatcher

BASE_TIME = datetime(2025, 1, 15, 10, 30)


def make_record(**overrides) -> ThreatRecord:
    """A phishing report; keyword arguments replace top-level fields."""
    data: Dict[str, Any] = {
        "type": "phishing",
        "confidence": 70,
        "target": {"type": "url", "value": "paypal-verify.tk"},
        "indicators": [{"type": "domain", "value": "paypal-verify.tk"}],
        "context": {
            "title": "Verify your account",
            "description": "Credential harvesting page",
            "tags": ["paypal"],
        },
        "timeline": {"first_seen": BASE_TIME, "last_seen": BASE_TIME},
        "source": {"id": "reporter-1", "type": "community", "reliability": 60},
    }
    data.update(overrides)
    return ThreatRecord(**data)


def save(store: RecordStore, record: ThreatRecord) -> ThreatRecord:
    """Insert a record and return it with its store id."""
    record.id = store.insert(record.to_dict())
    return record


class RecordingDispatcher(NotificationDispatcher):
    """Keeps every event it is handed."""

    def __init__(self, fail: bool = False, deliver: bool = True):
        self.fail = fail
        self.deliver = deliver
        self.events: List[Tuple[str, Dict[str, Any]]] = []

    def notify(self, event: str, payload: Dict[str, Any]) -> bool:
        if self.fail:
            raise RuntimeError("dispatcher down")
        self.events.append((event, payload))
        return self.deliver


@pytest.fixture
def record_factory():
    return make_record


@pytest.fixture
def threat_store():
    return InMemoryRecordStore("threat_feed")


@pytest.fixture
def edge_store():
    return InMemoryRecordStore("threat_correlations")


@pytest.fixture
def pattern_store():
    return InMemoryRecordStore("threat_patterns")


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def app_config():
    return AppConfig()
