"""
Error taxonomy for the threat feed core.

Store failures propagate; rule and action failures are caught where they
occur and degrade to "did not match" / "not applied".
"""

from typing import List, Optional


class ThreatFeedError(Exception):
    """Base class for all threat feed errors."""


class StoreUnavailable(ThreatFeedError):
    """The record store could not complete a query or write."""


class RecordNotFound(ThreatFeedError):
    """An update addressed a record id the store does not hold."""

    def __init__(self, record_id):
        super().__init__(f"Record {record_id} not found")
        self.record_id = record_id


class CorrelationPersistenceError(StoreUnavailable):
    """
    Correlation edges or link sets could not be written after scoring.

    ``persisted`` holds the edges that were written before the failure, so
    callers can report the partial state.
    """

    def __init__(self, message: str, persisted: Optional[List] = None):
        super().__init__(message)
        self.persisted = persisted or []


class InvalidStatusTransition(ThreatFeedError):
    """A status change is not allowed by the record lifecycle."""


class ActionFailure(ThreatFeedError):
    """A pattern action could not be applied."""


class MalformedRegex(ThreatFeedError):
    """A rule carries a regular expression that does not compile."""
