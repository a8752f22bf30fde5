"""
Threat feed records, correlation edges and the record stores behind them.
"""

from .filters import And, AnyOf, Eq, IsEmpty, Ne, Or, Regex
from .models import (
    Attribution,
    CorrelationEvidence,
    CorrelationType,
    Indicator,
    Severity,
    Target,
    ThreatContext,
    ThreatCorrelation,
    ThreatRecord,
    ThreatSource,
    ThreatStatus,
    ThreatType,
    Timeline,
)
from .sqlite_store import SQLiteRecordStore
from .store import InMemoryRecordStore, RecordStore

__all__ = [
    "And",
    "AnyOf",
    "Eq",
    "IsEmpty",
    "Ne",
    "Or",
    "Regex",
    "Attribution",
    "CorrelationEvidence",
    "CorrelationType",
    "Indicator",
    "Severity",
    "Target",
    "ThreatContext",
    "ThreatCorrelation",
    "ThreatRecord",
    "ThreatSource",
    "ThreatStatus",
    "ThreatType",
    "Timeline",
    "InMemoryRecordStore",
    "RecordStore",
    "SQLiteRecordStore",
]
