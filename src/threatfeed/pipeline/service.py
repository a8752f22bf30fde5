"""
Threat feed ingestion service.

Runs each incoming report through the duplicate gate, then links it into the
correlation graph and evaluates it against the active patterns.
"""

import logging
import os
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Union

from pydantic import BaseModel, Field

from ..core.config import AppConfig, get_config
from ..core.errors import (
    CorrelationPersistenceError,
    InvalidStatusTransition,
    RecordNotFound,
    StoreUnavailable,
)
from ..correlation.builder import CorrelationGraphBuilder
from ..dedup.detector import (
    DeduplicationResult,
    DuplicateDetector,
    compute_threat_hash,
    generate_threat_id,
)
from ..feed.models import ThreatCorrelation, ThreatRecord, ThreatStatus, as_utc
from ..feed.sqlite_store import SQLiteRecordStore
from ..feed.store import RecordStore
from ..notifications.dispatcher import NotificationDispatcher, build_dispatcher
from ..patterns.actions import PatternActionExecutor
from ..patterns.engine import PatternEngine
from ..patterns.models import PatternMatch
from ..similarity.scorer import SimilarityScorer

logger = logging.getLogger(__name__)


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging; defaults to the LOG_LEVEL environment variable."""
    logging.basicConfig(
        level=level or os.getenv("LOG_LEVEL", "INFO"),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


class IngestResult(BaseModel):
    """Outcome of ingesting or re-analyzing one record."""

    accepted: bool
    record_id: Optional[int] = None
    threat_id: str = ""
    duplicate: Optional[DeduplicationResult] = None
    correlations: List[ThreatCorrelation] = Field(default_factory=list)
    pattern_matches: List[PatternMatch] = Field(default_factory=list)
    correlation_error: Optional[str] = None


class ThreatFeedService:
    """
    Orchestrates ingestion into the threat feed.

    For each candidate:
    1. Assign threat id and content hash
    2. Reject duplicates (refreshing the original's last sighting)
    3. Insert the record
    4. Run a correlation pass
    5. Run a pattern pass
    6. Emit a ``threat_added`` notification
    """

    def __init__(
        self,
        store: RecordStore,
        edge_store: RecordStore,
        pattern_store: RecordStore,
        dispatcher: Optional[NotificationDispatcher] = None,
        config: Optional[AppConfig] = None,
    ):
        """
        Initialize the service.

        Args:
            store: Threat record store
            edge_store: Correlation edge store
            pattern_store: Pattern store
            dispatcher: Notification dispatcher (built from config if omitted)
            config: Application configuration (global config if omitted)
        """
        self.config = config or get_config()
        self.store = store
        self.dispatcher = dispatcher or build_dispatcher(self.config.notifications)

        scorer = SimilarityScorer(self.config.similarity)
        self.detector = DuplicateDetector(store, scorer, self.config.dedup)
        self.correlator = CorrelationGraphBuilder(store, edge_store, scorer, self.config.correlation)
        self.executor = PatternActionExecutor(
            store,
            correlator=self.correlator,
            dispatcher=self.dispatcher,
            config=self.config.patterns,
        )
        self.engine = PatternEngine(pattern_store, self.executor)

    @classmethod
    def from_config(cls, config: Optional[AppConfig] = None) -> "ThreatFeedService":
        """Build a service over SQLite stores at the configured path."""
        config = config or get_config()
        db_path = config.store.db_path
        return cls(
            SQLiteRecordStore.for_threats(db_path),
            SQLiteRecordStore.for_correlations(db_path),
            SQLiteRecordStore.for_patterns(db_path),
            config=config,
        )

    def initialize(self) -> None:
        """Seed default patterns and load the configured pattern file."""
        if self.config.patterns.load_defaults:
            self.engine.initialize_default_patterns()
        if self.config.patterns.patterns_file:
            self.engine.load_patterns_from_file(Path(self.config.patterns.patterns_file))

    def ingest(self, candidate: ThreatRecord) -> IngestResult:
        """
        Ingest a new report.

        Raises:
            StoreUnavailable: if the duplicate check, the insert or
                correlation candidate retrieval fails
        """
        record = candidate.model_copy(deep=True)
        record.id = None
        record.correlated_threats = []
        if not record.threat_id:
            record.threat_id = generate_threat_id(record)
        record.hash = compute_threat_hash(record)

        dedup = self.detector.check(record)
        if dedup.is_duplicate:
            logger.info(
                f"Rejected {record.threat_id} as duplicate of record {dedup.original_id}: {dedup.reason}"
            )
            self._refresh_sighting(dedup.original_id, record)
            return IngestResult(
                accepted=False,
                record_id=dedup.original_id,
                threat_id=record.threat_id,
                duplicate=dedup,
            )

        now = datetime.utcnow()
        record.created_at = now
        record.updated_at = now
        record.id = self.store.insert(record.to_dict())
        logger.info(f"Ingested {record.type.value} threat {record.threat_id} as record {record.id}")

        result = self._analyze(record)
        result.duplicate = dedup

        self.dispatcher.notify(
            "threat_added",
            {
                "record_id": record.id,
                "threat_id": record.threat_id,
                "type": record.type.value,
                "severity": record.severity.value,
                "target": record.target.value,
                "correlations": len(result.correlations),
                "patterns": [m.pattern_id for m in result.pattern_matches],
            },
        )
        return result

    def reanalyze(self, record_id: int) -> IngestResult:
        """
        Re-run correlation and pattern passes on a stored record.

        Raises:
            RecordNotFound: if no record has this id
        """
        doc = self.store.find_by_id(record_id)
        if doc is None:
            raise RecordNotFound(record_id)
        return self._analyze(ThreatRecord.from_dict(doc))

    def transition_status(
        self, record_id: int, new_status: Union[ThreatStatus, str]
    ) -> ThreatRecord:
        """
        Administrative status change.

        Raises:
            RecordNotFound: if no record has this id
            InvalidStatusTransition: if the lifecycle forbids the change
        """
        doc = self.store.find_by_id(record_id)
        if doc is None:
            raise RecordNotFound(record_id)

        record = ThreatRecord.from_dict(doc)
        new_status = ThreatStatus(new_status)
        if not record.status.can_transition_to(new_status):
            raise InvalidStatusTransition(
                f"Record {record_id} cannot move from {record.status.value} to {new_status.value}"
            )

        now = datetime.utcnow()
        self.store.update_fields(record_id, {"status": new_status.value, "updated_at": now})
        logger.info(f"Record {record_id} status {record.status.value} -> {new_status.value}")
        record.status = new_status
        record.updated_at = now
        return record

    def _analyze(self, record: ThreatRecord) -> IngestResult:
        result = IngestResult(accepted=True, record_id=record.id, threat_id=record.threat_id)

        try:
            result.correlations = self.correlator.analyze(record)
        except CorrelationPersistenceError as e:
            logger.error(f"Correlation pass for record {record.id} incomplete: {e}")
            result.correlations = e.persisted
            result.correlation_error = str(e)

        result.pattern_matches = self.engine.apply(record)
        return result

    def _refresh_sighting(self, original_id: int, candidate: ThreatRecord) -> None:
        try:
            doc = self.store.find_by_id(original_id)
            if doc is None:
                return
            original = ThreatRecord.from_dict(doc)
            if as_utc(candidate.timeline.last_seen) > as_utc(original.timeline.last_seen):
                self.store.update_fields(
                    original_id,
                    {
                        "timeline.last_seen": candidate.timeline.last_seen,
                        "updated_at": datetime.utcnow(),
                    },
                )
        except StoreUnavailable as e:
            logger.warning(f"Could not refresh last sighting of record {original_id}: {e}")
