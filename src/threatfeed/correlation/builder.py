"""
Correlation graph builder.

Links a stored threat record to related active records. Each accepted pair
produces one append-only ThreatCorrelation edge and two idempotent set-union
writes on the endpoints' ``correlated_threats``.
"""

import logging
from typing import Any, List, Optional

from ..core.config import CorrelationConfig
from ..core.errors import CorrelationPersistenceError, RecordNotFound, StoreUnavailable
from ..feed.filters import And, AnyOf, Eq, Filter, IsEmpty, Ne, Or, raw_value_at
from ..feed.models import (
    CorrelationEvidence,
    CorrelationType,
    ThreatCorrelation,
    ThreatRecord,
    ThreatStatus,
)
from ..feed.store import RecordStore
from ..similarity.scorer import SimilarityScore, SimilarityScorer, common_indicators

logger = logging.getLogger(__name__)


class CorrelationGraphBuilder:
    """
    Discovers and persists correlations between threat records.

    Candidates are scored in id order; the first ``max_correlations`` that
    reach the correlation threshold are accepted and the rest are not scored.
    """

    def __init__(
        self,
        store: RecordStore,
        edge_store: RecordStore,
        scorer: Optional[SimilarityScorer] = None,
        config: Optional[CorrelationConfig] = None,
    ):
        """
        Initialize the builder.

        Args:
            store: Threat record store
            edge_store: Correlation edge store
            scorer: Similarity scorer (default weights if omitted)
            config: Thresholds and bounds
        """
        self.store = store
        self.edge_store = edge_store
        self.scorer = scorer or SimilarityScorer()
        self.config = config or CorrelationConfig()

    def find_candidates(
        self, record: ThreatRecord, search_field: Optional[str] = None
    ) -> List[ThreatRecord]:
        """
        Fetch active records that may correlate with ``record``.

        Args:
            record: A stored record
            search_field: Restrict candidates to records sharing the value at
                this dotted path (used by ``correlate`` pattern actions)

        Raises:
            StoreUnavailable: if the store cannot be queried
        """
        if search_field:
            focus = self._focused_filter(record, search_field)
            if focus is None:
                logger.debug(f"Record {record.id} has no value at {search_field}")
                return []
        else:
            focus = self._broad_filter(record)

        flt = And(
            Eq("status", ThreatStatus.ACTIVE.value),
            Ne("id", record.id),
            focus,
        )
        docs = self.store.find_by_filter(flt, limit=self.config.candidate_limit)
        docs.sort(key=lambda d: d["id"])
        return [ThreatRecord.from_dict(doc) for doc in docs]

    def analyze(
        self, record: ThreatRecord, search_field: Optional[str] = None
    ) -> List[ThreatCorrelation]:
        """
        Run one correlation pass for a stored record.

        Returns:
            The edges created by this pass. Pairs already linked with the same
            correlation type do not produce a second edge.

        Raises:
            StoreUnavailable: if candidate retrieval fails
            CorrelationPersistenceError: if edges or links cannot be written
        """
        if record.id is None:
            raise ValueError("Correlation analysis requires a stored record")

        candidates = self.find_candidates(record, search_field)

        accepted = []
        for candidate in candidates:
            try:
                similarity = self.scorer.score(record, candidate)
            except Exception as e:
                logger.error(
                    f"Failed to score record {record.id} against {candidate.id}: {e}",
                    exc_info=True,
                )
                continue

            if similarity.overall < self.config.correlation_threshold:
                continue

            accepted.append(self._build_edge(record, candidate, similarity))
            if len(accepted) >= self.config.max_correlations:
                logger.info(
                    f"Correlation cap of {self.config.max_correlations} reached for record {record.id}"
                )
                break

        created = self._persist(record, accepted)
        logger.info(
            f"Found {len(accepted)} correlations for record {record.id} "
            f"({len(created)} new edges)"
        )
        return created

    def classify(
        self, a: ThreatRecord, b: ThreatRecord, similarity: SimilarityScore
    ) -> CorrelationType:
        """Pick the relationship type for an accepted pair, highest priority first."""
        if similarity.overall >= self.config.duplicate_edge_threshold:
            return CorrelationType.DUPLICATE

        attr_a = a.attribution
        attr_b = b.attribution
        if attr_a and attr_b:
            if attr_a.campaign and attr_a.campaign == attr_b.campaign:
                return CorrelationType.CAMPAIGN
            if attr_a.actor and attr_a.actor == attr_b.actor:
                return CorrelationType.ATTRIBUTION

        if similarity.targets >= self.config.target_overlap_threshold:
            return CorrelationType.TARGET_OVERLAP
        return CorrelationType.RELATED

    def bulk_analyze(self, batch_size: Optional[int] = None) -> int:
        """
        Correlate active records that have no links yet.

        Persistence failures for one record are logged and the batch moves on.

        Returns:
            Number of edges created
        """
        limit = batch_size or self.config.bulk_batch_size
        docs = self.store.find_by_filter(
            And(Eq("status", ThreatStatus.ACTIVE.value), IsEmpty("correlated_threats")),
            limit=limit,
        )

        total = 0
        for doc in docs:
            record = ThreatRecord.from_dict(doc)
            try:
                total += len(self.analyze(record))
            except CorrelationPersistenceError as e:
                logger.error(f"Bulk correlation of record {record.id} incomplete: {e}")
                total += len(e.persisted)

        logger.info(f"Bulk correlation processed {len(docs)} records, created {total} edges")
        return total

    def _broad_filter(self, record: ThreatRecord) -> Filter:
        alternatives: List[Filter] = [Eq("target.value", record.target.value)]

        values = [i.value for i in record.indicators]
        if values:
            alternatives.append(AnyOf("indicators.value", values))

        if record.attribution:
            if record.attribution.actor:
                alternatives.append(Eq("attribution.actor", record.attribution.actor))
            if record.attribution.campaign:
                alternatives.append(Eq("attribution.campaign", record.attribution.campaign))

        if record.context.tags:
            alternatives.append(AnyOf("context.tags", record.context.tags))

        if record.category is not None:
            alternatives.append(
                And(
                    Eq("source.type", record.source.type),
                    Eq("category", record.category.value),
                )
            )

        return Or(*alternatives)

    @staticmethod
    def _focused_filter(record: ThreatRecord, search_field: str) -> Optional[Filter]:
        value: Any = raw_value_at(record.model_dump(mode="json"), search_field)
        if value is None or value == "" or value == []:
            return None
        if isinstance(value, list):
            return AnyOf(search_field, value)
        return Eq(search_field, value)

    def _build_edge(
        self, record: ThreatRecord, candidate: ThreatRecord, similarity: SimilarityScore
    ) -> ThreatCorrelation:
        return ThreatCorrelation(
            parent_threat_id=record.id,
            child_threat_id=candidate.id,
            correlation_type=self.classify(record, candidate, similarity),
            confidence=similarity.overall,
            evidence=CorrelationEvidence(
                common_indicators=common_indicators(record, candidate),
                timeline_similarity=similarity.temporal,
                attribution_similarity=similarity.attribution,
                target_similarity=similarity.targets,
            ),
        )

    def _edge_exists(self, edge: ThreatCorrelation) -> bool:
        a, b = edge.parent_threat_id, edge.child_threat_id
        flt = And(
            Eq("correlation_type", edge.correlation_type.value),
            Or(
                And(Eq("parent_threat_id", a), Eq("child_threat_id", b)),
                And(Eq("parent_threat_id", b), Eq("child_threat_id", a)),
            ),
        )
        return bool(self.edge_store.find_by_filter(flt, limit=1))

    def _persist(
        self, record: ThreatRecord, edges: List[ThreatCorrelation]
    ) -> List[ThreatCorrelation]:
        created: List[ThreatCorrelation] = []
        try:
            for edge in edges:
                if not self._edge_exists(edge):
                    edge.id = self.edge_store.insert(edge.to_dict())
                    created.append(edge)

                # existing edges still get their links re-applied
                self.store.add_to_set(edge.parent_threat_id, "correlated_threats", edge.child_threat_id)
                self.store.add_to_set(edge.child_threat_id, "correlated_threats", edge.parent_threat_id)
                if edge.child_threat_id not in record.correlated_threats:
                    record.correlated_threats.append(edge.child_threat_id)
        except (StoreUnavailable, RecordNotFound) as e:
            logger.error(
                f"Failed to persist correlations for record {record.id} "
                f"after {len(created)} edges: {e}"
            )
            raise CorrelationPersistenceError(
                f"Correlation persistence failed for record {record.id}: {e}",
                persisted=created,
            ) from e
        return created
