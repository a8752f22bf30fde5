"""
Duplicate detection for incoming threat reports.

Exact lookup by content hash or external threat id first, then fuzzy comparison against a bounded
candidate set. Store failures abort the check: a report whose duplicate
state cannot be verified must not be ingested silently.
"""

import hashlib
import json
import logging
from typing import List, Optional

from pydantic import BaseModel

from ..core.config import DedupConfig
from ..core.errors import StoreUnavailable
from ..feed.filters import And, AnyOf, Eq, Filter, Ne, Or, Regex, escape_regex
from ..feed.models import ThreatRecord, ThreatStatus
from ..feed.store import RecordStore
from ..similarity.scorer import SimilarityScore, SimilarityScorer, similarity_reason

logger = logging.getLogger(__name__)


def compute_threat_hash(record: ThreatRecord) -> str:
    """
    Content hash used for exact duplicate detection.

    Covers type, target, indicator (type, value) pairs and the normalized
    title. Ids, timestamps, confidence and source do not contribute.
    """
    payload = {
        "type": record.type.value,
        "target": {
            "type": record.target.type,
            "value": record.target.value,
            "network": record.target.network,
        },
        "indicators": [[i.type, i.value] for i in record.indicators],
        "title": record.context.title.lower().strip(),
    }
    encoded = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


def generate_threat_id(record: ThreatRecord) -> str:
    """Derive a stable external id from source, type, target and first sighting."""
    first_seen_ms = int(record.timeline.first_seen.timestamp() * 1000)
    data = f"{record.source.id}:{record.type.value}:{record.target.value}:{first_seen_ms}"
    return hashlib.sha256(data.encode("utf-8")).hexdigest()[:16]


class DeduplicationResult(BaseModel):
    """Outcome of a duplicate check."""

    is_duplicate: bool
    original_id: Optional[int] = None
    similarity_score: float = 0.0
    reason: str
    similarity: Optional[SimilarityScore] = None


class DuplicateDetector:
    """
    Screens candidate records against the feed before insertion.
    """

    def __init__(
        self,
        store: RecordStore,
        scorer: Optional[SimilarityScorer] = None,
        config: Optional[DedupConfig] = None,
    ):
        """
        Initialize the detector.

        Args:
            store: Threat record store
            scorer: Similarity scorer (default weights if omitted)
            config: Thresholds and candidate bounds
        """
        self.store = store
        self.scorer = scorer or SimilarityScorer()
        self.config = config or DedupConfig()

    def check(self, candidate: ThreatRecord) -> DeduplicationResult:
        """
        Check whether ``candidate`` duplicates a record already in the feed.

        Raises:
            StoreUnavailable: if the store cannot be queried
        """
        threat_hash = candidate.hash or compute_threat_hash(candidate)

        try:
            exact = self.store.find_by_filter(self._exact_filter(candidate, threat_hash), limit=1)
            if exact:
                reason = "exact hash match" if exact[0].get("hash") == threat_hash else "threat id match"
                logger.info(
                    f"Exact duplicate of record {exact[0]['id']} for "
                    f"{candidate.threat_id or threat_hash[:16]} ({reason})"
                )
                return DeduplicationResult(
                    is_duplicate=True,
                    original_id=exact[0]["id"],
                    similarity_score=1.0,
                    reason=reason,
                )

            candidates = self.find_candidates(candidate)
        except StoreUnavailable as e:
            logger.error(f"Duplicate check aborted, store unavailable: {e}")
            raise

        for doc in candidates:
            existing = ThreatRecord.from_dict(doc)
            similarity = self.scorer.score(candidate, existing)
            if similarity.overall >= self.config.duplicate_threshold:
                logger.info(
                    f"Fuzzy duplicate of record {existing.id} "
                    f"(overall={similarity.overall:.3f})"
                )
                return DeduplicationResult(
                    is_duplicate=True,
                    original_id=existing.id,
                    similarity_score=similarity.overall,
                    reason=similarity_reason(similarity),
                    similarity=similarity,
                )

        return DeduplicationResult(
            is_duplicate=False,
            similarity_score=0.0,
            reason="no duplicates found",
        )

    def find_candidates(self, candidate: ThreatRecord) -> List[dict]:
        """
        Fetch the bounded set of active records worth a fuzzy comparison.

        A record qualifies when it shares target and type, its title contains
        the candidate's title, or it shares one of the leading indicator
        values.
        """
        alternatives: List[Filter] = [
            And(
                Eq("target.value", candidate.target.value),
                Eq("type", candidate.type.value),
            )
        ]

        title = candidate.context.title.strip()
        if title:
            alternatives.append(Regex("context.title", escape_regex(title)))

        probe = [i.value for i in candidate.indicators[: self.config.indicator_probe_count]]
        if probe:
            alternatives.append(AnyOf("indicators.value", probe))

        clauses: List[Filter] = [Eq("status", ThreatStatus.ACTIVE.value), Or(*alternatives)]
        if candidate.id is not None:
            clauses.append(Ne("id", candidate.id))

        return self.store.find_by_filter(And(*clauses), limit=self.config.candidate_limit)

    @staticmethod
    def _exact_filter(candidate: ThreatRecord, threat_hash: str) -> Filter:
        flt: Filter = Eq("hash", threat_hash)
        if candidate.threat_id:
            flt = Or(flt, Eq("threat_id", candidate.threat_id))
        if candidate.id is not None:
            return And(flt, Ne("id", candidate.id))
        return flt
