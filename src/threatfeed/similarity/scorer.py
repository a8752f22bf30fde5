"""
Similarity scoring between two threat records.
"""

from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from ..core.config import SimilarityConfig
from ..feed.models import Attribution, Target, ThreatContext, ThreatRecord, Timeline, as_utc
from .primitives import set_similarity, string_similarity


class SimilarityScore(BaseModel):
    """Per-dimension similarity between two records, each in [0, 1]."""

    overall: float = Field(0.0, ge=0.0, le=1.0)
    indicators: float = Field(0.0, ge=0.0, le=1.0)
    targets: float = Field(0.0, ge=0.0, le=1.0)
    attribution: float = Field(0.0, ge=0.0, le=1.0)
    temporal: float = Field(0.0, ge=0.0, le=1.0)
    content: float = Field(0.0, ge=0.0, le=1.0)


class SimilarityScorer:
    """
    Scores how alike two threat records are.

    The overall score is a weighted sum of five dimensions:
    - Indicators (25%)
    - Targets (25%)
    - Attribution (20%)
    - Temporal proximity (15%)
    - Content (15%)

    The weights are configuration defaults, not fitted values.
    """

    # Neutral attribution score when neither record names an actor/campaign
    NEUTRAL_ATTRIBUTION = 0.5

    def __init__(self, config: Optional[SimilarityConfig] = None):
        config = config or SimilarityConfig()
        self.weights: Dict[str, float] = {
            "indicators": config.indicators_weight,
            "targets": config.targets_weight,
            "attribution": config.attribution_weight,
            "temporal": config.temporal_weight,
            "content": config.content_weight,
        }
        self.temporal_window_seconds = config.temporal_window_days * 24 * 60 * 60

    def score(self, a: ThreatRecord, b: ThreatRecord) -> SimilarityScore:
        """
        Compute the similarity between two records.

        Args:
            a: First record (may be an uninserted candidate)
            b: Second record

        Returns:
            Per-dimension and overall similarity
        """
        indicators = self._calculate_indicator_similarity(a, b)
        targets = self._calculate_target_similarity(a.target, b.target)
        attribution = self._calculate_attribution_similarity(a.attribution, b.attribution)
        temporal = self._calculate_temporal_similarity(a.timeline, b.timeline)
        content = self._calculate_content_similarity(a.context, b.context)

        overall = (
            indicators * self.weights["indicators"]
            + targets * self.weights["targets"]
            + attribution * self.weights["attribution"]
            + temporal * self.weights["temporal"]
            + content * self.weights["content"]
        )

        return SimilarityScore(
            overall=min(max(overall, 0.0), 1.0),
            indicators=indicators,
            targets=targets,
            attribution=attribution,
            temporal=temporal,
            content=content,
        )

    def _calculate_indicator_similarity(self, a: ThreatRecord, b: ThreatRecord) -> float:
        return set_similarity(
            {i.key for i in a.indicators},
            {i.key for i in b.indicators},
        )

    def _calculate_target_similarity(self, a: Target, b: Target) -> float:
        if a.type == b.type and a.value == b.value:
            return 1.0

        score = 0.0
        if a.type == b.type:
            score += 0.3
        if a.network and b.network and a.network == b.network:
            score += 0.2
        score += 0.5 * string_similarity(a.value, b.value)
        return min(score, 1.0)

    def _calculate_attribution_similarity(
        self, a: Optional[Attribution], b: Optional[Attribution]
    ) -> float:
        a = a or Attribution()
        b = b or Attribution()

        factors: List[float] = []
        for name in ("actor", "campaign", "malware_family"):
            va = getattr(a, name)
            vb = getattr(b, name)
            if not va and not vb:
                continue
            if not va or not vb:
                factors.append(0.0)
            elif va == vb:
                factors.append(1.0)
            else:
                factors.append(string_similarity(va, vb))

        if a.techniques or b.techniques:
            if a.techniques and b.techniques:
                factors.append(set_similarity(a.techniques, b.techniques))
            else:
                factors.append(0.0)

        if not factors:
            # no attribution on either side is not evidence against a match
            return self.NEUTRAL_ATTRIBUTION
        return sum(factors) / len(factors)

    def _calculate_temporal_similarity(self, a: Timeline, b: Timeline) -> float:
        delta = abs((as_utc(a.first_seen) - as_utc(b.first_seen)).total_seconds())
        return max(0.0, 1.0 - delta / self.temporal_window_seconds)

    def _calculate_content_similarity(self, a: ThreatContext, b: ThreatContext) -> float:
        title = string_similarity(a.title, b.title)
        description = string_similarity(a.description, b.description)
        tags = set_similarity(a.tags, b.tags)
        return min(0.4 * title + 0.4 * description + 0.2 * tags, 1.0)


def similarity_reason(score: SimilarityScore) -> str:
    """Summarize which dimensions drove a high similarity score."""
    reasons = []
    if score.indicators > 0.7:
        reasons.append("similar indicators")
    if score.targets > 0.7:
        reasons.append("same target")
    if score.attribution > 0.7:
        reasons.append("same attribution")
    if score.temporal > 0.8:
        reasons.append("similar timeframe")
    if score.content > 0.7:
        reasons.append("similar content")
    return ", ".join(reasons) if reasons else "high overall similarity"


def common_indicators(a: ThreatRecord, b: ThreatRecord) -> List[str]:
    """Indicator values present in both records, in ``a``'s order."""
    values_b = {i.value for i in b.indicators}
    seen = set()
    common = []
    for indicator in a.indicators:
        if indicator.value in values_b and indicator.value not in seen:
            seen.add(indicator.value)
            common.append(indicator.value)
    return common
