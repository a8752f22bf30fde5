"""
Pattern rule data models: rules, actions, statistics and match results.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from ..feed.models import ThreatCategory


class PatternOperator(str, Enum):
    """Comparison operators for pattern indicator rules."""

    EQUALS = "equals"
    CONTAINS = "contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    REGEX = "regex"


class PatternActionType(str, Enum):
    """Side effects a firing pattern can apply."""

    INCREASE_SEVERITY = "increase_severity"
    ADD_TAG = "add_tag"
    CORRELATE = "correlate"
    NOTIFY = "notify"
    AUTO_RESOLVE = "auto_resolve"


class PatternIndicator(BaseModel):
    """A weighted rule addressing one dotted field of a threat record."""

    field: str  # Dotted path into the record (e.g. "target.value")
    operator: PatternOperator
    value: str
    weight: float = Field(..., ge=0.0)


class PatternAction(BaseModel):
    """An action applied when the owning pattern fires."""

    type: PatternActionType
    parameters: Dict[str, Any] = Field(default_factory=dict)


class PatternStatistics(BaseModel):
    """Trigger counters; accuracy and false positives come from moderation feedback."""

    times_triggered: int = 0
    accuracy: float = 0.0
    false_positives: int = 0
    last_triggered: Optional[datetime] = None


class ThreatPattern(BaseModel):
    """
    A detection rule.

    The match score is matched weight over total weight, so weights need not
    sum to 1. A pattern fires when its score reaches ``threshold``.
    """

    id: Optional[int] = None
    pattern_id: str
    name: str
    description: str = ""
    category: Optional[ThreatCategory] = None
    indicators: List[PatternIndicator] = Field(default_factory=list)
    threshold: float = Field(..., ge=0.0, le=1.0)
    actions: List[PatternAction] = Field(default_factory=list)
    is_active: bool = True
    statistics: PatternStatistics = Field(default_factory=PatternStatistics)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        json_schema_extra = {
            "example": {
                "pattern_id": "phishing_url_pattern",
                "name": "Phishing URL Detection",
                "indicators": [
                    {
                        "field": "target.value",
                        "operator": "regex",
                        "value": "(paypal|login|verify)",
                        "weight": 0.4,
                    },
                    {
                        "field": "context.title",
                        "operator": "contains",
                        "value": "verify",
                        "weight": 0.3,
                    },
                ],
                "threshold": 0.7,
                "actions": [
                    {"type": "add_tag", "parameters": {"tag": "phishing_suspected"}},
                ],
            }
        }

    @field_validator("pattern_id")
    @classmethod
    def validate_pattern_id(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("pattern_id must not be empty")
        return v

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude={"id"})

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ThreatPattern":
        return cls(**data)


class TriggeredRule(BaseModel):
    """An indicator rule that matched, with the value it matched against."""

    field: str
    operator: PatternOperator
    value: str
    weight: float
    actual_value: Any = None


class AppliedAction(BaseModel):
    """Outcome of one action of a fired pattern."""

    type: PatternActionType
    parameters: Dict[str, Any] = Field(default_factory=dict)
    applied: bool = False
    error: Optional[str] = None


class PatternMatch(BaseModel):
    """Result of evaluating one pattern against one record. Not persisted."""

    pattern_id: str
    pattern_name: str
    score: float = 0.0
    triggered_rules: List[TriggeredRule] = Field(default_factory=list)
    actions: List[AppliedAction] = Field(default_factory=list)
