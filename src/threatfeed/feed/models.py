"""
Threat feed data models: threat records and correlation edges.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class ThreatType(str, Enum):
    """Kinds of threat a record can describe."""

    SCAM = "scam"
    PHISHING = "phishing"
    RUGPULL = "rugpull"
    HONEYPOT = "honeypot"
    EXPLOIT = "exploit"
    MALWARE = "malware"
    DRAINER = "drainer"
    PUMP_DUMP = "pump_dump"
    FAKE_TOKEN = "fake_token"
    IMPERSONATION = "impersonation"
    RANSOMWARE = "ransomware"
    MIXER = "mixer"
    SANCTIONED = "sanctioned"
    FRAUD = "fraud"
    SPAM = "spam"
    BOTNET = "botnet"


class ThreatCategory(str, Enum):
    """Broad category a threat belongs to."""

    FINANCIAL = "financial"
    IDENTITY_THEFT = "identity_theft"
    DATA_BREACH = "data_breach"
    INFRASTRUCTURE = "infrastructure"
    SOCIAL_ENGINEERING = "social_engineering"
    TECHNICAL = "technical"
    COMPLIANCE = "compliance"


class Severity(str, Enum):
    """Ordered severity levels (info < low < medium < high < critical)."""

    INFO = "info"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return SEVERITY_ORDER.index(self)

    def is_higher_than(self, other: "Severity") -> bool:
        return self.rank > Severity(other).rank


def as_utc(value: datetime) -> datetime:
    """Normalize a datetime to aware UTC; naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


SEVERITY_ORDER: List[Severity] = [
    Severity.INFO,
    Severity.LOW,
    Severity.MEDIUM,
    Severity.HIGH,
    Severity.CRITICAL,
]


class ThreatStatus(str, Enum):
    """Lifecycle status of a threat record."""

    ACTIVE = "active"
    RESOLVED = "resolved"
    FALSE_POSITIVE = "false_positive"
    DISPUTED = "disputed"

    def can_transition_to(self, new_status: "ThreatStatus") -> bool:
        return ThreatStatus(new_status) in STATUS_TRANSITIONS[self]


# resolved and false_positive are terminal; re-activation happens outside this core
STATUS_TRANSITIONS: Dict[ThreatStatus, set] = {
    ThreatStatus.ACTIVE: {
        ThreatStatus.RESOLVED,
        ThreatStatus.FALSE_POSITIVE,
        ThreatStatus.DISPUTED,
    },
    ThreatStatus.DISPUTED: {
        ThreatStatus.ACTIVE,
        ThreatStatus.RESOLVED,
        ThreatStatus.FALSE_POSITIVE,
    },
    ThreatStatus.RESOLVED: set(),
    ThreatStatus.FALSE_POSITIVE: set(),
}


class Target(BaseModel):
    """The entity under threat (URL, wallet, contract, ...)."""

    type: str = Field(..., description="wallet, contract, url, ip, domain, email, token, other")
    value: str
    network: Optional[str] = Field(None, description="Chain name for on-chain targets")


class Indicator(BaseModel):
    """Indicator of compromise attached to a report."""

    type: str = Field(..., description="hash, ip, domain, url, email, wallet, contract, signature")
    value: str
    context: Optional[str] = None

    @property
    def key(self) -> str:
        return f"{self.type}:{self.value}"


class Attribution(BaseModel):
    """Who is behind a threat, when known."""

    actor: Optional[str] = None
    campaign: Optional[str] = None
    malware_family: Optional[str] = None
    techniques: Optional[List[str]] = None


class ThreatContext(BaseModel):
    """Human-readable description of a report."""

    title: str
    description: str = ""
    tags: List[str] = Field(default_factory=list)
    references: List[str] = Field(default_factory=list)


class Timeline(BaseModel):
    """When the threat was observed."""

    first_seen: datetime = Field(default_factory=datetime.utcnow)
    last_seen: datetime = Field(default_factory=datetime.utcnow)


class ThreatSource(BaseModel):
    """Where a report came from."""

    id: str
    type: str = Field("community", description="community, external_api, on_chain, manual, ai_detected, honeypot")
    name: Optional[str] = None
    reliability: int = Field(50, ge=0, le=100)


class ThreatRecord(BaseModel):
    """
    A single unit of threat intelligence in the feed.

    ``id`` is the store-assigned id and is ``None`` until the record is
    inserted; ``threat_id`` is the stable external id and ``hash`` the content
    hash used for exact duplicate detection.
    """

    id: Optional[int] = None
    threat_id: str = ""
    hash: str = ""

    type: ThreatType
    category: Optional[ThreatCategory] = None
    severity: Severity = Severity.MEDIUM
    confidence: int = Field(50, ge=0, le=100)
    status: ThreatStatus = ThreatStatus.ACTIVE

    target: Target
    indicators: List[Indicator] = Field(default_factory=list)
    attribution: Optional[Attribution] = None
    context: ThreatContext
    timeline: Timeline = Field(default_factory=Timeline)
    source: ThreatSource

    correlated_threats: List[int] = Field(default_factory=list)

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        json_schema_extra = {
            "example": {
                "threat_id": "3f1c9a0b2d4e5f60",
                "type": "phishing",
                "category": "identity_theft",
                "severity": "medium",
                "confidence": 70,
                "target": {"type": "url", "value": "paypal-verify.tk"},
                "indicators": [{"type": "domain", "value": "paypal-verify.tk"}],
                "context": {
                    "title": "Verify your account",
                    "description": "Credential harvesting page",
                    "tags": ["paypal"],
                },
                "source": {"id": "reporter-42", "type": "community", "reliability": 60},
            }
        }

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-safe document for storage (without the store id)."""
        return self.model_dump(mode="json", exclude={"id"})

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ThreatRecord":
        """Create a record from a stored document."""
        return cls(**data)


class CorrelationType(str, Enum):
    """Relationship between two correlated records."""

    DUPLICATE = "duplicate"
    CAMPAIGN = "campaign"
    ATTRIBUTION = "attribution"
    TARGET_OVERLAP = "target_overlap"
    RELATED = "related"


class CorrelationStatus(str, Enum):
    ACTIVE = "active"
    DISPUTED = "disputed"
    CONFIRMED = "confirmed"


class CorrelationEvidence(BaseModel):
    """Why two records were linked."""

    common_indicators: List[str] = Field(default_factory=list)
    timeline_similarity: float = 0.0
    attribution_similarity: float = 0.0
    target_similarity: float = 0.0


class ThreatCorrelation(BaseModel):
    """
    An edge between two threat records.

    Edges are append-only: re-analysis adds new edges instead of rewriting
    existing ones.
    """

    id: Optional[int] = None
    parent_threat_id: int
    child_threat_id: int
    correlation_type: CorrelationType
    confidence: float = Field(..., ge=0.0, le=1.0)
    evidence: CorrelationEvidence = Field(default_factory=CorrelationEvidence)
    status: CorrelationStatus = CorrelationStatus.ACTIVE
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude={"id"})

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ThreatCorrelation":
        return cls(**data)
