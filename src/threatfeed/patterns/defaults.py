"""
Built-in detection patterns seeded into the pattern store.
"""

from typing import List

from ..feed.models import ThreatCategory
from .models import PatternAction, PatternActionType, PatternIndicator, PatternOperator, ThreatPattern


def default_patterns() -> List[ThreatPattern]:
    """Return fresh copies of the shipped patterns."""
    return [
        ThreatPattern(
            pattern_id="phishing_url_pattern",
            name="Phishing URL Detection",
            description="Detects URLs with common phishing patterns",
            category=ThreatCategory.IDENTITY_THEFT,
            indicators=[
                PatternIndicator(
                    field="target.value",
                    operator=PatternOperator.REGEX,
                    value="(paypal|amazon|google|microsoft|apple|facebook|login|secure|verify|account)",
                    weight=0.4,
                ),
                PatternIndicator(
                    field="target.value",
                    operator=PatternOperator.REGEX,
                    value=r"\.(tk|ml|ga|cf|info|biz)",
                    weight=0.3,
                ),
                PatternIndicator(
                    field="context.title",
                    operator=PatternOperator.CONTAINS,
                    value="verify",
                    weight=0.3,
                ),
            ],
            threshold=0.7,
            actions=[
                PatternAction(
                    type=PatternActionType.INCREASE_SEVERITY,
                    parameters={"target_severity": "high"},
                ),
                PatternAction(
                    type=PatternActionType.ADD_TAG,
                    parameters={"tag": "phishing_suspected"},
                ),
            ],
        ),
        ThreatPattern(
            pattern_id="rugpull_token_pattern",
            name="Rugpull Token Detection",
            description="Detects potential rugpull tokens based on behavior patterns",
            category=ThreatCategory.FINANCIAL,
            indicators=[
                PatternIndicator(field="type", operator=PatternOperator.EQUALS, value="rugpull", weight=0.5),
                PatternIndicator(field="target.type", operator=PatternOperator.EQUALS, value="contract", weight=0.3),
                PatternIndicator(
                    field="confidence",
                    operator=PatternOperator.REGEX,
                    value="^([8-9][0-9]|100)$",
                    weight=0.2,
                ),
            ],
            threshold=0.8,
            actions=[
                PatternAction(
                    type=PatternActionType.INCREASE_SEVERITY,
                    parameters={"target_severity": "critical"},
                ),
                PatternAction(type=PatternActionType.ADD_TAG, parameters={"tag": "rugpull_confirmed"}),
                PatternAction(
                    type=PatternActionType.CORRELATE,
                    parameters={"search_field": "attribution.actor"},
                ),
            ],
        ),
        ThreatPattern(
            pattern_id="coordinated_attack_pattern",
            name="Coordinated Attack Detection",
            description="Detects coordinated attacks from same actor/campaign",
            category=ThreatCategory.TECHNICAL,
            indicators=[
                PatternIndicator(field="attribution.actor", operator=PatternOperator.REGEX, value=".+", weight=0.4),
                # time-based clustering is left to correlation
                PatternIndicator(field="timeline.first_seen", operator=PatternOperator.REGEX, value=".+", weight=0.3),
                PatternIndicator(field="context.tags", operator=PatternOperator.CONTAINS, value="campaign", weight=0.3),
            ],
            threshold=0.6,
            actions=[
                PatternAction(type=PatternActionType.ADD_TAG, parameters={"tag": "coordinated_attack"}),
                PatternAction(
                    type=PatternActionType.CORRELATE,
                    parameters={"search_field": "attribution.campaign"},
                ),
            ],
        ),
        ThreatPattern(
            pattern_id="high_confidence_scam_pattern",
            name="High Confidence Scam Detection",
            description="Identifies highly confident scam reports for auto-escalation",
            category=ThreatCategory.FINANCIAL,
            indicators=[
                PatternIndicator(field="type", operator=PatternOperator.EQUALS, value="scam", weight=0.3),
                PatternIndicator(
                    field="confidence",
                    operator=PatternOperator.REGEX,
                    value="^(9[0-9]|100)$",
                    weight=0.4,
                ),
                PatternIndicator(
                    field="source.reliability",
                    operator=PatternOperator.REGEX,
                    value="^(8[0-9]|9[0-9]|100)$",
                    weight=0.3,
                ),
            ],
            threshold=0.9,
            actions=[
                PatternAction(
                    type=PatternActionType.INCREASE_SEVERITY,
                    parameters={"target_severity": "critical"},
                ),
                PatternAction(type=PatternActionType.ADD_TAG, parameters={"tag": "auto_verified"}),
                PatternAction(type=PatternActionType.NOTIFY, parameters={"urgency": "high"}),
            ],
        ),
        ThreatPattern(
            pattern_id="wallet_drainer_pattern",
            name="Wallet Drainer Detection",
            description="Detects wallet drainer malware patterns",
            category=ThreatCategory.TECHNICAL,
            indicators=[
                PatternIndicator(field="type", operator=PatternOperator.EQUALS, value="drainer", weight=0.4),
                PatternIndicator(field="target.type", operator=PatternOperator.EQUALS, value="wallet", weight=0.3),
                PatternIndicator(
                    field="context.description",
                    operator=PatternOperator.REGEX,
                    value="(drain|empty|steal|transfer)",
                    weight=0.3,
                ),
            ],
            threshold=0.7,
            actions=[
                PatternAction(
                    type=PatternActionType.INCREASE_SEVERITY,
                    parameters={"target_severity": "critical"},
                ),
                PatternAction(type=PatternActionType.ADD_TAG, parameters={"tag": "wallet_drainer"}),
                PatternAction(
                    type=PatternActionType.ADD_TAG,
                    parameters={"tag": "immediate_action_required"},
                ),
            ],
        ),
    ]
