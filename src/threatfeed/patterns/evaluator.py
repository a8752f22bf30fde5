"""
Pure evaluation of pattern rules against a flattened view of a record.

The record is dumped to JSON-compatible data and flattened into a map of
dotted paths. Lists of objects fan out, so ``indicators.value`` maps to the
list of every indicator's value; a list matches a rule when any element does.
Missing paths resolve to ``None`` and never match.
"""

import logging
import re
from functools import lru_cache
from typing import Any, Dict, List, Optional

from ..core.errors import MalformedRegex
from ..feed.models import ThreatRecord
from .models import PatternIndicator, PatternMatch, PatternOperator, ThreatPattern, TriggeredRule

logger = logging.getLogger(__name__)


def flatten_record(record: ThreatRecord) -> Dict[str, Any]:
    """Build the dotted-path view of a record used by rule evaluation."""
    return _flatten(record.model_dump(mode="json"), "")


def _flatten(doc: Dict[str, Any], prefix: str) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for key, value in doc.items():
        path = f"{prefix}{key}"
        if isinstance(value, dict):
            out.update(_flatten(value, path + "."))
        elif isinstance(value, list) and value and all(isinstance(v, dict) for v in value):
            out[path] = value
            for item in value:
                for sub_path, sub_value in _flatten(item, path + ".").items():
                    bucket = out.setdefault(sub_path, [])
                    if isinstance(sub_value, list):
                        bucket.extend(sub_value)
                    else:
                        bucket.append(sub_value)
        else:
            out[path] = value
    return out


def as_text(value: Any) -> Optional[str]:
    """Stringify a scalar for comparison; None for values rules cannot compare."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return str(int(value)) if value.is_integer() else str(value)
    if isinstance(value, str):
        return value
    return None


@lru_cache(maxsize=256)
def compile_regex(pattern: str) -> "re.Pattern":
    """
    Compile a case-insensitive rule regex.

    Raises:
        MalformedRegex: if the pattern does not compile
    """
    try:
        return re.compile(pattern, re.IGNORECASE)
    except re.error as e:
        raise MalformedRegex(f"Invalid regex {pattern!r}: {e}") from e


def evaluate_operator(operator: PatternOperator, actual: Any, expected: str) -> bool:
    """
    Apply one operator to a resolved field value.

    ``equals`` is case-sensitive; the other operators ignore case.
    """
    if isinstance(actual, list):
        return any(evaluate_operator(operator, item, expected) for item in actual)

    text = as_text(actual)
    if text is None:
        return False

    if operator == PatternOperator.EQUALS:
        return text == expected
    elif operator == PatternOperator.CONTAINS:
        return expected.lower() in text.lower()
    elif operator == PatternOperator.STARTS_WITH:
        return text.lower().startswith(expected.lower())
    elif operator == PatternOperator.ENDS_WITH:
        return text.lower().endswith(expected.lower())
    elif operator == PatternOperator.REGEX:
        return compile_regex(expected).search(text) is not None

    return False


def evaluate_rule(rule: PatternIndicator, view: Dict[str, Any]) -> bool:
    """Evaluate one rule; malformed regexes are logged and treated as non-matching."""
    try:
        return evaluate_operator(rule.operator, view.get(rule.field), rule.value)
    except MalformedRegex as e:
        logger.warning(f"Rule on {rule.field} skipped: {e}")
        return False


def evaluate_pattern(pattern: ThreatPattern, view: Dict[str, Any]) -> PatternMatch:
    """
    Score a pattern against a flattened record.

    Returns:
        A match whose score is matched weight over total weight (0 when the
        pattern has no weight). Actions are filled in only when it fires.
    """
    total_weight = 0.0
    matched_weight = 0.0
    triggered: List[TriggeredRule] = []

    for rule in pattern.indicators:
        total_weight += rule.weight
        if evaluate_rule(rule, view):
            matched_weight += rule.weight
            triggered.append(
                TriggeredRule(
                    field=rule.field,
                    operator=rule.operator,
                    value=rule.value,
                    weight=rule.weight,
                    actual_value=view.get(rule.field),
                )
            )

    score = matched_weight / total_weight if total_weight > 0 else 0.0
    return PatternMatch(
        pattern_id=pattern.pattern_id,
        pattern_name=pattern.name,
        score=score,
        triggered_rules=triggered,
    )


def pattern_fires(pattern: ThreatPattern, match: PatternMatch) -> bool:
    """A pattern with no weight never fires, whatever its threshold."""
    total_weight = sum(rule.weight for rule in pattern.indicators)
    return total_weight > 0 and match.score >= pattern.threshold
