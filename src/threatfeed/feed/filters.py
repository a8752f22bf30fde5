"""
Query filters understood by every record store.

Filters address documents with dotted paths. A path that crosses an array
fans out over its elements, so ``Eq("indicators.value", "evil.tk")`` matches
any document with at least one indicator of that value and
``Eq("context.tags", "drainer")`` matches any document carrying that tag.
"""

import re
from dataclasses import dataclass
from typing import Any, Dict, List, Tuple


class Filter:
    """Base class for store filters."""


@dataclass(frozen=True)
class Eq(Filter):
    field: str
    value: Any


@dataclass(frozen=True)
class Ne(Filter):
    """Matches when no value at ``field`` equals ``value`` (missing fields match)."""

    field: str
    value: Any


@dataclass(frozen=True)
class AnyOf(Filter):
    field: str
    values: Tuple[Any, ...]

    def __init__(self, field: str, values):
        object.__setattr__(self, "field", field)
        object.__setattr__(self, "values", tuple(values))


@dataclass(frozen=True)
class Regex(Filter):
    field: str
    pattern: str
    ignore_case: bool = True


@dataclass(frozen=True)
class IsEmpty(Filter):
    """Matches when the array at ``field`` is empty or missing."""

    field: str


@dataclass(frozen=True)
class And(Filter):
    clauses: Tuple[Filter, ...]

    def __init__(self, *clauses: Filter):
        object.__setattr__(self, "clauses", tuple(clauses))


@dataclass(frozen=True)
class Or(Filter):
    clauses: Tuple[Filter, ...]

    def __init__(self, *clauses: Filter):
        object.__setattr__(self, "clauses", tuple(clauses))


def values_at(doc: Dict[str, Any], path: str) -> List[Any]:
    """
    Resolve a dotted path to the list of values it reaches.

    Arrays are expanded at every step, missing keys and ``None`` yield
    nothing.
    """
    current: List[Any] = [doc]
    for part in path.split("."):
        next_values: List[Any] = []
        for item in current:
            if not isinstance(item, dict) or part not in item:
                continue
            value = item[part]
            if isinstance(value, list):
                next_values.extend(value)
            elif value is not None:
                next_values.append(value)
        current = next_values
    return current


def raw_value_at(doc: Dict[str, Any], path: str) -> Any:
    """Resolve a dotted path without expanding arrays; ``None`` when missing."""
    current: Any = doc
    for part in path.split("."):
        if isinstance(current, dict) and part in current:
            current = current[part]
        else:
            return None
    return current


def escape_regex(text: str) -> str:
    """Escape text so it can be embedded in a regex filter literally."""
    return re.escape(text)


def matches(doc: Dict[str, Any], flt: Filter) -> bool:
    """Evaluate a filter against an in-memory document."""
    if isinstance(flt, And):
        return all(matches(doc, clause) for clause in flt.clauses)
    if isinstance(flt, Or):
        return any(matches(doc, clause) for clause in flt.clauses)
    if isinstance(flt, Eq):
        return any(v == flt.value for v in values_at(doc, flt.field))
    if isinstance(flt, Ne):
        return not any(v == flt.value for v in values_at(doc, flt.field))
    if isinstance(flt, AnyOf):
        wanted = set(flt.values)
        return any(v in wanted for v in values_at(doc, flt.field) if _hashable(v))
    if isinstance(flt, Regex):
        flags = re.IGNORECASE if flt.ignore_case else 0
        rx = re.compile(flt.pattern, flags)
        return any(isinstance(v, str) and rx.search(v) for v in values_at(doc, flt.field))
    if isinstance(flt, IsEmpty):
        return not raw_value_at(doc, flt.field)
    raise TypeError(f"Unsupported filter: {flt!r}")


def _hashable(value: Any) -> bool:
    return not isinstance(value, (dict, list))
