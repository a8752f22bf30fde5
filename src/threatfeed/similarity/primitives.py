"""
Domain-free similarity primitives: edit distance and set overlap.
"""

from typing import Iterable, Optional


def levenshtein(a: str, b: str) -> int:
    """Minimum number of single-character edits turning ``a`` into ``b``."""
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)

    # keep the shorter string in the inner loop
    if len(a) < len(b):
        a, b = b, a

    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            cost = 0 if ca == cb else 1
            current.append(
                min(
                    previous[j] + 1,  # deletion
                    current[j - 1] + 1,  # insertion
                    previous[j - 1] + cost,  # substitution
                )
            )
        previous = current
    return previous[-1]


def string_similarity(a: Optional[str], b: Optional[str]) -> float:
    """
    Case-insensitive normalized edit similarity in [0, 1].

    Equal strings (including two empty ones) score 1.0; exactly one empty
    string scores 0.0.
    """
    a = (a or "").lower()
    b = (b or "").lower()
    if a == b:
        return 1.0
    if not a or not b:
        return 0.0
    return 1.0 - levenshtein(a, b) / max(len(a), len(b))


def set_similarity(a: Optional[Iterable], b: Optional[Iterable]) -> float:
    """
    Jaccard index of two collections.

    Two empty sets agree vacuously (1.0); exactly one empty set scores 0.0.
    """
    set_a = set(a or ())
    set_b = set(b or ())
    if not set_a and not set_b:
        return 1.0
    if not set_a or not set_b:
        return 0.0
    return len(set_a & set_b) / len(set_a | set_b)
