"""
Duplicate detection for the threat feed.
"""

from .detector import (
    DeduplicationResult,
    DuplicateDetector,
    compute_threat_hash,
    generate_threat_id,
)

__all__ = [
    "DeduplicationResult",
    "DuplicateDetector",
    "compute_threat_hash",
    "generate_threat_id",
]
