"""
ThreatFeed core - deduplication, correlation and pattern matching for a shared
threat-intelligence feed.

Main modules:
- feed: threat record models and record stores
- similarity: string/set primitives and the multi-dimension similarity scorer
- dedup: exact-hash and fuzzy duplicate detection
- correlation: correlation graph builder (bidirectional links between records)
- patterns: weighted detection rules, evaluation and actions
- notifications: best-effort notification dispatchers
- pipeline: ingestion orchestration
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
