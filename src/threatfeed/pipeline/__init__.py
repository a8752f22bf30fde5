"""
Ingestion pipeline: duplicate gate, correlation pass and pattern pass.
"""

from .service import IngestResult, ThreatFeedService, configure_logging

__all__ = ["IngestResult", "ThreatFeedService", "configure_logging"]
