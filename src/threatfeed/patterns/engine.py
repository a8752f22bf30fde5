"""
Pattern rule engine: evaluates active patterns against records, applies
the actions of those that fire and keeps per-pattern statistics.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from ..core.errors import RecordNotFound
from ..feed.filters import Eq
from ..feed.models import ThreatRecord
from ..feed.store import RecordStore
from .actions import PatternActionExecutor
from .defaults import default_patterns
from .evaluator import evaluate_pattern, flatten_record, pattern_fires
from .models import PatternMatch, PatternStatistics, ThreatPattern

logger = logging.getLogger(__name__)


class PatternEngine:
    """
    Engine for matching threat records against detection patterns.

    The engine:
    1. Keeps patterns in the pattern store
    2. Evaluates a record against every active pattern
    3. Applies the actions of each pattern that fires
    4. Counts triggers per pattern
    """

    def __init__(
        self,
        pattern_store: RecordStore,
        executor: PatternActionExecutor,
    ):
        """
        Initialize the pattern engine.

        Args:
            pattern_store: Store holding ThreatPattern documents
            executor: Executor for the actions of fired patterns
        """
        self.pattern_store = pattern_store
        self.executor = executor

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def get_active_patterns(self) -> List[ThreatPattern]:
        """
        Fetch active patterns in id order.

        Raises:
            StoreUnavailable: if the pattern store cannot be queried
        """
        docs = self.pattern_store.find_by_filter(Eq("is_active", True))
        return [ThreatPattern.from_dict(doc) for doc in docs]

    def evaluate(
        self, record: ThreatRecord, patterns: Optional[List[ThreatPattern]] = None
    ) -> List[PatternMatch]:
        """
        Return the matches of patterns that fire for ``record``, without
        applying any action.
        """
        if patterns is None:
            patterns = self.get_active_patterns()

        view = flatten_record(record)
        fired = []
        for pattern in patterns:
            match = evaluate_pattern(pattern, view)
            if pattern_fires(pattern, match):
                fired.append(match)
        return fired

    def apply(self, record: ThreatRecord) -> List[PatternMatch]:
        """
        Evaluate ``record`` against active patterns and apply actions.

        All patterns see the record as it was when the pass started; actions
        write through to the store and the in-memory record.

        Returns:
            One match per fired pattern, with per-action outcomes
        """
        patterns = self.get_active_patterns()
        view = flatten_record(record)
        matches: List[PatternMatch] = []

        for pattern in patterns:
            match = evaluate_pattern(pattern, view)
            if not pattern_fires(pattern, match):
                continue

            logger.info(
                f"Pattern '{pattern.name}' ({pattern.pattern_id}) fired for record "
                f"{record.id} with score {match.score:.2f}"
            )
            for action in pattern.actions:
                match.actions.append(self.executor.execute(record, pattern, action))

            self._record_trigger(pattern)
            matches.append(match)

        logger.info(f"Evaluated {len(patterns)} patterns for record {record.id}, {len(matches)} fired")
        return matches

    def _record_trigger(self, pattern: ThreatPattern) -> None:
        now = datetime.utcnow()
        try:
            doc = self.pattern_store.find_by_id(pattern.id)
            if doc is None:
                raise RecordNotFound(pattern.id)
            current = PatternStatistics(**doc.get("statistics", {}))
            self.pattern_store.update_fields(
                pattern.id,
                {
                    "statistics.times_triggered": current.times_triggered + 1,
                    "statistics.last_triggered": now,
                },
            )
            pattern.statistics.times_triggered = current.times_triggered + 1
            pattern.statistics.last_triggered = now
        except Exception as e:
            logger.error(f"Failed to update statistics for pattern {pattern.pattern_id}: {e}")

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def initialize_default_patterns(self) -> int:
        """
        Insert the built-in patterns that are not stored yet.

        Existing patterns with the same ``pattern_id`` are left untouched.

        Returns:
            Number of patterns inserted
        """
        inserted = 0
        for pattern in default_patterns():
            if self.get_pattern(pattern.pattern_id) is not None:
                continue
            self.pattern_store.insert(pattern.to_dict())
            inserted += 1

        logger.info(f"Initialized default patterns ({inserted} new)")
        return inserted

    def get_pattern(self, pattern_id: str) -> Optional[ThreatPattern]:
        """Get a pattern by its ``pattern_id``."""
        docs = self.pattern_store.find_by_filter(Eq("pattern_id", pattern_id), limit=1)
        return ThreatPattern.from_dict(docs[0]) if docs else None

    def list_patterns(self, active_only: bool = False) -> List[ThreatPattern]:
        """List stored patterns in id order."""
        if active_only:
            return self.get_active_patterns()
        return [ThreatPattern.from_dict(doc) for doc in self.pattern_store.find_by_filter()]

    def create_pattern(self, pattern: ThreatPattern) -> ThreatPattern:
        """
        Store a new pattern with fresh statistics.

        Raises:
            ValueError: if a pattern with the same ``pattern_id`` exists
        """
        if self.get_pattern(pattern.pattern_id) is not None:
            raise ValueError(f"Pattern already exists: {pattern.pattern_id}")

        now = datetime.utcnow()
        pattern = pattern.model_copy(
            update={"statistics": PatternStatistics(), "created_at": now, "updated_at": now}
        )
        pattern.id = self.pattern_store.insert(pattern.to_dict())
        logger.info(f"Created pattern: {pattern.pattern_id} - {pattern.name}")
        return pattern

    def update_pattern(self, pattern_id: str, updates: Dict[str, Any]) -> Optional[ThreatPattern]:
        """
        Apply administrative edits to a pattern.

        Statistics are not editable here. The edited pattern is validated
        before anything is written.

        Returns:
            The updated pattern, or None if no pattern has this id
        """
        current = self.get_pattern(pattern_id)
        if current is None:
            return None

        updates = {k: v for k, v in updates.items() if k not in ("id", "statistics", "created_at")}
        data = current.model_dump()
        data.update(updates)
        data["updated_at"] = datetime.utcnow()
        updated = ThreatPattern(**data)

        partial = {key: getattr(updated, key) for key in updates}
        partial["updated_at"] = updated.updated_at
        self.pattern_store.update_fields(current.id, partial)
        logger.info(f"Updated pattern {pattern_id}: {sorted(updates)}")
        return updated

    def load_patterns_from_file(self, filepath: Path) -> int:
        """
        Load patterns from a YAML file and upsert them by ``pattern_id``.

        Args:
            filepath: Path to pattern configuration file

        Example YAML format:
            patterns:
              - pattern_id: fake_airdrop_pattern
                name: Fake Airdrop Detection
                threshold: 0.7
                indicators:
                  - field: context.title
                    operator: contains
                    value: airdrop
                    weight: 0.6
                actions:
                  - type: add_tag
                    parameters:
                      tag: airdrop_scam

        Returns:
            Number of patterns created or updated
        """
        try:
            with open(filepath, "r") as f:
                data = yaml.safe_load(f)
        except Exception as e:
            logger.error(f"Failed to load patterns from {filepath}: {e}")
            raise

        if not data or "patterns" not in data:
            logger.warning(f"No patterns found in {filepath}")
            return 0

        loaded = 0
        for pattern_data in data["patterns"] or []:
            try:
                pattern = ThreatPattern(**pattern_data)
            except Exception as e:
                ident = pattern_data.get("pattern_id", "unknown") if isinstance(pattern_data, dict) else "unknown"
                logger.error(f"Failed to load pattern {ident}: {e}")
                continue

            if self.get_pattern(pattern.pattern_id) is None:
                self.create_pattern(pattern)
            else:
                editable = pattern.model_dump(
                    exclude={"id", "pattern_id", "statistics", "created_at", "updated_at"}
                )
                self.update_pattern(pattern.pattern_id, editable)
            loaded += 1

        logger.info(f"Loaded {loaded} patterns from {filepath}")
        return loaded

    def record_feedback(self, pattern_id: str, false_positive: bool) -> Optional[ThreatPattern]:
        """
        Record a moderation verdict on one of this pattern's triggers.

        Accuracy is the share of triggers not reported as false positives.

        Returns:
            The updated pattern, or None if no pattern has this id
        """
        pattern = self.get_pattern(pattern_id)
        if pattern is None:
            return None

        stats = pattern.statistics
        if false_positive:
            stats.false_positives += 1
        triggered = max(stats.times_triggered, stats.false_positives)
        stats.accuracy = (triggered - stats.false_positives) / triggered if triggered else 0.0

        self.pattern_store.update_fields(
            pattern.id,
            {
                "statistics.false_positives": stats.false_positives,
                "statistics.accuracy": stats.accuracy,
            },
        )
        logger.info(
            f"Feedback for pattern {pattern_id}: false_positive={false_positive}, "
            f"accuracy={stats.accuracy:.2f}"
        )
        return pattern
