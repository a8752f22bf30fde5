"""
Action executor for fired patterns.

Each action is applied independently. Failures are caught per action and
recorded as ``applied=False`` so they never abort the remaining actions or
the enclosing match.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from ..core.config import PatternConfig
from ..core.errors import ActionFailure
from ..correlation.builder import CorrelationGraphBuilder
from ..feed.models import Severity, ThreatRecord, ThreatStatus
from ..feed.store import RecordStore
from ..notifications.dispatcher import NotificationDispatcher
from .models import AppliedAction, PatternAction, PatternActionType, ThreatPattern

logger = logging.getLogger(__name__)


class PatternActionExecutor:
    """
    Applies pattern actions to a stored record.

    Writes go to the record store and are mirrored on the in-memory record so
    later actions in the same pass see the current state.
    """

    def __init__(
        self,
        store: RecordStore,
        correlator: Optional[CorrelationGraphBuilder] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        config: Optional[PatternConfig] = None,
    ):
        """
        Initialize the executor.

        Args:
            store: Threat record store
            correlator: CorrelationGraphBuilder used by ``correlate`` actions
            dispatcher: NotificationDispatcher used by ``notify`` actions
            config: Pattern engine configuration
        """
        self.store = store
        self.correlator = correlator
        self.dispatcher = dispatcher
        self.config = config or PatternConfig()

    def execute(
        self, record: ThreatRecord, pattern: ThreatPattern, action: PatternAction
    ) -> AppliedAction:
        """
        Apply one action of a fired pattern.

        Returns:
            The action outcome; ``applied`` is False when the action was a
            no-op or failed (``error`` carries the failure)
        """
        result = AppliedAction(type=action.type, parameters=dict(action.parameters))

        if record.status != ThreatStatus.ACTIVE:
            logger.debug(
                f"Skipping {action.type.value} on record {record.id}: status is {record.status.value}"
            )
            return result

        try:
            if action.type == PatternActionType.INCREASE_SEVERITY:
                result.applied = self.increase_severity(record, action.parameters)
            elif action.type == PatternActionType.ADD_TAG:
                result.applied = self.add_tag(record, action.parameters)
            elif action.type == PatternActionType.CORRELATE:
                result.applied = self.correlate(record, action.parameters)
            elif action.type == PatternActionType.NOTIFY:
                result.applied = self.notify(record, pattern, action.parameters)
            elif action.type == PatternActionType.AUTO_RESOLVE:
                result.applied = self.auto_resolve(record)
            else:
                raise ActionFailure(f"Unknown action type: {action.type}")

        except Exception as e:
            logger.error(
                f"Action {action.type.value} from pattern {pattern.pattern_id} "
                f"failed on record {record.id}: {e}",
                exc_info=True,
            )
            result.applied = False
            result.error = str(e)

        return result

    def increase_severity(self, record: ThreatRecord, parameters: Dict[str, Any]) -> bool:
        """Raise severity to ``target_severity``; never lowers it."""
        target = parameters.get("target_severity")
        if not target:
            raise ActionFailure("target_severity parameter is required")
        try:
            target = Severity(target)
        except ValueError:
            raise ActionFailure(f"Unknown severity: {target}")

        if not target.is_higher_than(record.severity):
            return False

        now = datetime.utcnow()
        self.store.update_fields(record.id, {"severity": target.value, "updated_at": now})
        logger.info(f"Record {record.id} severity {record.severity.value} -> {target.value}")
        record.severity = target
        record.updated_at = now
        return True

    def add_tag(self, record: ThreatRecord, parameters: Dict[str, Any]) -> bool:
        """Add ``tag`` to the record's tags; False when already present."""
        tag = parameters.get("tag")
        if not tag:
            raise ActionFailure("tag parameter is required")
        if tag in record.context.tags:
            return False

        added = self.store.add_to_set(record.id, "context.tags", tag)
        now = datetime.utcnow()
        self.store.update_fields(record.id, {"updated_at": now})
        record.context.tags.append(tag)
        record.updated_at = now
        return added

    def correlate(self, record: ThreatRecord, parameters: Dict[str, Any]) -> bool:
        """Run a correlation pass restricted to ``search_field``."""
        if self.correlator is None:
            raise ActionFailure("No correlation builder configured")
        edges = self.correlator.analyze(record, search_field=parameters.get("search_field"))
        logger.info(f"Focused correlation for record {record.id} created {len(edges)} edges")
        return True

    def notify(
        self, record: ThreatRecord, pattern: ThreatPattern, parameters: Dict[str, Any]
    ) -> bool:
        """Hand a ``pattern_matched`` event to the notification dispatcher."""
        if self.dispatcher is None:
            raise ActionFailure("No notification dispatcher configured")
        payload = {
            "record_id": record.id,
            "threat_id": record.threat_id,
            "type": record.type.value,
            "severity": record.severity.value,
            "target": record.target.value,
            "pattern_id": pattern.pattern_id,
            "pattern_name": pattern.name,
        }
        payload.update(parameters)
        delivered = self.dispatcher.notify("pattern_matched", payload)
        if not delivered:
            logger.warning(f"pattern_matched notification for record {record.id} was not delivered")
        return bool(delivered)

    def auto_resolve(self, record: ThreatRecord) -> bool:
        """Mark a low-confidence record as a false positive."""
        if record.confidence >= self.config.auto_resolve_max_confidence:
            return False

        now = datetime.utcnow()
        self.store.update_fields(
            record.id,
            {"status": ThreatStatus.FALSE_POSITIVE.value, "updated_at": now},
        )
        logger.info(f"Record {record.id} auto-resolved as false positive")
        record.status = ThreatStatus.FALSE_POSITIVE
        record.updated_at = now
        return True
