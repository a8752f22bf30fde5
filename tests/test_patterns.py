"""
Tests for pattern evaluation, actions and the pattern engine.
"""

from unittest.mock import MagicMock

import pytest
from pydantic import ValidationError

from conftest import RecordingDispatcher, make_record, save
from threatfeed.core.errors import MalformedRegex, StoreUnavailable
from threatfeed.feed.models import Severity, ThreatStatus
from threatfeed.patterns.actions import PatternActionExecutor
from threatfeed.patterns.engine import PatternEngine
from threatfeed.patterns.evaluator import (
    compile_regex,
    evaluate_operator,
    evaluate_pattern,
    flatten_record,
    pattern_fires,
)
from threatfeed.patterns.models import (
    PatternAction,
    PatternActionType,
    PatternIndicator,
    PatternOperator,
    ThreatPattern,
)


def _pattern(pattern_id="test_pattern", threshold=0.7, indicators=None, actions=None, **kwargs):
    return ThreatPattern(
        pattern_id=pattern_id,
        name=pattern_id.replace("_", " ").title(),
        threshold=threshold,
        indicators=indicators or [],
        actions=actions or [],
        **kwargs,
    )


def _rule(field, operator, value, weight=1.0):
    return PatternIndicator(field=field, operator=operator, value=value, weight=weight)


def _action(action_type, **parameters):
    return PatternAction(type=action_type, parameters=parameters)


@pytest.fixture
def engine(threat_store, pattern_store, dispatcher):
    executor = PatternActionExecutor(threat_store, dispatcher=dispatcher)
    return PatternEngine(pattern_store, executor)


class TestEvaluator:
    """Test the pure rule evaluator."""

    def test_flatten_record(self):
        view = flatten_record(make_record(confidence=85))

        assert view["target.value"] == "paypal-verify.tk"
        assert view["indicators.value"] == ["paypal-verify.tk"]
        assert view["context.tags"] == ["paypal"]
        assert view["confidence"] == 85
        assert isinstance(view["timeline.first_seen"], str)
        assert view.get("attribution.actor") is None

    def test_operators(self):
        assert evaluate_operator(PatternOperator.EQUALS, "rugpull", "rugpull")
        assert not evaluate_operator(PatternOperator.EQUALS, "Rugpull", "rugpull")
        assert evaluate_operator(PatternOperator.CONTAINS, "Verify your account", "VERIFY")
        assert evaluate_operator(PatternOperator.STARTS_WITH, "0xDEAD", "0xdead")
        assert evaluate_operator(PatternOperator.ENDS_WITH, "paypal-verify.TK", ".tk")
        assert evaluate_operator(PatternOperator.REGEX, "PAYPAL-verify.tk", "paypal")

    def test_numbers_are_compared_as_text(self):
        assert evaluate_operator(PatternOperator.REGEX, 85, "^([8-9][0-9]|100)$")
        assert not evaluate_operator(PatternOperator.REGEX, 70, "^([8-9][0-9]|100)$")
        assert evaluate_operator(PatternOperator.EQUALS, 100, "100")

    def test_lists_match_any_element(self):
        assert evaluate_operator(PatternOperator.CONTAINS, ["paypal", "fake-campaign"], "campaign")
        assert not evaluate_operator(PatternOperator.CONTAINS, [], "campaign")

    def test_missing_value_never_matches(self):
        assert not evaluate_operator(PatternOperator.REGEX, None, ".*")

    def test_malformed_regex(self):
        with pytest.raises(MalformedRegex):
            compile_regex("([")

    def test_malformed_regex_rule_does_not_match(self):
        pattern = _pattern(
            indicators=[
                _rule("target.value", PatternOperator.REGEX, "(["),
                _rule("type", PatternOperator.EQUALS, "phishing"),
            ]
        )
        match = evaluate_pattern(pattern, flatten_record(make_record()))

        assert match.score == pytest.approx(0.5)
        assert [r.field for r in match.triggered_rules] == ["type"]

    def test_half_weight_does_not_fire(self):
        pattern = _pattern(
            threshold=0.7,
            indicators=[
                _rule("type", PatternOperator.EQUALS, "phishing", 0.5),
                _rule("type", PatternOperator.EQUALS, "rugpull", 0.5),
            ],
        )
        match = evaluate_pattern(pattern, flatten_record(make_record()))

        assert match.score == 0.5
        assert not pattern_fires(pattern, match)

    def test_three_quarter_weight_fires(self):
        pattern = _pattern(
            threshold=0.7,
            indicators=[
                _rule("type", PatternOperator.EQUALS, "phishing", 0.75),
                _rule("type", PatternOperator.EQUALS, "rugpull", 0.25),
            ],
        )
        match = evaluate_pattern(pattern, flatten_record(make_record()))

        assert match.score == 0.75
        assert pattern_fires(pattern, match)

    def test_weights_need_not_sum_to_one(self):
        pattern = _pattern(
            indicators=[
                _rule("type", PatternOperator.EQUALS, "phishing", 3.0),
                _rule("type", PatternOperator.EQUALS, "rugpull", 1.0),
            ],
        )
        assert evaluate_pattern(pattern, flatten_record(make_record())).score == 0.75

    def test_pattern_without_rules_never_fires(self):
        pattern = _pattern(threshold=0.0)
        match = evaluate_pattern(pattern, flatten_record(make_record()))

        assert match.score == 0.0
        assert not pattern_fires(pattern, match)

    def test_triggered_rule_keeps_actual_value(self):
        pattern = _pattern(indicators=[_rule("target.value", PatternOperator.CONTAINS, "verify")])
        match = evaluate_pattern(pattern, flatten_record(make_record()))

        assert match.triggered_rules[0].actual_value == "paypal-verify.tk"
        assert match.pattern_name == "Test Pattern"


class TestPatternActions:
    """Test individual actions through the engine."""

    def _fire(self, engine, pattern_store, record, *actions):
        pattern_store.insert(
            _pattern(
                indicators=[_rule("type", PatternOperator.EQUALS, record.type.value)],
                actions=list(actions),
            ).to_dict()
        )
        matches = engine.apply(record)
        assert len(matches) == 1
        return matches[0]

    def test_increase_severity(self, engine, threat_store, pattern_store):
        record = save(threat_store, make_record(severity="medium"))
        match = self._fire(
            engine, pattern_store, record,
            _action(PatternActionType.INCREASE_SEVERITY, target_severity="critical"),
        )

        assert match.actions[0].applied is True
        assert threat_store.find_by_id(record.id)["severity"] == "critical"
        assert record.severity == Severity.CRITICAL

    def test_increase_severity_never_lowers(self, engine, threat_store, pattern_store):
        record = save(threat_store, make_record(severity="high"))
        match = self._fire(
            engine, pattern_store, record,
            _action(PatternActionType.INCREASE_SEVERITY, target_severity="low"),
        )

        assert match.actions[0].applied is False
        assert threat_store.find_by_id(record.id)["severity"] == "high"

    def test_increase_severity_invalid_target(self, engine, threat_store, pattern_store):
        record = save(threat_store, make_record())
        match = self._fire(
            engine, pattern_store, record,
            _action(PatternActionType.INCREASE_SEVERITY, target_severity="apocalyptic"),
            _action(PatternActionType.ADD_TAG, tag="still_applied"),
        )

        assert match.actions[0].applied is False
        assert "apocalyptic" in match.actions[0].error
        assert match.actions[1].applied is True

    def test_add_tag_is_idempotent(self, engine, threat_store, pattern_store):
        record = save(threat_store, make_record())
        match = self._fire(
            engine, pattern_store, record,
            _action(PatternActionType.ADD_TAG, tag="suspicious"),
            _action(PatternActionType.ADD_TAG, tag="suspicious"),
            _action(PatternActionType.ADD_TAG, tag="paypal"),
        )

        assert [a.applied for a in match.actions] == [True, False, False]
        assert threat_store.find_by_id(record.id)["context"]["tags"] == ["paypal", "suspicious"]

    def test_auto_resolve_requires_low_confidence(self, engine, threat_store, pattern_store):
        record = save(threat_store, make_record(confidence=50))
        match = self._fire(engine, pattern_store, record, _action(PatternActionType.AUTO_RESOLVE))

        assert match.actions[0].applied is False
        assert threat_store.find_by_id(record.id)["status"] == "active"

    def test_auto_resolve_low_confidence(self, engine, threat_store, pattern_store):
        record = save(threat_store, make_record(confidence=20))
        match = self._fire(engine, pattern_store, record, _action(PatternActionType.AUTO_RESOLVE))

        assert match.actions[0].applied is True
        assert threat_store.find_by_id(record.id)["status"] == "false_positive"
        assert record.status == ThreatStatus.FALSE_POSITIVE

    def test_inactive_records_untouched(self, engine, threat_store, pattern_store):
        record = save(threat_store, make_record(status="resolved"))
        match = self._fire(
            engine, pattern_store, record,
            _action(PatternActionType.ADD_TAG, tag="suspicious"),
        )

        assert match.actions[0].applied is False
        assert threat_store.find_by_id(record.id)["context"]["tags"] == ["paypal"]

    def test_notify(self, engine, threat_store, pattern_store, dispatcher):
        record = save(threat_store, make_record())
        match = self._fire(
            engine, pattern_store, record,
            _action(PatternActionType.NOTIFY, urgency="high"),
        )

        assert match.actions[0].applied is True
        event, payload = dispatcher.events[0]
        assert event == "pattern_matched"
        assert payload["pattern_id"] == "test_pattern"
        assert payload["record_id"] == record.id
        assert payload["urgency"] == "high"

    def test_notify_failure_does_not_fail_match(self, threat_store, pattern_store):
        executor = PatternActionExecutor(threat_store, dispatcher=RecordingDispatcher(fail=True))
        engine = PatternEngine(pattern_store, executor)
        record = save(threat_store, make_record())

        match = self._fire(
            engine, pattern_store, record,
            _action(PatternActionType.NOTIFY),
            _action(PatternActionType.ADD_TAG, tag="suspicious"),
        )

        assert match.actions[0].applied is False
        assert match.actions[1].applied is True

    def test_undelivered_notification_is_not_applied(self, threat_store, pattern_store):
        dispatcher = RecordingDispatcher(deliver=False)
        engine = PatternEngine(pattern_store, PatternActionExecutor(threat_store, dispatcher=dispatcher))
        record = save(threat_store, make_record())

        match = self._fire(engine, pattern_store, record, _action(PatternActionType.NOTIFY))

        assert match.actions[0].applied is False
        assert match.actions[0].error is None
        assert match.pattern_id == "test_pattern"
        assert len(dispatcher.events) == 1

    def test_correlate_uses_search_field(self, threat_store, pattern_store):
        correlator = MagicMock()
        correlator.analyze.return_value = []
        engine = PatternEngine(pattern_store, PatternActionExecutor(threat_store, correlator=correlator))
        record = save(threat_store, make_record())

        match = self._fire(
            engine, pattern_store, record,
            _action(PatternActionType.CORRELATE, search_field="attribution.actor"),
        )

        assert match.actions[0].applied is True
        correlator.analyze.assert_called_once_with(record, search_field="attribution.actor")

    def test_correlate_without_builder(self, engine, threat_store, pattern_store):
        record = save(threat_store, make_record())
        match = self._fire(
            engine, pattern_store, record,
            _action(PatternActionType.CORRELATE, search_field="attribution.actor"),
        )

        assert match.actions[0].applied is False
        assert match.actions[0].error


class TestPatternEngine:
    """Test evaluation passes, statistics and administration."""

    def test_phishing_default_pattern(self, engine, threat_store):
        engine.initialize_default_patterns()
        record = save(threat_store, make_record())

        matches = engine.apply(record)

        assert [m.pattern_id for m in matches] == ["phishing_url_pattern"]
        assert matches[0].score >= 0.7
        stored = threat_store.find_by_id(record.id)
        assert stored["severity"] == "high"
        assert "phishing_suspected" in stored["context"]["tags"]

    def test_statistics_updated_on_fire(self, engine, threat_store):
        engine.initialize_default_patterns()
        record = save(threat_store, make_record())

        engine.apply(record)
        engine.apply(record)

        stats = engine.get_pattern("phishing_url_pattern").statistics
        assert stats.times_triggered == 2
        assert stats.last_triggered is not None
        assert engine.get_pattern("rugpull_token_pattern").statistics.times_triggered == 0

    def test_statistics_failure_is_not_fatal(self, engine, threat_store, pattern_store):
        engine.initialize_default_patterns()
        pattern_store.fail_on.add("update_fields")
        record = save(threat_store, make_record())

        assert len(engine.apply(record)) == 1

    def test_multiple_patterns_fire_independently(self, engine, threat_store, pattern_store):
        for pattern_id in ("first", "second"):
            pattern_store.insert(
                _pattern(
                    pattern_id=pattern_id,
                    indicators=[_rule("type", PatternOperator.EQUALS, "phishing")],
                ).to_dict()
            )
        record = save(threat_store, make_record())

        assert [m.pattern_id for m in engine.apply(record)] == ["first", "second"]

    def test_inactive_patterns_ignored(self, engine, threat_store, pattern_store):
        pattern_store.insert(
            _pattern(
                indicators=[_rule("type", PatternOperator.EQUALS, "phishing")],
                is_active=False,
            ).to_dict()
        )
        record = save(threat_store, make_record())

        assert engine.apply(record) == []

    def test_evaluate_does_not_apply_actions(self, engine, threat_store):
        engine.initialize_default_patterns()
        record = save(threat_store, make_record())

        matches = engine.evaluate(record)

        assert [m.pattern_id for m in matches] == ["phishing_url_pattern"]
        assert matches[0].actions == []
        assert threat_store.find_by_id(record.id)["severity"] == "medium"

    def test_pattern_store_failure_propagates(self, engine, threat_store, pattern_store):
        record = save(threat_store, make_record())
        pattern_store.fail_on.add("find_by_filter")

        with pytest.raises(StoreUnavailable):
            engine.apply(record)

    def test_initialize_default_patterns_upserts(self, engine):
        assert engine.initialize_default_patterns() == 5
        engine.update_pattern("phishing_url_pattern", {"threshold": 0.9})

        assert engine.initialize_default_patterns() == 0
        assert engine.get_pattern("phishing_url_pattern").threshold == 0.9
        assert len(engine.list_patterns()) == 5

    def test_create_pattern(self, engine):
        created = engine.create_pattern(
            _pattern(indicators=[_rule("type", PatternOperator.EQUALS, "scam")])
        )

        assert created.id is not None
        assert engine.get_pattern("test_pattern").name == "Test Pattern"
        with pytest.raises(ValueError):
            engine.create_pattern(_pattern())

    def test_update_pattern(self, engine):
        engine.create_pattern(_pattern())

        updated = engine.update_pattern("test_pattern", {"is_active": False, "name": "Renamed"})

        assert updated.name == "Renamed"
        assert engine.list_patterns(active_only=True) == []
        assert engine.update_pattern("missing", {"name": "x"}) is None

    def test_update_pattern_validates(self, engine):
        engine.create_pattern(_pattern())

        with pytest.raises(ValidationError):
            engine.update_pattern("test_pattern", {"threshold": 1.5})

        assert engine.get_pattern("test_pattern").threshold == 0.7

    def test_load_patterns_from_file(self, engine, tmp_path):
        path = tmp_path / "patterns.yaml"
        path.write_text(
            """
patterns:
  - pattern_id: fake_airdrop_pattern
    name: Fake Airdrop Detection
    threshold: 0.5
    indicators:
      - field: context.title
        operator: contains
        value: airdrop
        weight: 1.0
    actions:
      - type: add_tag
        parameters:
          tag: airdrop_scam
  - pattern_id: broken_pattern
    name: Broken
    threshold: 0.5
    indicators:
      - field: type
        operator: sounds_like
        value: scam
        weight: 1.0
  - pattern_id: address_poisoning_pattern
    name: Address Poisoning
    threshold: 0.6
"""
        )

        assert engine.load_patterns_from_file(path) == 2
        assert engine.get_pattern("fake_airdrop_pattern").actions[0].parameters == {"tag": "airdrop_scam"}
        assert engine.get_pattern("broken_pattern") is None

    def test_load_patterns_updates_existing(self, engine, tmp_path):
        engine.initialize_default_patterns()
        path = tmp_path / "patterns.yaml"
        path.write_text(
            """
patterns:
  - pattern_id: phishing_url_pattern
    name: Phishing URL Detection
    threshold: 0.95
"""
        )

        assert engine.load_patterns_from_file(path) == 1
        assert engine.get_pattern("phishing_url_pattern").threshold == 0.95
        assert len(engine.list_patterns()) == 5

    def test_load_patterns_missing_file(self, engine, tmp_path):
        with pytest.raises(FileNotFoundError):
            engine.load_patterns_from_file(tmp_path / "missing.yaml")

    def test_record_feedback(self, engine, pattern_store):
        created = engine.create_pattern(_pattern())
        pattern_store.update_fields(created.id, {"statistics.times_triggered": 4})

        engine.record_feedback("test_pattern", false_positive=True)
        pattern = engine.record_feedback("test_pattern", false_positive=False)

        assert pattern.statistics.false_positives == 1
        assert pattern.statistics.accuracy == pytest.approx(0.75)
        assert engine.get_pattern("test_pattern").statistics.accuracy == pytest.approx(0.75)
        assert engine.record_feedback("missing", false_positive=True) is None
