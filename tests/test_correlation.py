"""
Tests for the correlation graph builder.
"""

from datetime import timedelta

import pytest

from conftest import BASE_TIME, make_record, save
from threatfeed.core.config import CorrelationConfig
from threatfeed.core.errors import CorrelationPersistenceError, StoreUnavailable
from threatfeed.correlation.builder import CorrelationGraphBuilder
from threatfeed.feed.models import CorrelationType
from threatfeed.feed.store import InMemoryRecordStore
from threatfeed.similarity.scorer import SimilarityScorer


def _sibling(**overrides):
    """Same target and indicators, seen 15 days later, different description."""
    data = {
        "timeline": {"first_seen": BASE_TIME + timedelta(days=15)},
        "context": {"title": "Verify your account", "description": "", "tags": ["paypal"]},
        "source": {"id": "reporter-2"},
    }
    data.update(overrides)
    return make_record(**data)


@pytest.fixture
def builder(threat_store, edge_store):
    return CorrelationGraphBuilder(threat_store, edge_store)


class TestClassification:
    """Test relationship type selection."""

    def test_duplicate(self, threat_store, builder):
        a = save(threat_store, make_record(attribution={"actor": "inferno"}))
        save(threat_store, make_record(attribution={"actor": "inferno"}, source={"id": "reporter-2"}))

        edges = builder.analyze(a)

        assert len(edges) == 1
        assert edges[0].correlation_type == CorrelationType.DUPLICATE

    def test_campaign(self, threat_store, builder):
        attribution = {"actor": "inferno", "campaign": "fake-kyc"}
        a = save(threat_store, make_record(attribution=attribution))
        save(threat_store, _sibling(attribution=attribution))

        edges = builder.analyze(a)

        assert [e.correlation_type for e in edges] == [CorrelationType.CAMPAIGN]

    def test_attribution(self, threat_store, builder):
        a = save(threat_store, make_record(attribution={"actor": "inferno"}))
        save(threat_store, _sibling(attribution={"actor": "inferno"}))

        edges = builder.analyze(a)

        assert [e.correlation_type for e in edges] == [CorrelationType.ATTRIBUTION]

    def test_target_overlap(self, threat_store, builder):
        a = save(threat_store, make_record())
        save(threat_store, _sibling())

        edges = builder.analyze(a)

        assert [e.correlation_type for e in edges] == [CorrelationType.TARGET_OVERLAP]

    def test_related(self, threat_store, builder):
        a = save(threat_store, make_record())
        save(threat_store, make_record(target={"type": "url", "value": "paypal-verify.ml"}))

        edges = builder.analyze(a)

        assert [e.correlation_type for e in edges] == [CorrelationType.RELATED]


class TestCorrelationGraphBuilder:
    """Test candidate retrieval, persistence and failure handling."""

    def test_links_both_endpoints(self, threat_store, edge_store, builder):
        a = save(threat_store, make_record())
        b = save(threat_store, _sibling())

        edges = builder.analyze(a)

        assert edges[0].parent_threat_id == a.id
        assert edges[0].child_threat_id == b.id
        assert edges[0].id is not None
        assert threat_store.find_by_id(a.id)["correlated_threats"] == [b.id]
        assert threat_store.find_by_id(b.id)["correlated_threats"] == [a.id]
        assert a.correlated_threats == [b.id]
        assert len(edge_store) == 1

    def test_evidence(self, threat_store, builder):
        a = save(threat_store, make_record())
        save(threat_store, _sibling())

        evidence = builder.analyze(a)[0].evidence

        assert evidence.common_indicators == ["paypal-verify.tk"]
        assert evidence.target_similarity == 1.0
        assert evidence.timeline_similarity == pytest.approx(0.5)
        assert evidence.attribution_similarity == 0.5

    def test_rerun_is_idempotent(self, threat_store, edge_store, builder):
        a = save(threat_store, make_record())
        b = save(threat_store, _sibling())

        assert len(builder.analyze(a)) == 1
        assert builder.analyze(a) == []
        assert builder.analyze(b) == []

        assert len(edge_store) == 1
        assert threat_store.find_by_id(a.id)["correlated_threats"] == [b.id]
        assert threat_store.find_by_id(b.id)["correlated_threats"] == [a.id]

    def test_below_threshold_not_linked(self, threat_store, edge_store, builder):
        a = save(threat_store, make_record())
        # shares only a tag
        save(
            threat_store,
            make_record(
                type="scam",
                target={"type": "wallet", "value": "0xdead"},
                indicators=[{"type": "wallet", "value": "0xdead"}],
                context={"title": "Fake giveaway", "tags": ["paypal"]},
                timeline={"first_seen": BASE_TIME - timedelta(days=90)},
            ),
        )

        assert builder.analyze(a) == []
        assert len(edge_store) == 0

    def test_inactive_candidates_excluded(self, threat_store, builder):
        a = save(threat_store, make_record())
        save(threat_store, _sibling(status="false_positive"))

        assert builder.find_candidates(a) == []

    def test_fan_out_cap(self, threat_store, edge_store):
        a = save(threat_store, make_record())
        siblings = [save(threat_store, _sibling()) for _ in range(3)]
        builder = CorrelationGraphBuilder(
            threat_store, edge_store, config=CorrelationConfig(max_correlations=2)
        )

        edges = builder.analyze(a)

        assert [e.child_threat_id for e in edges] == [siblings[0].id, siblings[1].id]

    def test_scoring_failure_is_skipped(self, threat_store, edge_store):
        a = save(threat_store, make_record())
        broken = save(threat_store, _sibling())
        healthy = save(threat_store, _sibling())

        class FlakyScorer(SimilarityScorer):
            def score(self, x, y):
                if y.id == broken.id:
                    raise RuntimeError("bad record")
                return super().score(x, y)

        builder = CorrelationGraphBuilder(threat_store, edge_store, scorer=FlakyScorer())

        edges = builder.analyze(a)

        assert [e.child_threat_id for e in edges] == [healthy.id]

    def test_persistence_failure_is_reported(self, threat_store):
        a = save(threat_store, make_record())
        save(threat_store, _sibling())
        builder = CorrelationGraphBuilder(threat_store, InMemoryRecordStore(fail_on={"insert"}))

        with pytest.raises(CorrelationPersistenceError) as exc_info:
            builder.analyze(a)

        assert exc_info.value.persisted == []

    def test_candidate_retrieval_failure_propagates(self, threat_store, builder):
        a = save(threat_store, make_record())
        threat_store.fail_on.add("find_by_filter")

        with pytest.raises(StoreUnavailable) as exc_info:
            builder.analyze(a)

        assert not isinstance(exc_info.value, CorrelationPersistenceError)

    def test_requires_stored_record(self, builder):
        with pytest.raises(ValueError):
            builder.analyze(make_record())

    def test_focused_search(self, threat_store, builder):
        a = save(threat_store, make_record(attribution={"actor": "inferno"}))
        same_actor = save(
            threat_store,
            make_record(
                target={"type": "wallet", "value": "0xdead"},
                attribution={"actor": "inferno"},
            ),
        )
        save(threat_store, _sibling())

        candidates = builder.find_candidates(a, search_field="attribution.actor")

        assert [c.id for c in candidates] == [same_actor.id]

    def test_focused_search_without_value(self, threat_store, builder):
        a = save(threat_store, make_record())
        save(threat_store, _sibling())

        assert builder.analyze(a, search_field="attribution.campaign") == []

    def test_bulk_analyze(self, threat_store, edge_store, builder):
        a = save(threat_store, make_record())
        b = save(threat_store, _sibling())

        assert builder.bulk_analyze() == 1
        assert len(edge_store) == 1
        assert threat_store.find_by_id(b.id)["correlated_threats"] == [a.id]
        assert builder.bulk_analyze() == 0
