"""Tests for event collection, audit logging and replay."""
import pytest
from src.abtesting.engine import ExperimentEngine
from src.abtesting.event_store import CsvEventSink, get_event_summary, iter_events, read_events
from src.abtesting.metrics import InMemoryCounterStore, MetricsAggregator


class FailingSink:
    def append(self, event):
        raise OSError("disk full")


class FlakyCounterStore(InMemoryCounterStore):
    """Fails the first write to a metric count, then recovers."""

    def __init__(self):
        super().__init__()
        self.failures = 1

    def increment(self, key, amount=1):
        if key[-1] == "count" and self.failures:
            self.failures -= 1
            raise ConnectionError("counter store timeout")
        return super().increment(key, amount)


def start_experiment(engine, **overrides):
    config = {
        "name": "Collector test",
        "template_type": "match_recap",
        "variants": [{"name": "control", "weight": 50}, {"name": "treatment", "weight": 50}],
    }
    config.update(overrides)
    exp = engine.create_experiment(config)
    engine.start_experiment(exp.experiment_id)
    return exp.experiment_id


def test_track_attributes_event_to_variant(engine):
    exp_id = start_experiment(engine)
    assignment = engine.get_user_assignment(exp_id, "viewer_1")
    event = engine.collector.track(exp_id, "viewer_1", "conversion")
    assert event.variant == assignment.variant
    vm = engine.aggregator.snapshot(exp_id).variants[assignment.variant]
    assert vm.total_users == 1
    assert vm.conversions == 1


def test_track_without_assignment_is_noop(engine):
    """Excluded subjects, drafts and unknown experiments record nothing."""
    exp_id = start_experiment(engine, targeting={"exclude": ["viewer_x"]})
    assert engine.collector.track(exp_id, "viewer_x", "conversion") is None
    assert engine.collector.track("exp_missing", "viewer_1", "conversion") is None

    draft = engine.create_experiment({
        "name": "Draft",
        "template_type": "match_recap",
        "variants": {"control": 50, "treatment": 50},
    })
    assert engine.collector.track(draft.experiment_id, "viewer_1", "conversion") is None
    assert engine.aggregator.snapshot(exp_id).total_users == 0


def test_duplicate_idempotency_key_ignored(engine):
    exp_id = start_experiment(engine)
    first = engine.collector.track(exp_id, "viewer_1", "conversion", idempotency_key="order-1")
    second = engine.collector.track(exp_id, "viewer_1", "conversion", idempotency_key="order-1")
    assert first is not None
    assert second is None
    assert engine.aggregator.snapshot(exp_id).variants[first.variant].conversions == 1


def test_failed_apply_releases_idempotency_key():
    """A keyed event that failed to commit is applied when retried."""
    engine = ExperimentEngine(counter_store=FlakyCounterStore())
    exp_id = start_experiment(engine)
    assert engine.collector.track(exp_id, "viewer_1", "conversion", idempotency_key="order-1") is None

    retried = engine.collector.track(exp_id, "viewer_1", "conversion", idempotency_key="order-1")
    assert retried is not None
    vm = engine.aggregator.snapshot(exp_id).variants[retried.variant]
    assert vm.conversions == 1
    assert vm.metrics["conversion_rate"].count == 1
    assert engine.collector.track(exp_id, "viewer_1", "conversion", idempotency_key="order-1") is None


def test_secondary_metric_values(engine):
    exp_id = start_experiment(engine)
    event = engine.collector.track(exp_id, "viewer_1", "engagement", {"value": 0.75})
    summary = engine.aggregator.snapshot(exp_id).variants[event.variant].metrics["engagement_rate"]
    assert summary.count == 1
    assert summary.total == pytest.approx(0.75)
    assert engine.aggregator.snapshot(exp_id).variants[event.variant].conversions == 0


def test_non_numeric_value_counts_as_one(engine):
    exp_id = start_experiment(engine)
    event = engine.collector.track(exp_id, "viewer_1", "conversion", {"value": "n/a"})
    summary = engine.aggregator.snapshot(exp_id).variants[event.variant].metrics["conversion_rate"]
    assert summary.total == pytest.approx(1.0)


def test_sink_failure_does_not_block_metrics():
    engine = ExperimentEngine(event_sink=FailingSink())
    exp_id = start_experiment(engine)
    event = engine.collector.track(exp_id, "viewer_1", "conversion")
    assert event is not None
    assert engine.aggregator.snapshot(exp_id).variants[event.variant].conversions == 1


def test_csv_sink_logs_events(tmp_path):
    engine = ExperimentEngine(event_sink=CsvEventSink(str(tmp_path)))
    exp_id = start_experiment(engine)
    engine.get_user_assignment(exp_id, "viewer_1")
    engine.track_event(exp_id, "viewer_1", "conversion", {"value": 1}, idempotency_key="k1")

    df = read_events(exp_id, base_dir=str(tmp_path))
    assert list(df["event_type"]) == ["assignment", "conversion"]
    assert read_events(exp_id, event_type="conversion", base_dir=str(tmp_path))["idempotency_key"].tolist() == ["k1"]

    summary = get_event_summary(exp_id, base_dir=str(tmp_path))
    assert summary["n_events"] == 2
    assert summary["n_subjects"] == 1
    assert read_events("exp_none", base_dir=str(tmp_path)).empty


def test_replay_rebuilds_metrics(tmp_path):
    """Replaying the audit log into a fresh aggregator reproduces the counters."""
    engine = ExperimentEngine(event_sink=CsvEventSink(str(tmp_path)))
    exp_id = start_experiment(engine)
    for i in range(40):
        subject = f"viewer_{i}"
        engine.get_user_assignment(exp_id, subject)
        if i % 4 == 0:
            engine.track_event(exp_id, subject, "conversion", idempotency_key=f"{subject}:c")
    before = engine.aggregator.snapshot(exp_id)

    engine.aggregator = MetricsAggregator()
    engine.collector.aggregator = engine.aggregator
    experiment = engine.registry.get(exp_id)
    events = list(iter_events(exp_id, base_dir=str(tmp_path)))
    assert engine.collector.replay(experiment, events) == 50
    # keyed events are claimed, so a second replay only re-applies unkeyed ones
    assert engine.collector.replay(experiment, events) == 40

    engine.aggregator = MetricsAggregator()
    engine.collector.aggregator = engine.aggregator
    engine.collector.replay(experiment, events)
    after = engine.aggregator.snapshot(exp_id)
    for name, vm in before.variants.items():
        assert after.variants[name].total_users == vm.total_users
        assert after.variants[name].conversions == vm.conversions
