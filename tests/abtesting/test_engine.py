"""Tests for the engine lifecycle and fail-open hot path."""
import dataclasses

import pytest
from src.abtesting.config_store import InMemoryConfigStore, JsonFileConfigStore
from src.abtesting.engine import ExperimentEngine
from src.abtesting.exceptions import ExperimentNotFoundError, StateError, StorageError
from src.abtesting.metrics import CounterStore, InMemoryCounterStore
from src.abtesting.schema import Action, ExperimentStatus
from src.abtesting.settings import EngineSettings

CONFIG = {
    "name": "Preview headline",
    "template_type": "preview",
    "variants": [{"name": "control", "weight": 50}, {"name": "punchy", "weight": 50}],
}


class BrokenConfigStore:
    def get(self, key, default=None):
        raise ConnectionError("config store down")

    def set(self, key, value, persist=False):
        raise ConnectionError("config store down")


class BrokenCounterStore(CounterStore):
    def increment(self, key, amount=1):
        raise ConnectionError("counter store down")

    def add_member(self, key, member):
        raise ConnectionError("counter store down")

    def remove_member(self, key, member):
        raise ConnectionError("counter store down")

    def get(self, key):
        raise ConnectionError("counter store down")

    def clear(self, prefix):
        raise ConnectionError("counter store down")


class ReadOnlyCounterStore(InMemoryCounterStore):
    """Reads and resets work; every write fails."""

    def increment(self, key, amount=1):
        raise ConnectionError("counter store read-only")

    def add_member(self, key, member):
        raise ConnectionError("counter store read-only")


def test_lifecycle(engine):
    exp = engine.create_experiment(CONFIG)
    assert exp.status == ExperimentStatus.DRAFT

    started = engine.start_experiment(exp.experiment_id)
    assert started.status == ExperimentStatus.RUNNING
    assert started.actual_start_date is not None
    assert started.started_variants == started.variants

    stopped, results = engine.stop_experiment(exp.experiment_id, reason="winner_found")
    assert stopped.status == ExperimentStatus.COMPLETED
    assert stopped.stop_reason == "winner_found"
    assert stopped.actual_end_date >= started.actual_start_date
    assert results.experiment.status == ExperimentStatus.COMPLETED
    assert engine.registry.get(exp.experiment_id).final_results is not None


def test_illegal_transitions(engine):
    exp = engine.create_experiment(CONFIG)
    with pytest.raises(StateError):
        engine.stop_experiment(exp.experiment_id)
    engine.start_experiment(exp.experiment_id)
    with pytest.raises(StateError) as exc:
        engine.start_experiment(exp.experiment_id)
    assert exc.value.status == "running"
    engine.stop_experiment(exp.experiment_id)
    with pytest.raises(StateError):
        engine.start_experiment(exp.experiment_id)
    with pytest.raises(StateError):
        engine.stop_experiment(exp.experiment_id)
    with pytest.raises(ExperimentNotFoundError):
        engine.start_experiment("exp_missing")


def test_assignment_only_while_running(engine):
    exp = engine.create_experiment(CONFIG)
    assert engine.get_user_assignment(exp.experiment_id, "viewer_1") is None
    engine.start_experiment(exp.experiment_id)
    assignment = engine.get_user_assignment(exp.experiment_id, "viewer_1")
    assert assignment.variant in ("control", "punchy")
    again = engine.get_user_assignment(exp.experiment_id, "viewer_1")
    assert (again.variant, again.bucket) == (assignment.variant, assignment.bucket)
    engine.stop_experiment(exp.experiment_id)
    assert engine.get_user_assignment(exp.experiment_id, "viewer_1") is None
    assert engine.get_user_assignment("exp_missing", "viewer_1") is None


def test_repeat_assignment_counts_one_user(engine):
    exp = engine.create_experiment(CONFIG)
    engine.start_experiment(exp.experiment_id)
    for _ in range(5):
        engine.get_user_assignment(exp.experiment_id, "viewer_1")
    metrics = engine.get_experiment_results(exp.experiment_id).metrics
    assert metrics.total_users == 1
    assert metrics.total_events == 5


def test_weights_frozen_at_start():
    """Editing stored weights of a running experiment does not move subjects."""
    store = InMemoryConfigStore()
    engine = ExperimentEngine(config_store=store)
    exp = engine.create_experiment(CONFIG)
    engine.start_experiment(exp.experiment_id)
    subjects = [f"viewer_{i}" for i in range(200)]
    before = [engine.get_user_assignment(exp.experiment_id, s).variant for s in subjects]

    data = store.get("prompts.experiments")
    data[0]["variants"] = [{"name": "control", "weight": 0}, {"name": "punchy", "weight": 100}]
    store.set("prompts.experiments", data)
    engine.registry.invalidate()

    after = [engine.get_user_assignment(exp.experiment_id, s).variant for s in subjects]
    assert before == after


def test_hot_path_fails_open_on_config_store_outage():
    engine = ExperimentEngine(config_store=BrokenConfigStore())
    assert engine.get_user_assignment("exp_any", "viewer_1") is None
    engine.track_event("exp_any", "viewer_1", "conversion")
    with pytest.raises(StorageError):
        engine.create_experiment(CONFIG)


def test_config_store_outage_after_start(engine):
    exp = engine.create_experiment(CONFIG)
    engine.start_experiment(exp.experiment_id)
    engine.registry.store = BrokenConfigStore()
    engine.registry.invalidate()
    assert engine.get_user_assignment(exp.experiment_id, "viewer_1") is None
    with pytest.raises(StorageError):
        engine.stop_experiment(exp.experiment_id)


def test_start_fails_when_metrics_cannot_be_zeroed():
    engine = ExperimentEngine(counter_store=BrokenCounterStore())
    exp = engine.create_experiment(CONFIG)
    with pytest.raises(StorageError):
        engine.start_experiment(exp.experiment_id)
    assert engine.registry.get(exp.experiment_id).status == ExperimentStatus.DRAFT


def test_counter_store_outage_keeps_assignment_flowing():
    engine = ExperimentEngine(counter_store=ReadOnlyCounterStore())
    exp = engine.create_experiment(CONFIG)
    engine.start_experiment(exp.experiment_id)

    assignment = engine.get_user_assignment(exp.experiment_id, "viewer_1")
    assert assignment is not None
    engine.track_event(exp.experiment_id, "viewer_1", "conversion")
    assert engine.get_experiment_results(exp.experiment_id).metrics.total_users == 0


def test_final_results_frozen_after_stop(engine):
    exp = engine.create_experiment(dict(CONFIG, minimum_sample_size=10))
    engine.start_experiment(exp.experiment_id)
    for i in range(100):
        engine.get_user_assignment(exp.experiment_id, f"viewer_{i}")
    _, results = engine.stop_experiment(exp.experiment_id)

    engine.track_event(exp.experiment_id, "viewer_1", "conversion")
    later = engine.get_experiment_results(exp.experiment_id)
    assert later.metrics == results.metrics
    assert later.recommendations == results.recommendations
    assert later.generated_at == engine.registry.get(exp.experiment_id).final_results.computed_at

    with pytest.raises(dataclasses.FrozenInstanceError):
        later.metrics.total_events = 0


def test_results_while_running(engine):
    exp = engine.create_experiment(CONFIG)
    engine.start_experiment(exp.experiment_id)
    results = engine.get_experiment_results(exp.experiment_id)
    assert results.recommendations.action == Action.CONTINUE
    assert set(results.metrics.variants) == {"control", "punchy"}
    assert set(results.statistical_analysis.pairwise) == {"control_vs_punchy"}


def test_final_results_survive_restart(tmp_path):
    """A new engine over the same config file serves the frozen results."""
    settings = EngineSettings(config_path=str(tmp_path / "experiments.json"))
    engine = ExperimentEngine(settings=settings)
    exp = engine.create_experiment(CONFIG)
    engine.start_experiment(exp.experiment_id)
    for i in range(50):
        engine.get_user_assignment(exp.experiment_id, f"viewer_{i}")
    _, results = engine.stop_experiment(exp.experiment_id)

    restarted = ExperimentEngine(config_store=JsonFileConfigStore(settings.config_path))
    later = restarted.get_experiment_results(exp.experiment_id)
    assert later.metrics.total_users == 50
    assert later.recommendations == results.recommendations
    assert restarted.list_experiments(ExperimentStatus.COMPLETED)[0].experiment_id == exp.experiment_id


def test_repeated_unkeyed_conversions_count_subjects_once(engine):
    """Subjects converting twice without an idempotency key still yield a rate within [0, 1]."""
    exp = engine.create_experiment(CONFIG)
    engine.start_experiment(exp.experiment_id)
    for i in range(300):
        engine.get_user_assignment(exp.experiment_id, f"viewer_{i}")
        engine.track_event(exp.experiment_id, f"viewer_{i}", "conversion")
        engine.track_event(exp.experiment_id, f"viewer_{i}", "conversion")

    results = engine.get_experiment_results(exp.experiment_id)
    for vm in results.metrics.variants.values():
        assert vm.conversions == vm.total_users
        assert vm.conversion_rate == 1.0
        assert vm.metrics["conversion_rate"].count == 2 * vm.total_users
    assert results.statistical_analysis.pairwise["control_vs_punchy"].reason == "zero_variance"

    stopped, final = engine.stop_experiment(exp.experiment_id)
    assert stopped.status == ExperimentStatus.COMPLETED
    assert final.metrics.total_users == 300
