"""Tests for the significance analyzer and the recommendation policy."""
import pytest
from src.abtesting.analyze import SignificanceAnalyzer, results_frame
from src.abtesting.recommend import SRM_REASON, recommend
from src.abtesting.schema import (
    Action,
    Confidence,
    Experiment,
    ExperimentStatus,
    MetricsSnapshot,
    MetricSummary,
    Variant,
    VariantMetrics,
)


def make_experiment(names=("control", "treatment"), minimum_sample_size=100):
    weight = 100 // len(names)
    weights = [weight] * len(names)
    weights[0] += 100 - sum(weights)
    return Experiment(
        experiment_id="exp_rec",
        name="Recommendation test",
        template_type="match_recap",
        variants=[Variant(n, w) for n, w in zip(names, weights)],
        status=ExperimentStatus.RUNNING,
        minimum_sample_size=minimum_sample_size,
    )


def make_snapshot(counts):
    """counts: {variant: (users, conversions)} in variant order."""
    variants = {
        name: VariantMetrics(
            variant=name,
            total_users=n,
            conversions=x,
            metrics={"conversion_rate": MetricSummary(count=x, total=float(x), total_sq=float(x))},
        )
        for name, (n, x) in counts.items()
    }
    return MetricsSnapshot(experiment_id="exp_rec", primary_metric="conversion_rate", variants=variants)


def run(counts, experiment=None):
    experiment = experiment or make_experiment(names=tuple(counts))
    metrics = make_snapshot(counts)
    weights = [v.weight for v in experiment.allocation]
    significance = SignificanceAnalyzer.for_experiment(experiment).analyze(metrics, expected_weights=weights)
    return recommend(experiment, metrics, significance), significance


def test_insufficient_total_continues_with_low_confidence():
    rec, _ = run({"control": (90, 5), "treatment": (90, 30)})
    assert rec.action == Action.CONTINUE
    assert rec.confidence == Confidence.LOW
    assert rec.winner is None


def test_significant_winner_is_implemented():
    rec, significance = run({"control": (1000, 100), "treatment": (1000, 130)})
    assert significance.overall.has_significant_result
    assert significance.overall.significant_pairs == ("control_vs_treatment",)
    assert rec.action == Action.IMPLEMENT
    assert rec.confidence == Confidence.HIGH
    assert rec.winner == "treatment"


def test_promising_but_not_significant_continues():
    rec, _ = run({"control": (1000, 100), "treatment": (1000, 110)})
    assert rec.action == Action.CONTINUE
    assert rec.confidence == Confidence.MEDIUM
    assert rec.winner is None
    assert any("users per variant" in step for step in rec.next_steps)


def test_baseline_best_stops():
    rec, _ = run({"control": (1000, 130), "treatment": (1000, 120)})
    assert rec.action == Action.STOP
    assert rec.confidence == Confidence.MEDIUM
    assert rec.winner is None


def test_all_zero_rates_stop():
    rec, significance = run({"control": (1000, 0), "treatment": (1000, 0)})
    assert significance.pairwise["control_vs_treatment"].reason == "zero_variance"
    assert significance.overall.best_variant == "control"
    assert rec.action == Action.STOP


def test_three_variants_pairwise():
    rec, significance = run({"a": (1000, 100), "b": (1000, 105), "c": (1000, 140)})
    assert list(significance.pairwise) == ["a_vs_b", "a_vs_c", "b_vs_c"]
    assert significance.overall.best_variant == "c"
    assert rec.action == Action.IMPLEMENT
    assert rec.winner == "c"


def test_srm_failure_adds_reason_without_changing_action():
    rec, significance = run({"control": (900, 90), "treatment": (100, 10)})
    assert not significance.overall.srm_passed
    assert rec.action == Action.STOP
    assert SRM_REASON in rec.reasons


def test_recommend_is_pure():
    experiment = make_experiment()
    metrics = make_snapshot({"control": (1000, 100), "treatment": (1000, 110)})
    significance = SignificanceAnalyzer().analyze(metrics)
    assert recommend(experiment, metrics, significance) == recommend(experiment, metrics, significance)


def test_results_frame():
    _, significance = run({"control": (1000, 100), "treatment": (1000, 130)})
    df = results_frame(significance)
    assert len(df) == 1
    row = df.iloc[0]
    assert row["pair"] == "control_vs_treatment"
    assert bool(row["significant"])
    assert row["ci_low"] > 0
    assert row["effect"] == pytest.approx(0.03)
