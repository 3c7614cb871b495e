"""
Recommendation policy.

A pure function of (experiment, metrics, significance): no hidden state, so
the same inputs always produce the same recommendation.
"""

from typing import List

from .analyze import best_variant
from .schema import (
    Action,
    Confidence,
    Experiment,
    MetricsSnapshot,
    Recommendation,
    SignificanceReport,
)
from .stats import sample_size_for_rates

SRM_REASON = "Sample ratio mismatch: traffic split deviates from configured weights"


def recommend(
    experiment: Experiment,
    metrics: MetricsSnapshot,
    significance: SignificanceReport,
) -> Recommendation:
    """
    Decide whether to continue, implement a winner, or stop.

    Policy, in order:
        1. fewer than 2 x minimum_sample_size users in total -> continue (low)
        2. pick the variant with the highest primary rate
        3. any significant pair involving it -> implement it (high)
        4. its rate is nonzero and beats the baseline -> continue (medium)
        5. otherwise -> stop (medium), no winner
    """
    extra_reasons: List[str] = []
    if not significance.overall.srm_passed:
        extra_reasons.append(SRM_REASON)

    if metrics.total_users < 2 * experiment.minimum_sample_size:
        return Recommendation(
            action=Action.CONTINUE,
            confidence=Confidence.LOW,
            reasons=("Insufficient sample size for reliable results", *extra_reasons),
            next_steps=("Continue experiment to gather more data",),
        )

    best = best_variant(metrics)
    if best is not None and any(r.significant for r in significance.pairs_involving(best)):
        return Recommendation(
            action=Action.IMPLEMENT,
            confidence=Confidence.HIGH,
            winner=best,
            reasons=(f"{best} shows statistically significant improvement", *extra_reasons),
            next_steps=(f"Implement {best} as the new default template",),
        )

    baseline = _baseline(experiment, metrics)
    if best is not None and baseline is not None and best != baseline:
        best_rate = metrics.variants[best].conversion_rate
        baseline_rate = metrics.variants[baseline].conversion_rate
        if best_rate > 0 and best_rate > baseline_rate:
            n_needed = sample_size_for_rates(
                baseline_rate, best_rate, alpha=experiment.significance_level
            )
            return Recommendation(
                action=Action.CONTINUE,
                confidence=Confidence.MEDIUM,
                reasons=(f"{best} shows promising results but needs more data", *extra_reasons),
                next_steps=(
                    "Continue experiment to reach statistical significance",
                    f"Roughly {n_needed} users per variant are needed to confirm "
                    f"{best} against {baseline} at 80% power",
                ),
            )

    return Recommendation(
        action=Action.STOP,
        confidence=Confidence.MEDIUM,
        reasons=("No clear winner detected", *extra_reasons),
        next_steps=("Consider redesigning experiment with different variants",),
    )


def _baseline(experiment: Experiment, metrics: MetricsSnapshot):
    for name in experiment.variant_names:
        if name in metrics.variants:
            return name
    return next(iter(metrics.variants), None)
