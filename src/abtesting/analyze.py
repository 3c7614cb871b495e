"""
Significance analysis over aggregated experiment metrics.

Runs a two-proportion z-test on the primary metric for every unordered pair
of variants, gated on the minimum per-variant sample size, and summarises the
experiment as a whole (any significant pair, best variant, SRM check).
"""

import logging
from itertools import combinations
from typing import Dict, Optional, Sequence

import pandas as pd

from .schema import (
    DEFAULT_MINIMUM_SAMPLE_SIZE,
    DEFAULT_SIGNIFICANCE_LEVEL,
    Experiment,
    MetricsSnapshot,
    OverallSignificance,
    PairResult,
    SignificanceReport,
)
from .stats import check_srm, two_proportion_z_test

logger = logging.getLogger(__name__)


def pair_key(variant_a: str, variant_b: str) -> str:
    return f"{variant_a}_vs_{variant_b}"


def best_variant(metrics: MetricsSnapshot) -> Optional[str]:
    """Variant with the highest primary rate; the earliest variant wins ties."""
    best_name, best_rate = None, None
    for name, vm in metrics.variants.items():
        if best_rate is None or vm.conversion_rate > best_rate:
            best_name, best_rate = name, vm.conversion_rate
    return best_name


class SignificanceAnalyzer:
    """Pairwise significance testing for one experiment's metrics."""

    def __init__(
        self,
        significance_level: float = DEFAULT_SIGNIFICANCE_LEVEL,
        minimum_sample_size: int = DEFAULT_MINIMUM_SAMPLE_SIZE,
        srm_alpha: float = 0.01,
    ) -> None:
        self.significance_level = significance_level
        self.minimum_sample_size = minimum_sample_size
        self.srm_alpha = srm_alpha

    @classmethod
    def for_experiment(cls, experiment: Experiment, srm_alpha: float = 0.01) -> "SignificanceAnalyzer":
        return cls(
            significance_level=experiment.significance_level,
            minimum_sample_size=experiment.minimum_sample_size,
            srm_alpha=srm_alpha,
        )

    def analyze(
        self,
        metrics: MetricsSnapshot,
        expected_weights: Optional[Sequence[float]] = None,
    ) -> SignificanceReport:
        """
        Test every pair of variants and build the overall summary.

        Args:
            metrics: Snapshot of aggregated metrics
            expected_weights: Configured weights in variant order, enables SRM check

        Returns:
            SignificanceReport
        """
        pairwise: Dict[str, PairResult] = {}
        for a, b in combinations(list(metrics.variants), 2):
            vm_a, vm_b = metrics.variants[a], metrics.variants[b]
            pairwise[pair_key(a, b)] = two_proportion_z_test(
                a, vm_a.total_users, vm_a.conversions,
                b, vm_b.total_users, vm_b.conversions,
                significance_level=self.significance_level,
                minimum_sample_size=self.minimum_sample_size,
            )

        significant_pairs = tuple(k for k, r in pairwise.items() if r.significant)

        srm_passed, srm_p = True, None
        if expected_weights is not None and len(expected_weights) == len(metrics.variants):
            observed = [vm.total_users for vm in metrics.variants.values()]
            srm_passed, _, srm_p = check_srm(observed, expected_weights, alpha=self.srm_alpha)
            if not srm_passed:
                logger.warning(
                    f"Sample ratio mismatch in {metrics.experiment_id}: "
                    f"observed={observed}, weights={list(expected_weights)}, p={srm_p:.4g}"
                )

        overall = OverallSignificance(
            has_significant_result=bool(significant_pairs),
            significant_pairs=significant_pairs,
            best_variant=best_variant(metrics),
            total_users=metrics.total_users,
            srm_passed=srm_passed,
            srm_p_value=srm_p,
        )
        logger.info(
            f"Analyzed {metrics.experiment_id}: {len(pairwise)} pairs, "
            f"{len(significant_pairs)} significant"
        )
        return SignificanceReport(pairwise=pairwise, overall=overall)


def results_frame(report: SignificanceReport) -> pd.DataFrame:
    """One row per variant pair."""
    rows = []
    for key, r in report.pairwise.items():
        ci = r.confidence_interval
        rows.append({
            "pair": key,
            "variant_a": r.variant_a,
            "variant_b": r.variant_b,
            "n_a": r.n_a,
            "n_b": r.n_b,
            "effect": r.effect,
            "relative_effect": r.relative_effect,
            "z_score": r.z_score,
            "p_value": r.p_value,
            "ci_low": ci[0] if ci else None,
            "ci_high": ci[1] if ci else None,
            "significant": r.significant,
            "reason": r.reason,
        })
    return pd.DataFrame(rows)
