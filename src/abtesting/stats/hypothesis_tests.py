"""
Two-proportion hypothesis test for experiment analysis.

The normal CDF comes from the Abramowitz-Stegun 7.1.26 erf approximation
(absolute error below 1.5e-7) rather than a library routine, so p-values
match other implementations of the same formulas exactly.
"""

import math

from ..schema import PairResult

Z_95 = 1.96

INSUFFICIENT_SAMPLE_SIZE = "insufficient_sample_size"
ZERO_VARIANCE = "zero_variance"

_A1 = 0.254829592
_A2 = -0.284496736
_A3 = 1.421413741
_A4 = -1.453152027
_A5 = 1.061405429
_P = 0.3275911


def erf(x: float) -> float:
    """Abramowitz-Stegun rational approximation of the error function."""
    sign = 1.0 if x >= 0 else -1.0
    x = abs(x)
    t = 1.0 / (1.0 + _P * x)
    y = 1.0 - (((((_A5 * t + _A4) * t) + _A3) * t + _A2) * t + _A1) * t * math.exp(-x * x)
    return sign * y


def normal_cdf(x: float) -> float:
    """Standard normal CDF."""
    return 0.5 * (1.0 + erf(x / math.sqrt(2.0)))


def two_proportion_z_test(
    variant_a: str,
    n_a: int,
    x_a: int,
    variant_b: str,
    n_b: int,
    x_b: int,
    significance_level: float = 0.05,
    minimum_sample_size: int = 100,
) -> PairResult:
    """
    Two-proportion z-test of variant B against variant A.

    Args:
        variant_a: Name of the first variant
        n_a: Users in A
        x_a: Conversions in A
        variant_b: Name of the second variant
        n_b: Users in B
        x_b: Conversions in B
        significance_level: Two-tailed alpha
        minimum_sample_size: Per-variant n below which no test is attempted

    Returns:
        PairResult; insufficient samples and zero variance are reported via
        `reason` with significant=False
    """
    p_a = x_a / n_a if n_a > 0 else 0.0
    p_b = x_b / n_b if n_b > 0 else 0.0
    effect = p_b - p_a
    relative_effect = effect / p_a if p_a > 0 else 0.0

    if n_a < minimum_sample_size or n_b < minimum_sample_size:
        return PairResult(
            variant_a=variant_a,
            variant_b=variant_b,
            significant=False,
            reason=INSUFFICIENT_SAMPLE_SIZE,
            effect=effect,
            relative_effect=relative_effect,
            n_a=n_a,
            n_b=n_b,
        )

    p_pool = min((x_a + x_b) / (n_a + n_b), 1.0)
    se = math.sqrt(max(p_pool * (1 - p_pool), 0.0) * (1 / n_a + 1 / n_b))
    if se == 0:
        return PairResult(
            variant_a=variant_a,
            variant_b=variant_b,
            significant=False,
            reason=ZERO_VARIANCE,
            effect=effect,
            relative_effect=0.0,
            n_a=n_a,
            n_b=n_b,
        )

    z = effect / se
    p_value = 2 * (1 - normal_cdf(abs(z)))

    margin = Z_95 * math.sqrt(max(p_a * (1 - p_a) / n_a + p_b * (1 - p_b) / n_b, 0.0))

    return PairResult(
        variant_a=variant_a,
        variant_b=variant_b,
        significant=p_value < significance_level,
        p_value=p_value,
        z_score=z,
        confidence_interval=(effect - margin, effect + margin),
        effect=effect,
        relative_effect=relative_effect,
        n_a=n_a,
        n_b=n_b,
    )
