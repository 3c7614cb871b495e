"""
Power analysis and MDE (Minimum Detectable Effect) calculator.

Per-variant sample sizes for two-proportion tests with equal allocation.
"""

import numpy as np
from scipy import stats


def sample_size_for_rates(
    p_a: float,
    p_b: float,
    alpha: float = 0.05,
    power: float = 0.8,
) -> int:
    """
    Users per variant needed to detect p_a vs p_b with a two-sided test.

    Args:
        p_a: Baseline conversion rate
        p_b: Comparison conversion rate
        alpha: Type I error rate
        power: Statistical power (1 - Type II)

    Returns:
        Sample size per variant (0 when the rates are identical, i.e. undetectable)
    """
    effect = abs(p_b - p_a)
    if effect == 0:
        return 0

    z_alpha = stats.norm.ppf(1 - alpha / 2)
    z_beta = stats.norm.ppf(power)

    p_pool = (p_a + p_b) / 2
    n = (
        z_alpha * np.sqrt(2 * p_pool * (1 - p_pool))
        + z_beta * np.sqrt(p_a * (1 - p_a) + p_b * (1 - p_b))
    ) ** 2 / effect ** 2
    return int(np.ceil(n))


def sample_size_proportion(
    baseline: float,
    mde_relative: float,
    alpha: float = 0.05,
    power: float = 0.8,
) -> int:
    """
    Sample size per variant to detect a relative lift over a baseline rate.

    Args:
        baseline: Baseline proportion (e.g. 0.10 click-through)
        mde_relative: Minimum detectable effect as relative change (0.10 = +10%)
        alpha: Type I error rate
        power: Statistical power

    Returns:
        Sample size per variant
    """
    p_b = min(baseline * (1 + mde_relative), 1.0)
    return sample_size_for_rates(baseline, p_b, alpha=alpha, power=power)


def mde_proportion(
    baseline: float,
    n_per_variant: int,
    alpha: float = 0.05,
    power: float = 0.8,
) -> float:
    """
    Minimum detectable effect (relative) for a given per-variant sample size.

    Returns:
        MDE as relative change (e.g. 0.10 = 10% relative lift detectable)
    """
    z_alpha = stats.norm.ppf(1 - alpha / 2)
    z_beta = stats.norm.ppf(power)

    se = np.sqrt(2 * baseline * (1 - baseline) / n_per_variant)
    mde_abs = (z_alpha + z_beta) * se
    return float(mde_abs / baseline) if baseline > 0 else 1.0
