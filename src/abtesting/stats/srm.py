"""
Sample Ratio Mismatch (SRM) chi-square test.

Detects if the observed traffic split deviates from the configured variant
weights by more than statistical noise.
"""

from typing import Sequence, Tuple

import numpy as np
from scipy import stats


def srm_chi_square(
    observed: Sequence[int],
    weights: Sequence[float],
) -> Tuple[float, float]:
    """
    Chi-square goodness-of-fit test for sample ratio mismatch.

    H0: observed counts follow the configured weights
    H1: the split differs from the configured weights

    Args:
        observed: Users per variant
        weights: Configured weight per variant (any positive scale)

    Returns:
        Tuple of (chi2_statistic, p_value)
    """
    observed = np.asarray(observed, dtype=float)
    weights = np.asarray(weights, dtype=float)
    n_total = observed.sum()
    if n_total == 0 or len(observed) < 2:
        return 0.0, 1.0

    # zero-weight arms should see no traffic; leave them out of the test
    mask = weights > 0
    if mask.sum() < 2:
        return 0.0, 1.0
    expected = weights[mask] / weights[mask].sum() * observed[mask].sum()

    chi2, p_value = stats.chisquare(observed[mask], f_exp=expected)
    return float(chi2), float(p_value)


def check_srm(
    observed: Sequence[int],
    weights: Sequence[float],
    alpha: float = 0.01,
) -> Tuple[bool, float, float]:
    """
    Check for sample ratio mismatch.

    Args:
        observed: Users per variant
        weights: Configured weight per variant
        alpha: Significance threshold (default 0.01)

    Returns:
        Tuple of (srm_passed, chi2_statistic, p_value)
    """
    chi2, p_value = srm_chi_square(observed, weights)
    srm_passed = p_value >= alpha
    return srm_passed, chi2, p_value
