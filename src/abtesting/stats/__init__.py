"""Experiment statistics module."""

from .hypothesis_tests import (
    INSUFFICIENT_SAMPLE_SIZE,
    ZERO_VARIANCE,
    erf,
    normal_cdf,
    two_proportion_z_test,
)
from .power import mde_proportion, sample_size_for_rates, sample_size_proportion
from .srm import check_srm, srm_chi_square

__all__ = [
    "INSUFFICIENT_SAMPLE_SIZE",
    "ZERO_VARIANCE",
    "erf",
    "normal_cdf",
    "two_proportion_z_test",
    "mde_proportion",
    "sample_size_for_rates",
    "sample_size_proportion",
    "check_srm",
    "srm_chi_square",
]
