"""
Deterministic variant assignment for template experiments.

A subject's variant is a pure function of (experiment_id, subject_id) and the
weight vector snapshotted when the experiment started: no lookups, no stored
assignment rows. The bucket hash reproduces the multiplicative string hash of
the system these experiments were migrated from, so existing subjects keep
their variants.
"""

import logging
import re
from typing import Any, Dict, Iterable, List, Optional, Sequence

from .schema import Assignment, Experiment, Variant

logger = logging.getLogger(__name__)

BUCKET_COUNT = 100

TARGETING_KEYS = ("include", "exclude", "subject_prefix", "pattern", "percentage")


def string_hash(value: str) -> int:
    """
    Multiplicative string hash over UTF-16 code units.

    h = h * 31 + unit, wrapped to a signed 32-bit integer after every step,
    absolute value at the end.
    """
    h = 0
    data = value.encode("utf-16-le")
    for i in range(0, len(data), 2):
        unit = data[i] | (data[i + 1] << 8)
        h = ((h << 5) - h + unit) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return abs(h)


def hash_to_bucket(experiment_id: str, subject_id: str) -> int:
    """Deterministic bucket in [0, 99] for a subject within an experiment."""
    return string_hash(f"{experiment_id}-{subject_id}") % BUCKET_COUNT


def pick_variant(variants: Sequence[Variant], bucket: int) -> Variant:
    """
    Walk variants in order accumulating weight.

    The subject lands in the first variant whose cumulative boundary exceeds
    the bucket; falls back to the first variant if none does.
    """
    cumulative = 0
    for variant in variants:
        cumulative += variant.weight
        if bucket < cumulative:
            return variant
    return variants[0]


def matches_targeting(
    experiment_id: str,
    subject_id: str,
    targeting: Optional[Dict[str, Any]],
) -> bool:
    """
    Evaluate targeting rules for a subject.

    Rules (all optional, empty dict admits everyone):
        include: ids always admitted, bypassing the other rules
        exclude: ids never admitted
        subject_prefix: subject id must start with this prefix
        pattern: regex the whole subject id must match
        percentage: share of traffic (0-100) admitted, decided by a bucket
                    salted independently of the variant bucket
    """
    if not targeting:
        return True
    if subject_id in targeting.get("include", ()):
        return True
    if subject_id in targeting.get("exclude", ()):
        return False
    prefix = targeting.get("subject_prefix")
    if prefix and not subject_id.startswith(prefix):
        return False
    pattern = targeting.get("pattern")
    if pattern and re.fullmatch(pattern, subject_id) is None:
        return False
    percentage = targeting.get("percentage")
    if percentage is not None:
        return hash_to_bucket(f"{experiment_id}:targeting", subject_id) < percentage
    return True


class AssignmentEngine:
    """Maps subjects of running experiments to variants."""

    def assign(self, experiment: Experiment, subject_id: str) -> Optional[Assignment]:
        """
        Assign a subject to a variant.

        Args:
            experiment: Experiment definition (live config)
            subject_id: Subject identifier (e.g. a viewer or content request id)

        Returns:
            Assignment, or None if the experiment is not running or the
            subject is outside the targeting rules
        """
        if not experiment.is_running:
            return None
        if not matches_targeting(experiment.experiment_id, subject_id, experiment.targeting):
            return None
        bucket = hash_to_bucket(experiment.experiment_id, subject_id)
        variant = pick_variant(experiment.allocation, bucket)
        return Assignment(
            experiment_id=experiment.experiment_id,
            subject_id=subject_id,
            variant=variant.name,
            bucket=bucket,
        )

    def assign_many(
        self,
        experiment: Experiment,
        subject_ids: Iterable[str],
    ) -> List[Assignment]:
        """Assign a batch of subjects, skipping those not eligible."""
        assignments = []
        for subject_id in subject_ids:
            assignment = self.assign(experiment, subject_id)
            if assignment is not None:
                assignments.append(assignment)

        counts = {name: 0 for name in experiment.variant_names}
        for a in assignments:
            counts[a.variant] += 1
        logger.info(
            f"Assignment complete for {experiment.experiment_id}: "
            f"{len(assignments)} subjects -> {counts}"
        )
        return assignments
