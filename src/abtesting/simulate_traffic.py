"""
Synthetic traffic simulator.

Pushes a population of synthetic subjects through an engine: each subject is
assigned, then converts (and optionally engages / completes) with the
probability configured for its variant. Used by the demo script, the
dashboard and the end-to-end tests.
"""

import logging
from typing import Dict, Optional

import numpy as np

from .engine import ExperimentEngine

logger = logging.getLogger(__name__)

SIMULATOR_SEED = 42


def synthetic_subject_ids(n_subjects: int, random_seed: int = SIMULATOR_SEED) -> list:
    """Distinct, random-looking subject ids (reproducible for a seed)."""
    rng = np.random.default_rng(random_seed)
    ids = set()
    while len(ids) < n_subjects:
        ids.update(f"viewer-{int(x):016x}" for x in rng.integers(0, 2 ** 63, size=n_subjects - len(ids)))
    return sorted(ids)


def run_simulation(
    engine: ExperimentEngine,
    experiment_id: str,
    n_subjects: int,
    conversion_rates: Dict[str, float],
    secondary_rates: Optional[Dict[str, Dict[str, float]]] = None,
    random_seed: int = SIMULATOR_SEED,
) -> Dict:
    """
    Simulate traffic for a running experiment.

    Args:
        engine: Engine holding the experiment
        experiment_id: Running experiment to drive
        n_subjects: Number of distinct subjects to assign
        conversion_rates: True conversion probability per variant
        secondary_rates: Optional {event_type: {variant: probability}}
        random_seed: Random seed for reproducibility

    Returns:
        Dict with n_assigned, per-variant assigned and converted counts
    """
    rng = np.random.default_rng(random_seed)
    secondary_rates = secondary_rates or {}

    assigned: Dict[str, int] = {}
    converted: Dict[str, int] = {}
    for subject_id in synthetic_subject_ids(n_subjects, random_seed):
        assignment = engine.get_user_assignment(experiment_id, subject_id)
        if assignment is None:
            continue
        variant = assignment.variant
        assigned[variant] = assigned.get(variant, 0) + 1

        if rng.random() < conversion_rates.get(variant, 0.0):
            engine.track_event(
                experiment_id, subject_id, "conversion",
                idempotency_key=f"{subject_id}:conversion",
            )
            converted[variant] = converted.get(variant, 0) + 1

        for event_type, rates in secondary_rates.items():
            if rng.random() < rates.get(variant, 0.0):
                engine.track_event(
                    experiment_id, subject_id, event_type,
                    {"value": float(rng.uniform(0.0, 1.0))},
                    idempotency_key=f"{subject_id}:{event_type}",
                )

    summary = {
        "experiment_id": experiment_id,
        "n_assigned": sum(assigned.values()),
        "assigned": assigned,
        "converted": converted,
        "random_seed": random_seed,
    }
    logger.info(f"Simulation complete: {summary}")
    return summary
