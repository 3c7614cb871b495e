"""
Experiment registry: validation, id generation and persistence.

All experiments live as a list of dicts under one logical config key. Reads
go through a TTL cache of serialized experiments owned by the registry
instance, so every caller gets its own Experiment object.
"""

import logging
import threading
import time
import uuid
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple

from .assignment import TARGETING_KEYS
from .config_store import ConfigStore
from .exceptions import ExperimentNotFoundError, StorageError, ValidationError
from .schema import (
    DEFAULT_MINIMUM_SAMPLE_SIZE,
    DEFAULT_PRIMARY_METRIC,
    DEFAULT_SECONDARY_METRICS,
    DEFAULT_SIGNIFICANCE_LEVEL,
    Experiment,
    ExperimentStatus,
    Variant,
    parse_datetime,
    utcnow,
)
from .settings import DEFAULT_CACHE_TTL_SECONDS, DEFAULT_CONFIG_KEY

logger = logging.getLogger(__name__)

DEFAULT_DURATION_DAYS = 30


def generate_experiment_id() -> str:
    """Timestamp plus random suffix, unique without a central sequence."""
    return f"exp_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


def parse_variants(raw: Any) -> List[Variant]:
    """
    Normalise variant config to an ordered list.

    Accepts a list of {"name", "weight"} dicts, or an ordered mapping of
    name -> weight / name -> {"weight": ...}.
    """
    if raw is None:
        return []
    items: List[Tuple[Any, Any]] = []
    if isinstance(raw, dict):
        for name, entry in raw.items():
            weight = entry.get("weight") if isinstance(entry, dict) else entry
            items.append((name, weight))
    elif isinstance(raw, (list, tuple)):
        for entry in raw:
            if isinstance(entry, Variant):
                items.append((entry.name, entry.weight))
            elif isinstance(entry, dict) and "name" in entry:
                items.append((entry["name"], entry.get("weight")))
            else:
                raise ValidationError(f"Invalid variant entry: {entry!r}", rule="invalid_variant")
    else:
        raise ValidationError("Variants must be a list or mapping", rule="invalid_variant")

    variants = []
    for name, weight in items:
        if isinstance(weight, bool) or not isinstance(weight, (int, float)):
            raise ValidationError(
                f"Variant {name!r} weight must be a number, got {weight!r}",
                rule="invalid_weight",
            )
        if weight < 0 or float(weight) != int(weight):
            raise ValidationError(
                f"Variant {name!r} weight must be a whole non-negative percentage, got {weight}",
                rule="invalid_weight",
            )
        variants.append(Variant(name=str(name), weight=int(weight)))
    return variants


def validate_experiment(experiment: Experiment) -> None:
    """
    Validate an experiment definition.

    Raises:
        ValidationError: identifying the first violated rule
    """
    if not experiment.name:
        raise ValidationError("Experiment name is required", rule="name_required")
    if not experiment.template_type:
        raise ValidationError("Template type is required", rule="template_type_required")
    if len(experiment.variants) < 2:
        raise ValidationError("At least 2 variants are required", rule="min_variants")

    names = [v.name for v in experiment.variants]
    if len(names) != len(set(names)):
        raise ValidationError("Variant names must be unique", rule="duplicate_variant")

    total_weight = sum(v.weight for v in experiment.variants)
    if abs(total_weight - 100) > 0.01:
        raise ValidationError(
            f"Variant weights must sum to 100, got {total_weight}", rule="weights_sum"
        )

    if not 0 < experiment.significance_level < 1:
        raise ValidationError(
            f"Significance level must be in (0, 1), got {experiment.significance_level}",
            rule="significance_level",
        )
    if experiment.minimum_sample_size < 1:
        raise ValidationError(
            f"Minimum sample size must be at least 1, got {experiment.minimum_sample_size}",
            rule="minimum_sample_size",
        )

    unknown = set(experiment.targeting) - set(TARGETING_KEYS)
    if unknown:
        raise ValidationError(
            f"Unknown targeting rules: {sorted(unknown)}", rule="targeting"
        )
    percentage = experiment.targeting.get("percentage")
    if percentage is not None and not 0 <= percentage <= 100:
        raise ValidationError(
            f"Targeting percentage must be in [0, 100], got {percentage}", rule="targeting"
        )


class ExperimentRegistry:
    """Owns experiment definitions and their persisted lifecycle state."""

    def __init__(
        self,
        store: ConfigStore,
        config_key: str = DEFAULT_CONFIG_KEY,
        cache_ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS,
        significance_level: float = DEFAULT_SIGNIFICANCE_LEVEL,
        minimum_sample_size: int = DEFAULT_MINIMUM_SAMPLE_SIZE,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store
        self.config_key = config_key
        self.cache_ttl_seconds = cache_ttl_seconds
        self.significance_level = significance_level
        self.minimum_sample_size = minimum_sample_size
        self._clock = clock
        self._lock = threading.RLock()
        self._cache: Dict[str, Tuple[float, Dict[str, Any]]] = {}

    def _load_all(self) -> List[Dict[str, Any]]:
        try:
            experiments = self.store.get(self.config_key, [])
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Config store read failed for {self.config_key}", cause=e) from e
        return list(experiments or [])

    def _cache_put(self, data: Dict[str, Any]) -> None:
        self._cache[data["experiment_id"]] = (self._clock(), data)

    def _cached(self, experiment_id: str) -> Optional[Dict[str, Any]]:
        entry = self._cache.get(experiment_id)
        if entry is None:
            return None
        loaded_at, data = entry
        if self._clock() - loaded_at > self.cache_ttl_seconds:
            del self._cache[experiment_id]
            return None
        return data

    def create(self, config: Dict[str, Any]) -> Experiment:
        """
        Validate a config and persist it as a draft experiment.

        Args:
            config: Experiment config. Required: name, template_type, variants.

        Returns:
            The created Experiment (status draft)

        Raises:
            ValidationError: config violates a rule; nothing is persisted
            StorageError: config store unreachable
        """
        start_date = parse_datetime(config.get("start_date")) or utcnow()
        end_date = parse_datetime(config.get("end_date")) or start_date + timedelta(
            days=config.get("duration_days", DEFAULT_DURATION_DAYS)
        )
        experiment = Experiment(
            experiment_id=config.get("experiment_id") or generate_experiment_id(),
            name=config.get("name") or "",
            template_type=config.get("template_type") or "",
            variants=parse_variants(config.get("variants")),
            description=config.get("description", ""),
            topic=config.get("topic", "all"),
            start_date=start_date,
            end_date=end_date,
            primary_metric=config.get("primary_metric", DEFAULT_PRIMARY_METRIC),
            secondary_metrics=list(config.get("secondary_metrics", DEFAULT_SECONDARY_METRICS)),
            significance_level=config.get("significance_level", self.significance_level),
            minimum_sample_size=config.get("minimum_sample_size", self.minimum_sample_size),
            targeting=dict(config.get("targeting") or {}),
            created_by=config.get("created_by", "system"),
        )
        validate_experiment(experiment)

        with self._lock:
            if "experiment_id" in config and self.find(experiment.experiment_id) is not None:
                raise ValidationError(
                    f"Experiment {experiment.experiment_id} already exists", rule="duplicate_id"
                )
            self.save(experiment)

        logger.info(f"Created experiment {experiment.experiment_id} ({experiment.name})")
        return experiment

    def find(self, experiment_id: str) -> Optional[Experiment]:
        """Return the experiment, or None if unknown. Raises StorageError."""
        with self._lock:
            data = self._cached(experiment_id)
            if data is None:
                for item in self._load_all():
                    self._cache_put(item)
                data = self._cached(experiment_id)
        if data is None:
            return None
        return Experiment.from_dict(data)

    def get(self, experiment_id: str) -> Experiment:
        """Return the experiment or raise ExperimentNotFoundError."""
        experiment = self.find(experiment_id)
        if experiment is None:
            raise ExperimentNotFoundError(experiment_id)
        return experiment

    def save(self, experiment: Experiment) -> None:
        """Upsert an experiment into the persisted list."""
        data = experiment.to_dict()
        with self._lock:
            experiments = self._load_all()
            for i, item in enumerate(experiments):
                if item.get("experiment_id") == experiment.experiment_id:
                    experiments[i] = data
                    break
            else:
                experiments.append(data)
            try:
                self.store.set(self.config_key, experiments, persist=True)
            except StorageError:
                raise
            except Exception as e:
                raise StorageError(
                    f"Config store write failed for {self.config_key}", cause=e
                ) from e
            self._cache_put(data)

    def list_experiments(self, status: Optional[ExperimentStatus] = None) -> List[Experiment]:
        experiments = [Experiment.from_dict(item) for item in self._load_all()]
        if status is not None:
            experiments = [e for e in experiments if e.status == status]
        return experiments

    def invalidate(self, experiment_id: Optional[str] = None) -> None:
        """Drop one (or every) cached experiment."""
        with self._lock:
            if experiment_id is None:
                self._cache.clear()
            else:
                self._cache.pop(experiment_id, None)
