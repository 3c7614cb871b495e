"""
Per-variant metric aggregation.

Counters live in a CounterStore that offers atomic primitives: increment a
numeric key, and add or remove a member of a set (adding reports whether it
was new). The in-memory store serializes access per key; a durable backend
with atomic ADD / conditional put semantics can be dropped in instead.
"""

import logging
import threading
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Tuple

import pandas as pd

from .exceptions import StorageError
from .schema import DEFAULT_PRIMARY_METRIC, MetricsSnapshot, MetricSummary, VariantMetrics

logger = logging.getLogger(__name__)

CounterKey = Tuple[str, ...]

USERS = "__users__"
EVENTS = "__events__"
EVENT_KEYS = "__event_keys__"
CONVERTERS = "__converters__"


class CounterStore(ABC):
    """Backing store for metric counters."""

    @abstractmethod
    def increment(self, key: CounterKey, amount: float = 1) -> float:
        """Atomically add amount to key; returns the new value."""

    @abstractmethod
    def add_member(self, key: CounterKey, member: str) -> bool:
        """Atomically add member to the set at key; True if it was not present."""

    @abstractmethod
    def remove_member(self, key: CounterKey, member: str) -> None:
        """Remove member from the set at key if present."""

    @abstractmethod
    def get(self, key: CounterKey) -> float:
        """Current value of a counter (0 when never incremented)."""

    @abstractmethod
    def clear(self, prefix: CounterKey) -> None:
        """Remove every counter and set whose key starts with prefix."""


class InMemoryCounterStore(CounterStore):
    """Thread-safe counter store with one lock per key."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[CounterKey, threading.Lock] = {}
        self._values: Dict[CounterKey, float] = defaultdict(float)
        self._sets: Dict[CounterKey, set] = defaultdict(set)

    def _lock_for(self, key: CounterKey) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    def increment(self, key: CounterKey, amount: float = 1) -> float:
        with self._lock_for(key):
            self._values[key] += amount
            return self._values[key]

    def add_member(self, key: CounterKey, member: str) -> bool:
        with self._lock_for(key):
            members = self._sets[key]
            if member in members:
                return False
            members.add(member)
            return True

    def remove_member(self, key: CounterKey, member: str) -> None:
        with self._lock_for(key):
            self._sets[key].discard(member)

    def get(self, key: CounterKey) -> float:
        with self._lock_for(key):
            return self._values.get(key, 0.0)

    def clear(self, prefix: CounterKey) -> None:
        n = len(prefix)
        with self._guard:
            for store in (self._values, self._sets):
                for key in [k for k in store if k[:n] == prefix]:
                    del store[key]


def _layout(
    variant_names: Iterable[str],
    primary_metric: str,
    metric_names: Iterable[str],
) -> Tuple[List[str], str, List[str]]:
    metrics = [primary_metric] + [m for m in metric_names if m != primary_metric]
    return list(variant_names), primary_metric, metrics


class MetricsAggregator:
    """Maintains per-variant counters for every experiment."""

    def __init__(self, store: Optional[CounterStore] = None) -> None:
        self.store = store or InMemoryCounterStore()
        self._layout_lock = threading.Lock()
        # experiment_id -> (variant order, primary metric, metric names)
        self._layouts: Dict[str, Tuple[List[str], str, List[str]]] = {}

    def _call(self, op, *args):
        try:
            return op(*args)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError("Counter store operation failed", cause=e) from e

    def _note(self, experiment_id: str, variant: str, metric_name: Optional[str] = None) -> None:
        with self._layout_lock:
            variants, primary, metrics = self._layouts.setdefault(
                experiment_id, ([], DEFAULT_PRIMARY_METRIC, [DEFAULT_PRIMARY_METRIC])
            )
            if variant not in variants:
                variants.append(variant)
            if metric_name is not None and metric_name not in metrics:
                metrics.append(metric_name)

    def register(
        self,
        experiment_id: str,
        variant_names: Iterable[str],
        primary_metric: str = DEFAULT_PRIMARY_METRIC,
        metric_names: Iterable[str] = (),
    ) -> None:
        """Declare an experiment's variants and metrics unless already known. Never resets."""
        with self._layout_lock:
            if experiment_id not in self._layouts:
                self._layouts[experiment_id] = _layout(variant_names, primary_metric, metric_names)

    def initialize(
        self,
        experiment_id: str,
        variant_names: Iterable[str],
        primary_metric: str = DEFAULT_PRIMARY_METRIC,
        metric_names: Iterable[str] = (),
    ) -> None:
        """Zero all metrics for an experiment that is starting."""
        layout = _layout(variant_names, primary_metric, metric_names)
        self._call(self.store.clear, (experiment_id,))
        with self._layout_lock:
            self._layouts[experiment_id] = layout
        logger.info(f"Initialized metrics for {experiment_id}: variants={layout[0]}")

    def record_exposure(self, experiment_id: str, variant: str, subject_id: str) -> bool:
        """
        Count a subject towards its variant's total_users, once per experiment.

        Returns:
            True if this call counted the subject, False for a repeat exposure
        """
        self._note(experiment_id, variant)
        is_new = self._call(self.store.add_member, (experiment_id, USERS), subject_id)
        if is_new:
            self._call(self.store.increment, (experiment_id, variant, USERS), 1)
        return is_new

    def record_outcome(
        self,
        experiment_id: str,
        variant: str,
        metric_name: str,
        value: float = 1.0,
        subject_id: Optional[str] = None,
    ) -> None:
        """
        Increment a metric counter and its value sums for a variant.

        Outcomes on the primary metric also feed the variant's conversions,
        which count each subject_id at most once. Without a subject_id every
        call counts as a separate converter.
        """
        self._note(experiment_id, variant, metric_name)
        self._call(self.store.increment, (experiment_id, variant, metric_name, "count"), 1)
        self._call(self.store.increment, (experiment_id, variant, metric_name, "total"), value)
        self._call(
            self.store.increment, (experiment_id, variant, metric_name, "total_sq"), value * value
        )
        with self._layout_lock:
            primary = self._layouts[experiment_id][1]
        if metric_name != primary:
            return
        if subject_id is None or self._call(
            self.store.add_member, (experiment_id, variant, CONVERTERS), subject_id
        ):
            self._call(self.store.increment, (experiment_id, variant, "converters"), 1)

    def record_event(self, experiment_id: str) -> None:
        self._call(self.store.increment, (experiment_id, EVENTS), 1)

    def claim_event(self, experiment_id: str, idempotency_key: str) -> bool:
        """True the first time an idempotency key is seen for an experiment."""
        return self._call(self.store.add_member, (experiment_id, EVENT_KEYS), idempotency_key)

    def release_event(self, experiment_id: str, idempotency_key: str) -> None:
        """Forget a claimed idempotency key so the event can be retried."""
        self._call(self.store.remove_member, (experiment_id, EVENT_KEYS), idempotency_key)

    def snapshot(self, experiment_id: str) -> MetricsSnapshot:
        """Read the current counters into an immutable snapshot."""
        with self._layout_lock:
            layout = self._layouts.get(experiment_id)
            if layout is None:
                return MetricsSnapshot(experiment_id=experiment_id, primary_metric=DEFAULT_PRIMARY_METRIC)
            variants, primary, metrics = list(layout[0]), layout[1], list(layout[2])

        per_variant = {}
        for variant in variants:
            summaries = {}
            for metric in metrics:
                summaries[metric] = MetricSummary(
                    count=int(self._call(self.store.get, (experiment_id, variant, metric, "count"))),
                    total=self._call(self.store.get, (experiment_id, variant, metric, "total")),
                    total_sq=self._call(self.store.get, (experiment_id, variant, metric, "total_sq")),
                )
            per_variant[variant] = VariantMetrics(
                variant=variant,
                total_users=int(self._call(self.store.get, (experiment_id, variant, USERS))),
                conversions=int(self._call(self.store.get, (experiment_id, variant, "converters"))),
                metrics=summaries,
            )
        return MetricsSnapshot(
            experiment_id=experiment_id,
            primary_metric=primary,
            variants=per_variant,
            total_events=int(self._call(self.store.get, (experiment_id, EVENTS))),
        )


def metrics_frame(snapshot: MetricsSnapshot) -> pd.DataFrame:
    """One row per variant with users, conversions, rates and metric means."""
    rows = []
    for name, vm in snapshot.variants.items():
        row = {
            "variant": name,
            "total_users": vm.total_users,
            "conversions": vm.conversions,
            "conversion_rate": vm.conversion_rate,
        }
        for metric, summary in vm.metrics.items():
            if metric == snapshot.primary_metric:
                continue
            row[f"{metric}_count"] = summary.count
            row[metric] = vm.rate(metric)
            row[f"{metric}_mean"] = summary.mean
        rows.append(row)
    return pd.DataFrame(rows)
