"""
Event collection for running experiments.

Every tracked event is attributed to the subject's (re-derived) variant and
forwarded to the metrics aggregator. Events for subjects without an
assignment are dropped; tracking never invents one. The raw event is also
appended to an optional audit sink on a best-effort basis.
"""

import logging
from typing import Any, Dict, Iterable, Optional

from .assignment import AssignmentEngine
from .event_store import EventSink
from .exceptions import StorageError
from .metrics import MetricsAggregator
from .registry import ExperimentRegistry
from .schema import EXPOSURE_EVENT_TYPES, Event, Experiment, event_matches_metric

logger = logging.getLogger(__name__)


def _event_value(event: Event) -> float:
    raw = event.event_data.get("value", 1.0)
    try:
        return float(raw)
    except (TypeError, ValueError):
        logger.warning(f"Non-numeric value {raw!r} on {event.event_type} event, counting as 1.0")
        return 1.0


class EventCollector:
    """Records exposure and outcome events against variants."""

    def __init__(
        self,
        registry: ExperimentRegistry,
        assignment_engine: AssignmentEngine,
        aggregator: MetricsAggregator,
        event_sink: Optional[EventSink] = None,
    ) -> None:
        self.registry = registry
        self.assignment_engine = assignment_engine
        self.aggregator = aggregator
        self.event_sink = event_sink

    def track(
        self,
        experiment_id: str,
        subject_id: str,
        event_type: str,
        event_data: Optional[Dict[str, Any]] = None,
        idempotency_key: Optional[str] = None,
        experiment: Optional[Experiment] = None,
    ) -> Optional[Event]:
        """
        Track an event for a subject.

        Args:
            experiment_id: Experiment identifier
            subject_id: Subject identifier
            event_type: e.g. 'assignment', 'conversion', 'engagement'
            event_data: Free-form payload; 'value' feeds mean/variance sums
            idempotency_key: Deduplicates redelivered events
            experiment: Already-loaded experiment, skips the registry lookup

        Returns:
            The recorded Event, or None if it was dropped
        """
        event_data = dict(event_data or {})
        try:
            if experiment is None:
                experiment = self.registry.find(experiment_id)
            if experiment is None:
                logger.debug(f"Dropping {event_type} event: unknown experiment {experiment_id}")
                return None

            assignment = self.assignment_engine.assign(experiment, subject_id)
            if assignment is None:
                logger.debug(
                    f"Dropping {event_type} event for {subject_id}: no assignment in {experiment_id}"
                )
                return None

            event = Event(
                experiment_id=experiment_id,
                subject_id=subject_id,
                event_type=event_type,
                variant=assignment.variant,
                event_data=event_data,
                idempotency_key=idempotency_key,
            )
            if not self._apply_once(experiment, event):
                logger.debug(f"Duplicate event {idempotency_key} for {experiment_id} ignored")
                return None
        except StorageError as e:
            logger.warning(f"Failed to track {event_type} event for {experiment_id}: {e}")
            return None

        self._append_to_sink(event)
        logger.debug(f"Tracked event {experiment_id}/{event_type}/{subject_id} -> {event.variant}")
        return event

    def _apply(self, experiment: Experiment, event: Event) -> None:
        self.aggregator.register(
            experiment.experiment_id,
            experiment.variant_names,
            primary_metric=experiment.primary_metric,
            metric_names=experiment.metric_names,
        )
        self.aggregator.record_event(event.experiment_id)
        self.aggregator.record_exposure(event.experiment_id, event.variant, event.subject_id)
        if event.event_type in EXPOSURE_EVENT_TYPES:
            return
        value = _event_value(event)
        for metric in experiment.metric_names:
            if event_matches_metric(event.event_type, metric):
                self.aggregator.record_outcome(
                    event.experiment_id, event.variant, metric, value, subject_id=event.subject_id
                )

    def _apply_once(self, experiment: Experiment, event: Event) -> bool:
        """Apply an event unless its idempotency key was already claimed."""
        key = event.idempotency_key
        if key and not self.aggregator.claim_event(event.experiment_id, key):
            return False
        try:
            self._apply(experiment, event)
        except StorageError:
            # a failed apply counts as not applied; free the key for the retry
            if key:
                self.aggregator.release_event(event.experiment_id, key)
            raise
        return True

    def _append_to_sink(self, event: Event) -> None:
        if self.event_sink is None:
            return
        try:
            self.event_sink.append(event)
        except Exception as e:
            # audit log is best-effort; metrics are already committed
            logger.warning(f"Event sink append failed for {event.experiment_id}: {e}")

    def replay(self, experiment: Experiment, events: Iterable[Event]) -> int:
        """
        Re-apply logged events to the aggregator using their recorded variant.

        Events carrying an idempotency key already seen are skipped.

        Returns:
            Number of events applied
        """
        applied = 0
        for event in events:
            if event.experiment_id != experiment.experiment_id:
                continue
            if self._apply_once(experiment, event):
                applied += 1
        logger.info(f"Replayed {applied} events into {experiment.experiment_id}")
        return applied
