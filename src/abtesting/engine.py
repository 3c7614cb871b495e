"""
Experimentation engine: the API consumed by the content-generation pipeline.

One ExperimentEngine per deployment (or tenant) owns its registry cache,
counters and collaborators; nothing is module-global, so several engines can
coexist in one process.

Hot-path calls (get_user_assignment, track_event) fail open: any storage
problem is logged and treated as "no experiment applied". Administrative calls
(create / start / stop) surface errors to the caller.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from .analyze import SignificanceAnalyzer
from .assignment import AssignmentEngine
from .collector import EventCollector
from .config_store import ConfigStore, InMemoryConfigStore, JsonFileConfigStore
from .event_store import CsvEventSink, EventSink
from .exceptions import StateError, StorageError
from .metrics import CounterStore, MetricsAggregator
from .recommend import recommend
from .registry import ExperimentRegistry
from .schema import (
    ASSIGNMENT_EVENT,
    Assignment,
    Experiment,
    ExperimentResults,
    ExperimentStatus,
    FinalResults,
    utcnow,
)
from .settings import EngineSettings

logger = logging.getLogger(__name__)


class ExperimentEngine:
    """Owns the registry, assignment, collection and analysis components."""

    def __init__(
        self,
        config_store: Optional[ConfigStore] = None,
        event_sink: Optional[EventSink] = None,
        settings: Optional[EngineSettings] = None,
        counter_store: Optional[CounterStore] = None,
    ) -> None:
        self.settings = settings or EngineSettings()
        if config_store is None:
            if self.settings.config_path:
                config_store = JsonFileConfigStore(self.settings.config_path)
            else:
                config_store = InMemoryConfigStore()
        if event_sink is None and self.settings.event_log_dir:
            event_sink = CsvEventSink(self.settings.event_log_dir)

        self.registry = ExperimentRegistry(
            config_store,
            config_key=self.settings.config_key,
            cache_ttl_seconds=self.settings.cache_ttl_seconds,
            significance_level=self.settings.significance_level,
            minimum_sample_size=self.settings.minimum_sample_size,
        )
        self.assignments = AssignmentEngine()
        self.aggregator = MetricsAggregator(counter_store)
        self.collector = EventCollector(
            self.registry, self.assignments, self.aggregator, event_sink=event_sink
        )
        logger.info(f"ExperimentEngine initialized for environment: {self.settings.environment}")

    # -- administrative operations -------------------------------------------

    def create_experiment(self, config: Dict[str, Any]) -> Experiment:
        """Validate and persist a new draft experiment."""
        return self.registry.create(config)

    def start_experiment(self, experiment_id: str) -> Experiment:
        """
        Move a draft experiment to running.

        Snapshots the variant weights used for assignment and zeroes metrics.

        Raises:
            ExperimentNotFoundError, StateError, StorageError
        """
        experiment = self.registry.get(experiment_id)
        if experiment.status != ExperimentStatus.DRAFT:
            raise StateError(
                f"Cannot start experiment {experiment_id}: current status is "
                f"{experiment.status.value}",
                experiment_id=experiment_id,
                status=experiment.status.value,
            )

        experiment.status = ExperimentStatus.RUNNING
        experiment.actual_start_date = utcnow()
        experiment.started_variants = list(experiment.variants)
        # metrics first: if zeroing fails the experiment stays a draft
        self.aggregator.initialize(
            experiment_id,
            experiment.variant_names,
            primary_metric=experiment.primary_metric,
            metric_names=experiment.metric_names,
        )
        self.registry.save(experiment)
        logger.info(f"Started experiment {experiment_id}")
        return experiment

    def stop_experiment(
        self,
        experiment_id: str,
        reason: str = "manual_stop",
    ) -> Tuple[Experiment, ExperimentResults]:
        """
        Complete a running experiment and freeze its final results.

        Returns:
            Tuple of (completed experiment, results computed at stop time)

        Raises:
            ExperimentNotFoundError, StateError, StorageError
        """
        experiment = self.registry.get(experiment_id)
        if experiment.status != ExperimentStatus.RUNNING:
            raise StateError(
                f"Cannot stop experiment {experiment_id}: current status is "
                f"{experiment.status.value}",
                experiment_id=experiment_id,
                status=experiment.status.value,
            )

        results = self._compute_results(experiment)

        experiment.status = ExperimentStatus.COMPLETED
        experiment.actual_end_date = utcnow()
        experiment.stop_reason = reason
        experiment.final_results = FinalResults(
            metrics=results.metrics,
            statistical_analysis=results.statistical_analysis,
            recommendations=results.recommendations,
        )
        self.registry.save(experiment)
        results.experiment = experiment

        logger.info(f"Stopped experiment {experiment_id}, reason: {reason}")
        return experiment, results

    def get_experiment_results(self, experiment_id: str) -> ExperimentResults:
        """
        Metrics, significance and recommendation for an experiment.

        Completed experiments return the results frozen at stop time.
        """
        experiment = self.registry.get(experiment_id)
        final = experiment.final_results
        if experiment.status == ExperimentStatus.COMPLETED and final is not None:
            return ExperimentResults(
                experiment=experiment,
                metrics=final.metrics,
                statistical_analysis=final.statistical_analysis,
                recommendations=final.recommendations,
                generated_at=final.computed_at,
            )
        return self._compute_results(experiment)

    def list_experiments(self, status: Optional[ExperimentStatus] = None) -> List[Experiment]:
        return self.registry.list_experiments(status)

    def _compute_results(self, experiment: Experiment) -> ExperimentResults:
        self.aggregator.register(
            experiment.experiment_id,
            experiment.variant_names,
            primary_metric=experiment.primary_metric,
            metric_names=experiment.metric_names,
        )
        metrics = self.aggregator.snapshot(experiment.experiment_id)
        analyzer = SignificanceAnalyzer.for_experiment(experiment, srm_alpha=self.settings.srm_alpha)
        weights = [v.weight for v in experiment.allocation if v.name in metrics.variants]
        significance = analyzer.analyze(metrics, expected_weights=weights)
        recommendation = recommend(experiment, metrics, significance)
        return ExperimentResults(
            experiment=experiment,
            metrics=metrics,
            statistical_analysis=significance,
            recommendations=recommendation,
        )

    # -- hot path --------------------------------------------------------------

    def get_user_assignment(self, experiment_id: str, subject_id: str) -> Optional[Assignment]:
        """
        Variant for a subject, or None when no experiment applies.

        Records the exposure as an 'assignment' event. Never raises on storage
        failures.
        """
        try:
            experiment = self.registry.find(experiment_id)
        except StorageError as e:
            logger.warning(f"Assignment skipped for {experiment_id}: {e}")
            return None
        if experiment is None:
            return None

        assignment = self.assignments.assign(experiment, subject_id)
        if assignment is None:
            return None

        self.collector.track(
            experiment_id,
            subject_id,
            ASSIGNMENT_EVENT,
            {"variant": assignment.variant, "bucket": assignment.bucket},
            experiment=experiment,
        )
        return assignment

    def track_event(
        self,
        experiment_id: str,
        subject_id: str,
        event_type: str,
        event_data: Optional[Dict[str, Any]] = None,
        idempotency_key: Optional[str] = None,
    ) -> None:
        """Track an event; a no-op if the subject has no assignment."""
        self.collector.track(
            experiment_id, subject_id, event_type, event_data, idempotency_key=idempotency_key
        )
