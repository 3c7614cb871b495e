"""Experimentation engine for A/B testing content-generation templates."""

from .schema import (
    Action,
    Assignment,
    Confidence,
    Event,
    Experiment,
    ExperimentResults,
    ExperimentStatus,
    FinalResults,
    MetricsSnapshot,
    PairResult,
    Recommendation,
    SignificanceReport,
    Variant,
    VariantMetrics,
)
from .exceptions import (
    ExperimentError,
    ExperimentNotFoundError,
    StateError,
    StorageError,
    ValidationError,
)
from .assignment import AssignmentEngine, hash_to_bucket
from .registry import ExperimentRegistry
from .metrics import InMemoryCounterStore, MetricsAggregator
from .collector import EventCollector
from .analyze import SignificanceAnalyzer
from .recommend import recommend
from .engine import ExperimentEngine
from .settings import EngineSettings
from .config_store import InMemoryConfigStore, JsonFileConfigStore
from .event_store import CsvEventSink, read_events
from .report import render_exec_summary

__all__ = [
    "Action",
    "Assignment",
    "Confidence",
    "Event",
    "Experiment",
    "ExperimentResults",
    "ExperimentStatus",
    "FinalResults",
    "MetricsSnapshot",
    "PairResult",
    "Recommendation",
    "SignificanceReport",
    "Variant",
    "VariantMetrics",
    "ExperimentError",
    "ExperimentNotFoundError",
    "StateError",
    "StorageError",
    "ValidationError",
    "AssignmentEngine",
    "hash_to_bucket",
    "ExperimentRegistry",
    "InMemoryCounterStore",
    "MetricsAggregator",
    "EventCollector",
    "SignificanceAnalyzer",
    "recommend",
    "ExperimentEngine",
    "EngineSettings",
    "InMemoryConfigStore",
    "JsonFileConfigStore",
    "CsvEventSink",
    "read_events",
    "render_exec_summary",
]
