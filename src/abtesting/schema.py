"""
Experiment data models for the template experimentation engine.

Dataclass schemas for experiment definitions, assignments, tracked events,
aggregated metrics, significance results and recommendations. Everything that
gets persisted round-trips through JSON-serializable dicts.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

DEFAULT_PRIMARY_METRIC = "conversion_rate"
DEFAULT_SECONDARY_METRICS = ("engagement_rate", "completion_rate")
DEFAULT_SIGNIFICANCE_LEVEL = 0.05
DEFAULT_MINIMUM_SAMPLE_SIZE = 100

ASSIGNMENT_EVENT = "assignment"
EXPOSURE_EVENT_TYPES = (ASSIGNMENT_EVENT, "exposure")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def metric_event_type(metric_name: str) -> str:
    """Event type counted for a metric: 'conversion_rate' is fed by 'conversion'."""
    if metric_name.endswith("_rate"):
        return metric_name[: -len("_rate")]
    return metric_name


def event_matches_metric(event_type: str, metric_name: str) -> bool:
    return event_type in (metric_name, metric_event_type(metric_name))


class ExperimentStatus(str, Enum):
    """Experiment lifecycle state."""
    DRAFT = "draft"
    RUNNING = "running"
    COMPLETED = "completed"


class Action(str, Enum):
    """Recommended next action for an experiment."""
    CONTINUE = "continue"
    IMPLEMENT = "implement"
    STOP = "stop"


class Confidence(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class Variant:
    """One arm of an experiment with its integer traffic weight (percent)."""
    name: str
    weight: int

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "weight": self.weight}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Variant":
        return cls(name=data["name"], weight=int(data["weight"]))


@dataclass(frozen=True)
class Assignment:
    """Variant a subject falls into for a running experiment."""
    experiment_id: str
    subject_id: str
    variant: str
    bucket: int
    assigned_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "experiment_id": self.experiment_id,
            "subject_id": self.subject_id,
            "variant": self.variant,
            "bucket": self.bucket,
            "assigned_at": _iso(self.assigned_at),
        }


@dataclass(frozen=True)
class Event:
    """Tracked event attributed to the subject's variant."""
    experiment_id: str
    subject_id: str
    event_type: str
    variant: str
    event_data: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utcnow)
    idempotency_key: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "experiment_id": self.experiment_id,
            "subject_id": self.subject_id,
            "event_type": self.event_type,
            "variant": self.variant,
            "event_data": dict(self.event_data),
            "timestamp": _iso(self.timestamp),
            "idempotency_key": self.idempotency_key,
        }


@dataclass(frozen=True)
class MetricSummary:
    """Running count / sum / sum of squares for one metric in one variant."""
    count: int = 0
    total: float = 0.0
    total_sq: float = 0.0

    @property
    def mean(self) -> float:
        return self.total / self.count if self.count else 0.0

    @property
    def variance(self) -> float:
        if self.count < 2:
            return 0.0
        var = (self.total_sq - self.total ** 2 / self.count) / (self.count - 1)
        return max(var, 0.0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "count": self.count,
            "total": self.total,
            "total_sq": self.total_sq,
            "mean": self.mean,
            "variance": self.variance,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MetricSummary":
        return cls(
            count=int(data.get("count", 0)),
            total=float(data.get("total", 0.0)),
            total_sq=float(data.get("total_sq", 0.0)),
        )


@dataclass(frozen=True)
class VariantMetrics:
    """Aggregated counters for a single variant."""
    variant: str
    total_users: int = 0
    conversions: int = 0
    metrics: Dict[str, MetricSummary] = field(default_factory=dict)

    @property
    def conversion_rate(self) -> float:
        return self.conversions / self.total_users if self.total_users > 0 else 0.0

    def rate(self, metric_name: str) -> float:
        summary = self.metrics.get(metric_name)
        if summary is None or self.total_users == 0:
            return 0.0
        return summary.count / self.total_users

    def to_dict(self) -> Dict[str, Any]:
        return {
            "variant": self.variant,
            "total_users": self.total_users,
            "conversions": self.conversions,
            "conversion_rate": self.conversion_rate,
            "metrics": {
                name: dict(summary.to_dict(), rate=self.rate(name))
                for name, summary in self.metrics.items()
            },
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VariantMetrics":
        return cls(
            variant=data["variant"],
            total_users=int(data.get("total_users", 0)),
            conversions=int(data.get("conversions", 0)),
            metrics={
                name: MetricSummary.from_dict(m)
                for name, m in data.get("metrics", {}).items()
            },
        )


@dataclass(frozen=True)
class MetricsSnapshot:
    """Read-only view of an experiment's per-variant metrics."""
    experiment_id: str
    primary_metric: str
    variants: Dict[str, VariantMetrics] = field(default_factory=dict)
    total_events: int = 0
    taken_at: datetime = field(default_factory=utcnow)

    @property
    def total_users(self) -> int:
        return sum(v.total_users for v in self.variants.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "experiment_id": self.experiment_id,
            "primary_metric": self.primary_metric,
            "total_users": self.total_users,
            "total_events": self.total_events,
            "taken_at": _iso(self.taken_at),
            "variants": {name: v.to_dict() for name, v in self.variants.items()},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MetricsSnapshot":
        return cls(
            experiment_id=data["experiment_id"],
            primary_metric=data["primary_metric"],
            variants={
                name: VariantMetrics.from_dict(v)
                for name, v in data.get("variants", {}).items()
            },
            total_events=int(data.get("total_events", 0)),
            taken_at=parse_datetime(data.get("taken_at")) or utcnow(),
        )


@dataclass(frozen=True)
class PairResult:
    """Two-proportion test outcome for one pair of variants."""
    variant_a: str
    variant_b: str
    significant: bool
    reason: Optional[str] = None
    p_value: Optional[float] = None
    z_score: Optional[float] = None
    confidence_interval: Optional[Tuple[float, float]] = None
    effect: float = 0.0
    relative_effect: float = 0.0
    n_a: int = 0
    n_b: int = 0

    def involves(self, variant: str) -> bool:
        return variant in (self.variant_a, self.variant_b)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "variant_a": self.variant_a,
            "variant_b": self.variant_b,
            "significant": self.significant,
            "reason": self.reason,
            "p_value": self.p_value,
            "z_score": self.z_score,
            "confidence_interval": (
                list(self.confidence_interval) if self.confidence_interval else None
            ),
            "effect": self.effect,
            "relative_effect": self.relative_effect,
            "sample_sizes": {"variant_a": self.n_a, "variant_b": self.n_b},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PairResult":
        ci = data.get("confidence_interval")
        sizes = data.get("sample_sizes", {})
        return cls(
            variant_a=data["variant_a"],
            variant_b=data["variant_b"],
            significant=bool(data["significant"]),
            reason=data.get("reason"),
            p_value=data.get("p_value"),
            z_score=data.get("z_score"),
            confidence_interval=(ci[0], ci[1]) if ci else None,
            effect=data.get("effect", 0.0),
            relative_effect=data.get("relative_effect", 0.0),
            n_a=sizes.get("variant_a", 0),
            n_b=sizes.get("variant_b", 0),
        )


@dataclass(frozen=True)
class OverallSignificance:
    """Experiment-level summary of the pairwise tests."""
    has_significant_result: bool
    significant_pairs: Tuple[str, ...] = ()
    best_variant: Optional[str] = None
    total_users: int = 0
    srm_passed: bool = True
    srm_p_value: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "has_significant_result": self.has_significant_result,
            "significant_pairs": list(self.significant_pairs),
            "best_variant": self.best_variant,
            "total_users": self.total_users,
            "srm_passed": self.srm_passed,
            "srm_p_value": self.srm_p_value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OverallSignificance":
        return cls(
            has_significant_result=bool(data["has_significant_result"]),
            significant_pairs=tuple(data.get("significant_pairs", ())),
            best_variant=data.get("best_variant"),
            total_users=int(data.get("total_users", 0)),
            srm_passed=bool(data.get("srm_passed", True)),
            srm_p_value=data.get("srm_p_value"),
        )


@dataclass(frozen=True)
class SignificanceReport:
    """Pairwise results keyed '<a>_vs_<b>' plus the overall summary."""
    pairwise: Dict[str, PairResult]
    overall: OverallSignificance

    def pairs_involving(self, variant: str) -> List[PairResult]:
        return [r for r in self.pairwise.values() if r.involves(variant)]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pairwise": {key: r.to_dict() for key, r in self.pairwise.items()},
            "overall": self.overall.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SignificanceReport":
        return cls(
            pairwise={
                key: PairResult.from_dict(r) for key, r in data["pairwise"].items()
            },
            overall=OverallSignificance.from_dict(data["overall"]),
        )


@dataclass(frozen=True)
class Recommendation:
    """Actionable outcome of an experiment analysis."""
    action: Action
    confidence: Confidence
    winner: Optional[str] = None
    reasons: Tuple[str, ...] = ()
    next_steps: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action.value,
            "confidence": self.confidence.value,
            "winner": self.winner,
            "reasons": list(self.reasons),
            "next_steps": list(self.next_steps),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Recommendation":
        return cls(
            action=Action(data["action"]),
            confidence=Confidence(data["confidence"]),
            winner=data.get("winner"),
            reasons=tuple(data.get("reasons", ())),
            next_steps=tuple(data.get("next_steps", ())),
        )


@dataclass(frozen=True)
class FinalResults:
    """Results frozen when an experiment completes. Holds no experiment reference."""
    metrics: MetricsSnapshot
    statistical_analysis: SignificanceReport
    recommendations: Recommendation
    computed_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "metrics": self.metrics.to_dict(),
            "statistical_analysis": self.statistical_analysis.to_dict(),
            "recommendations": self.recommendations.to_dict(),
            "computed_at": _iso(self.computed_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FinalResults":
        return cls(
            metrics=MetricsSnapshot.from_dict(data["metrics"]),
            statistical_analysis=SignificanceReport.from_dict(data["statistical_analysis"]),
            recommendations=Recommendation.from_dict(data["recommendations"]),
            computed_at=parse_datetime(data.get("computed_at")) or utcnow(),
        )


@dataclass
class Experiment:
    """A configured comparison between template variants."""
    experiment_id: str
    name: str
    template_type: str
    variants: List[Variant]
    description: str = ""
    topic: str = "all"
    status: ExperimentStatus = ExperimentStatus.DRAFT
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    actual_start_date: Optional[datetime] = None
    actual_end_date: Optional[datetime] = None
    primary_metric: str = DEFAULT_PRIMARY_METRIC
    secondary_metrics: List[str] = field(default_factory=lambda: list(DEFAULT_SECONDARY_METRICS))
    significance_level: float = DEFAULT_SIGNIFICANCE_LEVEL
    minimum_sample_size: int = DEFAULT_MINIMUM_SAMPLE_SIZE
    targeting: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)
    created_by: str = "system"
    stop_reason: Optional[str] = None
    # weight vector as it stood when the experiment entered "running"
    started_variants: Optional[List[Variant]] = None
    final_results: Optional[FinalResults] = None
    version: str = "1.0"

    @property
    def allocation(self) -> List[Variant]:
        return self.started_variants or self.variants

    @property
    def variant_names(self) -> List[str]:
        return [v.name for v in self.allocation]

    @property
    def metric_names(self) -> List[str]:
        names = [self.primary_metric]
        names.extend(m for m in self.secondary_metrics if m not in names)
        return names

    @property
    def is_running(self) -> bool:
        return self.status == ExperimentStatus.RUNNING

    def to_dict(self) -> Dict[str, Any]:
        """Convert to JSON-serializable dict."""
        return {
            "experiment_id": self.experiment_id,
            "name": self.name,
            "description": self.description,
            "template_type": self.template_type,
            "topic": self.topic,
            "variants": [v.to_dict() for v in self.variants],
            "status": self.status.value,
            "start_date": _iso(self.start_date),
            "end_date": _iso(self.end_date),
            "actual_start_date": _iso(self.actual_start_date),
            "actual_end_date": _iso(self.actual_end_date),
            "primary_metric": self.primary_metric,
            "secondary_metrics": list(self.secondary_metrics),
            "significance_level": self.significance_level,
            "minimum_sample_size": self.minimum_sample_size,
            "targeting": dict(self.targeting),
            "created_at": _iso(self.created_at),
            "created_by": self.created_by,
            "stop_reason": self.stop_reason,
            "started_variants": (
                [v.to_dict() for v in self.started_variants]
                if self.started_variants is not None else None
            ),
            "final_results": self.final_results.to_dict() if self.final_results else None,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Experiment":
        started = data.get("started_variants")
        final = data.get("final_results")
        return cls(
            experiment_id=data["experiment_id"],
            name=data["name"],
            template_type=data["template_type"],
            variants=[Variant.from_dict(v) for v in data["variants"]],
            description=data.get("description", ""),
            topic=data.get("topic", "all"),
            status=ExperimentStatus(data.get("status", ExperimentStatus.DRAFT.value)),
            start_date=parse_datetime(data.get("start_date")),
            end_date=parse_datetime(data.get("end_date")),
            actual_start_date=parse_datetime(data.get("actual_start_date")),
            actual_end_date=parse_datetime(data.get("actual_end_date")),
            primary_metric=data.get("primary_metric", DEFAULT_PRIMARY_METRIC),
            secondary_metrics=list(data.get("secondary_metrics", DEFAULT_SECONDARY_METRICS)),
            significance_level=data.get("significance_level", DEFAULT_SIGNIFICANCE_LEVEL),
            minimum_sample_size=data.get("minimum_sample_size", DEFAULT_MINIMUM_SAMPLE_SIZE),
            targeting=dict(data.get("targeting") or {}),
            created_at=parse_datetime(data.get("created_at")) or utcnow(),
            created_by=data.get("created_by", "system"),
            stop_reason=data.get("stop_reason"),
            started_variants=(
                [Variant.from_dict(v) for v in started] if started is not None else None
            ),
            final_results=FinalResults.from_dict(final) if final else None,
            version=data.get("version", "1.0"),
        )


@dataclass
class ExperimentResults:
    """Everything returned by a results request."""
    experiment: Experiment
    metrics: MetricsSnapshot
    statistical_analysis: SignificanceReport
    recommendations: Recommendation
    generated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "experiment": self.experiment.to_dict(),
            "metrics": self.metrics.to_dict(),
            "statistical_analysis": self.statistical_analysis.to_dict(),
            "recommendations": self.recommendations.to_dict(),
            "generated_at": _iso(self.generated_at),
        }
