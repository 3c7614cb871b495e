"""
Append-only audit log for tracked experiment events.

Writes one CSV per experiment under data/experiments/<experiment_id>/events.csv.
The log exists for audit and replay; the metrics path never depends on it.
"""

import json
import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Iterator, Optional

import pandas as pd

from .exceptions import StorageError
from .schema import Event

logger = logging.getLogger(__name__)

DEFAULT_STORE_DIR = "data/experiments"

EVENT_COLUMNS = [
    "experiment_id",
    "subject_id",
    "event_type",
    "variant",
    "event_data",
    "timestamp",
    "idempotency_key",
]


class EventSink(ABC):
    """Destination for raw event records."""

    @abstractmethod
    def append(self, event: Event) -> None:
        """Append one event. May raise; callers treat failures as non-fatal."""


def _ensure_dir(path: Path) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    return path


def _events_path(experiment_id: str, base_dir: str = DEFAULT_STORE_DIR) -> Path:
    return Path(base_dir) / experiment_id / "events.csv"


def _event_to_row(evt: Event) -> dict:
    return {
        "experiment_id": evt.experiment_id,
        "subject_id": evt.subject_id,
        "event_type": evt.event_type,
        "variant": evt.variant,
        "event_data": json.dumps(evt.event_data, sort_keys=True, default=str),
        "timestamp": evt.timestamp.isoformat(),
        "idempotency_key": evt.idempotency_key or "",
    }


class CsvEventSink(EventSink):
    """Event sink appending to per-experiment CSV files."""

    def __init__(self, base_dir: str = DEFAULT_STORE_DIR) -> None:
        self.base_dir = base_dir
        self._lock = threading.Lock()

    def append(self, event: Event) -> None:
        path = _events_path(event.experiment_id, self.base_dir)
        df = pd.DataFrame([_event_to_row(event)], columns=EVENT_COLUMNS)
        with self._lock:
            try:
                _ensure_dir(path.parent)
                df.to_csv(path, mode="a", header=not path.exists(), index=False)
            except OSError as e:
                raise StorageError(f"Failed to append event to {path}", cause=e) from e
        logger.debug(f"Appended {event.event_type} event for {event.subject_id} to {path}")


def read_events(
    experiment_id: str,
    event_type: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    base_dir: str = DEFAULT_STORE_DIR,
) -> pd.DataFrame:
    """
    Read logged events for an experiment.

    Args:
        experiment_id: Experiment identifier
        event_type: Optional filter by event type
        start_date: Optional start of time window (timezone-aware)
        end_date: Optional end of time window (timezone-aware)
        base_dir: Base directory for experiment data

    Returns:
        DataFrame with one row per event (empty if nothing was logged)
    """
    path = _events_path(experiment_id, base_dir)
    if not path.exists():
        return pd.DataFrame(columns=EVENT_COLUMNS)
    df = pd.read_csv(path, dtype=str, keep_default_na=False)
    df["timestamp"] = pd.to_datetime(df["timestamp"], utc=True, format="ISO8601")
    if event_type:
        df = df[df["event_type"] == event_type]
    if start_date:
        df = df[df["timestamp"] >= pd.Timestamp(start_date)]
    if end_date:
        df = df[df["timestamp"] <= pd.Timestamp(end_date)]
    return df.reset_index(drop=True)


def iter_events(
    experiment_id: str,
    base_dir: str = DEFAULT_STORE_DIR,
) -> Iterator[Event]:
    """Yield logged events back as Event objects, in log order."""
    df = read_events(experiment_id, base_dir=base_dir)
    for row in df.itertuples(index=False):
        yield Event(
            experiment_id=row.experiment_id,
            subject_id=row.subject_id,
            event_type=row.event_type,
            variant=row.variant,
            event_data=json.loads(row.event_data) if row.event_data else {},
            timestamp=row.timestamp.to_pydatetime(),
            idempotency_key=row.idempotency_key or None,
        )


def get_event_summary(experiment_id: str, base_dir: str = DEFAULT_STORE_DIR) -> dict:
    """
    Get summary counts for an experiment's event log.

    Returns:
        Dict with n_events, n_subjects, by_variant and by_event_type counts
    """
    df = read_events(experiment_id, base_dir=base_dir)
    if df.empty:
        return {"n_events": 0, "n_subjects": 0, "by_variant": {}, "by_event_type": {}}
    return {
        "n_events": len(df),
        "n_subjects": int(df["subject_id"].nunique()),
        "by_variant": {k: int(v) for k, v in df["variant"].value_counts().items()},
        "by_event_type": {k: int(v) for k, v in df["event_type"].value_counts().items()},
    }
