"""Exceptions raised by the experimentation engine."""

from typing import Optional


class ExperimentError(Exception):
    """Base exception for experimentation errors."""


class ValidationError(ExperimentError):
    """Raised when an experiment configuration is malformed."""

    def __init__(self, message: str, rule: Optional[str] = None) -> None:
        self.rule = rule
        super().__init__(message)


class StateError(ExperimentError):
    """Raised on an illegal lifecycle transition."""

    def __init__(
        self,
        message: str,
        experiment_id: Optional[str] = None,
        status: Optional[str] = None,
    ) -> None:
        self.experiment_id = experiment_id
        self.status = status
        super().__init__(message)


class StorageError(ExperimentError):
    """Raised when the config store, counter store or event sink is unreachable."""

    def __init__(self, message: str, cause: Optional[Exception] = None) -> None:
        self.cause = cause
        super().__init__(message)


class ExperimentNotFoundError(ExperimentError):
    """Raised when an experiment id is unknown to the registry."""

    def __init__(self, experiment_id: str) -> None:
        self.experiment_id = experiment_id
        super().__init__(f"Experiment not found: {experiment_id}")
