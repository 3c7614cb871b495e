"""
Key/value config stores used by the experiment registry.

The engine only needs get/set over JSON-serializable values. Runtime
overrides win over persisted values; a persisted set also writes through to
the backing file.
"""

import copy
import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict

from .exceptions import StorageError

logger = logging.getLogger(__name__)


class ConfigStore(ABC):
    """Interface of the external configuration store."""

    @abstractmethod
    def get(self, key: str, default: Any = None) -> Any:
        """Return the value stored under key, or default when absent."""

    @abstractmethod
    def set(self, key: str, value: Any, persist: bool = False) -> None:
        """Store value under key; persist=True makes it survive restarts."""


class InMemoryConfigStore(ConfigStore):
    """Process-local store. Values are deep-copied in and out."""

    def __init__(self, initial: Dict[str, Any] = None) -> None:
        self._lock = threading.Lock()
        self._values: Dict[str, Any] = copy.deepcopy(initial or {})

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            if key not in self._values:
                return default
            return copy.deepcopy(self._values[key])

    def set(self, key: str, value: Any, persist: bool = False) -> None:
        with self._lock:
            self._values[key] = copy.deepcopy(value)


class JsonFileConfigStore(ConfigStore):
    """
    Runtime overrides layered over a JSON document on disk.

    Persisted writes replace the file atomically (write to a temp file, then
    rename), so readers never observe a half-written document.
    """

    def __init__(self, path: str) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()
        self._overrides: Dict[str, Any] = {}

    def _read_file(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path) as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            raise StorageError(f"Failed to read config file {self.path}", cause=e) from e

    def _write_file(self, data: Dict[str, Any]) -> None:
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp_path, self.path)
        except (OSError, TypeError, ValueError) as e:
            raise StorageError(f"Failed to write config file {self.path}", cause=e) from e

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            if key in self._overrides:
                return copy.deepcopy(self._overrides[key])
            return self._read_file().get(key, default)

    def set(self, key: str, value: Any, persist: bool = False) -> None:
        with self._lock:
            if persist:
                data = self._read_file()
                data[key] = value
                self._write_file(data)
                self._overrides.pop(key, None)
                logger.debug(f"Persisted config key {key} to {self.path}")
            else:
                self._overrides[key] = copy.deepcopy(value)
