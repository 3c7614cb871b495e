"""
Engine configuration.

Defaults live on the dataclass; deployments override them through
environment variables (ENVIRONMENT plus ABTEST_*). Values set on an
individual experiment take precedence over the engine-wide defaults.
"""

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from .schema import DEFAULT_MINIMUM_SAMPLE_SIZE, DEFAULT_SIGNIFICANCE_LEVEL

DEFAULT_CONFIG_KEY = "prompts.experiments"
DEFAULT_CACHE_TTL_SECONDS = 300.0


@dataclass
class EngineSettings:
    """Settings for one engine instance."""
    environment: str = "production"
    config_key: str = DEFAULT_CONFIG_KEY
    cache_ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS
    significance_level: float = DEFAULT_SIGNIFICANCE_LEVEL
    minimum_sample_size: int = DEFAULT_MINIMUM_SAMPLE_SIZE
    srm_alpha: float = 0.01
    config_path: Optional[str] = None  # JSON file backing the config store
    event_log_dir: Optional[str] = None  # CSV audit log directory

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "EngineSettings":
        """
        Build settings from environment variables.

        Args:
            environ: Mapping to read from (defaults to os.environ)

        Returns:
            EngineSettings
        """
        env = os.environ if environ is None else environ
        return cls(
            environment=env.get("ENVIRONMENT", "production"),
            config_key=env.get("ABTEST_CONFIG_KEY", DEFAULT_CONFIG_KEY),
            cache_ttl_seconds=float(
                env.get("ABTEST_CACHE_TTL_SECONDS", DEFAULT_CACHE_TTL_SECONDS)
            ),
            significance_level=float(
                env.get("ABTEST_SIGNIFICANCE_LEVEL", DEFAULT_SIGNIFICANCE_LEVEL)
            ),
            minimum_sample_size=int(
                env.get("ABTEST_MINIMUM_SAMPLE_SIZE", DEFAULT_MINIMUM_SAMPLE_SIZE)
            ),
            srm_alpha=float(env.get("ABTEST_SRM_ALPHA", 0.01)),
            config_path=env.get("ABTEST_CONFIG_PATH") or None,
            event_log_dir=env.get("ABTEST_EVENT_LOG_DIR") or None,
        )
