"""Configuration defaults, env vars, and runtime options for autodev."""

from __future__ import annotations

import os
from dataclasses import dataclass


VERSION = "0.3.0"

ENV_PREFIX = "AUTODEV_"

DEFAULT_ENGINES = ("claude", "opencode")


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(ENV_PREFIX + name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(ENV_PREFIX + name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(ENV_PREFIX + name, "").strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "on")


@dataclass
class Config:
    """Runtime configuration for one orchestrator instance.

    Values left at ``None`` are resolved from ``AUTODEV_*`` environment
    variables, then from the built-in defaults.
    """

    # Execution
    max_parallel: int | None = None
    max_retries: int | None = None
    retry_on_failure: bool | None = None
    retry_delay: float | None = None
    poll_interval: float | None = None
    task_timeout: float | None = None
    fallback_on_rate_limit: bool = True
    validate_plan: bool = False

    # Review
    review_threshold: float | None = None

    # AI engine
    engine: str = "claude"
    opencode_model: str = ""

    # Output
    artifacts_dir: str = ""
    verbose: bool = False

    def __post_init__(self) -> None:
        if self.max_parallel is None:
            self.max_parallel = _env_int("MAX_PARALLEL", 3)
        if self.max_retries is None:
            self.max_retries = _env_int("MAX_RETRIES", 3)
        if self.retry_on_failure is None:
            self.retry_on_failure = _env_bool("RETRY_ON_FAILURE", True)
        if self.retry_delay is None:
            self.retry_delay = _env_float("RETRY_DELAY", 0.0)
        if self.poll_interval is None:
            self.poll_interval = _env_float("POLL_INTERVAL", 0.5)
        if self.task_timeout is None:
            self.task_timeout = _env_float("TASK_TIMEOUT", 0.0)
        if self.review_threshold is None:
            self.review_threshold = _env_float("REVIEW_THRESHOLD", 0.85)

        if self.max_parallel < 1:
            raise ValueError(f"max_parallel must be >= 1 (got {self.max_parallel})")
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0 (got {self.max_retries})")
        if not 0.0 <= self.review_threshold <= 1.0:
            raise ValueError(
                f"review_threshold must be within [0, 1] (got {self.review_threshold})"
            )
        self.poll_interval = max(self.poll_interval, 0.001)
        self.retry_delay = max(self.retry_delay, 0.0)
        self.task_timeout = max(self.task_timeout, 0.0)
