"""Scheduler settings.

Configuration for the tick loop, worker pool, retry policy and logging.
Values are validated by pydantic at construction and can be overridden with
``JOBSPINE_``-prefixed environment variables or a ``.env`` file.

Manifesto:
    Configuration should be explicit, validated, and environment-driven.
    A tick interval of zero or a pool with no workers is a startup error,
    not something discovered when the first job never runs.

Examples:
    >>> from jobspine.core.settings import SchedulerSettings
    >>> settings = SchedulerSettings(tick_interval_seconds=5, max_workers=8)
    >>> settings.retry_backoff
    'constant'

    Environment::

        JOBSPINE_TICK_INTERVAL_SECONDS=10
        JOBSPINE_MAX_WORKERS=2
        JOBSPINE_RETRY_BACKOFF=exponential
"""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class SchedulerSettings(BaseSettings):
    """Settings for :class:`~jobspine.scheduling.service.JobScheduler`.

    Fields
    ──────
    tick_interval_seconds       : Period of the scheduler loop
    max_workers                 : Worker threads executing jobs
    queue_size                  : Bounded dispatch queue; excess due jobs wait a tick
    retry_backoff               : constant | linear | exponential
    retry_delay_seconds         : Base delay before a retried job becomes due
    retry_max_delay_seconds     : Cap for linear/exponential backoff
    default_max_retries         : Used when a submitted job does not set one
    default_job_timeout_seconds : Used when a submitted job does not set one
    auto_retry                  : Retry eligible failed jobs without a caller
    """

    model_config = SettingsConfigDict(
        env_prefix="JOBSPINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Scheduler loop ───────────────────────────────────────────
    tick_interval_seconds: float = Field(default=30.0, gt=0)

    # ── Worker pool ──────────────────────────────────────────────
    max_workers: int = Field(default=4, ge=1)
    queue_size: int = Field(default=100, ge=1)

    # ── Retry ────────────────────────────────────────────────────
    retry_backoff: Literal["constant", "linear", "exponential"] = "constant"
    retry_delay_seconds: float = Field(default=300.0, gt=0)
    retry_max_delay_seconds: float = Field(default=3600.0, gt=0)
    default_max_retries: int = Field(default=3, ge=0)
    auto_retry: bool = False

    # ── Execution ────────────────────────────────────────────────
    default_job_timeout_seconds: float | None = Field(default=None, gt=0)

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"
    json_logs: bool | None = None
