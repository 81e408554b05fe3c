"""Runtime settings for the dispatcher.

Settings are read from ``PIPEPOOL_*`` environment variables and an optional
``.env`` file, validated at startup, and overridden by CLI options.

Fields
──────
log_level          : Structlog log level (manager and workers)
json_logs          : Force JSON (True) or console (False) output; None = auto
poll_interval      : Upper bound, in seconds, of the pause between loop passes
time_unit          : Seconds of simulated work per unit of job duration
pool               : JobType → instance count, fixed for the run
worker_executable  : Interpreter used to spawn workers (default: sys.executable)

Examples:
    >>> settings = PoolSettings(pool={2: 3}, time_unit=0.1)
    >>> settings.pool
    {2: 3}
    >>> parse_pool_spec("1=1,2=3")
    {1: 1, 2: 3}

Tags:
    settings, configuration, pydantic, environment, pipepool
"""

from __future__ import annotations

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from pipepool.core.errors import ConfigError

DEFAULT_POOL: dict[int, int] = {1: 1, 2: 3, 3: 1, 4: 1, 5: 1}


class PoolSettings(BaseSettings):
    """Settings shared by the manager CLI and the pool."""

    model_config = SettingsConfigDict(
        env_prefix="PIPEPOOL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"
    json_logs: bool | None = None

    # ── Dispatch ─────────────────────────────────────────────────
    poll_interval: float = Field(default=0.01, gt=0)
    time_unit: float = Field(default=1.0, ge=0)
    pool: dict[int, int] = Field(default_factory=lambda: dict(DEFAULT_POOL))

    # ── Process ──────────────────────────────────────────────────
    worker_executable: str | None = None

    @field_validator("pool")
    @classmethod
    def _check_pool(cls, value: dict[int, int]) -> dict[int, int]:
        validate_pool_config(value)
        return value

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.upper()


def validate_pool_config(config: dict[int, int]) -> None:
    """Raise :class:`ConfigError` unless every type is >= 1 and every count >= 0."""
    for job_type, count in config.items():
        if job_type < 1:
            raise ConfigError(f"Job type must be >= 1, got {job_type}")
        if count < 0:
            raise ConfigError(
                f"Instance count for job type {job_type} must be >= 0, got {count}"
            ).with_context(job_type=job_type)


def parse_pool_spec(spec: str) -> dict[int, int]:
    """Parse the CLI pool form ``"TYPE=COUNT,TYPE=COUNT"``."""
    pool: dict[int, int] = {}
    for part in spec.split(","):
        part = part.strip()
        if not part:
            continue
        key, sep, value = part.partition("=")
        if not sep:
            raise ConfigError(f"Expected TYPE=COUNT, got {part!r}")
        try:
            job_type, count = int(key), int(value)
        except ValueError as exc:
            raise ConfigError(f"Expected integers in {part!r}", cause=exc) from exc
        if job_type in pool:
            raise ConfigError(f"Job type {job_type} given twice").with_context(job_type=job_type)
        pool[job_type] = count
    if not pool:
        raise ConfigError("Pool specification is empty")
    validate_pool_config(pool)
    return pool


def get_settings(**overrides: object) -> PoolSettings:
    """Build a fresh settings instance (environment first, then ``overrides``)."""
    return PoolSettings(**overrides)  # type: ignore[arg-type]


__all__ = [
    "DEFAULT_POOL",
    "PoolSettings",
    "get_settings",
    "parse_pool_spec",
    "validate_pool_config",
]
