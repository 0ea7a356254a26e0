"""Process-level engine settings read from the environment.

Usage
-----
>>> import os
>>> os.environ["FERRYMAN_DATABASE_URL"] = "sqlite+aiosqlite:///ferryman.db"
>>> settings = EngineSettings.from_env()
>>> settings.scheduler_tick_seconds
60

"""

from __future__ import annotations

import dataclasses as dc
import datetime as dt
import os

from ferryman.errors import ConfigurationError


@dc.dataclass(frozen=True, slots=True)
class EngineSettings:
    """Settings for the long-lived engine process.

    Attributes
    ----------
    database_url
        SQLAlchemy async URL of the record store.
    log_level
        femtologging level name.
    scheduler_tick_seconds
        How often the scheduler checks configurations for due cycles.
    cleanup_tick_seconds
        How often the cleanup service checks for due orphan scans.
    recovery_threshold_seconds
        Age of the last checkpoint after which an in-progress job counts as
        interrupted.
    recovery_tick_seconds
        How often interrupted jobs are looked for after the startup pass.
    default_interval_seconds
        Cycle interval used when a configuration's interval cannot be parsed.

    """

    database_url: str
    log_level: str = "INFO"
    scheduler_tick_seconds: int = 60
    cleanup_tick_seconds: int = 3600
    recovery_threshold_seconds: int = 600
    recovery_tick_seconds: int = 300
    default_interval_seconds: int = 3600

    @property
    def recovery_threshold(self) -> dt.timedelta:
        """Return the recovery threshold as a timedelta."""
        return dt.timedelta(seconds=self.recovery_threshold_seconds)

    @property
    def default_interval(self) -> dt.timedelta:
        """Return the fallback cycle interval as a timedelta."""
        return dt.timedelta(seconds=self.default_interval_seconds)

    @staticmethod
    def _parse_positive_int(env_var: str, default: int) -> int:
        raw = os.environ.get(env_var, "").strip()
        if not raw:
            return default
        try:
            value = int(raw)
        except ValueError as exc:
            raise ConfigurationError.invalid_env(
                env_var, f"must be an integer, got: {raw!r}"
            ) from exc
        if value < 1:
            raise ConfigurationError.invalid_env(
                env_var, f"must be positive, got: {value}"
            )
        return value

    @classmethod
    def from_env(cls) -> EngineSettings:
        """Build settings from ``FERRYMAN_*`` environment variables.

        Reads ``FERRYMAN_DATABASE_URL`` (required), ``FERRYMAN_LOG_LEVEL``,
        ``FERRYMAN_SCHEDULER_TICK_SECONDS``, ``FERRYMAN_CLEANUP_TICK_SECONDS``,
        ``FERRYMAN_RECOVERY_THRESHOLD_SECONDS``,
        ``FERRYMAN_RECOVERY_TICK_SECONDS`` and
        ``FERRYMAN_DEFAULT_INTERVAL_SECONDS``.

        Raises
        ------
        ConfigurationError
            If the database URL is missing or a numeric value is invalid.

        """
        database_url = os.environ.get("FERRYMAN_DATABASE_URL", "").strip()
        if not database_url:
            raise ConfigurationError.missing_field("FERRYMAN_DATABASE_URL")

        return cls(
            database_url=database_url,
            log_level=os.environ.get("FERRYMAN_LOG_LEVEL", "INFO"),
            scheduler_tick_seconds=cls._parse_positive_int(
                "FERRYMAN_SCHEDULER_TICK_SECONDS", 60
            ),
            cleanup_tick_seconds=cls._parse_positive_int(
                "FERRYMAN_CLEANUP_TICK_SECONDS", 3600
            ),
            recovery_threshold_seconds=cls._parse_positive_int(
                "FERRYMAN_RECOVERY_THRESHOLD_SECONDS", 600
            ),
            recovery_tick_seconds=cls._parse_positive_int(
                "FERRYMAN_RECOVERY_TICK_SECONDS", 300
            ),
            default_interval_seconds=cls._parse_positive_int(
                "FERRYMAN_DEFAULT_INTERVAL_SECONDS", 3600
            ),
        )
