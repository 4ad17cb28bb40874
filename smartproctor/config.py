"""
Central configuration for the proctoring engine.

Service-wide values are read from environment variables (or a local
`.env` file).  Per-session options live in `SessionConfig`, a plain
object that can be built from the settings or passed in directly by a
host application.
"""
from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

from smartproctor.errors import ConfigurationError


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Session defaults ──────────────────────────────────────────
    tick_interval_ms:     int  = 1000
    alert_capacity:       int  = 20
    surveillance_enabled: bool = False
    scoring_profile:      str  = "standard"
    repeat_alerts:        bool = True      # False → alert only on condition onset

    # ── Simulated sampler ─────────────────────────────────────────
    sampler_seed: int | None = None

    # ── RabbitMQ ─────────────────────────────────────────────────
    publish_results:   bool = False
    rabbitmq_host:     str  = "rabbitmq"
    rabbitmq_port:     int  = 5672
    rabbitmq_user:     str  = "proctor"
    rabbitmq_password: str  = "proctor"
    rabbitmq_vhost:    str  = "/"

    exchange_name:         str = "proctoring.exchange"
    alerts_routing_key:    str = "proctoring.alerts"
    summaries_routing_key: str = "proctoring.summaries"
    publish_queue_size:    int = 1000    # pending messages before new ones are dropped
    broker_timeout_s:      float = 5.0   # socket and blocked-connection timeout

    # ── Config store ──────────────────────────────────────────────
    database_url: str = "sqlite:///./smartproctor.db"

    # ── HTTP server ───────────────────────────────────────────────
    port:      int = 8001
    log_level: str = "INFO"


@lru_cache
def get_settings() -> Settings:
    return Settings()


@dataclass
class SessionConfig:
    """Options recognised by a single proctoring session."""
    tick_interval_ms:     int   = 1000
    alert_capacity:       int   = 20
    surveillance_enabled: bool  = False
    profile:              str   = "standard"
    repeat_alerts:        bool  = True
    # Overrides the profile's identity-verification cut-off when set
    identity_threshold: float | None = None

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "SessionConfig":
        settings = settings or get_settings()
        return cls(
            tick_interval_ms     = settings.tick_interval_ms,
            alert_capacity       = settings.alert_capacity,
            surveillance_enabled = settings.surveillance_enabled,
            profile              = settings.scoring_profile,
            repeat_alerts        = settings.repeat_alerts,
        )

    @property
    def tick_interval_seconds(self) -> float:
        return self.tick_interval_ms / 1000.0

    def validate(self) -> "SessionConfig":
        """Raise ConfigurationError for out-of-range options; return self."""
        from smartproctor.ml.profiles import PROFILES

        if isinstance(self.tick_interval_ms, bool) or not isinstance(self.tick_interval_ms, (int, float)):
            raise ConfigurationError(f"tick_interval_ms must be a number, got {self.tick_interval_ms!r}")
        if self.tick_interval_ms <= 0:
            raise ConfigurationError(f"tick_interval_ms must be positive, got {self.tick_interval_ms}")
        if isinstance(self.alert_capacity, bool) or not isinstance(self.alert_capacity, int):
            raise ConfigurationError(f"alert_capacity must be an integer, got {self.alert_capacity!r}")
        if self.alert_capacity < 1:
            raise ConfigurationError(f"alert_capacity must be at least 1, got {self.alert_capacity}")
        if self.profile not in PROFILES:
            raise ConfigurationError(
                f"unknown scoring profile {self.profile!r} (known: {', '.join(sorted(PROFILES))})"
            )
        if self.identity_threshold is not None and not 0.0 <= self.identity_threshold <= 100.0:
            raise ConfigurationError(
                f"identity_threshold must be within [0, 100], got {self.identity_threshold}"
            )
        return self
