"""Login risk configuration with sensible defaults.

Weights and thresholds are grouped into a frozen ``LoginRiskConfig`` snapshot.
A scoring call reads one snapshot and uses it from start to finish; hot reloads
build a new snapshot and swap the reference held by ``RiskConfigHolder``.
"""

import os
import threading
from dataclasses import dataclass, field, replace
from typing import Protocol
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import structlog

logger = structlog.get_logger()


class SecuritySettings(Protocol):
    """Process-wide tunables supplied by the settings collaborator."""

    def get_int(self, key: str, default: int) -> int: ...

    def get_bool(self, key: str, default: bool) -> bool: ...

    async def refresh(self) -> None: ...


class MappingSecuritySettings:
    """Settings backed by a plain mapping (admin UI export, tests)."""

    def __init__(self, values: dict[str, object] | None = None) -> None:
        self._values = dict(values or {})

    def get_int(self, key: str, default: int) -> int:
        value = self._values.get(key)
        if value is None:
            return default
        try:
            return int(value)
        except (TypeError, ValueError):
            return default

    def get_bool(self, key: str, default: bool) -> bool:
        value = self._values.get(key)
        if value is None:
            return default
        if isinstance(value, bool):
            return value
        return str(value).strip().lower() in ("1", "true", "yes", "on")

    def as_dict(self) -> dict[str, object]:
        return dict(self._values)

    async def refresh(self) -> None:
        """Static mappings have nothing to re-read."""


class EnvSecuritySettings(MappingSecuritySettings):
    """Settings read from ``LOGINWATCH_<KEY>`` environment variables."""

    def __init__(self, prefix: str = "LOGINWATCH_") -> None:
        self._prefix = prefix
        super().__init__(self._read_env())

    def _read_env(self) -> dict[str, object]:
        return {
            name[len(self._prefix):].lower(): value
            for name, value in os.environ.items()
            if name.startswith(self._prefix)
        }

    async def refresh(self) -> None:
        self._values = self._read_env()


@dataclass(frozen=True)
class RiskWeights:
    """Points added to the base score for each detector that fires."""

    base: int = 10
    geographic: int = 25
    new_device: int = 15
    ip_reputation: int = 30
    login_frequency: int = 20
    concurrent_sessions: int = 15
    unusual_time: int = 10

    def for_detector(self, detector_id: str) -> int:
        return getattr(self, detector_id, 0)


@dataclass(frozen=True)
class DetectionThresholds:
    geo_distance_km: int = 500
    # Prior login must be this recent for a jump to count as impossible travel
    geo_window_hours: int = 6
    login_frequency_limit: int = 10
    login_frequency_window_minutes: int = 30
    max_concurrent_sessions: int = 5
    # Logins outside [unusual_hour_start, unusual_hour_end) are flagged
    unusual_hour_start: int = 6
    unusual_hour_end: int = 23
    local_timezone: str = "UTC"


@dataclass(frozen=True)
class DetectionToggles:
    geographic: bool = True
    new_device: bool = True
    login_frequency: bool = True
    concurrent_sessions: bool = True
    unusual_time: bool = True
    ip_reputation: bool = True

    def is_enabled(self, detector_id: str) -> bool:
        return getattr(self, detector_id, True)


@dataclass(frozen=True)
class CacheSettings:
    session_ttl_seconds: int = 86400
    activity_ttl_seconds: int = 3600


@dataclass(frozen=True)
class LoginRiskConfig:
    weights: RiskWeights = field(default_factory=RiskWeights)
    thresholds: DetectionThresholds = field(default_factory=DetectionThresholds)
    toggles: DetectionToggles = field(default_factory=DetectionToggles)
    cache: CacheSettings = field(default_factory=CacheSettings)
    version: int = 0

    @classmethod
    def from_settings(cls, provider: SecuritySettings, version: int = 0) -> "LoginRiskConfig":
        """Build a snapshot from the security settings collaborator."""
        w, t, g = RiskWeights(), DetectionThresholds(), DetectionToggles()
        return cls(
            weights=RiskWeights(
                base=provider.get_int("base_risk_score", w.base),
                geographic=provider.get_int("geo_anomaly_risk_score", w.geographic),
                new_device=provider.get_int("new_device_risk_score", w.new_device),
                ip_reputation=provider.get_int("suspicious_ip_risk_score", w.ip_reputation),
                login_frequency=provider.get_int("login_frequency_risk_score", w.login_frequency),
                concurrent_sessions=provider.get_int(
                    "concurrent_sessions_risk_score", w.concurrent_sessions
                ),
                unusual_time=provider.get_int("time_anomaly_risk_score", w.unusual_time),
            ),
            thresholds=replace(
                t,
                geo_distance_km=provider.get_int("geo_anomaly_distance_km", t.geo_distance_km),
                geo_window_hours=provider.get_int("time_anomaly_window_hours", t.geo_window_hours),
                login_frequency_limit=provider.get_int(
                    "login_frequency_limit", t.login_frequency_limit
                ),
                login_frequency_window_minutes=provider.get_int(
                    "login_frequency_window_minutes", t.login_frequency_window_minutes
                ),
                max_concurrent_sessions=provider.get_int(
                    "max_concurrent_sessions", t.max_concurrent_sessions
                ),
                unusual_hour_start=provider.get_int("unusual_hour_start", t.unusual_hour_start),
                unusual_hour_end=provider.get_int("unusual_hour_end", t.unusual_hour_end),
            ),
            toggles=DetectionToggles(
                geographic=provider.get_bool("geo_anomaly_detection_enabled", g.geographic),
                new_device=provider.get_bool("new_device_detection_enabled", g.new_device),
                login_frequency=provider.get_bool(
                    "login_frequency_detection_enabled", g.login_frequency
                ),
                concurrent_sessions=provider.get_bool(
                    "concurrent_session_detection_enabled", g.concurrent_sessions
                ),
                unusual_time=provider.get_bool("time_anomaly_detection_enabled", g.unusual_time),
                ip_reputation=provider.get_bool(
                    "ip_reputation_detection_enabled", g.ip_reputation
                ),
            ),
            version=version,
        )

    @classmethod
    def from_env(cls) -> "LoginRiskConfig":
        """Load config with env var overrides. Env vars use LOGINWATCH_ prefix."""
        config = cls.from_settings(EnvSecuritySettings())
        if v := os.getenv("LOGINWATCH_LOCAL_TIMEZONE"):
            config = replace(
                config, thresholds=replace(config.thresholds, local_timezone=_valid_timezone(v))
            )
        return config


def _valid_timezone(name: str) -> str:
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("local_timezone_invalid", timezone=name, fallback="UTC")
        return "UTC"
    return name


class RiskConfigHolder:
    """Holds the current config snapshot and swaps it atomically on reload."""

    def __init__(
        self,
        initial: LoginRiskConfig | None = None,
        provider: SecuritySettings | None = None,
    ) -> None:
        self._provider = provider
        self._lock = threading.Lock()
        self._current = initial or (
            LoginRiskConfig.from_settings(provider) if provider else LoginRiskConfig()
        )

    def current(self) -> LoginRiskConfig:
        return self._current

    def swap(self, config: LoginRiskConfig) -> LoginRiskConfig:
        with self._lock:
            self._current = replace(config, version=self._current.version + 1)
            return self._current

    def reload(self) -> LoginRiskConfig:
        """Rebuild from the settings provider, keeping the local timezone."""
        if self._provider is None:
            return self._current
        fresh = LoginRiskConfig.from_settings(self._provider)
        fresh = replace(
            fresh,
            thresholds=replace(
                fresh.thresholds, local_timezone=self._current.thresholds.local_timezone
            ),
        )
        return self.swap(fresh)

    async def refresh(self) -> LoginRiskConfig:
        """Re-read the provider's backing source, then reload."""
        if self._provider is None:
            return self._current
        await self._provider.refresh()
        return self.reload()


# Module-level default instance
default_config = LoginRiskConfig()
