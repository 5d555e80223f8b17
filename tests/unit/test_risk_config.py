"""Unit tests for login risk configuration and application settings."""

from dataclasses import FrozenInstanceError, replace

import pytest

from loginwatch.config import Settings
from loginwatch.domains.login.config import (
    EnvSecuritySettings,
    LoginRiskConfig,
    MappingSecuritySettings,
    RiskConfigHolder,
    RiskWeights,
)


class _MutableSettings(MappingSecuritySettings):
    def __init__(self, values):
        super().__init__()
        self._values = values

    @property
    def values(self):
        return self._values


class TestLoginRiskConfig:
    def test_defaults(self):
        config = LoginRiskConfig()
        assert config.weights.base == 10
        assert config.weights.geographic == 25
        assert config.weights.new_device == 15
        assert config.weights.ip_reputation == 30
        assert config.weights.login_frequency == 20
        assert config.weights.concurrent_sessions == 15
        assert config.weights.unusual_time == 10
        assert config.thresholds.geo_distance_km == 500
        assert config.thresholds.geo_window_hours == 6
        assert config.thresholds.login_frequency_limit == 10
        assert config.thresholds.login_frequency_window_minutes == 30
        assert config.thresholds.max_concurrent_sessions == 5
        assert config.cache.session_ttl_seconds == 86400
        assert config.cache.activity_ttl_seconds == 3600

    def test_frozen(self):
        with pytest.raises(FrozenInstanceError):
            LoginRiskConfig().weights.base = 0

    def test_unknown_detector_weight(self):
        assert RiskWeights().for_detector("not_a_detector") == 0

    def test_from_settings(self):
        provider = MappingSecuritySettings(
            {
                "base_risk_score": 5,
                "geo_anomaly_risk_score": "40",
                "geo_anomaly_distance_km": 1000,
                "max_concurrent_sessions": 3,
                "geo_anomaly_detection_enabled": "false",
            }
        )
        config = LoginRiskConfig.from_settings(provider, version=4)
        assert config.weights.base == 5
        assert config.weights.geographic == 40
        assert config.weights.new_device == 15
        assert config.thresholds.geo_distance_km == 1000
        assert config.thresholds.max_concurrent_sessions == 3
        assert not config.toggles.is_enabled("geographic")
        assert config.toggles.is_enabled("new_device")
        assert config.version == 4

    def test_invalid_values_fall_back(self):
        provider = MappingSecuritySettings({"base_risk_score": "ten"})
        assert LoginRiskConfig.from_settings(provider).weights.base == 10

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("LOGINWATCH_LOGIN_FREQUENCY_LIMIT", "20")
        monkeypatch.setenv("LOGINWATCH_LOCAL_TIMEZONE", "Europe/Paris")
        config = LoginRiskConfig.from_env()
        assert config.thresholds.login_frequency_limit == 20
        assert config.thresholds.local_timezone == "Europe/Paris"

    def test_env_settings_keys_lowercased(self, monkeypatch):
        monkeypatch.setenv("LOGINWATCH_NEW_DEVICE_RISK_SCORE", "22")
        assert EnvSecuritySettings().get_int("new_device_risk_score", 0) == 22

    def test_invalid_timezone_falls_back_to_utc(self, monkeypatch):
        monkeypatch.setenv("LOGINWATCH_LOCAL_TIMEZONE", "Mars/Olympus_Mons")
        assert LoginRiskConfig.from_env().thresholds.local_timezone == "UTC"


class TestRiskConfigHolder:
    def test_swap_bumps_version(self):
        holder = RiskConfigHolder()
        first = holder.current()
        swapped = holder.swap(LoginRiskConfig(weights=RiskWeights(base=0)))
        assert swapped.version == first.version + 1
        assert holder.current() is swapped
        # Snapshots already handed out are untouched
        assert first.weights.base == 10

    def test_reload_reads_provider(self):
        provider = _MutableSettings({"login_frequency_limit": 10})
        holder = RiskConfigHolder(provider=provider)
        assert holder.current().thresholds.login_frequency_limit == 10

        provider.values["login_frequency_limit"] = 25
        reloaded = holder.reload()
        assert reloaded.thresholds.login_frequency_limit == 25
        assert reloaded.version == 1

    def test_reload_without_provider_is_noop(self):
        holder = RiskConfigHolder()
        assert holder.reload() is holder.current()

    @pytest.mark.asyncio
    async def test_refresh_picks_up_env_changes(self, monkeypatch):
        monkeypatch.delenv("LOGINWATCH_BASE_RISK_SCORE", raising=False)
        holder = RiskConfigHolder(provider=EnvSecuritySettings())
        assert holder.current().weights.base == 10

        monkeypatch.setenv("LOGINWATCH_BASE_RISK_SCORE", "40")
        refreshed = await holder.refresh()
        assert refreshed.weights.base == 40
        assert refreshed.version == 1

    @pytest.mark.asyncio
    async def test_refresh_keeps_local_timezone(self):
        initial = LoginRiskConfig.from_settings(MappingSecuritySettings())
        initial = replace(
            initial, thresholds=replace(initial.thresholds, local_timezone="Asia/Shanghai")
        )
        holder = RiskConfigHolder(initial=initial, provider=MappingSecuritySettings())
        refreshed = await holder.refresh()
        assert refreshed.thresholds.local_timezone == "Asia/Shanghai"


class TestSettings:
    def test_defaults(self):
        settings = Settings()
        assert settings.app_name == "loginwatch"
        assert settings.kafka_auth_events_topic == "loginwatch.auth.events"
        assert settings.backpressure_policy == "reject"

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("WORKER_COUNT", "8")
        monkeypatch.setenv("IP_BLOCKLIST", "203.0.113.0/24")
        settings = Settings()
        assert settings.worker_count == 8
        assert settings.ip_blocklist == "203.0.113.0/24"
