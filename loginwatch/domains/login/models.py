"""Pydantic models for the login risk domain."""

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field, field_validator


class LoginEventType(StrEnum):
    LOGIN = "login"
    LOGOUT = "logout"
    ACTIVITY = "activity"
    TERMINATE = "terminate"


class AlertSeverity(StrEnum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


ALERT_TYPE_LOGIN_ANOMALY = "LOGIN_ANOMALY"


class LoginEvent(BaseModel):
    user_id: str
    event_type: LoginEventType = LoginEventType.LOGIN
    ip_address: str | None = None
    user_agent: str | None = None
    session_token_hash: str | None = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @field_validator("timestamp")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value


class DeviceInfo(BaseModel):
    device_type: str = "unknown"
    os: str = "unknown"
    browser: str = "unknown"


class GeoLocation(BaseModel):
    country: str | None = None
    region: str | None = None
    city: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    isp: str | None = None

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None


class SessionRecord(BaseModel):
    """Audit entry for one login."""

    id: int | None = None
    user_id: str
    session_token_hash: str
    ip_address: str | None = None
    user_agent: str | None = None
    device_type: str = "unknown"
    os: str = "unknown"
    browser: str = "unknown"
    device_fingerprint: str
    country: str | None = None
    region: str | None = None
    city: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    isp: str | None = None
    is_active: bool = True
    is_suspicious: bool = False
    risk_score: int = Field(default=0, ge=0, le=100)
    suspicious_reasons: str = ""
    login_time: datetime
    last_activity: datetime
    logout_time: datetime | None = None

    model_config = {"from_attributes": True}

    @field_validator("login_time", "last_activity", "logout_time")
    @classmethod
    def _assume_utc(cls, value: datetime | None) -> datetime | None:
        # Some backends (SQLite) hand back naive timestamps
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value

    @property
    def reasons(self) -> list[str]:
        return [r for r in self.suspicious_reasons.split(",") if r]

    @property
    def location_label(self) -> str:
        return f"{self.city or 'unknown'}, {self.country or 'unknown'}"

    @property
    def device_label(self) -> str:
        return f"{self.browser} on {self.os}"


class DetectionContext(BaseModel):
    """Inputs shared by every detector for one evaluation."""

    user_id: str
    ip_address: str | None = None
    device_fingerprint: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    timestamp: datetime
    # The login being recorded is not yet stored; count it towards
    # frequency and concurrency limits.
    include_current: bool = False


class RiskAssessment(BaseModel):
    user_id: str
    score: int = Field(ge=0, le=100)
    suspicious: bool
    detector_results: dict[str, bool] = Field(default_factory=dict)
    reasons: list[str] = Field(default_factory=list)
    config_version: int = 0


class SecurityAlert(BaseModel):
    alert_id: str
    user_id: str
    alert_type: str = ALERT_TYPE_LOGIN_ANOMALY
    severity: AlertSeverity
    title: str
    description: str = ""
    alert_data: dict[str, Any] = Field(default_factory=dict)
    ip_address: str | None = None
    user_agent: str | None = None
    location: str | None = None
    is_resolved: bool = False
    is_notified: bool = False
    created_at: datetime


class LoginOutcome(BaseModel):
    """What ``record_login`` produced, including recovered failures."""

    record: SessionRecord
    assessment: RiskAssessment | None = None
    alert_id: str | None = None
    persisted: bool = False
    errors: list[dict[str, str]] = Field(default_factory=list)
