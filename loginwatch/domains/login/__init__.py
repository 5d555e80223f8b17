"""Login risk scoring and anomaly detection domain."""

from .alerts import AlertEmitter, AlertSink, severity_for_score
from .config import LoginRiskConfig, RiskConfigHolder, RiskWeights
from .detectors import build_detectors
from .dispatcher import BackpressurePolicy, LoginEventDispatcher
from .models import (
    AlertSeverity,
    DetectionContext,
    LoginEvent,
    LoginEventType,
    LoginOutcome,
    RiskAssessment,
    SecurityAlert,
    SessionRecord,
)
from .recorder import LoginEventRecorder
from .scoring import RiskAggregator
from .store import InMemorySessionStore, SessionStore, SqlSessionStore

__all__ = [
    "AlertEmitter",
    "AlertSeverity",
    "AlertSink",
    "BackpressurePolicy",
    "DetectionContext",
    "InMemorySessionStore",
    "LoginEvent",
    "LoginEventDispatcher",
    "LoginEventRecorder",
    "LoginEventType",
    "LoginOutcome",
    "LoginRiskConfig",
    "RiskAggregator",
    "RiskAssessment",
    "RiskConfigHolder",
    "RiskWeights",
    "SecurityAlert",
    "SessionRecord",
    "SessionStore",
    "SqlSessionStore",
    "build_detectors",
    "severity_for_score",
]
