"""Velocity and timing detectors."""

from datetime import timedelta
from zoneinfo import ZoneInfo

import structlog

from ..config import LoginRiskConfig
from ..models import DetectionContext
from ..store import SessionStore
from .base import LoginDetector

logger = structlog.get_logger()


class LoginFrequencyDetector(LoginDetector):
    """Triggers when logins from one IP exceed the limit inside the window."""

    detector_id = "login_frequency"
    reason = "Abnormal login frequency"

    async def detect(
        self,
        ctx: DetectionContext,
        store: SessionStore,
        config: LoginRiskConfig,
    ) -> bool:
        if not ctx.ip_address:
            return False

        window_minutes = config.thresholds.login_frequency_window_minutes
        limit = config.thresholds.login_frequency_limit
        since = ctx.timestamp - timedelta(minutes=window_minutes)

        count = await store.count_for_ip_since(ctx.user_id, ctx.ip_address, since)
        if ctx.include_current:
            count += 1

        if count > limit:
            logger.warning(
                "login_frequency_anomaly_detected",
                user_id=ctx.user_id,
                count=count,
                window_minutes=window_minutes,
            )
            return True
        return False


class ConcurrentSessionsDetector(LoginDetector):
    """Triggers when the user holds more active sessions than allowed."""

    detector_id = "concurrent_sessions"
    reason = "Too many concurrent sessions"

    async def detect(
        self,
        ctx: DetectionContext,
        store: SessionStore,
        config: LoginRiskConfig,
    ) -> bool:
        count = await store.count_active(ctx.user_id)
        if ctx.include_current:
            count += 1

        max_sessions = config.thresholds.max_concurrent_sessions
        if count > max_sessions:
            logger.warning(
                "concurrent_session_anomaly_detected", user_id=ctx.user_id, sessions=count
            )
            return True
        return False


class UnusualTimeDetector(LoginDetector):
    """Triggers for logins outside [06:00, 23:00) local time."""

    detector_id = "unusual_time"
    reason = "Login at unusual time"

    async def detect(
        self,
        ctx: DetectionContext,
        store: SessionStore,
        config: LoginRiskConfig,
    ) -> bool:
        thresholds = config.thresholds
        local = ctx.timestamp.astimezone(ZoneInfo(thresholds.local_timezone))
        return not (thresholds.unusual_hour_start <= local.hour < thresholds.unusual_hour_end)
