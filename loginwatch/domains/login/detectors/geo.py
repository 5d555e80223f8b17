"""Geography-based login detectors."""

from datetime import timedelta

import structlog

from ..config import LoginRiskConfig
from ..geo import haversine
from ..models import DetectionContext
from ..store import SessionStore
from .base import LoginDetector

logger = structlog.get_logger()


class GeographicJumpDetector(LoginDetector):
    """Triggers when the user recently logged in far away from here.

    Compares against the most recent login with different coordinates. A large
    jump only counts if that login falls inside the recency window; older
    jumps are ordinary travel.
    """

    detector_id = "geographic"
    reason = "Login from unusual location"

    async def detect(
        self,
        ctx: DetectionContext,
        store: SessionStore,
        config: LoginRiskConfig,
    ) -> bool:
        if ctx.latitude is None or ctx.longitude is None:
            return False

        previous = await store.latest_with_other_coordinates(
            ctx.user_id, ctx.latitude, ctx.longitude
        )
        if previous is None or previous.latitude is None or previous.longitude is None:
            return False

        distance_km = haversine(previous.latitude, previous.longitude, ctx.latitude, ctx.longitude)
        thresholds = config.thresholds
        window_start = ctx.timestamp - timedelta(hours=thresholds.geo_window_hours)

        if distance_km > thresholds.geo_distance_km and previous.login_time > window_start:
            logger.warning(
                "geographic_anomaly_detected",
                user_id=ctx.user_id,
                distance_km=round(distance_km, 1),
                previous_login=previous.login_time.isoformat(),
            )
            return True
        return False
