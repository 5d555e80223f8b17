"""Device novelty detector."""

from ..config import LoginRiskConfig
from ..models import DetectionContext
from ..store import SessionStore
from .base import LoginDetector


class NewDeviceDetector(LoginDetector):
    """Triggers when no earlier login of this user carries the same fingerprint."""

    detector_id = "new_device"
    reason = "Login from new device"

    async def detect(
        self,
        ctx: DetectionContext,
        store: SessionStore,
        config: LoginRiskConfig,
    ) -> bool:
        if not ctx.device_fingerprint:
            return False
        return not await store.has_fingerprint(ctx.user_id, ctx.device_fingerprint)
