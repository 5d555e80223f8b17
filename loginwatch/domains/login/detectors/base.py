"""Abstract base class for login signal detectors."""

from abc import ABC, abstractmethod

from ..config import LoginRiskConfig
from ..models import DetectionContext
from ..store import SessionStore


class LoginDetector(ABC):
    """Base class for all login detectors.

    Detectors are async (most need history queries), read-only, and answer a
    single yes/no question about the login in ``ctx``. Missing inputs mean
    "not anomalous", never an exception.
    """

    detector_id: str  # key into RiskWeights / DetectionToggles
    reason: str  # human-readable label recorded on the session and alert

    @abstractmethod
    async def detect(
        self,
        ctx: DetectionContext,
        store: SessionStore,
        config: LoginRiskConfig,
    ) -> bool:
        """Return True when this signal considers the login anomalous."""
        ...
