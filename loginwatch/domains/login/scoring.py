"""Detector evaluation and additive risk aggregation."""

import structlog

from .config import LoginRiskConfig, default_config
from .detectors import LoginDetector, build_detectors
from .models import DetectionContext, RiskAssessment
from .store import SessionStore

logger = structlog.get_logger()

MIN_SCORE = 0
MAX_SCORE = 100


def clamp_score(value: int) -> int:
    return max(MIN_SCORE, min(value, MAX_SCORE))


class RiskAggregator:
    """Runs the login detectors and folds their verdicts into one score.

    Scoring is additive on a 0-100 scale:
    1. Start from ``weights.base``
    2. Add the weight of every detector that returned True
    3. Clamp to [0, 100]

    ``suspicious`` is True iff any detector fired, whatever the numeric score.
    """

    def __init__(
        self,
        detectors: list[LoginDetector] | None = None,
        config: LoginRiskConfig | None = None,
    ) -> None:
        self._detectors = detectors if detectors is not None else build_detectors()
        self._config = config or default_config

    @property
    def detectors(self) -> list[LoginDetector]:
        return list(self._detectors)

    async def run_detectors(
        self,
        ctx: DetectionContext,
        store: SessionStore,
        config: LoginRiskConfig | None = None,
    ) -> dict[str, bool]:
        """Evaluate every enabled detector sequentially. Errors count as not anomalous."""
        cfg = config or self._config
        results: dict[str, bool] = {}

        for detector in self._detectors:
            if not cfg.toggles.is_enabled(detector.detector_id):
                results[detector.detector_id] = False
                continue
            try:
                results[detector.detector_id] = bool(await detector.detect(ctx, store, cfg))
            except Exception:
                logger.exception(
                    "detector_evaluation_error",
                    detector_id=detector.detector_id,
                    user_id=ctx.user_id,
                    ip=ctx.ip_address,
                )
                results[detector.detector_id] = False

        return results

    def score(
        self,
        user_id: str,
        detector_results: dict[str, bool],
        config: LoginRiskConfig | None = None,
    ) -> RiskAssessment:
        cfg = config or self._config
        weights = cfg.weights

        total = weights.base
        for detector_id, fired in detector_results.items():
            if fired:
                total += weights.for_detector(detector_id)

        reasons = [
            d.reason for d in self._detectors if detector_results.get(d.detector_id, False)
        ]
        # Results for detectors outside this aggregator still mark the login suspicious
        known = {d.detector_id for d in self._detectors}
        reasons.extend(
            detector_id
            for detector_id, fired in detector_results.items()
            if fired and detector_id not in known
        )

        return RiskAssessment(
            user_id=user_id,
            score=clamp_score(total),
            suspicious=any(detector_results.values()),
            detector_results=dict(detector_results),
            reasons=reasons,
            config_version=cfg.version,
        )

    async def assess(
        self,
        ctx: DetectionContext,
        store: SessionStore,
        config: LoginRiskConfig | None = None,
    ) -> RiskAssessment:
        cfg = config or self._config
        results = await self.run_detectors(ctx, store, cfg)
        assessment = self.score(ctx.user_id, results, cfg)

        logger.info(
            "login_risk_evaluated",
            user_id=ctx.user_id,
            score=assessment.score,
            suspicious=assessment.suspicious,
            triggered=[k for k, v in results.items() if v],
            config_version=cfg.version,
        )
        return assessment
