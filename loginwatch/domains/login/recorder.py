"""Login recording pipeline: device + geo -> detectors -> persist -> alert -> cache."""

import hashlib
import secrets
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import structlog

from loginwatch.shared.cache import TTLCache
from loginwatch.shared.result import Failure, StepError, Success

from .alerts import AlertEmitter
from .config import LoginRiskConfig, RiskConfigHolder
from .detectors import (
    ConcurrentSessionsDetector,
    GeographicJumpDetector,
    LoginDetector,
    LoginFrequencyDetector,
)
from .device import DeviceParser, device_fingerprint
from .geo import GeoResolver, NullGeoResolver, resolve_with_timeout
from .models import (
    DetectionContext,
    DeviceInfo,
    GeoLocation,
    LoginOutcome,
    RiskAssessment,
    SessionRecord,
)
from .scoring import RiskAggregator
from .store import SessionStore

logger = structlog.get_logger()


def session_cache_key(user_id: str) -> str:
    return f"user_session:{user_id}"


def activity_cache_key(user_id: str) -> str:
    return f"user_activity:{user_id}"


def generate_session_hash(user_id: str, at: datetime) -> str:
    """SHA-256 over user id, timestamp and a random nonce. The raw token never lands here."""
    material = f"{user_id}_{int(at.timestamp() * 1000)}_{secrets.token_hex(16)}"
    return hashlib.sha256(material.encode("utf-8")).hexdigest()


class LoginEventRecorder:
    """Records logins, logouts and activity for the risk engine.

    None of the public coroutines raise. Each step returns a ``Success`` or
    ``Failure``; failures are collected and logged once per call with the user,
    IP and failing component.
    """

    def __init__(
        self,
        store: SessionStore,
        cache: TTLCache,
        alert_emitter: AlertEmitter,
        config_holder: RiskConfigHolder | None = None,
        geo_resolver: GeoResolver | None = None,
        device_parser: DeviceParser | None = None,
        aggregator: RiskAggregator | None = None,
        geo_timeout_seconds: float = 3.0,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._cache = cache
        self._alert_emitter = alert_emitter
        self._config_holder = config_holder or RiskConfigHolder()
        self._geo_resolver = geo_resolver or NullGeoResolver()
        self._device_parser = device_parser or DeviceParser()
        self._aggregator = aggregator or RiskAggregator()
        self._geo_timeout = geo_timeout_seconds
        self._clock = clock or (lambda: datetime.now(UTC))

    @property
    def config(self) -> LoginRiskConfig:
        return self._config_holder.current()

    # --- Event recording ---

    async def record_login(
        self,
        user_id: str,
        ip_address: str | None,
        user_agent: str | None,
        timestamp: datetime | None = None,
    ) -> LoginOutcome | None:
        """Record one successful authentication. Returns None only on unexpected failure."""
        try:
            return await self._record_login(user_id, ip_address, user_agent, timestamp)
        except Exception:
            logger.exception("login_recording_failed", user_id=user_id, ip=ip_address)
            return None

    async def _record_login(
        self,
        user_id: str,
        ip_address: str | None,
        user_agent: str | None,
        timestamp: datetime | None,
    ) -> LoginOutcome:
        config = self._config_holder.current()
        now = timestamp or self._clock()
        errors: list[StepError] = []

        device = self._parse_device(user_agent)
        if isinstance(device, Failure):
            errors.append(device.error)
            device_info = DeviceInfo()
        else:
            device_info = device.value

        geo = await resolve_with_timeout(self._geo_resolver, ip_address, self._geo_timeout)
        if isinstance(geo, Failure):
            errors.append(geo.error)
            location = GeoLocation()
        else:
            location = geo.value or GeoLocation()

        record = SessionRecord(
            user_id=user_id,
            session_token_hash=generate_session_hash(user_id, now),
            ip_address=ip_address,
            user_agent=user_agent,
            device_type=device_info.device_type,
            os=device_info.os,
            browser=device_info.browser,
            device_fingerprint=device_fingerprint(ip_address, user_agent),
            country=location.country,
            region=location.region,
            city=location.city,
            latitude=location.latitude,
            longitude=location.longitude,
            isp=location.isp,
            is_active=True,
            login_time=now,
            last_activity=now,
        )

        ctx = DetectionContext(
            user_id=user_id,
            ip_address=ip_address,
            device_fingerprint=record.device_fingerprint,
            latitude=record.latitude,
            longitude=record.longitude,
            timestamp=now,
            include_current=True,
        )
        assessed = await self._assess(ctx, config)
        assessment: RiskAssessment | None = None
        if isinstance(assessed, Failure):
            errors.append(assessed.error)
            record.risk_score = config.weights.base
        else:
            assessment = assessed.value
            record.risk_score = assessment.score
            record.is_suspicious = assessment.suspicious
            record.suspicious_reasons = ",".join(assessment.reasons)

        persisted = await self._persist(record)
        if isinstance(persisted, Failure):
            errors.append(persisted.error)
        else:
            record = persisted.value

        alert_id = None
        if assessment is not None and assessment.suspicious:
            alerted = await self._alert(user_id, record, assessment.reasons)
            if isinstance(alerted, Failure):
                errors.append(alerted.error)
            else:
                alert_id = alerted.value

        cached = await self._cache_session(record, config)
        if isinstance(cached, Failure):
            errors.append(cached.error)

        outcome = LoginOutcome(
            record=record,
            assessment=assessment,
            alert_id=alert_id,
            persisted=isinstance(persisted, Success),
            errors=[e.as_log_dict() for e in errors],
        )
        self._log_outcome(outcome)
        return outcome

    async def record_logout(self, user_id: str) -> int:
        """Deactivate every active session of the user. Repeated calls are no-ops."""
        now = self._clock()
        try:
            count = await self._store.deactivate(user_id, now)
        except Exception:
            logger.exception("logout_recording_failed", user_id=user_id, component="persistence")
            return 0
        await self._invalidate_session(user_id)
        logger.info("logout_recorded", user_id=user_id, sessions_closed=count)
        return count

    async def update_activity(self, user_id: str, ip_address: str) -> bool:
        """Touch the newest active session for (user, ip). False when none matched."""
        now = self._clock()
        try:
            touched = await self._store.touch_activity(user_id, ip_address, now)
        except Exception:
            logger.exception(
                "activity_update_failed", user_id=user_id, ip=ip_address, component="persistence"
            )
            return False
        if not touched:
            return False

        ttl = self._config_holder.current().cache.activity_ttl_seconds
        try:
            await self._cache.set(
                activity_cache_key(user_id), {"last_activity": now.isoformat()}, ttl
            )
        except Exception:
            logger.warning("activity_cache_update_failed", user_id=user_id, exc_info=True)
        return True

    async def terminate_sessions(self, user_id: str, session_token_hash: str | None = None) -> int:
        """Force-close one session (by token hash) or all active sessions of a user."""
        now = self._clock()
        try:
            count = await self._store.deactivate(
                user_id, now, session_token_hash=session_token_hash
            )
        except Exception:
            logger.exception("session_termination_failed", user_id=user_id, component="persistence")
            return 0
        await self._invalidate_session(user_id)
        logger.info(
            "sessions_terminated",
            user_id=user_id,
            count=count,
            single_session=session_token_hash is not None,
        )
        return count

    async def get_cached_session(self, user_id: str) -> dict[str, Any] | None:
        try:
            return await self._cache.get(session_cache_key(user_id))
        except Exception:
            logger.warning("session_cache_read_failed", user_id=user_id, exc_info=True)
            return None

    # --- Read-only queries ---

    async def detect_geographic_anomaly(
        self,
        user_id: str,
        latitude: float | None,
        longitude: float | None,
        at: datetime | None = None,
    ) -> bool:
        ctx = DetectionContext(
            user_id=user_id, latitude=latitude, longitude=longitude, timestamp=at or self._clock()
        )
        return await self._single_detector(GeographicJumpDetector(), ctx)

    async def detect_concurrent_session_anomaly(self, user_id: str) -> bool:
        ctx = DetectionContext(user_id=user_id, timestamp=self._clock())
        return await self._single_detector(ConcurrentSessionsDetector(), ctx)

    async def detect_login_frequency_anomaly(self, user_id: str, ip_address: str) -> bool:
        ctx = DetectionContext(user_id=user_id, ip_address=ip_address, timestamp=self._clock())
        return await self._single_detector(LoginFrequencyDetector(), ctx)

    async def calculate_risk_score(self, record: SessionRecord) -> int:
        assessment = await self._assess_record(record)
        return assessment.score if assessment is not None else self.config.weights.base

    async def detect_login_anomaly(self, record: SessionRecord) -> bool:
        assessment = await self._assess_record(record)
        return assessment.suspicious if assessment is not None else False

    # --- Steps ---

    def _parse_device(self, user_agent: str | None) -> Success[DeviceInfo] | Failure[StepError]:
        try:
            return Success(value=self._device_parser.parse(user_agent))
        except Exception as exc:
            return Failure(error=StepError("device", str(exc), category="malformed_input"))

    async def _assess(
        self, ctx: DetectionContext, config: LoginRiskConfig
    ) -> Success[RiskAssessment] | Failure[StepError]:
        try:
            return Success(value=await self._aggregator.assess(ctx, self._store, config))
        except Exception as exc:
            return Failure(error=StepError("detection", f"{type(exc).__name__}: {exc}"))

    async def _persist(self, record: SessionRecord) -> Success[SessionRecord] | Failure[StepError]:
        try:
            return Success(value=await self._store.add(record))
        except Exception as exc:
            return Failure(
                error=StepError(
                    "persistence", f"{type(exc).__name__}: {exc}", category="persistence_failure"
                )
            )

    async def _alert(
        self, user_id: str, record: SessionRecord, reasons: list[str]
    ) -> Success[str] | Failure[StepError]:
        alert_id = await self._alert_emitter.emit(user_id, record, reasons)
        if alert_id is None:
            return Failure(
                error=StepError(
                    "alert", "alert sink did not accept alert", category="alert_submission_failure"
                )
            )
        return Success(value=alert_id)

    async def _cache_session(
        self, record: SessionRecord, config: LoginRiskConfig
    ) -> Success[None] | Failure[StepError]:
        summary = {
            "user_id": record.user_id,
            "ip_address": record.ip_address,
            "login_time": record.login_time.isoformat(),
            "device_fingerprint": record.device_fingerprint,
            "risk_score": record.risk_score,
            "is_suspicious": record.is_suspicious,
        }
        try:
            await self._cache.set(
                session_cache_key(record.user_id), summary, config.cache.session_ttl_seconds
            )
        except Exception as exc:
            return Failure(error=StepError("cache", f"{type(exc).__name__}: {exc}"))
        return Success(value=None)

    async def _invalidate_session(self, user_id: str) -> None:
        try:
            await self._cache.delete(session_cache_key(user_id))
        except Exception:
            logger.warning("session_cache_invalidation_failed", user_id=user_id, exc_info=True)

    async def _single_detector(self, detector: LoginDetector, ctx: DetectionContext) -> bool:
        config = self._config_holder.current()
        if not config.toggles.is_enabled(detector.detector_id):
            return False
        try:
            return await detector.detect(ctx, self._store, config)
        except Exception:
            logger.exception(
                "detector_evaluation_error", detector_id=detector.detector_id, user_id=ctx.user_id
            )
            return False

    async def _assess_record(self, record: SessionRecord) -> RiskAssessment | None:
        ctx = DetectionContext(
            user_id=record.user_id,
            ip_address=record.ip_address,
            device_fingerprint=record.device_fingerprint,
            latitude=record.latitude,
            longitude=record.longitude,
            timestamp=record.login_time,
            include_current=record.id is None,
        )
        result = await self._assess(ctx, self._config_holder.current())
        if isinstance(result, Failure):
            logger.error(
                "risk_assessment_failed", user_id=record.user_id, **result.error.as_log_dict()
            )
            return None
        return result.value

    def _log_outcome(self, outcome: LoginOutcome) -> None:
        record = outcome.record
        fields = {
            "user_id": record.user_id,
            "ip": record.ip_address,
            "suspicious": record.is_suspicious,
            "risk_score": record.risk_score,
            "persisted": outcome.persisted,
            "alert_id": outcome.alert_id,
        }
        if outcome.errors:
            log = logger.error if not outcome.persisted else logger.warning
            log("login_recording_degraded", errors=outcome.errors, **fields)
        else:
            logger.info("login_recorded", **fields)
