"""Security alert pipeline: severity tiering, evidence payload, sink submission."""

import uuid
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any, Protocol

import structlog
from aiokafka.errors import KafkaError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from loginwatch.db.models import SecurityAlertDB
from loginwatch.shared.errors import AlertSubmissionError
from loginwatch.shared.kafka_utils import encode_event

from .models import ALERT_TYPE_LOGIN_ANOMALY, AlertSeverity, SecurityAlert, SessionRecord

logger = structlog.get_logger()

ALERT_TITLE = "Anomalous login detected"


def severity_for_score(score: int) -> AlertSeverity:
    if score >= 80:
        return AlertSeverity.CRITICAL
    if score >= 60:
        return AlertSeverity.HIGH
    if score >= 40:
        return AlertSeverity.MEDIUM
    return AlertSeverity.LOW


class AlertSink(Protocol):
    """Persists or dispatches an alert and returns its id."""

    async def create(self, alert: SecurityAlert) -> str: ...


class InMemoryAlertSink:
    def __init__(self) -> None:
        self.alerts: list[SecurityAlert] = []

    async def create(self, alert: SecurityAlert) -> str:
        self.alerts.append(alert)
        return alert.alert_id


class SqlAlertSink:
    """Writes alerts to the ``security_alerts`` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def create(self, alert: SecurityAlert) -> str:
        async with self._session_factory() as session:
            session.add(SecurityAlertDB(**alert.model_dump()))
            try:
                await session.commit()
            except SQLAlchemyError as exc:
                raise AlertSubmissionError(f"could not store alert {alert.alert_id}") from exc
        return alert.alert_id


class KafkaAlertSink:
    """Publishes alerts as JSON for downstream notification services.

    Args:
        producer: An aiokafka AIOKafkaProducer instance.
        topic: Destination topic.
    """

    def __init__(self, producer: Any, topic: str = "loginwatch.security.alerts") -> None:
        self._producer = producer
        self._topic = topic

    async def create(self, alert: SecurityAlert) -> str:
        payload = alert.model_dump(mode="json")
        try:
            await self._producer.send_and_wait(
                self._topic,
                value=encode_event(payload),
                key=alert.user_id.encode("utf-8"),
            )
        except KafkaError as exc:
            raise AlertSubmissionError(f"could not publish alert {alert.alert_id}") from exc
        logger.info("alert_published_to_kafka", alert_id=alert.alert_id, topic=self._topic)
        return alert.alert_id


class CompositeAlertSink:
    """Fans one alert out to several sinks; the first sink is authoritative."""

    def __init__(self, primary: AlertSink, *secondary: AlertSink) -> None:
        self._primary = primary
        self._secondary = secondary

    async def create(self, alert: SecurityAlert) -> str:
        alert_id = await self._primary.create(alert)
        for sink in self._secondary:
            try:
                await sink.create(alert)
            except Exception:
                logger.exception(
                    "secondary_alert_sink_failed",
                    alert_id=alert.alert_id,
                    sink=type(sink).__name__,
                )
        return alert_id


class AlertEmitter:
    """Turns a suspicious login into a LOGIN_ANOMALY alert.

    Submission is best effort: sink failures are logged and swallowed, and no
    retry happens here.
    """

    def __init__(
        self,
        sink: AlertSink,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._sink = sink
        self._clock = clock or (lambda: datetime.now(UTC))

    def build_alert(self, user_id: str, record: SessionRecord, reasons: list[str]) -> SecurityAlert:
        location = record.location_label
        evidence = {
            "ip_address": record.ip_address,
            "location": location,
            "device": record.device_label,
            "risk_score": record.risk_score,
            "suspicious_reasons": list(reasons),
        }
        return SecurityAlert(
            alert_id=str(uuid.uuid4()),
            user_id=user_id,
            alert_type=ALERT_TYPE_LOGIN_ANOMALY,
            severity=severity_for_score(record.risk_score),
            title=ALERT_TITLE,
            description=f"User {user_id} shows anomalous login behaviour: {'; '.join(reasons)}",
            alert_data=evidence,
            ip_address=record.ip_address,
            user_agent=record.user_agent,
            location=location,
            is_resolved=False,
            is_notified=False,
            created_at=self._clock(),
        )

    async def emit(self, user_id: str, record: SessionRecord, reasons: list[str]) -> str | None:
        """Build and submit an alert. Returns the alert id, or None if submission failed."""
        try:
            alert = self.build_alert(user_id, record, reasons)
            alert_id = await self._sink.create(alert)
        except Exception:
            logger.exception(
                "alert_submission_failed",
                user_id=user_id,
                ip=record.ip_address,
                risk_score=record.risk_score,
            )
            return None

        logger.warning(
            "login_alert_created",
            alert_id=alert_id,
            user_id=user_id,
            severity=alert.severity.value,
            risk_score=record.risk_score,
            reasons=reasons,
        )
        return alert_id
