"""Consumer for authentication events emitted by the login service."""

from typing import Any

import structlog
from pydantic import ValidationError

from loginwatch.domains.login.dispatcher import LoginEventDispatcher
from loginwatch.domains.login.models import LoginEvent, LoginEventType

from .base import BaseConsumer

logger = structlog.get_logger()

# Envelope event_type -> engine event type
AUTH_EVENT_TYPES: dict[str, LoginEventType] = {
    "login-success": LoginEventType.LOGIN,
    "session-ended": LoginEventType.LOGOUT,
    "user-action-performed": LoginEventType.ACTIVITY,
    "sessions-terminated": LoginEventType.TERMINATE,
}


def parse_auth_event(event: dict[str, Any]) -> LoginEvent | None:
    """Map an ``{event_type, timestamp, payload}`` envelope onto a LoginEvent."""
    event_type = AUTH_EVENT_TYPES.get(event.get("event_type", ""))
    payload = event.get("payload") or {}
    user_id = payload.get("user_id")
    if event_type is None or not user_id:
        return None

    fields: dict[str, Any] = {
        "user_id": str(user_id),
        "event_type": event_type,
        "ip_address": payload.get("ip_address"),
        "user_agent": payload.get("user_agent"),
        "session_token_hash": payload.get("session_token_hash"),
    }
    timestamp = payload.get("timestamp") or event.get("timestamp")
    if timestamp:
        fields["timestamp"] = timestamp
    try:
        return LoginEvent(**fields)
    except ValidationError as exc:
        logger.warning("auth_event_invalid", event_id=event.get("event_id"), error=str(exc))
        return None


class LoginEventConsumer(BaseConsumer):
    def __init__(
        self,
        dispatcher: LoginEventDispatcher,
        bootstrap_servers: str,
        topic: str = "loginwatch.auth.events",
        group_id: str = "loginwatch",
    ) -> None:
        super().__init__(topics=[topic], bootstrap_servers=bootstrap_servers, group_id=group_id)
        self._dispatcher = dispatcher
        for event_type in AUTH_EVENT_TYPES:
            self.register_handler(event_type, self._handle_auth_event)

    async def _handle_auth_event(self, event: dict[str, Any]) -> None:
        login_event = parse_auth_event(event)
        if login_event is None:
            logger.warning(
                "auth_event_skipped",
                event_type=event.get("event_type"),
                event_id=event.get("event_id"),
            )
            return

        accepted = self._dispatcher.submit(login_event)
        logger.debug(
            "auth_event_received",
            event_type=login_event.event_type.value,
            user_id=login_event.user_id,
            accepted=accepted,
        )
