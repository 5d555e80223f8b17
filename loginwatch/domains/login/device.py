"""User-agent classification and device fingerprinting."""

import hashlib

import structlog
from user_agents import parse as parse_user_agent

from .models import DeviceInfo

logger = structlog.get_logger()


def device_fingerprint(ip_address: str | None, user_agent: str | None) -> str:
    """Stable SHA-256 hex digest of ``"{ip}|{user_agent}"``."""
    combined = f"{ip_address or ''}|{user_agent or ''}"
    return hashlib.sha256(combined.encode("utf-8")).hexdigest()


class DeviceParser:
    """Best-effort user-agent classification. Unknown fields stay ``"unknown"``."""

    def parse(self, user_agent: str | None) -> DeviceInfo:
        if not user_agent or not user_agent.strip():
            return DeviceInfo()

        try:
            ua = parse_user_agent(user_agent)
        except Exception:
            logger.warning("user_agent_unparseable", user_agent=user_agent[:200])
            return DeviceInfo()

        if ua.is_mobile:
            device_type = "mobile"
        elif ua.is_tablet:
            device_type = "tablet"
        elif ua.is_pc:
            device_type = "desktop"
        elif ua.is_bot:
            device_type = "bot"
        else:
            device_type = "unknown"

        os_name = _label(ua.os.family, ua.os.version_string)
        browser = _label(ua.browser.family, ua.browser.version_string)
        return DeviceInfo(device_type=device_type, os=os_name, browser=browser)


def _label(family: str | None, version: str | None) -> str:
    if not family or family == "Other":
        return "unknown"
    return f"{family} {version}".strip() if version else family
