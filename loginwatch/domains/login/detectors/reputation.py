"""IP reputation detector and its pluggable reputation lists."""

import ipaddress
from collections.abc import Iterable
from typing import Protocol

from ..config import LoginRiskConfig
from ..models import DetectionContext
from ..store import SessionStore
from .base import LoginDetector


class IpReputationList(Protocol):
    async def is_listed(self, ip_address: str) -> bool: ...


class NullReputationList:
    """Default: no reputation source configured, nothing is listed."""

    async def is_listed(self, ip_address: str) -> bool:
        return False


class StaticReputationList:
    """Fixed blocklist of addresses and CIDR networks."""

    def __init__(self, entries: Iterable[str]) -> None:
        self._networks = [ipaddress.ip_network(entry.strip(), strict=False) for entry in entries]

    async def is_listed(self, ip_address: str) -> bool:
        try:
            addr = ipaddress.ip_address(ip_address.strip())
        except ValueError:
            return False
        return any(addr in network for network in self._networks)


class IpReputationDetector(LoginDetector):
    detector_id = "ip_reputation"
    reason = "Suspicious IP address"

    def __init__(self, reputation_list: IpReputationList | None = None) -> None:
        self._reputation_list = reputation_list or NullReputationList()

    async def detect(
        self,
        ctx: DetectionContext,
        store: SessionStore,
        config: LoginRiskConfig,
    ) -> bool:
        if not ctx.ip_address:
            return False
        return await self._reputation_list.is_listed(ctx.ip_address)
