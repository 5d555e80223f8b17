"""IP geolocation adapter.

The engine only needs ``resolve(ip) -> GeoLocation | None``. ``IpApiGeoResolver``
talks to an ip-api.com compatible endpoint and caches answers; lookups for
loopback, private or malformed addresses short-circuit to ``None``.
"""

import asyncio
import ipaddress
import math
from typing import Any, Protocol

import httpx
import structlog

from loginwatch.shared.cache import TTLCache
from loginwatch.shared.errors import GeoLookupError
from loginwatch.shared.result import Failure, StepError, Success

from .models import GeoLocation

logger = structlog.get_logger()

EARTH_RADIUS_KM = 6371.0

_IP_API_FIELDS = "status,message,country,countryCode,regionName,city,lat,lon,timezone,isp"


def haversine(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Calculate distance in km between two lat/lon points."""
    lat1_r, lon1_r = math.radians(lat1), math.radians(lon1)
    lat2_r, lon2_r = math.radians(lat2), math.radians(lon2)
    dlat = lat2_r - lat1_r
    dlon = lon2_r - lon1_r
    a = math.sin(dlat / 2) ** 2 + math.cos(lat1_r) * math.cos(lat2_r) * math.sin(dlon / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(a))


class GeoResolver(Protocol):
    async def resolve(self, ip_address: str) -> GeoLocation | None: ...


class NullGeoResolver:
    """Resolver for deployments without a geolocation upstream."""

    async def resolve(self, ip_address: str) -> GeoLocation | None:
        return None


def is_public_ip(ip_address: str | None) -> bool:
    if not ip_address:
        return False
    try:
        addr = ipaddress.ip_address(ip_address.strip())
    except ValueError:
        return False
    return addr.is_global


class IpApiGeoResolver:
    """Geolocation via ip-api.com JSON API, cached per IP."""

    def __init__(
        self,
        base_url: str = "http://ip-api.com/json/",
        cache: TTLCache | None = None,
        cache_ttl_seconds: int = 86400,
        client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 3.0,
    ) -> None:
        self._base_url = base_url if base_url.endswith("/") else base_url + "/"
        self._cache = cache
        self._cache_ttl = cache_ttl_seconds
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)

    async def resolve(self, ip_address: str) -> GeoLocation | None:
        if not is_public_ip(ip_address):
            return None

        cache_key = f"geo_location:{ip_address}"
        cached = await self._cache_get(cache_key)
        if cached is not None:
            return GeoLocation(**cached)

        try:
            location = await self._fetch(ip_address)
        except (httpx.HTTPError, GeoLookupError, ValueError) as exc:
            logger.warning("geo_lookup_failed", ip=ip_address, error=str(exc))
            return None

        if location is not None and self._cache is not None:
            try:
                await self._cache.set(cache_key, location.model_dump(), self._cache_ttl)
            except Exception as exc:
                logger.warning("geo_cache_failed", ip=ip_address, op="set", error=str(exc))
        return location

    async def _cache_get(self, key: str) -> dict[str, Any] | None:
        if self._cache is None:
            return None
        try:
            return await self._cache.get(key)
        except Exception as exc:
            # Unreachable cache counts as a miss
            logger.warning("geo_cache_failed", key=key, op="get", error=str(exc))
            return None

    async def _fetch(self, ip_address: str) -> GeoLocation | None:
        response = await self._client.get(
            f"{self._base_url}{ip_address}", params={"fields": _IP_API_FIELDS}
        )
        response.raise_for_status()
        data: dict[str, Any] = response.json()

        if data.get("status") != "success":
            raise GeoLookupError(f"ip-api returned {data.get('status')}: {data.get('message')}")

        logger.debug("geo_lookup_succeeded", ip=ip_address, city=data.get("city"))
        return GeoLocation(
            country=data.get("country"),
            region=data.get("regionName"),
            city=data.get("city"),
            latitude=_parse_float(data.get("lat")),
            longitude=_parse_float(data.get("lon")),
            isp=data.get("isp"),
        )

    async def aclose(self) -> None:
        await self._client.aclose()


def _parse_float(value: Any) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        logger.warning("geo_coordinate_unparseable", value=value)
        return None


async def resolve_with_timeout(
    resolver: GeoResolver,
    ip_address: str | None,
    timeout_seconds: float,
) -> Success[GeoLocation | None] | Failure[StepError]:
    """Resolve ``ip_address`` without letting a slow upstream stall the worker."""
    if not ip_address:
        return Failure(error=StepError("geo", "missing ip address", category="malformed_input"))
    try:
        location = await asyncio.wait_for(resolver.resolve(ip_address), timeout=timeout_seconds)
    except TimeoutError:
        return Failure(error=StepError("geo", f"lookup exceeded {timeout_seconds}s"))
    except Exception as exc:
        return Failure(error=StepError("geo", f"{type(exc).__name__}: {exc}"))
    return Success(value=location)
