"""
Geo / ISP / VPN lookup for client IP addresses

Backed by the ip-api.com JSON endpoint:
    GET {base}/{ip}?fields=status,message,country,city,proxy,hosting,isp

Every call is time-boxed. Any failure (timeout, transport error, non-2xx,
status != "success", unparseable body) raises GeoLookupError; the caller
decides how to degrade.
"""

import asyncio
import ipaddress
from typing import Optional

import httpx
from prometheus_client import Counter, Histogram

from core.exceptions import GeoLookupError
from core.logging import get_logger
from schemas.session import GeoInfo

logger = get_logger(__name__)

LOOKUP_FIELDS = "status,message,country,city,proxy,hosting,isp"

geo_lookups_total = Counter(
    'arena_geo_lookups_total',
    'Geo lookups by outcome',
    ['outcome']
)
geo_lookup_latency_seconds = Histogram(
    'arena_geo_lookup_latency_seconds',
    'Geo lookup latency',
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0]
)


def is_lookup_eligible(ip_address: Optional[str]) -> bool:
    """False for missing, unknown, loopback, private and otherwise non-global addresses"""
    if not ip_address or ip_address == "unknown":
        return False
    try:
        address = ipaddress.ip_address(ip_address.strip())
    except ValueError:
        return False
    return address.is_global


class GeoLookupClient:
    """Async client for the IP geolocation service"""

    def __init__(
        self,
        base_url: str = "http://ip-api.com/json",
        timeout_seconds: float = 2.0,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._client = http_client or httpx.AsyncClient(timeout=timeout_seconds)

    async def lookup(self, ip_address: str) -> GeoInfo:
        """
        Resolve country, city, ISP and proxy/hosting flags

        Raises:
            GeoLookupError: address not eligible or lookup failed
        """
        if not is_lookup_eligible(ip_address):
            geo_lookups_total.labels(outcome='skipped').inc()
            raise GeoLookupError(f"Address not eligible for lookup: {ip_address!r}")

        with geo_lookup_latency_seconds.time():
            try:
                response = await asyncio.wait_for(
                    self._client.get(
                        f"{self.base_url}/{ip_address}",
                        params={"fields": LOOKUP_FIELDS},
                    ),
                    timeout=self.timeout_seconds,
                )
            except asyncio.TimeoutError:
                geo_lookups_total.labels(outcome='timeout').inc()
                raise GeoLookupError(
                    f"Geo lookup exceeded {self.timeout_seconds}s timeout"
                )
            except httpx.HTTPError as e:
                geo_lookups_total.labels(outcome='error').inc()
                raise GeoLookupError(f"Geo lookup transport error: {e}") from e

        if response.status_code != 200:
            geo_lookups_total.labels(outcome='error').inc()
            raise GeoLookupError(f"Geo lookup returned HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            geo_lookups_total.labels(outcome='error').inc()
            raise GeoLookupError("Geo lookup returned invalid JSON") from e

        if not isinstance(data, dict) or data.get("status", "success") != "success":
            geo_lookups_total.labels(outcome='error').inc()
            message = data.get("message") if isinstance(data, dict) else None
            raise GeoLookupError(f"Geo lookup failed: {message or 'unexpected payload'}")

        geo_lookups_total.labels(outcome='success').inc()
        return GeoInfo(
            country=data.get("country") or "Unknown",
            city=data.get("city") or "",
            isp=data.get("isp") or "",
            is_proxy=bool(data.get("proxy")),
            is_hosting=bool(data.get("hosting")),
        )

    async def aclose(self) -> None:
        await self._client.aclose()
