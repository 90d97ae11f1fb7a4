"""IP geolocation lookups for session records.

Lookups never raise: timeouts, HTTP errors and malformed payloads all
resolve to ``fallback_location()``.
"""
import logging
from typing import Any, Dict, Optional

import httpx

from app.core.config import settings
from app.core.security import utcnow

logger = logging.getLogger(__name__)

EXTERNAL_IP_URL = "https://api.ipify.org?format=text"
_LOCALHOST_ADDRESSES = {"127.0.0.1", "::1", "::ffff:127.0.0.1", "localhost", "unknown"}


def is_localhost(ip_address: Optional[str]) -> bool:
    return not ip_address or ip_address in _LOCALHOST_ADDRESSES or "127.0.0.1" in ip_address


def fallback_location() -> Dict[str, Any]:
    return {
        "country": "Unknown",
        "country_code": "XX",
        "region": "Unknown",
        "city": "Unknown",
        "zipcode": "",
        "timezone": "UTC",
        "latitude": None,
        "longitude": None,
        "asn": "",
        "org": "",
        "isp": "",
        "is_mobile": False,
        "is_vpn": False,
        "is_tor": False,
        "is_proxy": False,
        "is_datacenter": False,
        "risk_score": 0,
    }


def localhost_location() -> Dict[str, Any]:
    location = fallback_location()
    location.update({
        "country": "Local",
        "country_code": "DEV",
        "region": "Development",
        "city": "Localhost",
        "zipcode": "00000",
        "localtime": utcnow().isoformat(),
        "latitude": 0,
        "longitude": 0,
        "asn": "AS00000",
        "org": "Local Development",
        "isp": "Localhost ISP",
    })
    return location


class GeolocationService:
    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        api_url: str = settings.GEOLOCATION_API_URL,
        timeout: float = settings.GEOLOCATION_TIMEOUT_SECONDS,
        use_real_in_dev: bool = settings.USE_REAL_GEOLOCATION_IN_DEV,
    ):
        self.client = client
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.use_real_in_dev = use_real_in_dev

    async def lookup(self, ip_address: Optional[str]) -> Dict[str, Any]:
        target = ip_address
        if is_localhost(ip_address):
            if not self.use_real_in_dev:
                return localhost_location()
            target = await self._external_ip()
            if not target:
                return fallback_location()

        try:
            data = await self._get_json(f"{self.api_url}/{target}", params={"format": "json"})
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Geolocation lookup failed for {target}: {e}")
            return fallback_location()

        if not isinstance(data, dict) or not data.get("ip") or not data.get("location"):
            logger.warning(f"Geolocation API returned an incomplete response for {target}")
            return fallback_location()
        return self._map(data)

    async def _external_ip(self) -> Optional[str]:
        try:
            response = await self._request(EXTERNAL_IP_URL)
            response.raise_for_status()
            return response.text.strip() or None
        except httpx.HTTPError as e:
            logger.warning(f"Could not resolve external IP for development geolocation: {e}")
            return None

    async def _get_json(self, url: str, params: Optional[Dict[str, str]] = None) -> Any:
        response = await self._request(url, params=params)
        response.raise_for_status()
        return response.json()

    async def _request(self, url: str, params: Optional[Dict[str, str]] = None) -> httpx.Response:
        headers = {"Accept": "application/json", "User-Agent": f"{settings.APP_NAME}/1.0"}
        if self.client is not None:
            return await self.client.get(url, params=params, headers=headers, timeout=self.timeout)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.get(url, params=params, headers=headers)

    @staticmethod
    def _map(data: Dict[str, Any]) -> Dict[str, Any]:
        loc = data.get("location") or {}
        isp = data.get("isp") or {}
        risk = data.get("risk") or {}
        return {
            "country": loc.get("country") or "Unknown",
            "country_code": loc.get("country_code") or "XX",
            "region": loc.get("state") or "Unknown",
            "city": loc.get("city") or "Unknown",
            "zipcode": loc.get("zipcode") or "",
            "timezone": loc.get("timezone") or "UTC",
            "localtime": loc.get("localtime"),
            "latitude": loc.get("latitude"),
            "longitude": loc.get("longitude"),
            "asn": isp.get("asn") or "",
            "org": isp.get("org") or "",
            "isp": isp.get("isp") or "",
            "is_mobile": bool(risk.get("is_mobile")),
            "is_vpn": bool(risk.get("is_vpn")),
            "is_tor": bool(risk.get("is_tor")),
            "is_proxy": bool(risk.get("is_proxy")),
            "is_datacenter": bool(risk.get("is_datacenter")),
            "risk_score": risk.get("risk_score") or 0,
        }
