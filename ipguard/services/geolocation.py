"""Best-effort geolocation of network addresses via the ip-api.com JSON API."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping

import httpx

from ipguard.utils.addresses import is_private_address, normalize_address

BASE_URL = "http://ip-api.com/json"
FIELDS = "status,message,country,regionName,city,lat,lon,isp"

logger = logging.getLogger("ipguard.geolocation")


@dataclass(frozen=True)
class GeolocationResult:
    country: str | None = None
    region: str | None = None
    city: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    isp: str | None = None

    def as_patch(self) -> dict[str, Any]:
        return {
            "country": self.country,
            "region": self.region,
            "city": self.city,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "isp": self.isp,
        }


LOCAL_NETWORK = GeolocationResult(country="Local", region="Local Network", city="Local")


class GeolocationClient:
    def __init__(
        self,
        base_url: str = BASE_URL,
        http_client: httpx.Client | None = None,
        timeout_seconds: float = 3.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._owns_client = http_client is None
        self.client = http_client or httpx.Client(timeout=httpx.Timeout(timeout_seconds))

    def close(self) -> None:
        if self._owns_client:
            self.client.close()

    def lookup(self, address: str) -> GeolocationResult | None:
        """Never raises; an unreachable or failing service yields None."""
        try:
            normalized = normalize_address(address)
        except ValueError:
            logger.warning("Skipping geolocation for malformed address %r", address)
            return None
        fallback = LOCAL_NETWORK if is_private_address(normalized) else None
        try:
            response = self.client.get(
                f"{self.base_url}/{normalized}",
                params={"fields": FIELDS},
                headers={"Accept": "application/json"},
                timeout=self.timeout_seconds,
            )
        except httpx.TimeoutException:
            logger.warning("Geolocation lookup timed out for %s", normalized)
            return fallback
        except httpx.HTTPError as exc:
            logger.warning("Geolocation lookup failed for %s: %s", normalized, exc)
            return fallback

        if response.status_code != 200:
            logger.warning("Geolocation service error %s for %s", response.status_code, normalized)
            return fallback
        try:
            payload = response.json()
        except ValueError:
            logger.warning("Geolocation service returned invalid JSON for %s", normalized)
            return fallback
        if not isinstance(payload, Mapping) or payload.get("status") != "success":
            message = payload.get("message") if isinstance(payload, Mapping) else None
            logger.info("Geolocation unavailable for %s: %s", normalized, message)
            return fallback
        return self._parse(payload)

    def _parse(self, payload: Mapping[str, Any]) -> GeolocationResult:
        return GeolocationResult(
            country=self._text(payload.get("country")),
            region=self._text(payload.get("regionName")),
            city=self._text(payload.get("city")),
            latitude=self._number(payload.get("lat")),
            longitude=self._number(payload.get("lon")),
            isp=self._text(payload.get("isp")),
        )

    def _text(self, value: Any) -> str | None:
        if value is None:
            return None
        text = str(value).strip()
        return text or None

    def _number(self, value: Any) -> float | None:
        if value is None or value == "":
            return None
        try:
            return float(value)
        except (TypeError, ValueError):
            return None
