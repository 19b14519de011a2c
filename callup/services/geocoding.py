from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from math import floor
from typing import Any
from urllib import error as urllib_error
from urllib import request as urllib_request
from urllib.parse import urlencode

from callup.errors import ApiError
from callup.settings import get_settings, is_geocoder_configured

logger = logging.getLogger("callup.geocoding")

GEOCODE_PATH = "/map-geocode/v2/geocode"
DRIVING_PATH = "/map-direction-15/v1/driving"

_PARENTHESES_RE = re.compile(r"\(.*?\)")
_TRAILING_UNIT_NUMBER_RE = re.compile(r"\d+-\d+$")
_TRAILING_APARTMENT_RE = re.compile(r"\s+\d+동\s*\d*호?$")


class GeocodingError(Exception):
    pass


@dataclass(frozen=True, slots=True)
class GeoPoint:
    lat: float
    lng: float


@dataclass(frozen=True, slots=True)
class RouteSummary:
    distance_m: int
    toll_fare: int
    path: list[GeoPoint] = field(default_factory=list)

    @property
    def distance_km(self) -> int:
        return int(floor(self.distance_m / 1000 + 0.5))

    @property
    def has_toll(self) -> bool:
        return self.toll_fare > 0


def simplify_address(address: str) -> str:
    """Drop the parts of a street address the geocoder tends to choke on."""
    simplified = _PARENTHESES_RE.sub("", address)
    simplified = _TRAILING_UNIT_NUMBER_RE.sub("", simplified)
    simplified = _TRAILING_APARTMENT_RE.sub("", simplified)
    return simplified.strip()


class NaverMapClient:
    def __init__(
        self,
        *,
        client_id: str,
        client_secret: str,
        base_url: str,
        timeout_seconds: int = 10,
    ):
        self._client_id = client_id
        self._client_secret = client_secret
        self._base_url = base_url.rstrip("/")
        self._timeout_seconds = max(1, timeout_seconds)

    def _get_json(self, path: str, params: dict[str, str]) -> dict[str, Any]:
        url = f"{self._base_url}{path}?{urlencode(params, safe=',')}"
        request = urllib_request.Request(
            url=url,
            method="GET",
            headers={
                "X-NCP-APIGW-API-KEY-ID": self._client_id,
                "X-NCP-APIGW-API-KEY": self._client_secret,
                "Accept": "application/json",
            },
        )
        try:
            with urllib_request.urlopen(request, timeout=self._timeout_seconds) as response:
                body = response.read().decode("utf-8")
        except urllib_error.HTTPError as exc:
            error_body = exc.read(512).decode("utf-8", errors="ignore")
            raise GeocodingError(f"HTTP {exc.code} from {path}: {error_body}") from exc
        except (urllib_error.URLError, TimeoutError, OSError) as exc:
            raise GeocodingError(f"Request to {path} failed: {exc}") from exc

        try:
            payload = json.loads(body)
        except ValueError as exc:
            raise GeocodingError(f"Invalid JSON from {path}") from exc
        if not isinstance(payload, dict):
            raise GeocodingError(f"Unexpected payload from {path}")
        return payload

    def geocode(self, query: str) -> GeoPoint | None:
        payload = self._get_json(GEOCODE_PATH, {"query": query})
        addresses = payload.get("addresses")
        if not isinstance(addresses, list) or not addresses:
            return None
        first = addresses[0]
        try:
            return GeoPoint(lat=float(first["y"]), lng=float(first["x"]))
        except (KeyError, TypeError, ValueError) as exc:
            raise GeocodingError("Geocode result has no coordinates") from exc

    def geocode_with_fallback(self, address: str) -> GeoPoint | None:
        point = self.geocode(address)
        if point is not None:
            return point

        simplified = simplify_address(address)
        if simplified and simplified != address:
            logger.info("geocode_retry_simplified", extra={"simplified": simplified})
            return self.geocode(simplified)
        return None

    def driving_route(self, origin: GeoPoint, goal: GeoPoint) -> RouteSummary | None:
        payload = self._get_json(
            DRIVING_PATH,
            {
                "start": f"{origin.lng},{origin.lat}",
                "goal": f"{goal.lng},{goal.lat}",
            },
        )
        routes = (payload.get("route") or {}).get("traoptimal")
        if payload.get("code") != 0 or not isinstance(routes, list) or not routes:
            return None

        route = routes[0]
        try:
            summary = route.get("summary") or {}
            path = [GeoPoint(lat=float(point[1]), lng=float(point[0])) for point in route.get("path") or []]
            return RouteSummary(
                distance_m=int(summary.get("distance") or 0),
                toll_fare=int(summary.get("tollFare") or 0),
                path=path,
            )
        except (AttributeError, IndexError, KeyError, TypeError, ValueError) as exc:
            raise GeocodingError("Driving route has a malformed summary or path") from exc


def get_geocoding_client() -> NaverMapClient:
    if not is_geocoder_configured():
        raise ApiError(
            status_code=503,
            code="GEOCODER_NOT_CONFIGURED",
            message="Map provider credentials are not configured.",
        )
    settings = get_settings()
    return NaverMapClient(
        client_id=(settings.naver_map_client_id or "").strip(),
        client_secret=(settings.naver_map_client_secret or "").strip(),
        base_url=settings.naver_api_base_url,
        timeout_seconds=settings.naver_api_timeout_seconds,
    )
