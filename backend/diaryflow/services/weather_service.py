"""
DiaryFlow Backend — Weather Service (WeatherAPI.com)
======================================================

What:  Current-conditions lookup for the location an entry is written at,
       plus the display helpers the entry views use.
How:   GET {weather_base_url}/current.json?key=...&q=lat,lon&aqi=no with a
       10 s timeout, wrapped in tenacity retry and a circuit breaker.
Who:   DraftService (when a draft is opened with fetch_weather) and the
       GET /api/weather route.

Error Handling Chain:
    Transient HTTP failure → tenacity retries (backoff + jitter)
    → Still failing → circuit breaker failure recorded → WeatherServiceError
    → Threshold reached → calls rejected instantly with CircuitBreakerOpenError
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx

from diaryflow.config import settings
from diaryflow.exceptions import WeatherServiceError
from diaryflow.schemas.entry import WeatherSnapshot
from diaryflow.services.resilience import CircuitBreaker, http_retrying, is_transient_http_error

logger = logging.getLogger(__name__)


def _as_float(value: Any) -> Optional[float]:
    return float(value) if value is not None else None


def _as_int(value: Any) -> Optional[int]:
    return int(value) if value is not None else None


def parse_weather(data: Dict[str, Any]) -> WeatherSnapshot:
    """Maps a /current.json body onto a WeatherSnapshot; missing parts stay empty."""
    current = data.get("current") or {}
    location = data.get("location") or {}
    condition = current.get("condition") or {}

    return WeatherSnapshot(
        temperature=_as_float(current.get("temp_c")),
        feels_like=_as_float(current.get("feelslike_c")),
        humidity=_as_int(current.get("humidity")),
        pressure=_as_float(current.get("pressure_mb")),
        description=condition.get("text") or "",
        icon=condition.get("icon") or "",
        wind_speed=_as_float(current.get("wind_kph")),
        wind_direction=_as_int(current.get("wind_degree")),
        uv=_as_float(current.get("uv")),
        visibility=_as_float(current.get("vis_km")),
        precipitation=_as_float(current.get("precip_mm")),
        city=location.get("name") or "",
        region=location.get("region") or "",
        country=location.get("country") or "",
        observed_at=datetime.now(timezone.utc),
    )


class WeatherService:
    """WeatherAPI.com client. One instance per process so the breaker state is shared."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            api_key:   Override settings.weather_api_key
            base_url:  Override settings.weather_base_url
            transport: httpx transport (tests pass an httpx.MockTransport)
        """
        self.api_key = settings.weather_api_key if api_key is None else api_key
        self.base_url = (base_url or settings.weather_base_url).rstrip("/")
        self.transport = transport
        self.circuit_breaker = CircuitBreaker(
            service="weather service",
            failure_threshold=settings.cb_failure_threshold,
            recovery_timeout=settings.cb_recovery_timeout,
        )

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=settings.weather_timeout,
            transport=self.transport,
        )

    async def get_current_weather(self, latitude: float, longitude: float) -> WeatherSnapshot:
        """
        Raises:
            WeatherServiceError:     not configured, provider error, or unreachable
            CircuitBreakerOpenError: too many recent failures
        """
        if not self.api_key:
            raise WeatherServiceError(
                message="Weather is not configured on this server",
                context={"reason": "missing_api_key"},
            )

        self.circuit_breaker.can_execute()
        params = {"key": self.api_key, "q": f"{latitude},{longitude}", "aqi": "no"}

        try:
            async with self._client() as client:
                async for attempt in http_retrying(logger):
                    with attempt:
                        response = await client.get("/current.json", params=params)
                        response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            if not isinstance(e, httpx.HTTPStatusError) or is_transient_http_error(e):
                self.circuit_breaker.record_failure()
            status = e.response.status_code if isinstance(e, httpx.HTTPStatusError) else None
            logger.error(
                "Weather lookup failed for (%.4f, %.4f): %s",
                latitude,
                longitude,
                type(e).__name__,
            )
            raise WeatherServiceError(
                context={"status_code": status, "error_type": type(e).__name__},
            ) from e

        self.circuit_breaker.record_success()
        snapshot = parse_weather(data)
        logger.info(
            "Weather for %s: %s, %s",
            snapshot.city or f"{latitude},{longitude}",
            self.format_temperature(snapshot),
            snapshot.description,
        )
        return snapshot

    # ── Display helpers ───────────────────────────────────────────────────

    @staticmethod
    def icon_url(icon: str) -> str:
        if icon.startswith("http"):
            return icon
        if icon.startswith("//"):
            return f"https:{icon}"
        return settings.weather_default_icon

    @staticmethod
    def format_temperature(snapshot: WeatherSnapshot) -> str:
        if snapshot.temperature is None:
            return "N/A"
        return f"{snapshot.temperature:.1f}°C"

    @staticmethod
    def describe(snapshot: WeatherSnapshot) -> str:
        """e.g. 'Lisbon: 21.5°C, Sunny'"""
        if snapshot.temperature is not None and snapshot.city:
            return f"{snapshot.city}: {snapshot.temperature:.1f}°C, {snapshot.description}"
        if snapshot.temperature is not None:
            return f"{snapshot.temperature:.1f}°C, {snapshot.description}"
        return snapshot.description or "Weather data unavailable"

    @staticmethod
    def summary(snapshot: WeatherSnapshot) -> str:
        """e.g. '21.5°C • Sunny • Humidity: 40% • Wind: 5.0 m/s'"""
        parts = []
        if snapshot.temperature is not None:
            parts.append(f"{snapshot.temperature:.1f}°C")
        if snapshot.description:
            parts.append(snapshot.description)
        if snapshot.humidity is not None:
            parts.append(f"Humidity: {snapshot.humidity}%")
        if snapshot.wind_speed is not None:
            parts.append(f"Wind: {snapshot.wind_speed:.1f} m/s")
        return " • ".join(parts)


# ── Singleton Instance ────────────────────────────────────────────────────
weather_service = WeatherService()
