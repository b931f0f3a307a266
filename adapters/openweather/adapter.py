"""OpenWeatherMap (free tier) adapter: current weather, forecast, air quality."""
from __future__ import annotations
from enum import Enum
from typing import Any

from core.errors import ValidationError
from core.integrations.adapter_base import HttpAdapter
from core.integrations.models import ActionOutcome

DEFAULT_UNITS = "metric"
# /forecast returns one entry per 3 hours
FORECASTS_PER_DAY = 8
DEFAULT_FORECAST_DAYS = 5


class OpenWeatherAction(str, Enum):
    CURRENT = "getCurrentWeather"
    FORECAST = "getForecast"
    BY_COORDINATES = "getWeatherByCoords"
    AIR_POLLUTION = "getAirPollution"


class OpenWeatherAdapter(HttpAdapter):
    """Returns condensed payloads instead of the raw vendor documents."""

    actions = {
        OpenWeatherAction.CURRENT.value: "get_current_weather",
        OpenWeatherAction.FORECAST.value: "get_forecast",
        OpenWeatherAction.BY_COORDINATES.value: "get_weather_by_coords",
        OpenWeatherAction.AIR_POLLUTION.value: "get_air_pollution",
    }

    async def get_current_weather(self, params: dict[str, Any]) -> ActionOutcome:
        city = params.get("city")
        if not city:
            raise ValidationError("City name is required", field="city")
        outcome = await self.request(
            "GET", "/weather", params={"q": city, "units": params.get("units", DEFAULT_UNITS)}
        )
        return ActionOutcome(outcome.status, summarize_weather(outcome.data))

    async def get_forecast(self, params: dict[str, Any]) -> ActionOutcome:
        city = params.get("city")
        if not city:
            raise ValidationError("City name is required", field="city")
        days = _days(params)
        outcome = await self.request(
            "GET",
            "/forecast",
            params={
                "q": city,
                "units": params.get("units", DEFAULT_UNITS),
                "cnt": days * FORECASTS_PER_DAY,
            },
        )
        data = outcome.data if isinstance(outcome.data, dict) else {}
        city_info = data.get("city") or {}
        forecasts = []
        for item in data.get("list") or []:
            main = item.get("main") or {}
            weather = (item.get("weather") or [{}])[0]
            forecasts.append({
                "datetime": item.get("dt_txt"),
                "temperature": main.get("temp"),
                "weather": weather.get("main"),
                "description": weather.get("description"),
                "humidity": main.get("humidity"),
                "windSpeed": (item.get("wind") or {}).get("speed"),
            })
        return ActionOutcome(outcome.status, {
            "city": city_info.get("name"),
            "country": city_info.get("country"),
            "forecasts": forecasts,
        })

    async def get_weather_by_coords(self, params: dict[str, Any]) -> ActionOutcome:
        lat, lon = _coordinates(params)
        outcome = await self.request(
            "GET",
            "/weather",
            params={"lat": lat, "lon": lon, "units": params.get("units", DEFAULT_UNITS)},
        )
        return ActionOutcome(outcome.status, summarize_weather(outcome.data))

    async def get_air_pollution(self, params: dict[str, Any]) -> ActionOutcome:
        lat, lon = _coordinates(params)
        outcome = await self.request("GET", "/air_pollution", params={"lat": lat, "lon": lon})
        data = outcome.data if isinstance(outcome.data, dict) else {}
        first = (data.get("list") or [{}])[0]
        return ActionOutcome(outcome.status, {
            "aqi": (first.get("main") or {}).get("aqi"),
            "components": first.get("components"),
        })


def summarize_weather(data: Any) -> dict[str, Any]:
    if not isinstance(data, dict):
        return {"raw": data}
    main = data.get("main") or {}
    weather = (data.get("weather") or [{}])[0]
    return {
        "city": data.get("name"),
        "country": (data.get("sys") or {}).get("country"),
        "temperature": main.get("temp"),
        "feelsLike": main.get("feels_like"),
        "humidity": main.get("humidity"),
        "pressure": main.get("pressure"),
        "weather": weather.get("main"),
        "description": weather.get("description"),
        "windSpeed": (data.get("wind") or {}).get("speed"),
        "clouds": (data.get("clouds") or {}).get("all"),
    }


def _coordinates(params: dict[str, Any]) -> tuple[Any, Any]:
    lat, lon = params.get("lat"), params.get("lon")
    if lat is None or lon is None:
        raise ValidationError("Latitude and longitude are required", field="lat/lon")
    return lat, lon


def _days(params: dict[str, Any]) -> int:
    raw = params.get("days", DEFAULT_FORECAST_DAYS)
    try:
        days = int(raw)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"days must be a whole number, got {raw!r}", field="days") from exc
    if days < 1:
        raise ValidationError("days must be at least 1", field="days")
    return days
