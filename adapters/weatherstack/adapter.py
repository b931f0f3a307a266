"""
Weatherstack adapter.

Weatherstack reports most failures as HTTP 200 with a body like
``{"success": false, "error": {"code": 101, "type": "invalid_access_key"}}``,
so every response is checked for an error object before it is returned.
"""
from __future__ import annotations
from enum import Enum
from typing import Any

from core.errors import ValidationError, VendorCallError
from core.integrations.adapter_base import HttpAdapter
from core.integrations.models import ActionOutcome

# Weatherstack error codes mapped to the HTTP status they stand for
_ERROR_STATUS = {
    101: 401,  # missing / invalid access key
    102: 403,  # inactive user
    103: 404,  # invalid api function
    104: 429,  # monthly usage limit reached
    105: 403,  # function not on subscription plan
    601: 400,  # missing query
    615: 404,  # request failed / location not found
}

DEFAULT_UNITS = "m"


class WeatherstackAction(str, Enum):
    CURRENT = "getCurrentWeather"
    HISTORICAL = "getHistoricalWeather"
    BY_CITY = "getWeatherByCity"
    BY_COORDINATES = "getWeatherByCoordinates"
    FORECAST = "getForecast"


class WeatherstackAdapter(HttpAdapter):
    """Current, historical and forecast weather by free-form location query."""

    actions = {
        WeatherstackAction.CURRENT.value: "get_current_weather",
        WeatherstackAction.HISTORICAL.value: "get_historical_weather",
        WeatherstackAction.BY_CITY.value: "get_weather_by_city",
        WeatherstackAction.BY_COORDINATES.value: "get_weather_by_coordinates",
        WeatherstackAction.FORECAST.value: "get_forecast",
    }

    async def get_current_weather(self, params: dict[str, Any]) -> ActionOutcome:
        query = _require(params, "query")
        return await self._get("/current", query=query, units=params.get("units", DEFAULT_UNITS))

    async def get_historical_weather(self, params: dict[str, Any]) -> ActionOutcome:
        query = _require(params, "query")
        date = params.get("historicalDate") or params.get("historical_date")
        if not date:
            raise ValidationError("historicalDate is required (YYYY-MM-DD)", field="historicalDate")
        return await self._get(
            "/historical",
            query=query,
            historical_date=date,
            units=params.get("units", DEFAULT_UNITS),
        )

    async def get_weather_by_city(self, params: dict[str, Any]) -> ActionOutcome:
        city = _require(params, "city")
        country = params.get("country")
        query = f"{city},{country}" if country else city
        return await self._get("/current", query=query, units=params.get("units", DEFAULT_UNITS))

    async def get_weather_by_coordinates(self, params: dict[str, Any]) -> ActionOutcome:
        lat = _require(params, "lat")
        lon = _require(params, "lon")
        return await self._get("/current", query=f"{lat},{lon}", units=params.get("units", DEFAULT_UNITS))

    async def get_forecast(self, params: dict[str, Any]) -> ActionOutcome:
        query = _require(params, "query")
        return await self._get(
            "/forecast",
            query=query,
            forecast_days=params.get("forecastDays", 1),
            units=params.get("units", DEFAULT_UNITS),
        )

    async def _get(self, path: str, **query: Any) -> ActionOutcome:
        outcome = await self.request("GET", path, params=query)
        data = outcome.data
        if isinstance(data, dict) and isinstance(data.get("error"), dict):
            error = data["error"]
            status = _ERROR_STATUS.get(error.get("code"), 400)
            raise VendorCallError(
                f"Weatherstack error {error.get('code')}: {error.get('info') or error.get('type')}",
                vendor_status=status,
                vendor_body=data,
                integration_id=self.descriptor.id,
            )
        return outcome


def _require(params: dict[str, Any], name: str) -> Any:
    value = params.get(name)
    if value is None or value == "":
        raise ValidationError(f"{name} is required", field=name)
    return value
