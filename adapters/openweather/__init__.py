from adapters.openweather.adapter import OpenWeatherAction, OpenWeatherAdapter

__all__ = ["OpenWeatherAction", "OpenWeatherAdapter"]
