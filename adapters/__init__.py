"""
Built-in vendor adapters.

BUILTIN_ADAPTERS is the registration table consumed by
IntegrationRegistry.load_all(). Each entry pairs an adapter factory with the
descriptor.json shipped beside it. Adding a vendor means adding a directory
with a descriptor and, when the descriptor endpoints are not enough, an
HttpAdapter subclass, then listing it here.
"""
from pathlib import Path

from adapters.openweather import OpenWeatherAdapter
from adapters.weatherstack import WeatherstackAdapter
from core.integrations.adapter_base import DescriptorAdapter
from core.integrations.registry import AdapterRegistration

ADAPTERS_ROOT = Path(__file__).parent


def descriptor_path(name: str) -> Path:
    return ADAPTERS_ROOT / name / "descriptor.json"


BUILTIN_ADAPTERS = [
    AdapterRegistration(DescriptorAdapter, descriptor_path("jsonplaceholder"), name="jsonplaceholder"),
    AdapterRegistration(OpenWeatherAdapter, descriptor_path("openweather"), name="openweather"),
    AdapterRegistration(WeatherstackAdapter, descriptor_path("weatherstack"), name="weatherstack"),
]

__all__ = ["ADAPTERS_ROOT", "BUILTIN_ADAPTERS", "descriptor_path"]
