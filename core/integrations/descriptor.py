"""
Integration descriptors: static metadata for one pluggable vendor.

A descriptor document (descriptor.json next to each adapter) looks like::

    {
      "id": "weatherstack",
      "displayName": "Weatherstack",
      "baseUrl": "http://api.weatherstack.com",
      "authentication": {"type": "api_key", "parameter": "access_key"},
      "endpoints": [
        {"id": "getCurrentWeather", "method": "GET", "path": "/current"}
      ]
    }

Descriptors are immutable once loaded and safe to expose to callers.
"""
from __future__ import annotations
from enum import Enum
import json
import re
from pathlib import Path
from urllib.parse import quote
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from core.errors import DescriptorError

IDEMPOTENT_METHODS = frozenset({"GET", "HEAD", "OPTIONS", "PUT", "DELETE"})
HTTP_METHODS = IDEMPOTENT_METHODS | {"POST", "PATCH"}

_PLACEHOLDER = re.compile(r"\{([^{}]+)\}")


class AuthType(str, Enum):
    NONE = "none"
    BEARER = "bearer"
    BASIC = "basic"
    API_KEY = "api_key"
    OAUTH2 = "oauth2"


class AuthenticationSpec(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    type: AuthType = AuthType.BEARER
    scopes: list[str] = Field(default_factory=list)
    # api_key only: where the key goes
    parameter: Optional[str] = None
    header: Optional[str] = None

    @field_validator("type", mode="before")
    @classmethod
    def _normalize_type(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = v.strip().lower().replace("-", "_")
            if v in ("apikey", "api_token", "token"):
                return AuthType.API_KEY.value
        return v


class EndpointDescriptor(BaseModel):
    """One declared action: id, HTTP verb semantic and path template."""
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    id: str = Field(..., min_length=1)
    method: str = "GET"
    path: str = "/"
    name: Optional[str] = None
    description: str = ""
    idempotent: bool = True

    @model_validator(mode="before")
    @classmethod
    def _default_idempotency(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("idempotent") is None:
            method = str(data.get("method") or "GET").upper()
            data = {**data, "idempotent": method in IDEMPOTENT_METHODS}
        return data

    @field_validator("method")
    @classmethod
    def _upper_method(cls, v: str) -> str:
        method = v.upper()
        if method not in HTTP_METHODS:
            raise ValueError(f"Unsupported HTTP method: {v}")
        return method

    @property
    def display_name(self) -> str:
        return self.name or self.id

    @property
    def path_params(self) -> list[str]:
        return _PLACEHOLDER.findall(self.path)

    def render_path(self, params: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        """Substitute {param} placeholders by exact key match.

        Returns the rendered path and the params that were not consumed.
        Placeholders without a matching param are left as-is. Values are
        percent-encoded as one path segment.
        """
        consumed: set[str] = set()

        def _sub(match: re.Match) -> str:
            key = match.group(1)
            if key in params and params[key] is not None:
                consumed.add(key)
                return quote(str(params[key]), safe="")
            return match.group(0)

        path = _PLACEHOLDER.sub(_sub, self.path)
        remaining = {k: v for k, v in params.items() if k not in consumed}
        return path, remaining


class IntegrationDescriptor(BaseModel):
    """Static metadata for a vendor integration."""
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    id: str = Field(..., min_length=1)
    display_name: str = Field(..., alias="displayName", min_length=1)
    base_url: str = Field(..., alias="baseUrl", min_length=1)
    authentication: AuthenticationSpec = Field(default_factory=AuthenticationSpec)
    endpoints: list[EndpointDescriptor] = Field(default_factory=list)
    description: str = ""
    category: str = "other"
    version: str = "1.0.0"

    @field_validator("base_url")
    @classmethod
    def _strip_slash(cls, v: str) -> str:
        return v.rstrip("/")

    def endpoint(self, endpoint_id: str) -> EndpointDescriptor | None:
        for ep in self.endpoints:
            if ep.id == endpoint_id:
                return ep
        return None

    @property
    def scopes(self) -> list[str]:
        return list(self.authentication.scopes)

    def public_dict(self) -> dict[str, Any]:
        """Caller-facing view (camelCase, no secrets to begin with)."""
        return {
            "id": self.id,
            "name": self.display_name,
            "description": self.description,
            "category": self.category,
            "version": self.version,
            "baseUrl": self.base_url,
            "authentication": {
                "type": self.authentication.type.value,
                "scopes": list(self.authentication.scopes),
            },
            "endpoints": [
                {
                    "id": ep.id,
                    "name": ep.display_name,
                    "method": ep.method,
                    "path": ep.path,
                    "idempotent": ep.idempotent,
                }
                for ep in self.endpoints
            ],
        }


def load_descriptor(source: IntegrationDescriptor | dict | str | Path) -> IntegrationDescriptor:
    """Build a descriptor from a model, a mapping, a JSON document or its path."""
    if isinstance(source, IntegrationDescriptor):
        return source
    try:
        if isinstance(source, str) and source.lstrip().startswith("{"):
            data = json.loads(source)
        elif isinstance(source, (str, Path)):
            data = json.loads(Path(source).read_text(encoding="utf-8"))
        else:
            data = source
        return IntegrationDescriptor.model_validate(data)
    except (OSError, ValueError) as exc:
        # pydantic.ValidationError and json.JSONDecodeError are ValueErrors
        raise DescriptorError(f"Invalid descriptor {source!s}: {exc}") from exc
