"""
Integration Hub Adapter Framework.

Every vendor integration satisfies one contract: it is constructed from an
AdapterConfig and exposes `execute(action, params) -> ActionOutcome`.

HttpAdapter implements the contract over httpx and provides:
- Auth from the descriptor (bearer, basic, api key header/query param)
- Descriptor-driven endpoint calls ({param} path templates)
- An explicit per-adapter action table for capability-style adapters
- Standardized non-2xx handling (VendorCallError, 5xx/429 transient)

Retries, timeouts and error normalization live in the dispatcher, not here.
"""
from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable
import base64
import logging

import httpx

from core.errors import EndpointNotFound, ValidationError, VendorCallError
from core.integrations.descriptor import AuthType, EndpointDescriptor, IntegrationDescriptor
from core.integrations.models import ActionOutcome, CredentialBundle

logger = logging.getLogger(__name__)

BODY_METHODS = frozenset({"POST", "PUT", "PATCH"})


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

@dataclass
class AdapterConfig:
    """Everything an adapter instance is bound to for one call."""
    descriptor: IntegrationDescriptor
    credentials: CredentialBundle
    base_url: str
    timeout: float = 30.0
    transport: httpx.AsyncBaseTransport | None = None
    user_agent: str = "Integration-Hub/1.0"


AdapterFactory = Callable[[AdapterConfig], "IntegrationAdapter"]


# ---------------------------------------------------------------------------
# Contract
# ---------------------------------------------------------------------------

class IntegrationAdapter(ABC):
    """Capability contract for all vendor adapters."""

    def __init__(self, config: AdapterConfig):
        self.config = config

    @property
    def descriptor(self) -> IntegrationDescriptor:
        return self.config.descriptor

    @property
    def credentials(self) -> CredentialBundle:
        return self.config.credentials

    @abstractmethod
    async def execute(self, action: str, params: dict[str, Any]) -> ActionOutcome:
        """Run one named action and return its outcome."""


# ---------------------------------------------------------------------------
# HttpAdapter
# ---------------------------------------------------------------------------

class HttpAdapter(IntegrationAdapter):
    """
    Base class for HTTP vendor adapters.

    Subclasses may set `actions`, mapping an action id to the name of an
    async method taking the params mapping. Actions not in the table fall
    back to the descriptor endpoint with the same id.
    """

    actions: dict[str, str] = {}

    # --- Auth ---

    def get_auth_headers(self) -> dict[str, str]:
        """Build auth headers from the descriptor's auth shape."""
        auth = self.descriptor.authentication
        api_key = self.credentials.api_key
        api_secret = self.credentials.api_secret

        if auth.type == AuthType.NONE or not api_key:
            return {}

        if auth.type == AuthType.API_KEY:
            if auth.header:
                return {auth.header: api_key}
            if auth.parameter:
                return {}
            return {"Authorization": f"Bearer {api_key}"}

        if auth.type == AuthType.OAUTH2:
            return {"Authorization": f"Bearer {api_key}"}

        if api_secret and auth.type in (AuthType.BASIC, AuthType.BEARER):
            encoded = base64.b64encode(f"{api_key}:{api_secret}".encode()).decode()
            return {"Authorization": f"Basic {encoded}"}

        return {"Authorization": f"Bearer {api_key}"}

    def get_auth_params(self) -> dict[str, str]:
        """Query parameters carrying the key (api_key with `parameter`)."""
        auth = self.descriptor.authentication
        if auth.type == AuthType.API_KEY and auth.parameter and self.credentials.api_key:
            return {auth.parameter: self.credentials.api_key}
        return {}

    # --- Core request ---

    async def request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        body: Any = None,
        headers: dict[str, str] | None = None,
    ) -> ActionOutcome:
        """Send one authenticated request. Non-2xx raises VendorCallError."""
        url = f"{self.config.base_url.rstrip('/')}/{path.lstrip('/')}"
        query = {**(params or {}), **self.get_auth_params()}
        req_headers = {
            "User-Agent": self.config.user_agent,
            "Accept": "application/json",
            **self.get_auth_headers(),
            **(headers or {}),
        }

        async with httpx.AsyncClient(
            transport=self.config.transport,
            timeout=self.config.timeout,
        ) as client:
            resp = await client.request(
                method=method,
                url=url,
                params=query or None,
                json=body,
                headers=req_headers,
            )

        data = self.decode(resp)
        if not resp.is_success:
            raise VendorCallError.from_status(
                resp.status_code,
                data,
                integration_id=self.descriptor.id,
            )
        return ActionOutcome(status=resp.status_code, data=data)

    @staticmethod
    def decode(resp: httpx.Response) -> Any:
        if not resp.content:
            return None
        if "json" in resp.headers.get("content-type", ""):
            try:
                return resp.json()
            except ValueError:
                return resp.text
        return resp.text

    # --- Descriptor endpoints ---

    async def call_endpoint(
        self,
        endpoint: EndpointDescriptor,
        params: dict[str, Any],
    ) -> ActionOutcome:
        """Call a declared endpoint, filling its path template from params.

        Params not consumed by the template go to the query string for
        GET/DELETE-style methods and to the JSON body for POST/PUT/PATCH.
        """
        path, remaining = endpoint.render_path(params)
        missing = [p for p in endpoint.path_params if p not in params]
        if missing:
            raise ValidationError(
                f"Missing path parameters for {endpoint.id}: {', '.join(missing)}",
                endpoint=endpoint.id,
                missing=missing,
            )
        if endpoint.method in BODY_METHODS:
            return await self.request(endpoint.method, path, body=remaining or None)
        return await self.request(endpoint.method, path, params=remaining)

    # --- Dispatch ---

    async def execute(self, action: str, params: dict[str, Any]) -> ActionOutcome:
        method_name = self.actions.get(action)
        if method_name is not None:
            handler: Callable[[dict[str, Any]], Awaitable[ActionOutcome]] = getattr(self, method_name)
            return await handler(params)

        endpoint = self.descriptor.endpoint(action)
        if endpoint is None:
            raise EndpointNotFound(self.descriptor.id, action)
        return await self.call_endpoint(endpoint, params)


class DescriptorAdapter(HttpAdapter):
    """Generic adapter: every action is a declared descriptor endpoint."""
