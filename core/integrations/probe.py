"""
Connection Probe: best-effort credential check before a connection is saved.

Many vendor APIs have no universal health endpoint, so the probe sends an
authenticated GET to the first conventional "who am I" path and accepts:
- 2xx: reachable and authorized
- 401: reachable, endpoint exists, auth challenge recognized

Anything else fails the probe. Network-level failures (DNS, refused,
timeout) are governed by NetworkFailurePolicy: OPTIMISTIC accepts the
credentials with a warning, STRICT rejects them.
"""
from __future__ import annotations
from enum import Enum
import asyncio
import base64
import logging

import httpx

from core.config import ProbeConfig
from core.integrations.descriptor import IntegrationDescriptor
from core.integrations.models import CredentialBundle, ProbeResult

logger = logging.getLogger(__name__)

UNVERIFIED_WARNING = "Could not verify connection, but credentials saved"


class NetworkFailurePolicy(str, Enum):
    OPTIMISTIC = "optimistic"
    STRICT = "strict"


def probe_auth_headers(bundle: CredentialBundle) -> dict[str, str]:
    """Bearer for a lone apiKey, Basic when apiSecret is also present."""
    if not bundle.api_key:
        return {}
    if bundle.api_secret:
        encoded = base64.b64encode(f"{bundle.api_key}:{bundle.api_secret}".encode()).decode()
        return {"Authorization": f"Basic {encoded}"}
    return {"Authorization": f"Bearer {bundle.api_key}"}


class ConnectionProbe:
    """Validates a credential bundle against a vendor before it is stored."""

    def __init__(
        self,
        timeout: float = 10.0,
        endpoints: tuple[str, ...] = ProbeConfig.endpoints,
        network_policy: NetworkFailurePolicy | str = NetworkFailurePolicy.OPTIMISTIC,
        transport: httpx.AsyncBaseTransport | None = None,
        user_agent: str = ProbeConfig.user_agent,
    ):
        if not endpoints:
            raise ValueError("ConnectionProbe needs at least one endpoint")
        self.timeout = timeout
        self.endpoints = tuple(endpoints)
        self.network_policy = NetworkFailurePolicy(network_policy)
        self.user_agent = user_agent
        self._transport = transport

    @classmethod
    def from_config(
        cls,
        config: ProbeConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "ConnectionProbe":
        return cls(
            timeout=config.timeout,
            endpoints=config.endpoints,
            network_policy=config.network_policy,
            transport=transport,
            user_agent=config.user_agent,
        )

    def probe_url(self, descriptor: IntegrationDescriptor, bundle: CredentialBundle) -> str:
        base_url = (bundle.base_url or descriptor.base_url).rstrip("/")
        return f"{base_url}{self.endpoints[0]}"

    async def probe(self, descriptor: IntegrationDescriptor, bundle: CredentialBundle) -> ProbeResult:
        url = self.probe_url(descriptor, bundle)
        headers = {
            **probe_auth_headers(bundle),
            "Content-Type": "application/json",
            "User-Agent": self.user_agent,
        }

        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=self.timeout) as client:
                resp = await asyncio.wait_for(
                    client.get(url, headers=headers),
                    timeout=self.timeout,
                )
        except httpx.InvalidURL as exc:
            logger.warning("Probe for %s has an invalid URL: %s", descriptor.id, exc)
            return ProbeResult(ok=False, error=f"Invalid probe URL: {exc}", url=url)
        except (httpx.TransportError, asyncio.TimeoutError) as exc:
            return self._on_network_failure(descriptor, url, exc)

        if resp.is_success or resp.status_code == 401:
            logger.info(
                "Probe accepted %s credentials (HTTP %s)", descriptor.id, resp.status_code
            )
            return ProbeResult(ok=True, status_code=resp.status_code, url=url)

        logger.warning("Probe rejected %s credentials (HTTP %s)", descriptor.id, resp.status_code)
        return ProbeResult(
            ok=False,
            status_code=resp.status_code,
            error=f"Connection test failed with status {resp.status_code}",
            url=url,
        )

    def _on_network_failure(
        self,
        descriptor: IntegrationDescriptor,
        url: str,
        exc: BaseException,
    ) -> ProbeResult:
        reason = f"{type(exc).__name__}: {exc}" if str(exc) else type(exc).__name__
        if self.network_policy == NetworkFailurePolicy.STRICT:
            logger.warning("Probe for %s could not reach %s (%s)", descriptor.id, url, reason)
            return ProbeResult(ok=False, error=f"Could not reach {url}: {reason}", url=url)

        logger.warning(
            "Probe for %s could not reach %s (%s); accepting credentials unverified",
            descriptor.id, url, reason,
        )
        return ProbeResult(ok=True, warning=UNVERIFIED_WARNING, error=reason, url=url)
