"""
Action Dispatcher: the single entry point for connecting and invoking
integrations.

connect:  validate → resolve descriptor → probe → encrypt → store
execute:  validate → resolve adapter + endpoint → resolve credentials
          (stored connection via the vault, or inline) → instantiate the
          adapter → invoke under timeout with bounded retries → normalize

Public operations never raise HubErrors: they come back as structured
failures on ActionResult / ConnectResult. Cancellation propagates.
"""
from __future__ import annotations
from contextlib import nullcontext
from typing import Any, Iterable, Mapping
import logging
import time

import httpx

from core.config import DispatchConfig, ProbeConfig
from core.errors import (
    AdapterError,
    EndpointNotFound,
    HubError,
    NotConnected,
    ProbeFailed,
    ValidationError,
)
from core.integrations.adapter_base import AdapterConfig
from core.integrations.descriptor import IntegrationDescriptor
from core.integrations.models import (
    ActionError,
    ActionRequest,
    ActionResult,
    Connection,
    ConnectionMetadata,
    ConnectionStatus,
    ConnectResult,
    CredentialBundle,
    CredentialSource,
    InlineCredentials,
    ProbeResult,
    StoredCredentials,
)
from core.integrations.probe import ConnectionProbe
from core.integrations.registry import IntegrationRegistry
from core.integrations.store import ConnectionStore
from core.integrations.vault import CredentialVault
from core.observability.otel_setup import create_action_span
from core.resilience.retry import RetryOutcome, RetryPolicy, call_with_retry

logger = logging.getLogger(__name__)


def check_base_url(url: str) -> None:
    """Reject a caller-supplied base URL that is not an absolute http(s) URL."""
    try:
        parsed = httpx.URL(url)
    except httpx.InvalidURL as exc:
        raise ValidationError(f"Invalid baseUrl: {exc}", field="credentials.baseUrl") from exc
    if parsed.scheme not in ("http", "https") or not parsed.host:
        raise ValidationError("baseUrl must be an absolute http(s) URL", field="credentials.baseUrl")


class ActionDispatcher:
    """Request-scoped orchestration over registry, vault, probe and store.

    Holds no per-call state; one instance serves all requests.
    """

    def __init__(
        self,
        registry: IntegrationRegistry,
        vault: CredentialVault,
        store: ConnectionStore,
        probe: ConnectionProbe | None = None,
        config: DispatchConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        tracer: Any = None,
        user_agent: str = ProbeConfig.user_agent,
    ):
        self.registry = registry
        self.vault = vault
        self.store = store
        self.probe = probe or ConnectionProbe(transport=transport)
        self.config = config or DispatchConfig()
        self.retry_policy = RetryPolicy(
            max_retries=self.config.max_retries,
            backoff_base=self.config.retry_delay,
            backoff_max=self.config.retry_backoff_max,
        )
        self.transport = transport
        self.tracer = tracer
        self.user_agent = user_agent

    # ------------------------------------------------------------------
    # connect
    # ------------------------------------------------------------------

    async def connect(
        self,
        user_id: str,
        integration_id: str,
        credentials: Mapping[str, Any] | CredentialBundle | None,
    ) -> ConnectResult:
        """Probe, encrypt and store credentials. Reconnect replaces the record."""
        try:
            self._require(user_id, "user id")
            self._require(integration_id, "integrationId")
            bundle = self._validate_credentials(credentials)
            descriptor = self._descriptor(integration_id)

            probe_result = await self.probe.probe(descriptor, bundle)
            if not probe_result.ok:
                raise ProbeFailed(
                    probe_result.error or "Connection test failed",
                    integration_id=integration_id,
                    probe_status=probe_result.status_code,
                )

            connection = Connection(
                user_id=user_id,
                integration_id=integration_id,
                integration_name=descriptor.display_name,
                credentials=self.vault.encrypt(bundle),
                status=ConnectionStatus.ACTIVE,
                metadata=ConnectionMetadata(
                    base_url=bundle.base_url or descriptor.base_url,
                    workspace_id=bundle.workspace_id,
                    scopes=descriptor.scopes,
                    warning=probe_result.warning,
                ),
            )
            connection = await self.store.save(connection)
        except HubError as exc:
            logger.warning("Connect %s for %s failed: %s", integration_id, user_id, exc.message)
            return ConnectResult(
                success=False,
                integration_id=integration_id,
                error=ActionError.from_exception(exc),
            )
        except Exception as exc:
            logger.exception("Unexpected error connecting %s for %s", integration_id, user_id)
            return ConnectResult(
                success=False,
                integration_id=integration_id,
                error=ActionError.from_exception(
                    AdapterError(f"Failed to connect integration: {exc}", integration_id=integration_id)
                ),
            )

        logger.info(
            "Connected %s for %s%s",
            integration_id, user_id,
            " (unverified)" if probe_result.warning else "",
        )
        return ConnectResult(
            success=True,
            integration_id=integration_id,
            integration_name=descriptor.display_name,
            connection=connection,
            warning=probe_result.warning,
        )

    async def test_connection(
        self,
        integration_id: str,
        credentials: Mapping[str, Any] | CredentialBundle | None,
    ) -> ProbeResult:
        """Probe credentials without storing anything."""
        try:
            self._require(integration_id, "integrationId")
            bundle = self._validate_credentials(credentials)
            descriptor = self._descriptor(integration_id)
            return await self.probe.probe(descriptor, bundle)
        except HubError as exc:
            return ProbeResult(ok=False, error=exc.message)
        except Exception as exc:
            logger.exception("Unexpected error testing %s", integration_id)
            return ProbeResult(ok=False, error=f"Connection test failed: {exc}")

    async def bulk_connect(
        self,
        user_id: str,
        items: Iterable[Mapping[str, Any]],
    ) -> dict[str, Any]:
        """Connect several integrations; a failure does not stop the rest."""
        results = []
        for item in items:
            integration_id = str(item.get("integrationId") or "")
            result = await self.connect(user_id, integration_id, item.get("credentials"))
            entry: dict[str, Any] = {"integrationId": integration_id, "success": result.success}
            if result.error is not None:
                entry["error"] = result.error.message
            else:
                entry["warning"] = result.warning
            results.append(entry)

        succeeded = sum(1 for r in results if r["success"])
        return {
            "success": succeeded == len(results),
            "total": len(results),
            "succeeded": succeeded,
            "failed": len(results) - succeeded,
            "results": results,
        }

    # ------------------------------------------------------------------
    # connection management
    # ------------------------------------------------------------------

    async def disconnect(self, user_id: str, integration_id: str) -> bool:
        removed = await self.store.delete(user_id, integration_id)
        if removed:
            logger.info("Disconnected %s for %s", integration_id, user_id)
        return removed

    async def revoke(self, user_id: str, integration_id: str) -> bool:
        """Keep the record but stop it from being used."""
        connection = await self.store.set_status(user_id, integration_id, ConnectionStatus.REVOKED)
        return connection is not None

    async def list_connections(self, user_id: str) -> list[dict[str, Any]]:
        connections = await self.store.list_for_user(user_id)
        return [c.summary() for c in connections.values()]

    async def connection_status(self, user_id: str, integration_id: str) -> dict[str, Any]:
        connection = await self.store.get(user_id, integration_id)
        if connection is None:
            return {"integrationId": integration_id, "connected": False, "status": None}
        return {
            "integrationId": integration_id,
            "connected": connection.is_active,
            "status": connection.status.value,
            "connectedAt": connection.connected_at.isoformat(),
            "updatedAt": connection.updated_at.isoformat(),
            "warning": connection.metadata.warning,
        }

    # ------------------------------------------------------------------
    # execute
    # ------------------------------------------------------------------

    async def execute(
        self,
        integration_id: str,
        action: str,
        params: Mapping[str, Any] | None,
        source: CredentialSource,
    ) -> ActionResult:
        """Invoke `action` on one integration and normalize the outcome."""
        started = time.monotonic()
        retry = RetryOutcome()
        descriptor: IntegrationDescriptor | None = None
        endpoint_name: str | None = None

        span_cm = (
            create_action_span(self.tracer, integration_id, action)
            if self.tracer is not None
            else nullcontext()
        )
        with span_cm:
            try:
                self._require(integration_id, "integrationId")
                self._require(action, "action")
                if params is not None and not isinstance(params, Mapping):
                    raise ValidationError("params must be an object")
                call_params = dict(params or {})

                factory, descriptor = self.registry.get(integration_id)
                endpoint = descriptor.endpoint(action)
                if endpoint is None:
                    raise EndpointNotFound(integration_id, action)
                endpoint_name = endpoint.display_name

                bundle, base_url = await self._resolve_credentials(descriptor, source)
                adapter = factory(
                    AdapterConfig(
                        descriptor=descriptor,
                        credentials=bundle,
                        base_url=base_url,
                        timeout=self.config.timeout,
                        transport=self.transport,
                        user_agent=self.user_agent,
                    )
                )

                retry_enabled = endpoint.idempotent or self.config.retry_non_idempotent
                outcome = await call_with_retry(
                    lambda: adapter.execute(action, call_params),
                    policy=self.retry_policy,
                    timeout=self.config.timeout,
                    retry_enabled=retry_enabled,
                    outcome=retry,
                    deadline=self.config.deadline,
                )
            except HubError as exc:
                logger.log(
                    logging.ERROR if exc.status_code >= 500 else logging.WARNING,
                    "Execute %s.%s failed after %d attempt(s): %s",
                    integration_id, action, retry.attempts, exc.message,
                )
                return ActionResult.failure(
                    integration_id,
                    action,
                    exc,
                    attempts=retry.attempts,
                    integration_name=descriptor.display_name if descriptor else None,
                    endpoint_name=endpoint_name,
                    latency_ms=(time.monotonic() - started) * 1000,
                )
            except Exception as exc:
                logger.exception("Unexpected error executing %s.%s", integration_id, action)
                return ActionResult.failure(
                    integration_id,
                    action,
                    AdapterError(f"Failed to execute integration: {exc}", integration_id=integration_id),
                    attempts=retry.attempts,
                    integration_name=descriptor.display_name if descriptor else None,
                    endpoint_name=endpoint_name,
                    latency_ms=(time.monotonic() - started) * 1000,
                )

        logger.info("Executed %s.%s (HTTP %s)", integration_id, action, outcome.status)
        return ActionResult(
            success=True,
            integration_id=integration_id,
            action=action,
            integration_name=descriptor.display_name,
            endpoint_name=endpoint_name,
            status=outcome.status,
            data=outcome.data,
            attempts=retry.attempts,
            latency_ms=(time.monotonic() - started) * 1000,
        )

    async def execute_request(self, request: ActionRequest, source: CredentialSource) -> ActionResult:
        return await self.execute(request.integration_id, request.action, request.params, source)

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _require(value: Any, name: str) -> None:
        if not isinstance(value, str) or not value.strip():
            raise ValidationError(f"Missing required field: {name}", field=name)

    @staticmethod
    def _validate_credentials(credentials: Any) -> CredentialBundle:
        if credentials is None:
            raise ValidationError(
                "Missing required fields: integrationId and credentials.apiKey",
                field="credentials",
            )
        bundle = CredentialBundle.from_mapping(credentials)
        if not bundle.api_key:
            raise ValidationError(
                "Missing required fields: integrationId and credentials.apiKey",
                field="credentials.apiKey",
            )
        if bundle.base_url:
            check_base_url(bundle.base_url)
        return bundle

    def _descriptor(self, integration_id: str) -> IntegrationDescriptor:
        _, descriptor = self.registry.get(integration_id)
        return descriptor

    async def _resolve_credentials(
        self,
        descriptor: IntegrationDescriptor,
        source: CredentialSource,
    ) -> tuple[CredentialBundle, str]:
        """Return the bundle and the base URL the adapter should be bound to."""
        if isinstance(source, InlineCredentials):
            bundle = CredentialBundle.from_mapping(source.bundle)
            if bundle.base_url:
                check_base_url(bundle.base_url)
            return bundle, bundle.base_url or descriptor.base_url

        if isinstance(source, StoredCredentials):
            connection = await self.store.get(source.user_id, descriptor.id)
            if connection is None or not connection.is_active:
                raise NotConnected(descriptor.id)
            bundle = self.vault.decrypt(connection.credentials)
            base_url = connection.metadata.base_url or bundle.base_url or descriptor.base_url
            return bundle, base_url

        raise ValidationError("Unknown credential source")
