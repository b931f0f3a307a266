"""Integration API router: catalog, connections and action execution.

Thin transport over the ActionDispatcher:
- Catalog endpoints read the registry (descriptors carry no secrets)
- Connection endpoints act on the caller's own partition
- Execute runs one action with stored or inline credentials
- Caller identity comes from UserMiddleware (X-User-ID)
"""

from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from api.middleware import get_current_user
from api.schemas import BulkConnectRequest, ConnectRequest, DisconnectRequest, ExecuteRequest
from core.integrations.dispatcher import ActionDispatcher
from core.integrations.models import (
    ActionRequest,
    CredentialBundle,
    InlineCredentials,
    StoredCredentials,
)
from core.integrations.registry import IntegrationRegistry

router = APIRouter()


def get_dispatcher(request: Request) -> ActionDispatcher:
    return request.app.state.runtime.dispatcher


def get_registry(request: Request) -> IntegrationRegistry:
    return request.app.state.runtime.registry


def _error(status_code: int, error: str, **extra: Any) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": error, **extra})


# ============================================================================
# Catalog
# ============================================================================

@router.get("/available")
async def list_available(registry: IntegrationRegistry = Depends(get_registry)):
    """Every registered integration, grouped categories included."""
    integrations = [d.public_dict() for d in registry.list_all()]
    return {
        "success": True,
        "count": len(integrations),
        "integrations": integrations,
        "categories": registry.categories(),
    }


@router.get("/search")
async def search_integrations(
    q: str = Query("", max_length=200),
    registry: IntegrationRegistry = Depends(get_registry),
):
    results = [d.public_dict() for d in registry.search(q)]
    return {"success": True, "query": q, "count": len(results), "integrations": results}


# ============================================================================
# Connections
# ============================================================================

@router.get("/connected")
async def list_connected(dispatcher: ActionDispatcher = Depends(get_dispatcher)):
    integrations = await dispatcher.list_connections(get_current_user())
    return {"success": True, "integrations": integrations}


@router.get("/status/{integration_id}")
async def connection_status(
    integration_id: str,
    dispatcher: ActionDispatcher = Depends(get_dispatcher),
):
    if not dispatcher.registry.has(integration_id):
        return _error(404, f"Integration not found: {integration_id}")
    status = await dispatcher.connection_status(get_current_user(), integration_id)
    return {"success": True, "status": status}


@router.post("/connect")
async def connect_integration(
    body: ConnectRequest,
    dispatcher: ActionDispatcher = Depends(get_dispatcher),
):
    """Probe, encrypt and store credentials for the caller."""
    result = await dispatcher.connect(get_current_user(), body.integration_id or "", body.credentials)
    return JSONResponse(status_code=result.status_code, content=result.to_envelope())


@router.post("/test")
async def test_connection(
    body: ConnectRequest,
    dispatcher: ActionDispatcher = Depends(get_dispatcher),
):
    """Probe credentials without storing them."""
    if body.integration_id and not dispatcher.registry.has(body.integration_id):
        return _error(404, f"Integration not found: {body.integration_id}")
    probe = await dispatcher.test_connection(body.integration_id or "", body.credentials)
    content: dict[str, Any] = {"success": probe.ok, "statusCode": probe.status_code}
    if probe.warning:
        content["warning"] = probe.warning
    if probe.error:
        content["error"] = probe.error
    return JSONResponse(status_code=200 if probe.ok else 400, content=content)


@router.post("/disconnect")
async def disconnect_integration(
    body: DisconnectRequest,
    dispatcher: ActionDispatcher = Depends(get_dispatcher),
):
    if not body.integration_id:
        return _error(400, "Integration ID is required")
    removed = await dispatcher.disconnect(get_current_user(), body.integration_id)
    if not removed:
        return _error(404, "Integration not connected")
    return {"success": True, "message": f"{body.integration_id} disconnected"}


@router.post("/bulk-connect")
async def bulk_connect(
    body: BulkConnectRequest,
    dispatcher: ActionDispatcher = Depends(get_dispatcher),
):
    if body.integrations is None:
        return _error(400, "Integrations array is required")
    return await dispatcher.bulk_connect(get_current_user(), body.integrations)


# ============================================================================
# Execute
# ============================================================================

@router.post("/execute")
async def execute_action(
    body: ExecuteRequest,
    dispatcher: ActionDispatcher = Depends(get_dispatcher),
):
    """Run one action. Inline credentials skip the stored connection."""
    if body.credentials is not None:
        source = InlineCredentials(CredentialBundle.from_mapping(body.credentials))
    else:
        source = StoredCredentials(get_current_user())
    request = ActionRequest(
        integration_id=body.integration_id or "",
        action=body.action_id or "",
        params=body.params or {},
    )
    result = await dispatcher.execute_request(request, source)
    return JSONResponse(status_code=result.status_code, content=result.to_envelope())
