"""Pydantic schemas for integration API requests.

Fields the runtime validates itself (integrationId, credentials.apiKey,
action) are optional here so that missing input comes back in the
runtime's own error envelope rather than as a framework error.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------

class ConnectRequest(_CamelModel):
    integration_id: Optional[str] = Field(None, alias="integrationId")
    credentials: Optional[dict[str, Any]] = None


class DisconnectRequest(_CamelModel):
    integration_id: Optional[str] = Field(None, alias="integrationId")


class BulkConnectRequest(_CamelModel):
    integrations: Optional[list[dict[str, Any]]] = None


class ExecuteRequest(_CamelModel):
    integration_id: Optional[str] = Field(None, alias="integrationId")
    endpoint_id: Optional[str] = Field(None, alias="endpointId")
    action: Optional[str] = None
    params: Optional[dict[str, Any]] = None
    # One-shot credentials; when absent the caller's stored connection is used
    credentials: Optional[dict[str, Any]] = None

    @property
    def action_id(self) -> Optional[str]:
        return self.endpoint_id or self.action
