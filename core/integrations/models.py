"""
Runtime value objects for the integration hub.

- CredentialBundle: caller-supplied secrets (never persisted in plaintext)
- EncryptedCredential: the persisted {encrypted, iv, algorithm} triple
- Connection: per (user, integration) record owned by the store
- ActionResult / ConnectResult: request-scoped outcomes returned to callers
"""
from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping

from core.errors import ErrorCode, HubError, ValidationError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_ts(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------

class CredentialBundle:
    """Mapping of credential field name to opaque string value.

    Well-known fields: apiKey, apiSecret, baseUrl, workspaceId. Any other
    field is carried through untouched. Values are masked in repr().
    """

    API_KEY = "apiKey"
    API_SECRET = "apiSecret"
    BASE_URL = "baseUrl"
    WORKSPACE_ID = "workspaceId"

    __slots__ = ("_fields",)

    def __init__(self, fields: Mapping[str, Any] | None = None, **kwargs: Any):
        merged = {**(fields or {}), **kwargs}
        clean: dict[str, str] = {}
        for key, value in merged.items():
            if value is None:
                continue
            if not isinstance(key, str) or not key:
                raise ValidationError("Credential field names must be non-empty strings")
            if isinstance(value, (dict, list, tuple, set)):
                raise ValidationError(
                    f"Credential field '{key}' must be a scalar value",
                    field=key,
                )
            clean[key] = value if isinstance(value, str) else str(value)
        self._fields = clean

    @classmethod
    def from_mapping(cls, data: Any) -> "CredentialBundle":
        if isinstance(data, CredentialBundle):
            return data
        if not isinstance(data, Mapping):
            raise ValidationError("credentials must be an object")
        return cls(data)

    # --- well-known fields ---

    @property
    def api_key(self) -> str | None:
        return self._fields.get(self.API_KEY)

    @property
    def api_secret(self) -> str | None:
        return self._fields.get(self.API_SECRET)

    @property
    def base_url(self) -> str | None:
        return self._fields.get(self.BASE_URL)

    @property
    def workspace_id(self) -> str | None:
        return self._fields.get(self.WORKSPACE_ID)

    # --- mapping helpers ---

    def get(self, key: str, default: str | None = None) -> str | None:
        return self._fields.get(key, default)

    def to_dict(self) -> dict[str, str]:
        return dict(self._fields)

    def keys(self) -> list[str]:
        return sorted(self._fields)

    def __contains__(self, key: object) -> bool:
        return key in self._fields

    def __len__(self) -> int:
        return len(self._fields)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, CredentialBundle):
            return self._fields == other._fields
        if isinstance(other, Mapping):
            return self._fields == dict(other)
        return NotImplemented

    def __hash__(self) -> int:
        return hash(tuple(sorted(self._fields.items())))

    def __repr__(self) -> str:
        masked = ", ".join(f"{k}=***" for k in sorted(self._fields))
        return f"CredentialBundle({masked})"


@dataclass(frozen=True)
class EncryptedCredential:
    """Persisted credential form. Field names are part of the storage format."""
    encrypted: str  # hex
    iv: str  # hex
    algorithm: str

    def to_dict(self) -> dict[str, str]:
        return {"encrypted": self.encrypted, "iv": self.iv, "algorithm": self.algorithm}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "EncryptedCredential":
        return cls(
            encrypted=str(data.get("encrypted", "")),
            iv=str(data.get("iv", "")),
            # Records written before the algorithm field existed were CBC
            algorithm=str(data.get("algorithm") or "aes-256-cbc"),
        )


# ---------------------------------------------------------------------------
# Connection
# ---------------------------------------------------------------------------

class ConnectionStatus(str, Enum):
    ACTIVE = "active"
    REVOKED = "revoked"


@dataclass
class ConnectionMetadata:
    base_url: str | None = None
    workspace_id: str | None = None
    scopes: list[str] = field(default_factory=list)
    warning: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "baseUrl": self.base_url,
            "workspaceId": self.workspace_id,
            "scopes": list(self.scopes),
            "warning": self.warning,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> "ConnectionMetadata":
        data = data or {}
        return cls(
            base_url=data.get("baseUrl"),
            workspace_id=data.get("workspaceId"),
            scopes=list(data.get("scopes") or []),
            warning=data.get("warning"),
        )


@dataclass
class Connection:
    """One user's connection to one integration."""
    user_id: str
    integration_id: str
    integration_name: str
    credentials: EncryptedCredential
    status: ConnectionStatus = ConnectionStatus.ACTIVE
    connected_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    metadata: ConnectionMetadata = field(default_factory=ConnectionMetadata)

    @property
    def is_active(self) -> bool:
        return self.status == ConnectionStatus.ACTIVE

    def to_dict(self) -> dict[str, Any]:
        return {
            "userId": self.user_id,
            "integrationId": self.integration_id,
            "integrationName": self.integration_name,
            "credentials": self.credentials.to_dict(),
            "status": self.status.value,
            "connectedAt": self.connected_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
            "metadata": self.metadata.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Connection":
        connected_at = _parse_ts(data.get("connectedAt")) or utcnow()
        return cls(
            user_id=data["userId"],
            integration_id=data["integrationId"],
            integration_name=data.get("integrationName") or data["integrationId"],
            credentials=EncryptedCredential.from_dict(data["credentials"]),
            status=ConnectionStatus(data.get("status", ConnectionStatus.ACTIVE.value)),
            connected_at=connected_at,
            updated_at=_parse_ts(data.get("updatedAt")) or connected_at,
            metadata=ConnectionMetadata.from_dict(data.get("metadata")),
        )

    def summary(self) -> dict[str, Any]:
        """Public view without credentials."""
        return {
            "id": self.integration_id,
            "name": self.integration_name,
            "connected": self.is_active,
            "status": self.status.value,
            "connectedAt": self.connected_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
            "baseUrl": self.metadata.base_url,
            "workspaceId": self.metadata.workspace_id,
            "scopes": list(self.metadata.scopes),
            "warning": self.metadata.warning,
        }


# ---------------------------------------------------------------------------
# Request / result envelopes
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class StoredCredentials:
    """Credential source: decrypt the caller's stored connection."""
    user_id: str


@dataclass(frozen=True)
class InlineCredentials:
    """Credential source: one-shot credentials that are never stored."""
    bundle: CredentialBundle


CredentialSource = StoredCredentials | InlineCredentials


@dataclass
class ActionRequest:
    integration_id: str
    action: str
    params: dict[str, Any] = field(default_factory=dict)


@dataclass
class ActionOutcome:
    """What an adapter returns for a successful call."""
    status: int
    data: Any = None


@dataclass
class ActionError:
    code: str
    type: str
    message: str
    status_code: int
    details: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_exception(cls, exc: HubError) -> "ActionError":
        data = exc.to_dict()
        details = {k: v for k, v in data.items() if k not in ("code", "type", "message", "status_code")}
        return cls(
            code=data["code"],
            type=data["type"],
            message=data["message"],
            status_code=data["status_code"],
            details=details,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "type": self.type,
            "message": self.message,
            "status_code": self.status_code,
            **self.details,
        }


@dataclass
class ActionResult:
    success: bool
    integration_id: str
    action: str
    integration_name: str | None = None
    endpoint_name: str | None = None
    status: int | None = None
    data: Any = None
    error: ActionError | None = None
    attempts: int = 0
    latency_ms: float = 0.0

    @classmethod
    def failure(
        cls,
        integration_id: str,
        action: str,
        exc: HubError,
        attempts: int = 0,
        **kwargs: Any,
    ) -> "ActionResult":
        return cls(
            success=False,
            integration_id=integration_id,
            action=action,
            error=ActionError.from_exception(exc),
            attempts=attempts,
            **kwargs,
        )

    @property
    def status_code(self) -> int:
        """HTTP-equivalent status for the transport layer."""
        if self.error is not None:
            return self.error.status_code
        return 200 if self.success else 500

    def to_envelope(self) -> dict[str, Any]:
        if self.success:
            return {
                "success": True,
                "integration": self.integration_name or self.integration_id,
                "endpoint": self.endpoint_name or self.action,
                "result": {"status": self.status, "data": self.data},
            }
        if self.error is None:
            return {"success": False, "error": "Action failed"}
        return {
            "success": False,
            "error": self.error.message,
            "code": self.error.code,
            "details": self.error.to_dict(),
        }


@dataclass
class ProbeResult:
    ok: bool
    warning: str | None = None
    status_code: int | None = None
    error: str | None = None
    url: str | None = None


@dataclass
class ConnectResult:
    success: bool
    integration_id: str
    integration_name: str | None = None
    connection: Connection | None = None
    warning: str | None = None
    error: ActionError | None = None

    @property
    def status_code(self) -> int:
        if self.error is not None:
            return self.error.status_code
        return 200 if self.success else 500

    def to_envelope(self) -> dict[str, Any]:
        if self.success and self.connection is not None:
            envelope: dict[str, Any] = {
                "success": True,
                "message": f"{self.integration_name} connected successfully!",
                "integration": {
                    "id": self.integration_id,
                    "name": self.integration_name,
                    "connected": True,
                    "connectedAt": self.connection.connected_at.isoformat(),
                },
            }
            if self.warning:
                envelope["warning"] = self.warning
            return envelope
        if self.error is None:
            return {"success": False, "error": "Connection failed"}
        envelope = {"success": False, "error": self.error.message}
        if self.error.code == ErrorCode.PROBE_FAILED.value:
            envelope["error"] = "Connection test failed"
            envelope["message"] = self.error.message
        return envelope
